"""CASL-style abilities: which actions a user may perform on which subjects.

Rules are evaluated newest-first, so a later rule overrides an earlier one.
``manage`` matches any action and the ``all`` subject matches any subject.
"""

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)

ALL_SUBJECTS = "all"
ADMIN_ROLE = "admin"


class Action(StrEnum):
    MANAGE = "manage"
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"


class Subject(StrEnum):
    USER = "User"
    ROLE = "Role"
    PERMISSION = "Permission"
    TENANT = "Tenant"
    AUDIT_LOG = "AuditLog"
    MONITORING = "Monitoring"


# Subjects whose rows carry a ``tenant_id``; a tenant user may only touch its own.
TENANT_SCOPED_SUBJECTS = frozenset({Subject.USER, Subject.AUDIT_LOG})


@dataclass(frozen=True)
class Rule:
    action: str
    subject: str
    conditions: Mapping[str, Any] = field(default_factory=dict)
    inverted: bool = False

    def matches(self, action: str, subject: str) -> bool:
        return (self.action in (Action.MANAGE, action)) and (
            self.subject in (ALL_SUBJECTS, subject)
        )

    def matches_object(self, obj: Any) -> bool:
        return all(
            str(_attribute(obj, attr)) == str(expected) for attr, expected in self.conditions.items()
        )


def _attribute(obj: Any, name: str) -> Any:
    if isinstance(obj, Mapping):
        return obj.get(name)
    return getattr(obj, name, None)


class Ability:
    """Rules plus an optional tenant the holder is confined to.

    A confined ability never grants access to an object of a tenant-scoped
    subject that belongs to another tenant, whatever its rules say.
    """

    def __init__(self, rules: Iterable[Rule] = (), tenant_id: Any = None) -> None:
        self.rules: list[Rule] = list(rules)
        self.tenant_id = tenant_id

    def allow(self, action: str, subject: str, **conditions: Any) -> "Ability":
        self.rules.append(Rule(str(action), str(subject), conditions))
        return self

    def forbid(self, action: str, subject: str, **conditions: Any) -> "Ability":
        self.rules.append(Rule(str(action), str(subject), conditions, inverted=True))
        return self

    def can(self, action: str, subject: str, obj: Any = None) -> bool:
        """Check ``action`` on ``subject``; pass ``obj`` to evaluate rule conditions.

        Without an object, a conditional rule still grants access: the caller
        is asking whether the action is possible on *some* instance.
        """
        if obj is not None and not self._owns(subject, obj):
            return False
        for rule in reversed(self.rules):
            if not rule.matches(action, subject):
                continue
            if obj is None:
                if rule.inverted and rule.conditions:
                    continue
                return not rule.inverted
            if rule.conditions and not rule.matches_object(obj):
                continue
            return not rule.inverted
        return False

    def cannot(self, action: str, subject: str, obj: Any = None) -> bool:
        return not self.can(action, subject, obj)

    def _owns(self, subject: str, obj: Any) -> bool:
        if self.tenant_id is None or subject not in TENANT_SCOPED_SUBJECTS:
            return True
        return str(_attribute(obj, "tenant_id")) == str(self.tenant_id)


def define_ability_for(user: Any) -> Ability:
    """Build the ability of ``user``; its ``role.permissions`` must be loaded."""
    ability = Ability(tenant_id=getattr(user, "tenant_id", None))
    role = getattr(user, "role", None)

    if role is not None and role.name == ADMIN_ROLE:
        ability.allow(Action.MANAGE, ALL_SUBJECTS)

    ability.allow(Action.READ, Subject.USER, id=user.id)
    ability.allow(Action.UPDATE, Subject.USER, id=user.id)
    ability.allow(Action.READ, Subject.ROLE)
    ability.allow(Action.READ, Subject.TENANT)

    if role is not None:
        for permission in role.permissions:
            ability.allow(permission.action.lower(), permission.subject)

    logger.debug("Ability for user %s built with %d rules", user.id, len(ability.rules))
    return ability
