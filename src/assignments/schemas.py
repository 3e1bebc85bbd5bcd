"""Schema definitions for rule assignments and the user/team directory.

A rule assignment binds an external alert-engine rule to the users and
teams that should hear about it, the severity and category of the cases it
produces, and the strategy used to pick a single case owner.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from src.assignments.errors import ValidationError


class _ParseableEnum(str, Enum):
    """String enum with case-insensitive parsing into ``ValidationError``."""

    @classmethod
    def parse(cls, value: Any, field_name: str | None = None):
        if isinstance(value, cls):
            return value
        name = field_name or cls.__name__.lower()
        if not isinstance(value, str):
            raise ValidationError(name, f"expected a string, got {value!r}")
        try:
            return cls(value.strip().upper())
        except ValueError:
            raise ValidationError(
                name,
                f"invalid value {value!r}. Must be one of: {[m.value for m in cls]}",
            ) from None


class Severity(_ParseableEnum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4,
}


class Strategy(_ParseableEnum):
    """How a single case owner is picked from the resolved recipients."""

    MANUAL = "MANUAL"
    ROUND_ROBIN = "ROUND_ROBIN"
    LOAD_BASED = "LOAD_BASED"
    TEAM_BASED = "TEAM_BASED"


class Category(_ParseableEnum):
    REVENUE_LOSS = "REVENUE_LOSS"
    NETWORK_ISSUE = "NETWORK_ISSUE"
    QUALITY_ISSUE = "QUALITY_ISSUE"
    FRAUD_ALERT = "FRAUD_ALERT"
    OPERATIONAL = "OPERATIONAL"
    CUSTOM = "CUSTOM"


def parse_ids(values: Iterable[Any] | None, field_name: str) -> frozenset[int]:
    if values is None:
        return frozenset()
    if isinstance(values, (str, bytes)):
        raise ValidationError(field_name, "expected a list of integer ids")
    ids: set[int] = set()
    for value in values:
        # bool is an int subclass; reject it explicitly
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationError(field_name, f"invalid id {value!r}")
        ids.add(value)
    return frozenset(ids)


@dataclass(frozen=True)
class AssignmentSpec:
    """Desired state of a rule assignment, as written by the CRUD layer."""

    severity: Severity = Severity.MEDIUM
    category: Category = Category.OPERATIONAL
    strategy: Strategy = Strategy.MANUAL
    active: bool = True
    user_ids: frozenset[int] = frozenset()
    team_ids: frozenset[int] = frozenset()
    rule_name: str | None = None
    description: str | None = None

    def __post_init__(self) -> None:
        # Normalize so callers may pass raw strings and lists
        object.__setattr__(self, "severity", Severity.parse(self.severity, "severity"))
        object.__setattr__(self, "category", Category.parse(self.category, "category"))
        object.__setattr__(self, "strategy", Strategy.parse(self.strategy, "strategy"))
        object.__setattr__(self, "user_ids", parse_ids(self.user_ids, "user_ids"))
        object.__setattr__(self, "team_ids", parse_ids(self.team_ids, "team_ids"))
        if not isinstance(self.active, bool):
            raise ValidationError("active", f"expected a boolean, got {self.active!r}")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AssignmentSpec":
        """Build a spec from a mapping, accepting snake_case or camelCase keys."""

        def pick(*keys: str, default: Any = None) -> Any:
            for key in keys:
                if key in data and data[key] is not None:
                    return data[key]
            return default

        return cls(
            severity=pick("severity", default=Severity.MEDIUM),
            category=pick("category", default=Category.OPERATIONAL),
            strategy=pick("strategy", "assignment_strategy", "assignmentStrategy",
                          default=Strategy.MANUAL),
            active=pick("active", default=True),
            user_ids=pick("user_ids", "userIds", default=()),
            team_ids=pick("team_ids", "teamIds", default=()),
            rule_name=pick("rule_name", "ruleName"),
            description=pick("description"),
        )


@dataclass(frozen=True)
class RuleAssignment:
    """Immutable snapshot of a rule assignment.

    A dispatch works from the snapshot it loaded, so edits made while it is
    in flight only affect the next event for the rule.
    """

    rule_id: str
    severity: Severity = Severity.MEDIUM
    category: Category = Category.OPERATIONAL
    strategy: Strategy = Strategy.MANUAL
    active: bool = True
    user_ids: frozenset[int] = frozenset()
    team_ids: frozenset[int] = frozenset()
    rule_name: str | None = None
    description: str | None = None
    created_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc), compare=False,
    )
    updated_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc), compare=False,
    )

    @property
    def has_recipients(self) -> bool:
        return bool(self.user_ids or self.team_ids)

    def matches(self, spec: AssignmentSpec) -> bool:
        """True when applying ``spec`` would not change this assignment."""
        return (
            self.severity == spec.severity
            and self.category == spec.category
            and self.strategy == spec.strategy
            and self.active == spec.active
            and self.user_ids == spec.user_ids
            and self.team_ids == spec.team_ids
            and self.rule_name == spec.rule_name
            and self.description == spec.description
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dictionary."""
        return {
            "rule_id": self.rule_id,
            "rule_name": self.rule_name,
            "description": self.description,
            "severity": self.severity.value,
            "category": self.category.value,
            "strategy": self.strategy.value,
            "active": self.active,
            "user_ids": sorted(self.user_ids),
            "team_ids": sorted(self.team_ids),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass(frozen=True)
class TeamMember:
    user_id: int
    is_lead: bool = False


@dataclass(frozen=True)
class Team:
    """A team with its members in roster order."""

    team_id: int
    members: tuple[TeamMember, ...] = ()
    name: str = ""

    def __post_init__(self) -> None:
        leads = [m.user_id for m in self.members if m.is_lead]
        if len(leads) > 1:
            raise ValidationError(
                "members", f"team {self.team_id} has more than one lead: {leads}",
            )

    @property
    def member_ids(self) -> tuple[int, ...]:
        return tuple(m.user_id for m in self.members)

    @property
    def lead_user_id(self) -> int | None:
        for member in self.members:
            if member.is_lead:
                return member.user_id
        return None


@dataclass
class User:
    user_id: int
    role: str = "ANALYST"
    open_case_count: int = 0
    team_ids: tuple[int, ...] = ()
    email: str | None = None
    login: str | None = None
