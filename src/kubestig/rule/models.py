"""
Result data model for kubestig rules.

Defines the Target identifying an inspected object, the CheckResult
verdict for one target and the RuleResult aggregating all verdicts of
one rule run.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Iterator

if TYPE_CHECKING:
    from kubestig.rule.base import Rule


class Status(Enum):
    """Verdict of a single check."""

    PASSED = "Passed"
    FAILED = "Failed"
    ERRORED = "Errored"
    ACCEPTED = "Accepted"
    SKIPPED = "Skipped"

    @classmethod
    def from_string(cls, value: str) -> Status:
        """
        Create Status from string value.

        Args:
            value: String representation (case-insensitive)

        Returns:
            Matching Status enum value

        Raises:
            ValueError: If value is not a valid status
        """
        value_lower = value.lower()
        for status in cls:
            if status.value.lower() == value_lower:
                return status
        raise ValueError(f"Invalid status: {value}")


class SeverityLevel(Enum):
    """STIG severity category of a rule."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @classmethod
    def from_string(cls, value: str) -> SeverityLevel:
        """
        Create SeverityLevel from string value.

        Args:
            value: String representation (case-insensitive)

        Returns:
            Matching SeverityLevel enum value

        Raises:
            ValueError: If value is not a valid severity
        """
        value_lower = value.lower()
        for severity in cls:
            if severity.value == value_lower:
                return severity
        raise ValueError(f"Invalid severity: {value}")


class Target(Mapping[str, str]):
    """
    Immutable, ordered identifier of an inspected object.

    Example:
        >>> target = Target(kind="pod", name="nginx", namespace="default")
        >>> target.with_fields(details="port: 80")["details"]
        'port: 80'
    """

    __slots__ = ("_items",)

    def __init__(self, **fields: str):
        self._items: tuple[tuple[str, str], ...] = tuple(
            (key, str(value)) for key, value in fields.items()
        )

    @classmethod
    def from_items(cls, items: Any) -> Target:
        """Create a Target from (key, value) pairs, keeping their order."""
        target = cls()
        target._items = tuple((str(k), str(v)) for k, v in items)
        return target

    def with_fields(self, **fields: str) -> Target:
        """
        Return a new Target with the given fields set.

        Existing keys keep their position and get the new value,
        new keys are appended. The receiver is left untouched.
        """
        items = dict(self._items)
        for key, value in fields.items():
            items[key] = str(value)
        return Target.from_items(items.items())

    def __getitem__(self, key: str) -> str:
        for item_key, value in self._items:
            if item_key == key:
                return value
        raise KeyError(key)

    def __iter__(self) -> Iterator[str]:
        return (key for key, _ in self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Target):
            return self._items == other._items
        return super().__eq__(other)

    def __hash__(self) -> int:
        return hash(self._items)

    def __repr__(self) -> str:
        fields = ", ".join(f"{k}={v!r}" for k, v in self._items)
        return f"Target({fields})"

    def to_dict(self) -> dict[str, str]:
        """Convert to dictionary."""
        return dict(self._items)


@dataclass(frozen=True)
class CheckResult:
    """
    Verdict for one target of a rule.

    Attributes:
        status: Outcome of the check
        message: Human readable explanation
        target: Object the verdict refers to
    """

    status: Status
    message: str
    target: Target = field(default_factory=Target)

    @classmethod
    def passed(cls, message: str, target: Target | None = None) -> CheckResult:
        """Create a Passed check result."""
        return cls(Status.PASSED, message, target or Target())

    @classmethod
    def failed(cls, message: str, target: Target | None = None) -> CheckResult:
        """Create a Failed check result."""
        return cls(Status.FAILED, message, target or Target())

    @classmethod
    def errored(cls, message: str, target: Target | None = None) -> CheckResult:
        """Create an Errored check result."""
        return cls(Status.ERRORED, message, target or Target())

    @classmethod
    def accepted(cls, message: str, target: Target | None = None) -> CheckResult:
        """Create an Accepted check result."""
        return cls(Status.ACCEPTED, message, target or Target())

    @classmethod
    def skipped(cls, message: str, target: Target | None = None) -> CheckResult:
        """Create a Skipped check result."""
        return cls(Status.SKIPPED, message, target or Target())

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "status": self.status.value,
            "message": self.message,
            "target": self.target.to_dict(),
        }


@dataclass(frozen=True)
class RuleResult:
    """All check results of one rule run."""

    rule_id: str
    rule_name: str
    severity: SeverityLevel | None
    check_results: tuple[CheckResult, ...] = ()

    @property
    def all_errored(self) -> bool:
        """Check if there are results and every one of them errored."""
        return bool(self.check_results) and all(
            cr.status == Status.ERRORED for cr in self.check_results
        )

    def statuses(self) -> set[Status]:
        """Get the distinct statuses of the check results."""
        return {cr.status for cr in self.check_results}

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "rule_id": self.rule_id,
            "rule_name": self.rule_name,
            "severity": self.severity.value if self.severity else None,
            "check_results": [cr.to_dict() for cr in self.check_results],
        }


def result_for(rule: Rule, *check_results: CheckResult) -> RuleResult:
    """
    Build the RuleResult of a rule.

    Args:
        rule: Rule that produced the check results
        *check_results: Verdicts in the order they were produced

    Returns:
        RuleResult carrying the rule's identity and severity
    """
    return RuleResult(
        rule_id=rule.id,
        rule_name=rule.name,
        severity=rule.severity,
        check_results=tuple(check_results),
    )
