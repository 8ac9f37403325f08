"""
Rule contract for kubestig.

Every compliance check implements Rule. Decorators such as SkipRule and
RetryableRule implement the same contract and forward identity to the
rule they stand in for.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from kubestig.context import ScanContext
from kubestig.rule.models import (
    CheckResult,
    RuleResult,
    SeverityLevel,
    Status,
    Target,
    result_for,
)


class Rule(ABC):
    """
    Abstract base class for compliance rules.

    Concrete rules may override id, name and severity with plain class
    attributes.
    """

    @property
    @abstractmethod
    def id(self) -> str:
        """Catalogue identifier of the rule."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Human readable title of the rule."""

    @property
    def severity(self) -> SeverityLevel | None:
        """Severity of the rule, None when unknown."""
        return None

    @abstractmethod
    def run(self, ctx: ScanContext) -> RuleResult:
        """
        Inspect the cluster and produce the rule's verdicts.

        Runtime failures of the inspected objects should be reported as
        Errored check results. Raised exceptions are harness failures.

        Args:
            ctx: Context bounding the run

        Returns:
            RuleResult with one or more check results
        """

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id!r})"


class SkipRule(Rule):
    """Rule that always yields one Skipped or Accepted check result."""

    def __init__(
        self,
        rule_id: str,
        name: str,
        justification: str,
        status: Status = Status.SKIPPED,
        severity: SeverityLevel | None = None,
    ):
        """
        Initialize a skip rule.

        Args:
            rule_id: Identifier of the rule being skipped
            name: Title of the rule being skipped
            justification: Reason reported as the check result message
            status: Status.SKIPPED or Status.ACCEPTED
            severity: Severity of the rule being skipped

        Raises:
            ValueError: If status is neither Skipped nor Accepted
        """
        if status not in (Status.SKIPPED, Status.ACCEPTED):
            raise ValueError(
                f"skip rule {rule_id} must be Skipped or Accepted, got {status.value}"
            )
        self._id = rule_id
        self._name = name
        self._justification = justification
        self._status = status
        self._severity = severity

    @property
    def id(self) -> str:
        return self._id

    @property
    def name(self) -> str:
        return self._name

    @property
    def severity(self) -> SeverityLevel | None:
        return self._severity

    @property
    def justification(self) -> str:
        return self._justification

    @property
    def status(self) -> Status:
        return self._status

    def run(self, ctx: ScanContext) -> RuleResult:
        return result_for(self, CheckResult(self._status, self._justification, Target()))
