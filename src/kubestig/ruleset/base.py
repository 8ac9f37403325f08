"""
Ruleset registry for kubestig.

A Ruleset holds the ordered rules of one catalogue revision, runs them
sequentially and aggregates their results. Helper functions apply
operator skip overrides, enforce the expected rule count and parse
per-rule options.
"""

from __future__ import annotations

import json
import time
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping, Sequence, TypeVar

from kubestig.config.scan_config import RuleOptionsConfig
from kubestig.context import ScanContext
from kubestig.observability.logging import ScanLogger, get_logger
from kubestig.rule.base import Rule, SkipRule
from kubestig.rule.models import CheckResult, RuleResult, Status, Target, result_for

O = TypeVar("O")


class RulesetError(Exception):
    """Base exception for ruleset construction failures."""


class RuleCountMismatchError(RulesetError):
    """Raised when a revision does not register the expected number of rules."""

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"revision expects {expected} registered rules, but got: {actual}"
        )


class RuleOptionsError(RulesetError):
    """Raised when operator options of a rule cannot be parsed or are invalid."""

    def __init__(self, rule_id: str, errors: Sequence[str]):
        self.rule_id = rule_id
        self.errors = list(errors)
        super().__init__(f"rule option {rule_id} error: {'; '.join(self.errors)}")


class DuplicateRuleError(RulesetError):
    """Raised when a rule ID is registered twice."""

    def __init__(self, rule_id: str):
        self.rule_id = rule_id
        super().__init__(f"rule with id {rule_id} is already registered")


@dataclass
class RulesetResult:
    """Results of one ruleset run."""

    ruleset_id: str
    ruleset_name: str
    version: str
    rule_results: list[RuleResult] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    duration_seconds: float = 0.0

    def summary(self) -> dict[str, int]:
        """Count check results per status."""
        counts = Counter(
            cr.status.value for rr in self.rule_results for cr in rr.check_results
        )
        return {status.value: counts.get(status.value, 0) for status in Status}

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.ruleset_id,
            "name": self.ruleset_name,
            "version": self.version,
            "started_at": self.started_at.isoformat(),
            "duration_seconds": self.duration_seconds,
            "summary": self.summary(),
            "rules": [rr.to_dict() for rr in self.rule_results],
        }


class Ruleset:
    """
    Ordered collection of rules of one catalogue revision.

    Rules run one after another; an exception raised by a rule is
    reported as a single Errored check result for that rule and does not
    stop the run.
    """

    def __init__(
        self,
        ruleset_id: str,
        name: str,
        version: str,
        logger: ScanLogger | None = None,
    ):
        self._id = ruleset_id
        self._name = name
        self._version = version
        self._rules: dict[str, Rule] = {}
        self._logger = logger or get_logger("ruleset").bind(
            ruleset=ruleset_id, version=version
        )

    @property
    def id(self) -> str:
        return self._id

    @property
    def name(self) -> str:
        return self._name

    @property
    def version(self) -> str:
        return self._version

    @property
    def logger(self) -> ScanLogger:
        return self._logger

    def rules(self) -> list[Rule]:
        """Get the registered rules in registration order."""
        return list(self._rules.values())

    def add_rules(self, *rules: Rule) -> None:
        """
        Register rules.

        Raises:
            DuplicateRuleError: If a rule ID is already registered
        """
        for rule in rules:
            if rule.id in self._rules:
                raise DuplicateRuleError(rule.id)
            self._rules[rule.id] = rule

    def run(self, ctx: ScanContext) -> RulesetResult:
        """
        Run all registered rules.

        Args:
            ctx: Context bounding the whole run

        Returns:
            RulesetResult with one RuleResult per rule
        """
        result = RulesetResult(self._id, self._name, self._version)
        start = time.time()
        self._logger.info(f"Running {len(self._rules)} rules")

        for rule in self._rules.values():
            result.rule_results.append(self._run(ctx, rule))

        result.duration_seconds = time.time() - start
        self._logger.info(
            f"Finished ruleset in {result.duration_seconds:.2f}s",
            summary=result.summary(),
        )
        return result

    def run_rule(self, ctx: ScanContext, rule_id: str) -> RuleResult:
        """
        Run a single registered rule.

        Raises:
            KeyError: If no rule with rule_id is registered
        """
        rule = self._rules.get(rule_id)
        if rule is None:
            raise KeyError(f"rule with id {rule_id} is not registered")
        return self._run(ctx, rule)

    def _run(self, ctx: ScanContext, rule: Rule) -> RuleResult:
        self._logger.rule_started(rule.id)
        start = time.time()
        try:
            rule_result = rule.run(ctx)
        except Exception as e:
            self._logger.rule_failed(rule.id, str(e))
            return result_for(rule, CheckResult(Status.ERRORED, str(e), Target()))

        self._logger.rule_completed(
            rule.id, len(rule_result.check_results), time.time() - start
        )
        return rule_result


def finalize_rules(
    rules: list[Rule],
    rule_options: Mapping[str, RuleOptionsConfig],
    expected_count: int,
) -> list[Rule]:
    """
    Apply operator skip overrides and check the rule count.

    Every rule whose options enable skipping is replaced by a SkipRule
    reporting Accepted with the operator's justification.

    Args:
        rules: Rules of the revision in registration order
        rule_options: Operator options keyed by rule ID
        expected_count: Number of rules the revision defines

    Returns:
        The rules with overrides applied, in the same order

    Raises:
        RuleCountMismatchError: If the number of rules differs from expected_count
    """
    finalized: list[Rule] = []
    for rule in rules:
        options = rule_options.get(rule.id)
        if options is not None and options.skip is not None and options.skip.enabled:
            rule = SkipRule(
                rule.id,
                rule.name,
                options.skip.justification,
                Status.ACCEPTED,
                rule.severity,
            )
        finalized.append(rule)

    if len(finalized) != expected_count:
        raise RuleCountMismatchError(expected_count, len(finalized))
    return finalized


def parse_rule_options(options_type: type[O], args: Any, rule_id: str = "") -> O:
    """
    Parse operator supplied arguments into a typed options object.

    The arguments are normalized through JSON, passed to
    options_type.from_dict and validated when the type has a validate()
    method returning a list of error messages.

    Raises:
        RuleOptionsError: If the arguments cannot be parsed or are invalid
    """
    try:
        data = json.loads(json.dumps(args))
    except (TypeError, ValueError) as e:
        raise RuleOptionsError(rule_id, [f"cannot serialize options: {e}"]) from e
    if not isinstance(data, dict):
        raise RuleOptionsError(
            rule_id, [f"options must be a mapping, got {type(data).__name__}"]
        )

    try:
        options = options_type.from_dict(data)  # type: ignore[attr-defined]
    except (TypeError, ValueError, KeyError) as e:
        raise RuleOptionsError(rule_id, [str(e)]) from e

    validate = getattr(options, "validate", None)
    if validate is not None:
        errors = validate()
        if errors:
            raise RuleOptionsError(rule_id, errors)
    return options


def get_option_or_none(
    options_type: type[O],
    rule_options: Mapping[str, RuleOptionsConfig],
    rule_id: str,
) -> O | None:
    """Parse the options of rule_id, None when the operator gave no arguments."""
    options = rule_options.get(rule_id)
    if options is None or options.args is None:
        return None
    return parse_rule_options(options_type, options.args, rule_id)
