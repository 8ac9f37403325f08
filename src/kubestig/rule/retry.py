"""
Retry decorator for rules subject to transient infrastructure failures.

A RetryableRule re-runs its base rule when every check result errored
and at least one error message matches the configured retry condition.
Rules that produced any non-errored verdict are never re-run, so valid
partial findings are kept.
"""

from __future__ import annotations

import logging
import re
from typing import Callable

from kubestig.context import ScanContext
from kubestig.observability.logging import ScanLogger, get_logger
from kubestig.rule.base import Rule
from kubestig.rule.models import RuleResult, SeverityLevel, Status


class RetryCondition:
    """
    Ordered set of regular expressions classifying transient errors.

    An error message is retryable when any expression matches it.
    """

    def __init__(self, patterns: tuple[re.Pattern[str], ...]):
        self._patterns = patterns

    @classmethod
    def from_regex(cls, *patterns: re.Pattern[str] | str) -> RetryCondition:
        """
        Build a retry condition from compiled or plain patterns.

        Args:
            *patterns: Regular expressions, in evaluation order

        Returns:
            RetryCondition matching any of the patterns
        """
        return cls(tuple(re.compile(p) if isinstance(p, str) else p for p in patterns))

    @property
    def patterns(self) -> tuple[re.Pattern[str], ...]:
        return self._patterns

    def __call__(self, message: str) -> bool:
        return any(pattern.search(message) for pattern in self._patterns)


class RetryableRule(Rule):
    """
    Rule decorator re-running its base rule on transient errors.

    Identity and severity are forwarded to the base rule; only run() is
    intercepted.
    """

    def __init__(
        self,
        base_rule: Rule,
        retry_condition: Callable[[str], bool],
        max_retries: int = 1,
        logger: ScanLogger | None = None,
    ):
        """
        Initialize the decorator.

        Args:
            base_rule: Rule to run and possibly re-run
            retry_condition: Classifier of errored check result messages
            max_retries: Maximum number of re-runs after the first run
            logger: Logger bound to the rule, defaults to one bound to its ID

        Raises:
            ValueError: If max_retries is negative
        """
        if max_retries < 0:
            raise ValueError(f"max_retries must not be negative, got {max_retries}")
        self._base_rule = base_rule
        self._retry_condition = retry_condition
        self._max_retries = max_retries
        self._logger = logger or get_logger("rule.retry").bind(rule=base_rule.id)

    @property
    def id(self) -> str:
        return self._base_rule.id

    @property
    def name(self) -> str:
        return self._base_rule.name

    @property
    def severity(self) -> SeverityLevel | None:
        return self._base_rule.severity

    @property
    def base_rule(self) -> Rule:
        return self._base_rule

    @property
    def max_retries(self) -> int:
        return self._max_retries

    def run(self, ctx: ScanContext) -> RuleResult:
        result = self._base_rule.run(ctx)
        retries = 0

        while retries < self._max_retries and self._should_retry(result):
            if ctx.cancelled:
                self._logger.info("Context cancelled, not retrying rule")
                break
            retries += 1
            self._logger.info(
                f"Retrying rule, attempt {retries} of {self._max_retries}",
                retry_attempt=retries,
            )
            result = self._base_rule.run(ctx)

        if retries > 0:
            level = logging.INFO if not result.all_errored else logging.WARNING
            self._logger.log(
                level,
                f"Rule finished after {retries} retries",
                retry_attempt=retries,
                statuses=sorted(s.value for s in result.statuses()),
            )

        return result

    def _should_retry(self, result: RuleResult) -> bool:
        if not result.all_errored:
            return False
        return any(
            self._retry_condition(cr.message)
            for cr in result.check_results
            if cr.status == Status.ERRORED
        )
