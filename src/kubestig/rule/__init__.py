"""
Rule framework for kubestig.

- Rule: contract implemented by every compliance check
- SkipRule: placeholder yielding a Skipped or Accepted verdict
- RetryableRule: decorator re-running rules on transient errors
- Target, CheckResult, RuleResult: result data model
"""

from __future__ import annotations

from kubestig.rule.base import Rule, SkipRule
from kubestig.rule.models import (
    CheckResult,
    RuleResult,
    SeverityLevel,
    Status,
    Target,
    result_for,
)
from kubestig.rule.retry import RetryableRule, RetryCondition

__all__ = [
    "CheckResult",
    "RetryCondition",
    "RetryableRule",
    "Rule",
    "RuleResult",
    "SeverityLevel",
    "SkipRule",
    "Status",
    "Target",
    "result_for",
]
