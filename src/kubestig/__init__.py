"""
kubestig - DISA Kubernetes STIG compliance checks for managed clusters

Runs the rules of the DISA Kubernetes Security Technical Implementation
Guide against a live cluster and reports one verdict per inspected
object.

Key Features:
- Node level checks through short lived privileged helper pods
- Retries of rules failing on transient infrastructure errors
- Operator options to accept findings or skip rules with a justification

Quick Start:
    >>> from kubestig.config import load_config_from_env
    >>> from kubestig.context import ScanContext
    >>> from kubestig.provider import ManagedK8sProvider
    >>>
    >>> config = load_config_from_env()
    >>> provider = ManagedK8sProvider(config.provider)
    >>> result = provider.run_all(ScanContext.background())
"""

from __future__ import annotations

__version__ = "0.1.0"

from kubestig.context import (
    ContextCancelledError,
    ContextError,
    DeadlineExceededError,
    ScanContext,
)
from kubestig.retry import RetryTimeoutError, until
from kubestig.rule import (
    CheckResult,
    RetryableRule,
    Rule,
    RuleResult,
    SeverityLevel,
    SkipRule,
    Status,
    Target,
)

__all__ = [
    "__version__",
    # Context
    "ContextCancelledError",
    "ContextError",
    "DeadlineExceededError",
    "ScanContext",
    # Retry
    "RetryTimeoutError",
    "until",
    # Rules
    "CheckResult",
    "RetryableRule",
    "Rule",
    "RuleResult",
    "SeverityLevel",
    "SkipRule",
    "Status",
    "Target",
]
