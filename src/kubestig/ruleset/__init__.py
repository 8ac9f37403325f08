"""
Rulesets for kubestig.

- Ruleset: ordered rule registry of one catalogue revision
- finalize_rules / parse_rule_options: operator option handling
- disak8sstig: DISA Kubernetes STIG rules
"""

from kubestig.ruleset.base import (
    DuplicateRuleError,
    RuleCountMismatchError,
    RuleOptionsError,
    Ruleset,
    RulesetError,
    RulesetResult,
    finalize_rules,
    get_option_or_none,
    parse_rule_options,
)

__all__ = [
    "DuplicateRuleError",
    "RuleCountMismatchError",
    "RuleOptionsError",
    "Ruleset",
    "RulesetError",
    "RulesetResult",
    "finalize_rules",
    "get_option_or_none",
    "parse_rule_options",
]
