"""
DISA Kubernetes STIG ruleset.

Registers the rules of the supported STIG revisions for managed
Kubernetes clusters.
"""

from kubestig.ruleset.disak8sstig.ruleset import (
    RULESET_ID,
    RULESET_NAME,
    SUPPORTED_VERSIONS,
    V2R1_RULE_COUNT,
    DisaKubernetesStigRuleset,
)

__all__ = [
    "RULESET_ID",
    "RULESET_NAME",
    "SUPPORTED_VERSIONS",
    "V2R1_RULE_COUNT",
    "DisaKubernetesStigRuleset",
]
