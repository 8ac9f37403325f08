"""Rules of the DISA Kubernetes STIG."""

from kubestig.ruleset.disak8sstig.rules.kubelet import (
    KubeletConfigRule,
    Rule242387,
    Rule242391,
    Rule242392,
    Rule242397,
    Rule242399,
    Rule242400,
    Rule242420,
    Rule242424,
    Rule242425,
    Rule242434,
    Rule245541,
)
from kubestig.ruleset.disak8sstig.rules.node import (
    NodeCheckError,
    NodeRule,
    Rule242393,
    Rule242394,
    Rule242404,
    Rule242406,
    Rule242407,
    Rule242449,
    Rule242450,
    Rule242452,
    Rule242453,
)
from kubestig.ruleset.disak8sstig.rules.pods import (
    Rule242383,
    Rule242395,
    Rule242414,
    Rule242415,
    Rule242417,
    Rule242442,
)

__all__ = [
    "KubeletConfigRule",
    "NodeCheckError",
    "NodeRule",
    "Rule242383",
    "Rule242387",
    "Rule242391",
    "Rule242392",
    "Rule242393",
    "Rule242394",
    "Rule242395",
    "Rule242397",
    "Rule242399",
    "Rule242400",
    "Rule242404",
    "Rule242406",
    "Rule242407",
    "Rule242414",
    "Rule242415",
    "Rule242417",
    "Rule242420",
    "Rule242424",
    "Rule242425",
    "Rule242434",
    "Rule242442",
    "Rule242449",
    "Rule242450",
    "Rule242452",
    "Rule242453",
    "Rule245541",
]
