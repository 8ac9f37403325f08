"""
Kubelet configuration rules of the DISA Kubernetes STIG.

The running configuration of every node's kubelet is read from the
node proxy configz endpoint and evaluated option by option.
"""

from __future__ import annotations

import re
from abc import abstractmethod
from typing import Any

from kubernetes import client

from kubestig.context import ScanContext
from kubestig.kubernetes.utils import api_error_message, get_kubelet_config, get_nodes, is_node_ready
from kubestig.rule.base import Rule
from kubestig.rule.models import CheckResult, RuleResult, SeverityLevel, Target, result_for

_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")
_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_duration(value: str) -> float:
    """
    Parse a duration string such as "4h0m0s" into seconds.

    Raises:
        ValueError: If value is not a valid duration
    """
    text = value.strip()
    sign = 1.0
    if text and text[0] in "+-":
        sign = -1.0 if text[0] == "-" else 1.0
        text = text[1:]
    if text == "0":
        return 0.0
    if not text:
        raise ValueError(f"invalid duration {value!r}")

    total = 0.0
    position = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != position:
            raise ValueError(f"invalid duration {value!r}")
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        position = match.end()
    if position != len(text):
        raise ValueError(f"invalid duration {value!r}")
    return sign * total


def get_option(config: dict[str, Any], *path: str) -> Any:
    """Get a nested option, None when any element of path is missing."""
    value: Any = config
    for key in path:
        if not isinstance(value, dict) or key not in value:
            return None
        value = value[key]
    return value


class KubeletConfigRule(Rule):
    """Base of rules evaluating the kubelet configuration of every node."""

    def __init__(self, core_v1: client.CoreV1Api):
        self.core_v1 = core_v1

    def run(self, ctx: ScanContext) -> RuleResult:
        ctx.check()
        try:
            nodes = get_nodes(self.core_v1)
        except Exception as e:
            return result_for(self, CheckResult.errored(api_error_message(e), Target(kind="nodeList")))

        if not nodes:
            return result_for(self, CheckResult.skipped("No nodes found.", Target(kind="nodeList")))

        check_results = []
        for node in nodes:
            ctx.check()
            target = Target(kind="node", name=node.metadata.name)
            if not is_node_ready(node):
                check_results.append(CheckResult.skipped("Node is not in Ready state.", target))
                continue
            try:
                config = get_kubelet_config(self.core_v1, node.metadata.name)
            except Exception as e:
                check_results.append(CheckResult.errored(api_error_message(e), target))
                continue
            check_results.append(self.evaluate(config, target))
        return result_for(self, *check_results)

    @abstractmethod
    def evaluate(self, config: dict[str, Any], target: Target) -> CheckResult:
        """Evaluate the kubelet configuration of one node."""


class Rule242387(KubeletConfigRule):
    id = "242387"
    name = 'The Kubernetes Kubelet must have the "readOnlyPort" flag disabled (HIGH 242387)'
    severity = SeverityLevel.HIGH

    def evaluate(self, config, target):
        port = get_option(config, "readOnlyPort")
        if port is None:
            return CheckResult.passed("Option readOnlyPort not set.", target)
        if int(port) == 0:
            return CheckResult.passed("Option readOnlyPort set to allowed value.", target)
        return CheckResult.failed(
            "Option readOnlyPort set to not allowed value.",
            target.with_fields(details=f"readOnlyPort: {port}"),
        )


class Rule242391(KubeletConfigRule):
    id = "242391"
    name = "The Kubernetes Kubelet must have anonymous authentication disabled (HIGH 242391)"
    severity = SeverityLevel.HIGH

    def evaluate(self, config, target):
        enabled = get_option(config, "authentication", "anonymous", "enabled")
        if enabled is None:
            return CheckResult.failed("Option authentication.anonymous.enabled not set.", target)
        if enabled:
            return CheckResult.failed(
                "Option authentication.anonymous.enabled set to not allowed value.", target
            )
        return CheckResult.passed("Option authentication.anonymous.enabled set to allowed value.", target)


class Rule242392(KubeletConfigRule):
    id = "242392"
    name = "The Kubernetes kubelet must enable explicit authorization (HIGH 242392)"
    severity = SeverityLevel.HIGH

    def evaluate(self, config, target):
        mode = get_option(config, "authorization", "mode")
        if mode is None:
            return CheckResult.failed("Option authorization.mode not set.", target)
        if mode == "AlwaysAllow":
            return CheckResult.failed(
                "Option authorization.mode set to not allowed value.",
                target.with_fields(details=f"authorization.mode: {mode}"),
            )
        return CheckResult.passed("Option authorization.mode set to allowed value.", target)


class Rule242397(KubeletConfigRule):
    id = "242397"
    name = "The Kubernetes kubelet staticPodPath must not enable static pods (HIGH 242397)"
    severity = SeverityLevel.HIGH

    def evaluate(self, config, target):
        path = get_option(config, "staticPodPath")
        if path:
            return CheckResult.failed(
                "Option staticPodPath set.", target.with_fields(details=f"staticPodPath: {path}")
            )
        return CheckResult.passed("Option staticPodPath not set.", target)


class _FeatureGateDisabledRule(KubeletConfigRule):
    feature_gate: str = ""

    def evaluate(self, config, target):
        option = f"featureGates.{self.feature_gate}"
        enabled = get_option(config, "featureGates", self.feature_gate)
        if enabled is None:
            return CheckResult.passed(f"Option {option} not set.", target)
        if enabled:
            return CheckResult.failed(f"Option {option} set to not allowed value.", target)
        return CheckResult.passed(f"Option {option} set to allowed value.", target)


class Rule242399(_FeatureGateDisabledRule):
    id = "242399"
    name = "Kubernetes DynamicKubeletConfig must not be enabled (MEDIUM 242399)"
    severity = SeverityLevel.MEDIUM
    feature_gate = "DynamicKubeletConfig"


class Rule242400(_FeatureGateDisabledRule):
    id = "242400"
    name = "The Kubernetes API server must have Alpha APIs disabled (MEDIUM 242400)"
    severity = SeverityLevel.MEDIUM
    feature_gate = "AllAlpha"


class Rule242420(KubeletConfigRule):
    id = "242420"
    name = "Kubernetes Kubelet must have the SSL Certificate Authority set (MEDIUM 242420)"
    severity = SeverityLevel.MEDIUM

    def evaluate(self, config, target):
        if get_option(config, "authentication", "x509", "clientCAFile"):
            return CheckResult.passed("Option authentication.x509.clientCAFile set.", target)
        return CheckResult.failed("Option authentication.x509.clientCAFile not set.", target)


class _ServerTLSFileRule(KubeletConfigRule):
    option: str = ""

    def evaluate(self, config, target):
        if get_option(config, self.option):
            return CheckResult.passed(f"Option {self.option} set.", target)
        if get_option(config, "serverTLSBootstrap"):
            return CheckResult.passed(
                "Kubelet rotates server certificates automatically itself.", target
            )
        return CheckResult.failed(f"Option {self.option} not set.", target)


class Rule242424(_ServerTLSFileRule):
    id = "242424"
    name = "Kubernetes Kubelet must enable tlsPrivateKeyFile for client authentication to secure service (MEDIUM 242424)"
    severity = SeverityLevel.MEDIUM
    option = "tlsPrivateKeyFile"


class Rule242425(_ServerTLSFileRule):
    id = "242425"
    name = "Kubernetes Kubelet must enable tlsCertFile for client authentication to secure service (MEDIUM 242425)"
    severity = SeverityLevel.MEDIUM
    option = "tlsCertFile"


class Rule242434(KubeletConfigRule):
    id = "242434"
    name = "Kubernetes Kubelet must enable kernel protection (HIGH 242434)"
    severity = SeverityLevel.HIGH

    def evaluate(self, config, target):
        protect = get_option(config, "protectKernelDefaults")
        if protect is None:
            return CheckResult.failed("Option protectKernelDefaults not set.", target)
        if protect:
            return CheckResult.passed("Option protectKernelDefaults set to allowed value.", target)
        return CheckResult.failed("Option protectKernelDefaults set to not allowed value.", target)


class Rule245541(KubeletConfigRule):
    """Idle streaming connections must time out after at least five minutes."""

    id = "245541"
    name = "Kubernetes Kubelet must not disable timeouts (MEDIUM 245541)"
    severity = SeverityLevel.MEDIUM

    minimum_timeout = 5 * 60

    def evaluate(self, config, target):
        value = get_option(config, "streamingConnectionIdleTimeout")
        if value is None:
            return CheckResult.passed("Option streamingConnectionIdleTimeout not set.", target)
        details = target.with_fields(details=f"streamingConnectionIdleTimeout: {value}")
        try:
            seconds = parse_duration(str(value))
        except ValueError as e:
            return CheckResult.errored(str(e), details)
        if seconds < self.minimum_timeout:
            return CheckResult.failed(
                "Option streamingConnectionIdleTimeout set to not allowed value.", details
            )
        return CheckResult.passed(
            "Option streamingConnectionIdleTimeout set to allowed value.", details
        )
