"""
DISA Kubernetes STIG ruleset for managed Kubernetes clusters.

The control plane of a managed cluster is operated by the provider and
is not reachable from inside the cluster, so control plane rules are
registered as skipped. Workload, kubelet and node rules are evaluated.
"""

from __future__ import annotations

from typing import Mapping

from kubernetes import client

from kubestig.config.scan_config import RuleOptionsConfig, RulesetConfig
from kubestig.context import ScanContext
from kubestig.kubernetes.pod import PodContext, SimplePodContext
from kubestig.observability.logging import ScanLogger
from kubestig.rule.base import Rule, SkipRule
from kubestig.rule.models import SeverityLevel
from kubestig.rule.retry import RetryableRule, RetryCondition
from kubestig.ruleset.base import (
    Ruleset,
    RulesetError,
    RulesetResult,
    finalize_rules,
    get_option_or_none,
)
from kubestig.ruleset.disak8sstig import retryerrors
from kubestig.ruleset.disak8sstig.options import (
    FileOwnerOptions,
    NodeGroupOptions,
    Options242383,
    Options242414,
    Options242415,
    Options242417,
)
from kubestig.ruleset.disak8sstig.rules import (
    NodeRule,
    Rule242383,
    Rule242387,
    Rule242391,
    Rule242392,
    Rule242393,
    Rule242394,
    Rule242395,
    Rule242397,
    Rule242399,
    Rule242400,
    Rule242404,
    Rule242406,
    Rule242407,
    Rule242414,
    Rule242415,
    Rule242417,
    Rule242420,
    Rule242424,
    Rule242425,
    Rule242434,
    Rule242442,
    Rule242449,
    Rule242450,
    Rule242452,
    Rule242453,
    Rule245541,
)

RULESET_ID = "disa-kubernetes-stig"
RULESET_NAME = "DISA Kubernetes Security Technical Implementation Guide"
V2R1 = "v2r1"
SUPPORTED_VERSIONS = (V2R1,)
V2R1_RULE_COUNT = 91

MANAGED_CONTROL_PLANE = (
    "The control plane is operated by the cluster provider and is not accessible "
    "from within the cluster."
)
NO_STATIC_CONTROL_PLANE = (
    "Managed clusters do not run control plane components as systemd processes "
    "or static pods on worker nodes."
)
PPSM = (
    "Cannot be tested and should be enforced organizationally. The cluster provider "
    "uses a minimum of known and automatically opened/used/created ports/protocols/services "
    "(PPSM stands for Ports, Protocols, Service Management)."
)
NO_KUBEADM = (
    'Managed clusters are not bootstrapped with "kubeadm" and do not store a '
    "kubeadm.conf file on nodes."
)
PROVIDER_KUBE_PROXY = (
    "kube-proxy is deployed and configured by the cluster provider, its files "
    "are part of the provider's node image."
)

HIGH = SeverityLevel.HIGH
MEDIUM = SeverityLevel.MEDIUM


def _skip(rule_id: str, name: str, severity: SeverityLevel, justification: str) -> SkipRule:
    return SkipRule(rule_id, f"{name} ({severity.value.upper()} {rule_id})", justification, severity=severity)


class DisaKubernetesStigRuleset(Ruleset):
    """
    DISA Kubernetes STIG rules of one revision.

    Example:
        >>> ruleset = DisaKubernetesStigRuleset.from_api_client(api_client, config)
        >>> result = ruleset.run(ScanContext.background())
    """

    def __init__(
        self,
        core_v1: client.CoreV1Api,
        pod_context: PodContext,
        config: RulesetConfig,
        logger: ScanLogger | None = None,
    ):
        """
        Initialize and register the rules of the configured revision.

        Args:
            core_v1: Core API client of the scanned cluster
            pod_context: Creates the ops pods of node rules
            config: Revision, shared arguments and rule options
            logger: Ruleset logger

        Raises:
            RulesetError: If the revision is unknown or the rules cannot be built
        """
        if config.id != RULESET_ID:
            raise RulesetError(f"unexpected ruleset id {config.id}, expected {RULESET_ID}")
        super().__init__(RULESET_ID, RULESET_NAME, config.version, logger)
        self.core_v1 = core_v1
        self.pod_context = pod_context
        self.args = config.args

        if config.version == V2R1:
            self.add_rules(*self._v2r1_rules(config.rule_options))
        else:
            raise RulesetError(
                f"unknown {RULESET_ID} version {config.version}, "
                f"supported versions: {', '.join(SUPPORTED_VERSIONS)}"
            )

    @classmethod
    def from_api_client(
        cls,
        api_client: client.ApiClient,
        config: RulesetConfig,
        additional_ops_pod_labels: dict[str, str] | None = None,
        logger: ScanLogger | None = None,
    ) -> DisaKubernetesStigRuleset:
        """Build the ruleset with the default pod context of api_client."""
        pod_context = SimplePodContext(api_client, additional_ops_pod_labels)
        return cls(client.CoreV1Api(api_client), pod_context, config, logger)

    def run(self, ctx: ScanContext) -> RulesetResult:
        self.logger.info(f"Running {self.name} {self.version}")
        return super().run(ctx)

    def _node_rule(
        self,
        rule_type: type[NodeRule],
        options_type: type[NodeGroupOptions],
        retry_condition: RetryCondition,
        rule_options: Mapping[str, RuleOptionsConfig],
    ) -> RetryableRule:
        rule_id = rule_type.id
        logger = self.logger.bind(rule=rule_id)
        base_rule = rule_type(
            self.core_v1,
            self.pod_context,
            image=self.args.ops_pod_image,
            namespace=self.args.ops_pod_namespace,
            options=get_option_or_none(options_type, rule_options, rule_id),
            logger=logger,
        )
        return RetryableRule(base_rule, retry_condition, self.args.max_retries, logger)

    def _v2r1_rules(self, rule_options: Mapping[str, RuleOptionsConfig]) -> list[Rule]:
        core_v1 = self.core_v1
        opts242383 = get_option_or_none(Options242383, rule_options, "242383")
        opts242414 = get_option_or_none(Options242414, rule_options, "242414")
        opts242415 = get_option_or_none(Options242415, rule_options, "242415")
        opts242417 = get_option_or_none(Options242417, rule_options, "242417")

        rc_ops_pod = RetryCondition.from_regex(retryerrors.OPS_POD_NOT_FOUND)
        rc_file_checks = RetryCondition.from_regex(
            retryerrors.CONTAINER_NOT_FOUND_ON_NODE,
            retryerrors.CONTAINER_FILE_NOT_FOUND_ON_NODE,
            retryerrors.CONTAINER_NOT_READY,
            retryerrors.OPS_POD_NOT_FOUND,
        )

        def node_rule(rule_type, options_type, retry_condition):
            return self._node_rule(rule_type, options_type, retry_condition, rule_options)

        rules: list[Rule] = [
            _skip("242376", "The Kubernetes Controller Manager must use TLS 1.2, at a minimum, to protect the confidentiality of sensitive data during electronic dissemination", MEDIUM, MANAGED_CONTROL_PLANE),
            _skip("242377", "The Kubernetes Scheduler must use TLS 1.2, at a minimum, to protect the confidentiality of sensitive data during electronic dissemination", MEDIUM, MANAGED_CONTROL_PLANE),
            _skip("242378", "The Kubernetes API Server must use TLS 1.2, at a minimum, to protect the confidentiality of sensitive data during electronic dissemination", MEDIUM, MANAGED_CONTROL_PLANE),
            _skip("242379", "The Kubernetes etcd must use TLS to protect the confidentiality of sensitive data during electronic dissemination", MEDIUM, MANAGED_CONTROL_PLANE),
            _skip("242380", "The Kubernetes etcd must use TLS to protect the confidentiality of sensitive data during electronic dissemination between peers", MEDIUM, MANAGED_CONTROL_PLANE),
            _skip("242381", "The Kubernetes Controller Manager must create unique service accounts for each work payload", HIGH, MANAGED_CONTROL_PLANE),
            _skip("242382", "The Kubernetes API Server must enable Node,RBAC as the authorization mode", MEDIUM, MANAGED_CONTROL_PLANE),
            Rule242383(core_v1, opts242383),
            _skip(
                "242384",
                "The Kubernetes Scheduler must have secure binding",
                MEDIUM,
                "The Kubernetes Scheduler of a managed cluster runs on provider infrastructure "
                "that is not reachable from the cluster network.",
            ),
            _skip(
                "242385",
                "The Kubernetes Controller Manager must have secure binding",
                MEDIUM,
                "The Kubernetes Controller Manager of a managed cluster runs on provider "
                "infrastructure that is not reachable from the cluster network.",
            ),
            _skip("242386", "The Kubernetes API server must have the insecure port flag disabled", HIGH, MANAGED_CONTROL_PLANE),
            Rule242387(core_v1),
            _skip("242388", "The Kubernetes API server must have the insecure bind address not set", HIGH, MANAGED_CONTROL_PLANE),
            _skip("242389", "The Kubernetes API server must have the secure port set", MEDIUM, MANAGED_CONTROL_PLANE),
            _skip("242390", "The Kubernetes API server must have anonymous authentication disabled", HIGH, MANAGED_CONTROL_PLANE),
            Rule242391(core_v1),
            Rule242392(core_v1),
            node_rule(Rule242393, NodeGroupOptions, rc_ops_pod),
            node_rule(Rule242394, NodeGroupOptions, rc_ops_pod),
            Rule242395(core_v1),
            _skip(
                "242396",
                "Kubernetes Kubectl cp command must give expected access and results",
                MEDIUM,
                '"kubectl" is not installed on worker nodes and managed clusters do not offer '
                "Kubernetes v1.12 or older.",
            ),
            Rule242397(core_v1),
            _skip(
                "242398",
                "Kubernetes DynamicAuditing must not be enabled",
                MEDIUM,
                "Option feature-gates.DynamicAuditing removed in Kubernetes v1.19.",
            ),
            Rule242399(core_v1),
            Rule242400(core_v1),
            _skip("242402", "The Kubernetes API Server must have an audit log path set", MEDIUM, MANAGED_CONTROL_PLANE),
            _skip("242403", "Kubernetes API Server must generate audit records that identify what type of event has occurred, identify the source of the event, contain the event results, identify any users, and identify any containers associated with the event", MEDIUM, MANAGED_CONTROL_PLANE),
            node_rule(Rule242404, NodeGroupOptions, rc_ops_pod),
            _skip("242405", "The Kubernetes manifests must be owned by root", MEDIUM, NO_STATIC_CONTROL_PLANE),
            node_rule(Rule242406, FileOwnerOptions, rc_file_checks),
            node_rule(Rule242407, NodeGroupOptions, rc_file_checks),
            _skip("242408", "The Kubernetes manifest files must have least privileges", MEDIUM, NO_STATIC_CONTROL_PLANE),
            _skip("242409", "Kubernetes Controller Manager must disable profiling", MEDIUM, MANAGED_CONTROL_PLANE),
            _skip("242410", "The Kubernetes API Server must enforce ports, protocols, and services (PPS) that adhere to the Ports, Protocols, and Services Management Category Assurance List (PPSM CAL)", MEDIUM, PPSM),
            _skip("242411", "The Kubernetes Scheduler must enforce ports, protocols, and services (PPS) that adhere to the Ports, Protocols, and Services Management Category Assurance List (PPSM CAL)", MEDIUM, PPSM),
            _skip("242412", "The Kubernetes Controllers must enforce ports, protocols, and services (PPS) that adhere to the Ports, Protocols, and Services Management Category Assurance List (PPSM CAL)", MEDIUM, PPSM),
            _skip("242413", "The Kubernetes etcd must enforce ports, protocols, and services (PPS) that adhere to the Ports, Protocols, and Services Management Category Assurance List (PPSM CAL)", MEDIUM, PPSM),
            Rule242414(core_v1, opts242414),
            Rule242415(core_v1, opts242415),
            Rule242417(core_v1, opts242417),
            _skip("242418", "The Kubernetes API server must use approved cipher suites", MEDIUM, MANAGED_CONTROL_PLANE),
            _skip("242419", "Kubernetes API Server must have the SSL Certificate Authority set", MEDIUM, MANAGED_CONTROL_PLANE),
            Rule242420(core_v1),
            _skip("242421", "Kubernetes Controller Manager must have the SSL Certificate Authority set", MEDIUM, MANAGED_CONTROL_PLANE),
            _skip("242422", "Kubernetes API Server must have a certificate for communication", MEDIUM, MANAGED_CONTROL_PLANE),
            _skip("242423", "Kubernetes etcd must enable client authentication to secure service", MEDIUM, MANAGED_CONTROL_PLANE),
            Rule242424(core_v1),
            Rule242425(core_v1),
            _skip("242426", "Kubernetes etcd must enable peer client authentication to secure service", MEDIUM, MANAGED_CONTROL_PLANE),
            _skip("242427", "Kubernetes etcd must have a key file for secure communication", MEDIUM, MANAGED_CONTROL_PLANE),
            _skip("242428", "Kubernetes etcd must have a certificate for communication", MEDIUM, MANAGED_CONTROL_PLANE),
            _skip("242429", "Kubernetes etcd must have the SSL Certificate Authority set", MEDIUM, MANAGED_CONTROL_PLANE),
            _skip("242430", "Kubernetes etcd must have a certificate for communication with the API Server", MEDIUM, MANAGED_CONTROL_PLANE),
            _skip("242431", "Kubernetes etcd must have a key file for secure communication with the API Server", MEDIUM, MANAGED_CONTROL_PLANE),
            _skip("242432", "Kubernetes etcd must have peer-cert-file set for secure communication", MEDIUM, MANAGED_CONTROL_PLANE),
            _skip("242433", "Kubernetes etcd must have a peer-key-file set for secure communication", MEDIUM, MANAGED_CONTROL_PLANE),
            Rule242434(core_v1),
            _skip("242436", "The Kubernetes API server must have the ValidatingAdmissionWebhook enabled", HIGH, MANAGED_CONTROL_PLANE),
            _skip("242437", "Kubernetes must have a pod security policy set", HIGH, "PSPs are removed in K8s version 1.25."),
            _skip("242438", "Kubernetes API Server must configure timeouts to limit attack surface", MEDIUM, MANAGED_CONTROL_PLANE),
            Rule242442(core_v1),
            _skip(
                "242443",
                "Kubernetes must contain the latest updates as authorized by IAVMs, CTOs, DTMs, and STIGs",
                MEDIUM,
                "Scanning/patching security vulnerabilities should be enforced organizationally. "
                "Security vulnerability scanning should be automated and maintainers should be "
                "informed automatically.",
            ),
            _skip("242444", "Kubernetes component manifests must be owned by root", MEDIUM, 'Rule is duplicate of "242405"'),
            _skip("242445", "The Kubernetes component etcd must be owned by etcd", MEDIUM, MANAGED_CONTROL_PLANE),
            _skip("242446", "The Kubernetes conf files must be owned by root", MEDIUM, MANAGED_CONTROL_PLANE),
            _skip("242447", "The Kubernetes Kube Proxy must have file permissions set to 644 or more restrictive", MEDIUM, PROVIDER_KUBE_PROXY),
            _skip("242448", "The Kubernetes Kube Proxy must be owned by root", MEDIUM, PROVIDER_KUBE_PROXY),
            node_rule(Rule242449, NodeGroupOptions, rc_file_checks),
            node_rule(Rule242450, FileOwnerOptions, rc_file_checks),
            _skip("242451", "The Kubernetes component PKI must be owned by root", MEDIUM, MANAGED_CONTROL_PLANE),
            node_rule(Rule242452, NodeGroupOptions, rc_file_checks),
            node_rule(Rule242453, FileOwnerOptions, rc_file_checks),
            _skip("242454", "Kubernetes kubeadm.conf must be owned by root", MEDIUM, NO_KUBEADM),
            _skip("242455", "Kubernetes kubeadm.conf must have file permissions set to 644 or more restrictive", MEDIUM, NO_KUBEADM),
            _skip("242456", "Kubernetes kubelet config must have file permissions set to 644 or more restrictive", MEDIUM, 'Rule is duplicate of "242452".'),
            _skip("242457", "Kubernetes kubelet config must be owned by root", MEDIUM, 'Rule is duplicate of "242453".'),
            _skip("242459", "The Kubernetes etcd must have file permissions set to 644 or more restrictive", MEDIUM, MANAGED_CONTROL_PLANE),
            _skip("242460", "The Kubernetes admin kubeconfig must have file permissions set to 644 or more restrictive", MEDIUM, MANAGED_CONTROL_PLANE),
            _skip("242461", "Kubernetes API Server audit logs must be enabled", MEDIUM, MANAGED_CONTROL_PLANE),
            _skip("242462", "The Kubernetes API Server must be set to audit log max size", MEDIUM, MANAGED_CONTROL_PLANE),
            _skip("242463", "The Kubernetes API Server must be set to audit log maximum backup", MEDIUM, MANAGED_CONTROL_PLANE),
            _skip("242464", "The Kubernetes API Server audit log retention must be set", MEDIUM, MANAGED_CONTROL_PLANE),
            _skip("242465", "Kubernetes API Server audit log path must be set", MEDIUM, 'Rule is duplicate of "242402"'),
            _skip("242466", "The Kubernetes PKI CRT must have file permissions set to 644 or more restrictive", MEDIUM, MANAGED_CONTROL_PLANE),
            _skip("242467", "The Kubernetes PKI keys must have file permissions set to 600 or more restrictive", MEDIUM, MANAGED_CONTROL_PLANE),
            Rule245541(core_v1),
            _skip("245542", "Kubernetes API Server must disable basic authentication to protect information in transit", HIGH, MANAGED_CONTROL_PLANE),
            _skip("245543", "Kubernetes API Server must disable token authentication to protect information in transit", HIGH, MANAGED_CONTROL_PLANE),
            _skip("245544", "Kubernetes endpoints must use approved organizational certificate and key pair to protect information in transit", HIGH, MANAGED_CONTROL_PLANE),
            _skip("254800", "Kubernetes must have a Pod Security Admission control file configured", HIGH, MANAGED_CONTROL_PLANE),
            # featureGates.PodSecurity was made GA in v1.25 and removed in v1.28
            _skip(
                "254801",
                "Kubernetes must enable PodSecurity admission controller on static pods and Kubelets",
                HIGH,
                "Option featureGates.PodSecurity was made GA in v1.25 and removed in v1.28.",
            ),
        ]

        return finalize_rules(rules, rule_options, V2R1_RULE_COUNT)
