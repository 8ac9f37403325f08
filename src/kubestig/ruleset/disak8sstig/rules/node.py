"""
Node rules of the DISA Kubernetes STIG.

Node rules create a privileged ops pod on one ready node per node group
and run shell commands in it. The pod shares the host PID namespace and
mounts the host root file system read-only at /host. Each rule run owns
its ops pods and deletes them before returning.
"""

from __future__ import annotations

import shlex
from abc import abstractmethod
from dataclasses import dataclass
from typing import Any

import yaml
from kubernetes import client

from kubestig.context import ContextCancelledError, ScanContext
from kubestig.kubernetes.opspod import HOST_ROOT_MOUNT, generate_ops_pod_name, new_privileged_pod
from kubestig.kubernetes.pod import PodConstructor, PodContext, PodExecutor, ops_pod_session
from kubestig.kubernetes.utils import api_error_message, get_nodes, select_nodes
from kubestig.observability.logging import ScanLogger, get_logger
from kubestig.rule.base import Rule
from kubestig.rule.models import CheckResult, RuleResult, SeverityLevel, Target, result_for
from kubestig.ruleset.disak8sstig.options import ExpectedOwner, FileOwnerOptions, NodeGroupOptions

DEFAULT_OPS_POD_IMAGE = "busybox:1.36"
DEFAULT_OPS_POD_NAMESPACE = "kube-system"
OPS_POD_RULE_LABEL = "kubestig.io/rule"

SHELL = "/bin/sh"
HOST_NSENTER = "nsenter -t 1 -m -u -i -n -p --"
SSH_SERVICES = ("sshd", "ssh")


class NodeCheckError(Exception):
    """Raised when node state required by a check cannot be determined."""


def parse_flags(args: list[str]) -> dict[str, list[str]]:
    """
    Parse command line flags of a process.

    Both --name=value and --name value forms are recognized. Flags given
    more than once keep every value in order.
    """
    flags: dict[str, list[str]] = {}
    i = 0
    while i < len(args):
        arg = args[i]
        if arg.startswith("--"):
            name, sep, value = arg[2:].partition("=")
            if not sep and i + 1 < len(args) and not args[i + 1].startswith("-"):
                value = args[i + 1]
                i += 1
            flags.setdefault(name, []).append(value)
        i += 1
    return flags


@dataclass(frozen=True)
class FileStats:
    """Mode and ownership of a file as reported by stat."""

    path: str
    permissions: str
    user: str
    group: str

    @classmethod
    def parse(cls, output: str) -> FileStats:
        """
        Parse the output of stat -c "%a %u %g %n".

        Raises:
            NodeCheckError: If the output is malformed
        """
        parts = output.strip().split(" ", 3)
        if len(parts) != 4:
            raise NodeCheckError(f"could not parse file stats: {output.strip()!r}")
        permissions, user, group, path = parts
        if path.startswith(HOST_ROOT_MOUNT + "/"):
            path = path[len(HOST_ROOT_MOUNT):]
        return cls(path=path, permissions=permissions, user=user, group=group)

    def exceeds(self, max_permissions: str) -> bool:
        """Check if the file grants any permission bit beyond max_permissions."""
        return bool(int(self.permissions, 8) & ~int(max_permissions, 8) & 0o7777)


class NodeRule(Rule):
    """Base of rules executing checks on nodes through ops pods."""

    def __init__(
        self,
        core_v1: client.CoreV1Api,
        pod_context: PodContext,
        image: str = DEFAULT_OPS_POD_IMAGE,
        namespace: str = DEFAULT_OPS_POD_NAMESPACE,
        options: NodeGroupOptions | None = None,
        logger: ScanLogger | None = None,
    ):
        """
        Initialize a node rule.

        Args:
            core_v1: Core API client of the scanned cluster
            pod_context: Creates and deletes the ops pods
            image: Ops pod image, must provide sh, nsenter and stat
            namespace: Namespace of the ops pods
            options: Node selection
            logger: Logger bound to the rule
        """
        self.core_v1 = core_v1
        self.pod_context = pod_context
        self.image = image
        self.namespace = namespace
        self.options = options or NodeGroupOptions()
        self.logger = logger or get_logger("rule").bind(rule=self.id)

    def run(self, ctx: ScanContext) -> RuleResult:
        ctx.check()
        try:
            nodes = get_nodes(self.core_v1)
        except Exception as e:
            return result_for(self, CheckResult.errored(api_error_message(e), Target(kind="nodeList")))

        if not nodes:
            return result_for(self, CheckResult.skipped("No nodes found.", Target(kind="nodeList")))

        group_by_labels = self.options.node_group_by_labels
        selected, unavailable = select_nodes(nodes, group_by_labels)
        check_results = []
        for group in unavailable:
            if group_by_labels:
                check_results.append(
                    CheckResult.skipped(
                        "No ready node could be selected for node group.",
                        Target(kind="nodeGroup", labels=group),
                    )
                )
            else:
                check_results.append(
                    CheckResult.skipped("Node is not in Ready state.", Target(kind="node", name=group))
                )

        for node in selected:
            ctx.check()
            target = Target(kind="node", name=node.metadata.name)
            check_results.extend(self._check_node_in_pod(ctx, node.metadata.name, target))
        return result_for(self, *check_results)

    def _check_node_in_pod(self, ctx: ScanContext, node_name: str, target: Target) -> list[CheckResult]:
        check_results: list[CheckResult] = []
        try:
            with ops_pod_session(self.pod_context, ctx, self.pod_constructor(node_name)) as executor:
                check_results.extend(self.check_node(ctx, executor, target))
        except ContextCancelledError:
            raise
        except Exception as e:
            self.logger.warning(f"Node check failed: {e}", node=node_name)
            check_results.append(CheckResult.errored(api_error_message(e), target))
        return check_results

    def pod_constructor(self, node_name: str) -> PodConstructor:
        """Build the constructor of the ops pod for node_name."""

        def construct() -> client.V1Pod:
            return new_privileged_pod(
                generate_ops_pod_name(self.id),
                self.namespace,
                self.image,
                node_name,
                labels={OPS_POD_RULE_LABEL: self.id},
            )

        return construct

    @abstractmethod
    def check_node(self, ctx: ScanContext, executor: PodExecutor, target: Target) -> list[CheckResult]:
        """Run the check on the node hosting the executor's pod."""


class _SSHServiceRule(NodeRule):
    """SSH daemons must neither run nor start on boot on worker nodes."""

    failed_message = ""
    passed_message = ""

    def check_node(self, ctx, executor, target):
        output = executor.execute(ctx, SHELL, self.command())
        offending = self.offending_units(output)
        if offending:
            return [
                CheckResult.failed(
                    self.failed_message, target.with_fields(details=f"units: {', '.join(offending)}")
                )
            ]
        return [CheckResult.passed(self.passed_message, target)]

    @abstractmethod
    def command(self) -> str:
        """Shell command reporting the unit states."""

    @abstractmethod
    def offending_units(self, output: str) -> list[str]:
        """Units in a non compliant state."""


class Rule242393(_SSHServiceRule):
    id = "242393"
    name = "Kubernetes Worker Nodes must not have sshd service running (MEDIUM 242393)"
    severity = SeverityLevel.MEDIUM

    failed_message = "SSH daemon service is running."
    passed_message = "SSH daemon service is not running."

    def command(self) -> str:
        # is-active prints one state per unit, "inactive" for unknown units
        return f"{HOST_NSENTER} systemctl is-active {' '.join(SSH_SERVICES)} || true"

    def offending_units(self, output):
        states = output.split()
        return [unit for unit, state in zip(SSH_SERVICES, states) if state == "active"]


class Rule242394(_SSHServiceRule):
    id = "242394"
    name = "Kubernetes Worker Nodes must not have the sshd service enabled (MEDIUM 242394)"
    severity = SeverityLevel.MEDIUM

    failed_message = "SSH daemon service is enabled."
    passed_message = "SSH daemon service is not enabled."

    def command(self) -> str:
        units = " ".join(f"{s}.service" for s in SSH_SERVICES)
        return f"{HOST_NSENTER} systemctl list-unit-files --no-legend {units} || true"

    def offending_units(self, output):
        offending = []
        for line in output.splitlines():
            fields = line.split()
            if len(fields) >= 2 and fields[1] in ("enabled", "enabled-runtime"):
                offending.append(fields[0])
        return offending


def kubelet_flags(ctx: ScanContext, executor: PodExecutor) -> dict[str, list[str]]:
    """
    Read the command line flags of the node's kubelet.

    Raises:
        NodeCheckError: If no kubelet process runs on the node
    """
    pids = executor.execute(ctx, SHELL, "pidof kubelet || true").split()
    if not pids:
        raise NodeCheckError("could not find kubelet process on node")
    cmdline = executor.execute(ctx, SHELL, f"tr '\\0' '\\n' < /proc/{pids[0]}/cmdline")
    return parse_flags(cmdline.splitlines()[1:])


class Rule242404(NodeRule):
    id = "242404"
    name = "Kubernetes Kubelet must deny hostname override (MEDIUM 242404)"
    severity = SeverityLevel.MEDIUM

    def check_node(self, ctx, executor, target):
        flags = kubelet_flags(ctx, executor)
        if "hostname-override" in flags:
            return [
                CheckResult.failed(
                    "Flag hostname-override set.",
                    target.with_fields(details=f"hostname-override: {flags['hostname-override'][-1]}"),
                )
            ]
        return [CheckResult.passed("Flag hostname-override not set.", target)]


class _KubeletFileRule(NodeRule):
    """
    Base of rules checking files referenced by the kubelet.

    Subclasses choose the file through file_source ("config",
    "kubeconfig" or "client-ca") and the check through evaluate_file.
    """

    file_source = "config"

    def check_node(self, ctx, executor, target):
        flags = kubelet_flags(ctx, executor)
        path = self.file_path(ctx, executor, flags)
        if path is None:
            return [CheckResult.skipped(f"Kubelet does not use a {self.file_source} file.", target)]

        output = executor.execute(
            ctx, SHELL, f'stat -Lc "%a %u %g %n" {shlex.quote(HOST_ROOT_MOUNT + path)}'
        )
        return [self.evaluate_file(FileStats.parse(output), target)]

    def file_path(
        self, ctx: ScanContext, executor: PodExecutor, flags: dict[str, list[str]]
    ) -> str | None:
        """
        Resolve the host path of the checked file.

        Raises:
            NodeCheckError: If the client CA file is required but not configured
        """
        if self.file_source != "client-ca":
            values = flags.get(self.file_source)
            return values[-1] if values else None

        if flags.get("client-ca-file"):
            return flags["client-ca-file"][-1]
        config_path = flags.get("config", [None])[-1]
        if config_path:
            raw = executor.execute(ctx, SHELL, f"cat {shlex.quote(HOST_ROOT_MOUNT + config_path)}")
            config: Any = yaml.safe_load(raw) or {}
            path = (((config.get("authentication") or {}).get("x509") or {}).get("clientCAFile"))
            if path:
                return path
        raise NodeCheckError("could not find client ca path: client-ca-file not set.")

    @abstractmethod
    def evaluate_file(self, stats: FileStats, target: Target) -> CheckResult:
        """Evaluate the stats of the checked file."""


class _KubeletFilePermissionsRule(_KubeletFileRule):
    max_permissions = "644"

    def evaluate_file(self, stats, target):
        if stats.exceeds(self.max_permissions):
            return CheckResult.failed(
                "File has too wide permissions.",
                target.with_fields(
                    details=f"fileName: {stats.path}, permissions: {stats.permissions}, "
                    f"expectedPermissionsMax: {self.max_permissions}"
                ),
            )
        return CheckResult.passed(
            "File has expected permissions.",
            target.with_fields(details=f"fileName: {stats.path}, permissions: {stats.permissions}"),
        )


class _KubeletFileOwnerRule(_KubeletFileRule):
    @property
    def expected_owner(self) -> ExpectedOwner:
        if isinstance(self.options, FileOwnerOptions):
            return self.options.expected_file_owner
        return ExpectedOwner()

    def evaluate_file(self, stats, target):
        owner = self.expected_owner
        if stats.user not in owner.users:
            return CheckResult.failed(
                "File has unexpected owner user.",
                target.with_fields(
                    details=f"fileName: {stats.path}, ownerUser: {stats.user}, "
                    f"expectedOwnerUsers: [{' '.join(owner.users)}]"
                ),
            )
        if stats.group not in owner.groups:
            return CheckResult.failed(
                "File has unexpected owner group.",
                target.with_fields(
                    details=f"fileName: {stats.path}, ownerGroup: {stats.group}, "
                    f"expectedOwnerGroups: [{' '.join(owner.groups)}]"
                ),
            )
        return CheckResult.passed(
            "File has expected owners.",
            target.with_fields(
                details=f"fileName: {stats.path}, ownerUser: {stats.user}, ownerGroup: {stats.group}"
            ),
        )


class Rule242406(_KubeletFileOwnerRule):
    id = "242406"
    name = "The Kubernetes KubeletConfiguration file must be owned by root (MEDIUM 242406)"
    severity = SeverityLevel.MEDIUM
    file_source = "config"


class Rule242407(_KubeletFilePermissionsRule):
    id = "242407"
    name = "The Kubernetes KubeletConfiguration files must have file permissions set to 644 or more restrictive (MEDIUM 242407)"
    severity = SeverityLevel.MEDIUM
    file_source = "config"


class Rule242449(_KubeletFilePermissionsRule):
    id = "242449"
    name = "The Kubernetes Kubelet certificate authority file must have file permissions set to 644 or more restrictive (MEDIUM 242449)"
    severity = SeverityLevel.MEDIUM
    file_source = "client-ca"


class Rule242450(_KubeletFileOwnerRule):
    id = "242450"
    name = "The Kubernetes Kubelet certificate authority must be owned by root (MEDIUM 242450)"
    severity = SeverityLevel.MEDIUM
    file_source = "client-ca"


class Rule242452(_KubeletFilePermissionsRule):
    id = "242452"
    name = "The Kubernetes kubelet KubeConfig must have file permissions set to 644 or more restrictive (MEDIUM 242452)"
    severity = SeverityLevel.MEDIUM
    file_source = "kubeconfig"


class Rule242453(_KubeletFileOwnerRule):
    id = "242453"
    name = "The Kubernetes kubelet KubeConfig file must be owned by root (MEDIUM 242453)"
    severity = SeverityLevel.MEDIUM
    file_source = "kubeconfig"
