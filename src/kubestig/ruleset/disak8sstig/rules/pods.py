"""
Workload rules of the DISA Kubernetes STIG.

These rules inspect pods, services and namespaces through the core API.
"""

from __future__ import annotations

from abc import abstractmethod
from collections import defaultdict
from typing import Callable

from kubernetes import client

from kubestig.context import ScanContext
from kubestig.kubernetes.utils import api_error_message, get_namespaces, get_pods, match_labels
from kubestig.rule.base import Rule
from kubestig.rule.models import CheckResult, RuleResult, SeverityLevel, Status, Target, result_for
from kubestig.ruleset.disak8sstig.options import (
    SYSTEM_NAMESPACES,
    USER_RESOURCE_NAMESPACES,
    AcceptedPod,
    Options242383,
    Options242414,
    Options242415,
    Options242417,
)

DASHBOARD_LABEL_SELECTOR = "k8s-app=kubernetes-dashboard"


def pod_target(pod: client.V1Pod) -> Target:
    """Build the target of a pod."""
    return Target(name=pod.metadata.name, namespace=pod.metadata.namespace, kind="pod")


def _find_accepted_pod(
    accepted_pods: list[AcceptedPod],
    pod: client.V1Pod,
    namespace: client.V1Namespace | None,
    accepts: Callable[[AcceptedPod], bool] | None = None,
) -> AcceptedPod | None:
    """Return the first entry matching the pod and namespace labels and accepts."""
    namespace_labels = namespace.metadata.labels if namespace is not None else None
    for accepted in accepted_pods:
        if (
            match_labels(pod.metadata.labels, accepted.pod_match_labels)
            and match_labels(namespace_labels, accepted.namespace_match_labels)
            and (accepts is None or accepts(accepted))
        ):
            return accepted
    return None


class _PodsAndNamespacesRule(Rule):
    """Base of rules evaluating every pod together with its namespace."""

    def __init__(self, core_v1: client.CoreV1Api):
        self.core_v1 = core_v1

    def run(self, ctx: ScanContext) -> RuleResult:
        ctx.check()
        try:
            pods = get_pods(self.core_v1)
        except Exception as e:
            return result_for(self, CheckResult.errored(api_error_message(e), Target(kind="podList")))

        try:
            namespaces = get_namespaces(self.core_v1)
        except Exception as e:
            return result_for(
                self, CheckResult.errored(api_error_message(e), Target(kind="namespaceList"))
            )

        check_results: list[CheckResult] = []
        for pod in pods:
            check_results.extend(self.check_pod(pod, namespaces.get(pod.metadata.namespace)))
        if not check_results:
            check_results.append(CheckResult.passed("No pods found.", Target(kind="podList")))
        return result_for(self, *check_results)

    @abstractmethod
    def check_pod(
        self, pod: client.V1Pod, namespace: client.V1Namespace | None
    ) -> list[CheckResult]:
        """Evaluate one pod."""


class Rule242414(_PodsAndNamespacesRule):
    """Host ports below 1024 are reserved for system components."""

    id = "242414"
    name = "The Kubernetes cluster must use non-privileged host ports for user pods (MEDIUM 242414)"
    severity = SeverityLevel.MEDIUM

    def __init__(self, core_v1: client.CoreV1Api, options: Options242414 | None = None):
        super().__init__(core_v1)
        self.options = options or Options242414()

    def check_pod(self, pod, namespace):
        check_results = []
        target = pod_target(pod)
        for container in pod.spec.containers or []:
            uses = False
            for port in container.ports or []:
                host_port = port.host_port or 0
                if host_port == 0 or host_port >= 1024:
                    continue
                uses = True
                port_target = target.with_fields(
                    details=f"containerName: {container.name}, port: {host_port}"
                )
                accepted = _find_accepted_pod(
                    self.options.accepted_pods,
                    pod,
                    namespace,
                    lambda a: host_port in a.ports,
                )
                if accepted is not None:
                    message = accepted.justification or "Container accepted to use hostPort < 1024."
                    status = Status.from_string(accepted.status)
                    check_results.append(CheckResult(status, message, port_target))
                else:
                    check_results.append(
                        CheckResult.failed("Container uses hostPort < 1024.", port_target)
                    )
            if not uses:
                check_results.append(
                    CheckResult.passed(
                        "Container does not use hostPort < 1024.",
                        target.with_fields(details=f"containerName: {container.name}"),
                    )
                )
        return check_results


class Rule242415(_PodsAndNamespacesRule):
    """Secrets must be mounted as files rather than injected into the environment."""

    id = "242415"
    name = "Secrets in Kubernetes must not be stored as environment variables (HIGH 242415)"
    severity = SeverityLevel.HIGH

    def __init__(self, core_v1: client.CoreV1Api, options: Options242415 | None = None):
        super().__init__(core_v1)
        self.options = options or Options242415()

    def check_pod(self, pod, namespace):
        check_results = []
        target = pod_target(pod)
        containers = list(pod.spec.init_containers or []) + list(pod.spec.containers or [])
        for container in containers:
            for env in container.env or []:
                if env.value_from is None or env.value_from.secret_key_ref is None:
                    continue
                env_target = target.with_fields(
                    details=f"containerName: {container.name}, variableName: {env.name}, "
                    f"keyRef: {env.value_from.secret_key_ref.key}"
                )
                accepted = _find_accepted_pod(self.options.accepted_pods, pod, namespace)
                if accepted is not None:
                    message = accepted.justification or "Pod accepted to use environment to inject secret."
                    check_results.append(
                        CheckResult(Status.from_string(accepted.status), message, env_target)
                    )
                else:
                    check_results.append(
                        CheckResult.failed("Pod uses environment to inject secret.", env_target)
                    )
        if not check_results:
            check_results.append(
                CheckResult.passed("Pod does not use environment to inject secret.", target)
            )
        return check_results


class Rule242417(Rule):
    """User pods must not run in the system namespaces."""

    id = "242417"
    name = "Kubernetes must separate user functionality (MEDIUM 242417)"
    severity = SeverityLevel.MEDIUM

    def __init__(self, core_v1: client.CoreV1Api, options: Options242417 | None = None):
        self.core_v1 = core_v1
        self.options = options or Options242417()

    def run(self, ctx: ScanContext) -> RuleResult:
        check_results: list[CheckResult] = []
        for namespace in SYSTEM_NAMESPACES:
            ctx.check()
            try:
                pods = get_pods(self.core_v1, namespace=namespace)
            except Exception as e:
                check_results.append(
                    CheckResult.errored(
                        api_error_message(e), Target(kind="podList", namespace=namespace)
                    )
                )
                continue
            for pod in pods:
                check_results.append(self._check_pod(pod))

        if not check_results:
            check_results.append(
                CheckResult.passed("Found no user pods in system namespaces.", Target())
            )
        return result_for(self, *check_results)

    def _check_pod(self, pod: client.V1Pod) -> CheckResult:
        target = pod_target(pod)
        for accepted in self.options.accepted_pods:
            if pod.metadata.namespace in accepted.namespace_names and match_labels(
                pod.metadata.labels, accepted.pod_match_labels
            ):
                message = accepted.justification or "Accepted user pod in system namespaces."
                return CheckResult(Status.from_string(accepted.status), message, target)
        return CheckResult.failed("Found user pods in system namespaces.", target)


class Rule242383(Rule):
    """User resources must not be created in the default and system namespaces."""

    id = "242383"
    name = "User-managed resources must be created in dedicated namespaces (HIGH 242383)"
    severity = SeverityLevel.HIGH

    def __init__(self, core_v1: client.CoreV1Api, options: Options242383 | None = None):
        self.core_v1 = core_v1
        self.options = options or Options242383()

    def run(self, ctx: ScanContext) -> RuleResult:
        check_results: list[CheckResult] = []
        for namespace in USER_RESOURCE_NAMESPACES:
            ctx.check()
            try:
                pods = get_pods(self.core_v1, namespace=namespace)
                services = self.core_v1.list_namespaced_service(namespace).items or []
            except Exception as e:
                check_results.append(
                    CheckResult.errored(
                        api_error_message(e), Target(kind="namespace", name=namespace)
                    )
                )
                continue

            resources = [("Pod", pod) for pod in pods]
            resources.extend(
                ("Service", svc)
                for svc in services
                if not (namespace == "default" and svc.metadata.name == "kubernetes")
            )
            if not resources:
                check_results.append(
                    CheckResult.passed(
                        "Found no user resources in namespace.",
                        Target(kind="namespace", name=namespace),
                    )
                )
                continue
            for kind, resource in resources:
                check_results.append(self._check_resource(kind, resource, namespace))

        return result_for(self, *check_results)

    def _check_resource(self, kind: str, resource, namespace: str) -> CheckResult:
        target = Target(name=resource.metadata.name, namespace=namespace, kind=kind.lower())
        for accepted in self.options.accepted_resources:
            if accepted.kind != kind:
                continue
            if accepted.namespace_names and namespace not in accepted.namespace_names:
                continue
            if match_labels(resource.metadata.labels, accepted.match_labels):
                message = accepted.justification or "Accepted user resource in system namespaces."
                return CheckResult(Status.from_string(accepted.status), message, target)
        return CheckResult.failed("Found user resource in system namespaces.", target)


class Rule242395(Rule):
    """The Kubernetes dashboard must not be deployed."""

    id = "242395"
    name = "Kubernetes dashboard must not be enabled (MEDIUM 242395)"
    severity = SeverityLevel.MEDIUM

    def __init__(self, core_v1: client.CoreV1Api):
        self.core_v1 = core_v1

    def run(self, ctx: ScanContext) -> RuleResult:
        ctx.check()
        try:
            pods = get_pods(self.core_v1, label_selector=DASHBOARD_LABEL_SELECTOR)
        except Exception as e:
            return result_for(self, CheckResult.errored(api_error_message(e), Target(kind="podList")))

        if not pods:
            return result_for(self, CheckResult.passed("Kubernetes dashboard not installed", Target()))
        return result_for(
            self,
            *(CheckResult.failed("Kubernetes dashboard installed", pod_target(pod)) for pod in pods),
        )


def split_image(image: str) -> tuple[str, str]:
    """
    Split an image reference into repository and version.

    The version is the digest when present, the tag otherwise and
    "latest" when neither is given.

    Example:
        >>> split_image("registry.k8s.io/pause:3.9")
        ('registry.k8s.io/pause', '3.9')
    """
    if "@" in image:
        image, digest = image.split("@", 1)
        repository, _ = split_image(image)
        return repository, digest
    name = image.rsplit("/", 1)[-1]
    if ":" in name:
        repository, tag = image.rsplit(":", 1)
        return repository, tag
    return image, "latest"


class Rule242442(Rule):
    """A component must not run with more than one image version."""

    id = "242442"
    name = "Kubernetes must remove old components after updated versions have been installed (MEDIUM 242442)"
    severity = SeverityLevel.MEDIUM

    def __init__(self, core_v1: client.CoreV1Api, namespaces: tuple[str, ...] = ("kube-system",)):
        self.core_v1 = core_v1
        self.namespaces = namespaces

    def run(self, ctx: ScanContext) -> RuleResult:
        versions: dict[str, set[str]] = defaultdict(set)
        for namespace in self.namespaces:
            ctx.check()
            try:
                pods = get_pods(self.core_v1, namespace=namespace)
            except Exception as e:
                return result_for(
                    self,
                    CheckResult.errored(
                        api_error_message(e), Target(kind="podList", namespace=namespace)
                    ),
                )
            for pod in pods:
                for container in list(pod.spec.init_containers or []) + list(pod.spec.containers or []):
                    repository, version = split_image(container.image)
                    versions[repository].add(version)

        check_results = [
            CheckResult.failed(
                "Found different images for the same component.",
                Target(image=repository, details=f"versions: {', '.join(sorted(found))}"),
            )
            for repository, found in sorted(versions.items())
            if len(found) > 1
        ]
        if not check_results:
            check_results.append(CheckResult.passed("All found images use current versions.", Target()))
        return result_for(self, *check_results)
