"""
Operator options of DISA Kubernetes STIG rules.

Options are parsed from the ``args`` of a rule's options configuration.
Every options class offers from_dict() accepting the camelCase keys of
the configuration file and validate() returning a list of error
messages, empty when the options are valid.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from kubestig.rule.models import Status

SYSTEM_NAMESPACES = ("kube-system", "kube-public", "kube-node-lease")
USER_RESOURCE_NAMESPACES = ("default", "kube-public", "kube-node-lease")

_LABEL_NAME = re.compile(r"^([A-Za-z0-9][-A-Za-z0-9_.]*)?[A-Za-z0-9]$")
_DNS_SUBDOMAIN = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*$")
_ALLOWED_STATUSES = (Status.PASSED.value, Status.ACCEPTED.value)


def validate_label_key(key: str) -> str | None:
    """Validate a label key, returning an error message or None."""
    prefix, _, name = key.rpartition("/")
    if prefix and (len(prefix) > 253 or not _DNS_SUBDOMAIN.match(prefix)):
        return f"invalid label key prefix {prefix!r}"
    if not name or len(name) > 63 or not _LABEL_NAME.match(name):
        return f"invalid label key {key!r}"
    return None


def validate_label_value(value: str) -> str | None:
    """Validate a label value, returning an error message or None."""
    if value == "":
        return None
    if len(value) > 63 or not _LABEL_NAME.match(value):
        return f"invalid label value {value!r}"
    return None


def validate_labels(labels: dict[str, str], path: str) -> list[str]:
    """Validate label keys and values of a selector."""
    errors = []
    for key, value in labels.items():
        for error in (validate_label_key(key), validate_label_value(str(value))):
            if error:
                errors.append(f"{path}: {error}")
    return errors


def _validate_status(status: str, path: str) -> list[str]:
    if status not in _ALLOWED_STATUSES:
        return [f"{path}: status must be one of {', '.join(_ALLOWED_STATUSES)}, got {status!r}"]
    return []


@dataclass
class AcceptedPod:
    """
    Pods whose findings an operator accepts.

    Attributes:
        pod_match_labels: Labels the pod must carry
        namespace_match_labels: Labels the pod's namespace must carry
        ports: Accepted host ports, only used by host port checks
        justification: Message reported for accepted pods
        status: Status reported for accepted pods, Passed or Accepted
    """

    pod_match_labels: dict[str, str] = field(default_factory=dict)
    namespace_match_labels: dict[str, str] = field(default_factory=dict)
    ports: list[int] = field(default_factory=list)
    justification: str = ""
    status: str = Status.ACCEPTED.value

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AcceptedPod:
        """Create from dictionary."""
        return cls(
            pod_match_labels=dict(data.get("podMatchLabels") or {}),
            namespace_match_labels=dict(data.get("namespaceMatchLabels") or {}),
            ports=[int(p) for p in data.get("ports") or []],
            justification=data.get("justification", ""),
            status=data.get("status") or Status.ACCEPTED.value,
        )

    def validate(self, path: str) -> list[str]:
        """Validate selectors and status."""
        errors = []
        if not self.pod_match_labels:
            errors.append(f"{path}.podMatchLabels: must not be empty")
        if not self.namespace_match_labels:
            errors.append(f"{path}.namespaceMatchLabels: must not be empty")
        errors.extend(validate_labels(self.pod_match_labels, f"{path}.podMatchLabels"))
        errors.extend(
            validate_labels(self.namespace_match_labels, f"{path}.namespaceMatchLabels")
        )
        errors.extend(_validate_status(self.status, f"{path}.status"))
        return errors


@dataclass
class Options242414:
    """Accepted pods using host ports below 1024."""

    accepted_pods: list[AcceptedPod] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Options242414:
        """Create from dictionary."""
        return cls(
            accepted_pods=[AcceptedPod.from_dict(p) for p in data.get("acceptedPods") or []]
        )

    def validate(self) -> list[str]:
        """Validate accepted pods and their ports."""
        errors = []
        for i, pod in enumerate(self.accepted_pods):
            path = f"acceptedPods[{i}]"
            errors.extend(pod.validate(path))
            if not pod.ports:
                errors.append(f"{path}.ports: must not be empty")
            for j, port in enumerate(pod.ports):
                if port < 1 or port > 65535:
                    errors.append(f"{path}.ports[{j}]: invalid port {port}")
        return errors


@dataclass
class Options242415:
    """Accepted pods injecting secrets as environment variables."""

    accepted_pods: list[AcceptedPod] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Options242415:
        """Create from dictionary."""
        return cls(
            accepted_pods=[AcceptedPod.from_dict(p) for p in data.get("acceptedPods") or []]
        )

    def validate(self) -> list[str]:
        """Validate accepted pods."""
        errors = []
        for i, pod in enumerate(self.accepted_pods):
            errors.extend(pod.validate(f"acceptedPods[{i}]"))
        return errors


@dataclass
class AcceptedSystemPod:
    """Pods accepted in system namespaces."""

    pod_match_labels: dict[str, str] = field(default_factory=dict)
    namespace_names: list[str] = field(default_factory=list)
    justification: str = ""
    status: str = Status.ACCEPTED.value

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AcceptedSystemPod:
        """Create from dictionary."""
        return cls(
            pod_match_labels=dict(data.get("podMatchLabels") or {}),
            namespace_names=list(data.get("namespaceNames") or []),
            justification=data.get("justification", ""),
            status=data.get("status") or Status.ACCEPTED.value,
        )


@dataclass
class Options242417:
    """Accepted pods in the kube-system, kube-public and kube-node-lease namespaces."""

    accepted_pods: list[AcceptedSystemPod] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Options242417:
        """Create from dictionary."""
        return cls(
            accepted_pods=[
                AcceptedSystemPod.from_dict(p) for p in data.get("acceptedPods") or []
            ]
        )

    def validate(self) -> list[str]:
        errors = []
        for i, pod in enumerate(self.accepted_pods):
            path = f"acceptedPods[{i}]"
            if not pod.pod_match_labels:
                errors.append(f"{path}.podMatchLabels: must not be empty")
            errors.extend(validate_labels(pod.pod_match_labels, f"{path}.podMatchLabels"))
            if not pod.namespace_names:
                errors.append(f"{path}.namespaceNames: must not be empty")
            for j, name in enumerate(pod.namespace_names):
                if name not in SYSTEM_NAMESPACES:
                    errors.append(
                        f"{path}.namespaceNames[{j}]: must be one of "
                        f"{', '.join(SYSTEM_NAMESPACES)}, got {name!r}"
                    )
            errors.extend(_validate_status(pod.status, f"{path}.status"))
        return errors


@dataclass
class AcceptedResource:
    """
    Resources accepted in the default, kube-public and kube-node-lease namespaces.

    Attributes:
        kind: Pod or Service
        match_labels: Labels the resource must carry
        namespace_names: Namespaces the acceptance applies to
        justification: Message reported for accepted resources
        status: Status reported for accepted resources, Passed or Accepted
    """

    kind: str = "Pod"
    match_labels: dict[str, str] = field(default_factory=dict)
    namespace_names: list[str] = field(default_factory=list)
    justification: str = ""
    status: str = Status.ACCEPTED.value

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AcceptedResource:
        """Create from dictionary."""
        return cls(
            kind=data.get("kind", "Pod"),
            match_labels=dict(data.get("matchLabels") or {}),
            namespace_names=list(data.get("namespaceNames") or []),
            justification=data.get("justification", ""),
            status=data.get("status") or Status.ACCEPTED.value,
        )


@dataclass
class Options242383:
    """Accepted user resources in system namespaces."""

    accepted_resources: list[AcceptedResource] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Options242383:
        """Create from dictionary."""
        return cls(
            accepted_resources=[
                AcceptedResource.from_dict(r) for r in data.get("acceptedResources") or []
            ]
        )

    def validate(self) -> list[str]:
        errors = []
        for i, resource in enumerate(self.accepted_resources):
            path = f"acceptedResources[{i}]"
            if resource.kind not in ("Pod", "Service"):
                errors.append(f"{path}.kind: must be Pod or Service, got {resource.kind!r}")
            if not resource.match_labels:
                errors.append(f"{path}.matchLabels: must not be empty")
            errors.extend(validate_labels(resource.match_labels, f"{path}.matchLabels"))
            for j, name in enumerate(resource.namespace_names):
                if name not in USER_RESOURCE_NAMESPACES:
                    errors.append(
                        f"{path}.namespaceNames[{j}]: must be one of "
                        f"{', '.join(USER_RESOURCE_NAMESPACES)}, got {name!r}"
                    )
            errors.extend(_validate_status(resource.status, f"{path}.status"))
        return errors


@dataclass
class NodeGroupOptions:
    """
    Node selection of node level rules.

    One ready node is checked per distinct combination of the values of
    node_group_by_labels. Without labels every ready node is checked.
    """

    node_group_by_labels: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> NodeGroupOptions:
        """Create from dictionary."""
        return cls(node_group_by_labels=list(data.get("nodeGroupByLabels") or []))

    def validate(self) -> list[str]:
        errors = []
        for i, label in enumerate(self.node_group_by_labels):
            error = validate_label_key(label)
            if error:
                errors.append(f"nodeGroupByLabels[{i}]: {error}")
        return errors


@dataclass
class ExpectedOwner:
    """User and group IDs allowed to own a file."""

    users: list[str] = field(default_factory=lambda: ["0"])
    groups: list[str] = field(default_factory=lambda: ["0"])

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExpectedOwner:
        """Create from dictionary."""
        return cls(
            users=[str(u) for u in data.get("users") or ["0"]],
            groups=[str(g) for g in data.get("groups") or ["0"]],
        )


@dataclass
class FileOwnerOptions(NodeGroupOptions):
    """Node selection and expected owners of node file checks."""

    expected_file_owner: ExpectedOwner = field(default_factory=ExpectedOwner)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FileOwnerOptions:
        """Create from dictionary."""
        return cls(
            node_group_by_labels=list(data.get("nodeGroupByLabels") or []),
            expected_file_owner=ExpectedOwner.from_dict(data.get("expectedFileOwner") or {}),
        )

    def validate(self) -> list[str]:
        errors = super().validate()
        owner = self.expected_file_owner
        for kind, ids in (("users", owner.users), ("groups", owner.groups)):
            for i, value in enumerate(ids):
                if not value.isdigit():
                    errors.append(
                        f"expectedFileOwner.{kind}[{i}]: must be a numeric id, got {value!r}"
                    )
        return errors
