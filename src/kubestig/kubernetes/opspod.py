"""
Helper ("ops") pod specifications.

Ops pods are pinned to a node, share the host PID namespace and mount
the host root file system at /host so that node level checks can be
executed from inside them.
"""

from __future__ import annotations

import secrets
import string

from kubernetes import client

OPS_POD_CONTAINER = "container"
OPS_POD_PREFIX = "kubestig"
HOST_ROOT_MOUNT = "/host"

_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits


def generate_ops_pod_name(rule_id: str) -> str:
    """
    Generate a unique ops pod name for a rule.

    Args:
        rule_id: Identifier of the rule creating the pod

    Returns:
        Name of the form kubestig-<rule id>-<10 random characters>
    """
    suffix = "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(10))
    return f"{OPS_POD_PREFIX}-{rule_id}-{suffix}"


def new_privileged_pod(
    name: str,
    namespace: str,
    image: str,
    node_name: str,
    labels: dict[str, str] | None = None,
) -> client.V1Pod:
    """
    Build a privileged ops pod pinned to a node.

    Args:
        name: Pod name
        namespace: Pod namespace
        image: Container image providing a shell and nsenter
        node_name: Node the pod must run on
        labels: Pod labels

    Returns:
        Pod specification ready to be created
    """
    return client.V1Pod(
        metadata=client.V1ObjectMeta(
            name=name,
            namespace=namespace,
            labels=dict(labels or {}),
        ),
        spec=client.V1PodSpec(
            node_name=node_name,
            host_pid=True,
            restart_policy="Never",
            termination_grace_period_seconds=0,
            tolerations=[client.V1Toleration(operator="Exists")],
            containers=[
                client.V1Container(
                    name=OPS_POD_CONTAINER,
                    image=image,
                    command=["sleep", "600"],
                    security_context=client.V1SecurityContext(privileged=True),
                    volume_mounts=[
                        client.V1VolumeMount(
                            name="host-root",
                            mount_path=HOST_ROOT_MOUNT,
                            read_only=True,
                        )
                    ],
                )
            ],
            volumes=[
                client.V1Volume(
                    name="host-root",
                    host_path=client.V1HostPathVolumeSource(path="/"),
                )
            ],
        ),
    )
