"""
Kubernetes API helpers shared by rules.
"""

from __future__ import annotations

import json
from typing import Any, Iterable

from kubernetes import client
from kubernetes.client.rest import ApiException

DEFAULT_PAGE_LIMIT = 300


def api_error_message(err: Exception) -> str:
    """
    Extract a readable message from an API error.

    The Status message of the response body is preferred so that
    messages such as 'pods "x" not found' can be matched verbatim.
    """
    if isinstance(err, ApiException):
        if err.body:
            try:
                body = json.loads(err.body)
            except (TypeError, ValueError):
                body = None
            if isinstance(body, dict) and body.get("message"):
                return str(body["message"])
        if err.reason:
            return f"({err.status}) {err.reason}"
    return str(err)


def _paginate(list_fn: Any, limit: int, **kwargs: Any) -> list[Any]:
    items: list[Any] = []
    continue_token: str | None = None
    while True:
        if continue_token:
            kwargs["_continue"] = continue_token
        page = list_fn(limit=limit, **kwargs)
        items.extend(page.items or [])
        continue_token = page.metadata._continue if page.metadata else None
        if not continue_token:
            return items


def get_pods(
    core_v1: client.CoreV1Api,
    namespace: str = "",
    label_selector: str = "",
    limit: int = DEFAULT_PAGE_LIMIT,
) -> list[client.V1Pod]:
    """
    List pods page by page.

    Args:
        core_v1: Core API client
        namespace: Namespace to list, empty for all namespaces
        label_selector: Optional label selector
        limit: Page size

    Returns:
        All matching pods
    """
    if namespace:
        return _paginate(
            core_v1.list_namespaced_pod,
            limit,
            namespace=namespace,
            label_selector=label_selector,
        )
    return _paginate(
        core_v1.list_pod_for_all_namespaces, limit, label_selector=label_selector
    )


def get_nodes(
    core_v1: client.CoreV1Api, limit: int = DEFAULT_PAGE_LIMIT
) -> list[client.V1Node]:
    """List all nodes page by page."""
    return _paginate(core_v1.list_node, limit)


def get_namespaces(core_v1: client.CoreV1Api) -> dict[str, client.V1Namespace]:
    """Get all namespaces keyed by name."""
    namespaces = core_v1.list_namespace().items or []
    return {ns.metadata.name: ns for ns in namespaces}


def match_labels(labels: dict[str, str] | None, selector: dict[str, str] | None) -> bool:
    """
    Check if labels contain every key and value of selector.

    Returns False when either side is None.
    """
    if labels is None or selector is None:
        return False
    return all(labels.get(key) == value for key, value in selector.items())


def is_node_ready(node: client.V1Node) -> bool:
    """Check if the node reports the Ready condition."""
    conditions = node.status.conditions if node.status else None
    return any(c.type == "Ready" and c.status == "True" for c in conditions or [])


def select_nodes(
    nodes: Iterable[client.V1Node], group_by_labels: list[str]
) -> tuple[list[client.V1Node], list[str]]:
    """
    Select one ready, schedulable node per group of label values.

    Nodes are grouped by the values of group_by_labels; without labels
    every ready node is selected.

    Returns:
        Tuple of (selected nodes, groups without a ready node). Groups are
        reported as label=value pairs, or as the node name without labels.
    """
    selected: dict[tuple[str, ...], client.V1Node] = {}
    seen_groups: list[tuple[str, ...]] = []

    for node in nodes:
        labels = node.metadata.labels or {}
        if group_by_labels:
            group = tuple(labels.get(label, "") for label in group_by_labels)
        else:
            group = (node.metadata.name,)
        if group not in seen_groups:
            seen_groups.append(group)
        if group in selected:
            continue
        unschedulable = bool(node.spec and node.spec.unschedulable)
        if is_node_ready(node) and not unschedulable:
            selected[group] = node

    unavailable = [
        ",".join(f"{label}={value}" for label, value in zip(group_by_labels, group))
        if group_by_labels
        else group[0]
        for group in seen_groups
        if group not in selected
    ]
    return list(selected.values()), unavailable


def get_kubelet_config(core_v1: client.CoreV1Api, node_name: str) -> dict[str, Any]:
    """
    Fetch the running kubelet configuration of a node.

    Uses the node proxy configz endpoint.

    Returns:
        The kubeletconfig document
    """
    response = core_v1.connect_get_node_proxy_with_path(
        node_name, "configz", _preload_content=False
    )
    data = json.loads(response.data)
    return data.get("kubeletconfig", {})
