"""
Pytest configuration and fixtures for kubestig tests.

This module provides common fixtures used across unit tests.
"""

from __future__ import annotations

from typing import Any, Callable
from unittest.mock import MagicMock

import pytest
from kubernetes import client

from kubestig.context import ScanContext
from kubestig.rule.base import Rule
from kubestig.rule.models import CheckResult, RuleResult, SeverityLevel, result_for


class StubRule(Rule):
    """Rule returning prepared results, one per run."""

    def __init__(
        self,
        rule_id: str = "242400",
        name: str = "stub rule",
        results: list[Any] | None = None,
        severity: SeverityLevel | None = SeverityLevel.MEDIUM,
    ):
        self._id = rule_id
        self._name = name
        self._severity = severity
        self._results = list(results or [])
        self.calls = 0

    @property
    def id(self) -> str:
        return self._id

    @property
    def name(self) -> str:
        return self._name

    @property
    def severity(self) -> SeverityLevel | None:
        return self._severity

    def run(self, ctx: ScanContext) -> RuleResult:
        self.calls += 1
        result = self._results[min(self.calls, len(self._results)) - 1]
        if isinstance(result, Exception):
            raise result
        if isinstance(result, CheckResult):
            return result_for(self, result)
        return result_for(self, *result)


@pytest.fixture
def ctx() -> ScanContext:
    """Return a background scan context."""
    return ScanContext.background()


@pytest.fixture
def make_pod() -> Callable[..., client.V1Pod]:
    """Return a factory of pods."""

    def factory(
        name: str = "nginx",
        namespace: str = "default",
        labels: dict[str, str] | None = None,
        containers: list[client.V1Container] | None = None,
        phase: str = "Running",
    ) -> client.V1Pod:
        return client.V1Pod(
            metadata=client.V1ObjectMeta(name=name, namespace=namespace, labels=labels),
            spec=client.V1PodSpec(
                containers=containers or [client.V1Container(name="nginx", image="nginx:1.25")]
            ),
            status=client.V1PodStatus(phase=phase),
        )

    return factory


@pytest.fixture
def make_node() -> Callable[..., client.V1Node]:
    """Return a factory of nodes."""

    def factory(
        name: str = "node-1",
        ready: bool = True,
        labels: dict[str, str] | None = None,
        unschedulable: bool = False,
    ) -> client.V1Node:
        return client.V1Node(
            metadata=client.V1ObjectMeta(name=name, labels=labels or {}),
            spec=client.V1NodeSpec(unschedulable=unschedulable),
            status=client.V1NodeStatus(
                conditions=[
                    client.V1NodeCondition(type="Ready", status="True" if ready else "False")
                ]
            ),
        )

    return factory


def pod_list(*pods: client.V1Pod, continue_token: str | None = None) -> client.V1PodList:
    """Build a pod list page."""
    return client.V1PodList(items=list(pods), metadata=client.V1ListMeta(_continue=continue_token))


def node_list(*nodes: client.V1Node) -> client.V1NodeList:
    """Build a node list page."""
    return client.V1NodeList(items=list(nodes), metadata=client.V1ListMeta())


def namespace_list(namespaces: dict[str, dict[str, str]]) -> client.V1NamespaceList:
    """Build a namespace list from names and labels."""
    return client.V1NamespaceList(
        items=[
            client.V1Namespace(metadata=client.V1ObjectMeta(name=name, labels=labels))
            for name, labels in namespaces.items()
        ]
    )


@pytest.fixture
def core_v1() -> MagicMock:
    """Return a mock CoreV1Api with empty listings."""
    api = MagicMock(spec=client.CoreV1Api)
    api.list_pod_for_all_namespaces.return_value = pod_list()
    api.list_namespaced_pod.return_value = pod_list()
    api.list_node.return_value = node_list()
    api.list_namespace.return_value = namespace_list({})
    api.list_namespaced_service.return_value = client.V1ServiceList(items=[])
    return api


@pytest.fixture
def api_client() -> MagicMock:
    """Return a mock ApiClient pointing to a test API server."""
    api = MagicMock(spec=client.ApiClient)
    api.configuration = client.Configuration(host="https://api.test.local:6443")
    api.sanitize_for_serialization.side_effect = client.ApiClient().sanitize_for_serialization
    return api
