"""
Managed Kubernetes provider for kubestig.

Connects to a cluster whose control plane is operated by a cloud
provider and runs the configured rulesets against it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from kubernetes import client
from kubernetes import config as kube_config

from kubestig.config.scan_config import ProviderConfig
from kubestig.context import ScanContext
from kubestig.observability.logging import get_logger
from kubestig.ruleset.base import Ruleset, RulesetResult
from kubestig.ruleset.disak8sstig import RULESET_ID as DISA_K8S_STIG_ID
from kubestig.ruleset.disak8sstig import DisaKubernetesStigRuleset

logger = logging.getLogger(__name__)


class ProviderError(Exception):
    """Raised when the provider cannot be set up."""


@dataclass
class ProviderResult:
    """Results of all rulesets run by a provider."""

    provider_id: str
    provider_name: str
    metadata: dict[str, str] = field(default_factory=dict)
    ruleset_results: list[RulesetResult] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "provider": {
                "id": self.provider_id,
                "name": self.provider_name,
                "metadata": self.metadata,
            },
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "rulesets": [r.to_dict() for r in self.ruleset_results],
        }


class ManagedK8sProvider:
    """
    Runs rulesets against a managed Kubernetes cluster.

    The client is created lazily from a kubeconfig file or from the
    in-cluster service account.
    """

    def __init__(self, provider_config: ProviderConfig, metadata: dict[str, str] | None = None):
        """
        Initialize the provider.

        Args:
            provider_config: Cluster access and rulesets to run
            metadata: Additional metadata reported with the results
        """
        self._config = provider_config
        self._metadata = dict(metadata or {})
        self._cluster_name: str | None = None
        self._api_client: client.ApiClient | None = None
        self._rulesets: dict[str, Ruleset] | None = None
        self._logger = get_logger("provider").bind(provider=provider_config.id)

    @property
    def id(self) -> str:
        return self._config.id

    @property
    def name(self) -> str:
        return self._config.name

    def _init_client(self) -> None:
        """Initialize the Kubernetes client."""
        if self._api_client is not None:
            return

        if self._config.in_cluster:
            kube_config.load_incluster_config()
            self._cluster_name = "in-cluster"
        else:
            kube_config.load_kube_config(
                config_file=self._config.kubeconfig_path,
                context=self._config.context,
            )
            self._cluster_name = self._lookup_cluster_name()

        self._api_client = client.ApiClient()

    def _lookup_cluster_name(self) -> str:
        try:
            contexts, active_context = kube_config.list_kube_config_contexts(
                config_file=self._config.kubeconfig_path
            )
        except Exception as e:
            logger.debug(f"Could not read kubeconfig contexts: {e}")
            return "unknown"

        if self._config.context:
            for ctx in contexts:
                if ctx["name"] == self._config.context:
                    return ctx.get("context", {}).get("cluster", self._config.context)
        elif active_context:
            return active_context.get("context", {}).get(
                "cluster", active_context.get("name", "unknown")
            )
        return "unknown"

    @property
    def api_client(self) -> client.ApiClient:
        """Get the API client, connecting on first use."""
        self._init_client()
        return self._api_client

    @property
    def cluster_name(self) -> str:
        """Get the cluster name."""
        self._init_client()
        return self._cluster_name or "unknown"

    def rulesets(self) -> list[Ruleset]:
        """
        Get the configured rulesets.

        Raises:
            ProviderError: If a configured ruleset is not known
            RulesetError: If a ruleset cannot be built from its configuration
        """
        if self._rulesets is None:
            rulesets: dict[str, Ruleset] = {}
            for ruleset_config in self._config.rulesets:
                if ruleset_config.id != DISA_K8S_STIG_ID:
                    raise ProviderError(f"unknown ruleset identifier: {ruleset_config.id}")
                rulesets[ruleset_config.id] = DisaKubernetesStigRuleset.from_api_client(
                    self.api_client,
                    ruleset_config,
                    self._config.additional_ops_pod_labels,
                )
            self._rulesets = rulesets
        return list(self._rulesets.values())

    def run_ruleset(self, ctx: ScanContext, ruleset_id: str) -> RulesetResult:
        """
        Run one configured ruleset.

        Raises:
            ProviderError: If the ruleset is not configured
        """
        for ruleset in self.rulesets():
            if ruleset.id == ruleset_id:
                return ruleset.run(ctx)
        raise ProviderError(f"ruleset {ruleset_id} is not configured")

    def run_all(self, ctx: ScanContext) -> ProviderResult:
        """
        Run every configured ruleset.

        Args:
            ctx: Context bounding the whole run

        Returns:
            ProviderResult with one RulesetResult per ruleset
        """
        rulesets = self.rulesets()
        result = ProviderResult(
            provider_id=self.id,
            provider_name=self.name,
            metadata={"cluster": self.cluster_name, **self._metadata},
        )

        for ruleset in rulesets:
            self._logger.info(f"Running ruleset {ruleset.id} {ruleset.version}")
            result.ruleset_results.append(ruleset.run(ctx))

        result.completed_at = datetime.now(timezone.utc)
        return result
