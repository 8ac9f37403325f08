"""
Scan configuration for kubestig.

Provides configuration management for the scanned cluster, the
rulesets to run and the per-rule operator options.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


class ConfigError(Exception):
    """Exception raised when a configuration is invalid."""


@dataclass
class SkipConfig:
    """Operator decision to skip a rule."""

    enabled: bool = False
    justification: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {"enabled": self.enabled, "justification": self.justification}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SkipConfig:
        """Create from dictionary."""
        return cls(
            enabled=bool(data.get("enabled", False)),
            justification=data.get("justification", ""),
        )


@dataclass
class RuleOptionsConfig:
    """
    Operator options for a single rule.

    Attributes:
        rule_id: Identifier of the rule
        skip: Optional skip override
        args: Rule specific options, parsed by the rule's options type
    """

    rule_id: str
    skip: SkipConfig | None = None
    args: Any = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "ruleID": self.rule_id,
            "skip": self.skip.to_dict() if self.skip else None,
            "args": self.args,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RuleOptionsConfig:
        """Create from dictionary."""
        rule_id = data.get("ruleID", data.get("rule_id"))
        if not rule_id:
            raise ConfigError("rule options entry is missing ruleID")
        skip = data.get("skip")
        return cls(
            rule_id=str(rule_id),
            skip=SkipConfig.from_dict(skip) if skip is not None else None,
            args=data.get("args"),
        )


@dataclass
class RulesetArgs:
    """Arguments shared by all rules of a ruleset."""

    max_retries: int = 1
    ops_pod_image: str = "busybox:1.36"
    ops_pod_namespace: str = "kube-system"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "maxRetries": self.max_retries,
            "opsPodImage": self.ops_pod_image,
            "opsPodNamespace": self.ops_pod_namespace,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RulesetArgs:
        """Create from dictionary."""
        max_retries = int(data.get("maxRetries", data.get("max_retries", 1)))
        if max_retries < 0:
            raise ConfigError(f"maxRetries must not be negative, got {max_retries}")
        return cls(
            max_retries=max_retries,
            ops_pod_image=data.get("opsPodImage", "busybox:1.36"),
            ops_pod_namespace=data.get("opsPodNamespace", "kube-system"),
        )


@dataclass
class RulesetConfig:
    """Configuration of one ruleset revision to run."""

    id: str
    version: str
    args: RulesetArgs = field(default_factory=RulesetArgs)
    rule_options: dict[str, RuleOptionsConfig] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "version": self.version,
            "args": self.args.to_dict(),
            "ruleOptions": [o.to_dict() for o in self.rule_options.values()],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RulesetConfig:
        """Create from dictionary."""
        if "id" not in data or "version" not in data:
            raise ConfigError("ruleset configuration requires id and version")
        rule_options: dict[str, RuleOptionsConfig] = {}
        for entry in data.get("ruleOptions", data.get("rule_options", [])) or []:
            options = RuleOptionsConfig.from_dict(entry)
            if options.rule_id in rule_options:
                raise ConfigError(f"duplicate rule options for rule {options.rule_id}")
            rule_options[options.rule_id] = options
        return cls(
            id=data["id"],
            version=data["version"],
            args=RulesetArgs.from_dict(data.get("args") or {}),
            rule_options=rule_options,
        )


@dataclass
class ProviderConfig:
    """Configuration for the scanned cluster."""

    id: str = "managedk8s"
    name: str = "Managed Kubernetes"
    kubeconfig_path: str | None = None
    context: str | None = None
    in_cluster: bool = False
    additional_ops_pod_labels: dict[str, str] = field(default_factory=dict)
    rulesets: list[RulesetConfig] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "args": {
                "kubeconfigPath": self.kubeconfig_path,
                "context": self.context,
                "inCluster": self.in_cluster,
            },
            "metadata": {"additionalOpsPodLabels": self.additional_ops_pod_labels},
            "rulesets": [r.to_dict() for r in self.rulesets],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProviderConfig:
        """Create from dictionary."""
        args = data.get("args") or {}
        metadata = data.get("metadata") or {}
        return cls(
            id=data.get("id", "managedk8s"),
            name=data.get("name", "Managed Kubernetes"),
            kubeconfig_path=args.get("kubeconfigPath"),
            context=args.get("context"),
            in_cluster=bool(args.get("inCluster", False)),
            additional_ops_pod_labels=dict(metadata.get("additionalOpsPodLabels") or {}),
            rulesets=[RulesetConfig.from_dict(r) for r in data.get("rulesets", [])],
        )


@dataclass
class ScanConfiguration:
    """
    Complete scan configuration.

    This is the main configuration class that contains all settings
    for running kubestig scans.
    """

    provider: ProviderConfig = field(default_factory=ProviderConfig)
    output_path: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)

    def get_ruleset(self, ruleset_id: str) -> RulesetConfig | None:
        """Get the configuration of a ruleset by ID."""
        for ruleset in self.provider.rulesets:
            if ruleset.id == ruleset_id:
                return ruleset
        return None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "provider": self.provider.to_dict(),
            "output": {"path": self.output_path},
            "metadata": self.metadata,
        }

    def to_json(self, indent: int = 2) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict(), indent=indent)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ScanConfiguration:
        """Create from dictionary."""
        if not isinstance(data, dict):
            raise ConfigError("configuration must be a mapping")
        output = data.get("output") or {}
        return cls(
            provider=ProviderConfig.from_dict(data.get("provider") or {}),
            output_path=output.get("path"),
            metadata={str(k): str(v) for k, v in (data.get("metadata") or {}).items()},
        )

    @classmethod
    def from_file(cls, path: str) -> ScanConfiguration:
        """Load configuration from a YAML or JSON file."""
        path = os.path.expanduser(path)
        with open(path, "r", encoding="utf-8") as f:
            if path.endswith(".json"):
                return cls.from_dict(json.load(f))
            return cls.from_dict(yaml.safe_load(f) or {})

    def save(self, path: str) -> None:
        """Save configuration to file."""
        path = os.path.expanduser(path)
        Path(path).parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w", encoding="utf-8") as f:
            if path.endswith(".json"):
                json.dump(self.to_dict(), f, indent=2)
            else:
                yaml.safe_dump(self.to_dict(), f, default_flow_style=False)


def load_config_from_env() -> ScanConfiguration:
    """
    Load configuration from environment variables.

    Environment variables:
        KUBESTIG_CONFIG_FILE: Path to configuration file
        KUBESTIG_KUBECONFIG: Path to the kubeconfig of the scanned cluster
        KUBESTIG_MAX_RETRIES: Maximum rule retries for the default ruleset

    Returns:
        ScanConfiguration instance
    """
    config_file = os.getenv("KUBESTIG_CONFIG_FILE")
    if config_file and os.path.exists(config_file):
        config = ScanConfiguration.from_file(config_file)
    else:
        config = create_default_config()

    kubeconfig = os.getenv("KUBESTIG_KUBECONFIG")
    if kubeconfig:
        config.provider.kubeconfig_path = kubeconfig

    max_retries = os.getenv("KUBESTIG_MAX_RETRIES")
    if max_retries:
        for ruleset in config.provider.rulesets:
            ruleset.args.max_retries = int(max_retries)

    return config


def create_default_config() -> ScanConfiguration:
    """
    Create a default scan configuration.

    Returns:
        ScanConfiguration running the DISA Kubernetes STIG v2r1
    """
    return ScanConfiguration(
        provider=ProviderConfig(
            rulesets=[RulesetConfig(id="disa-kubernetes-stig", version="v2r1")],
        ),
    )
