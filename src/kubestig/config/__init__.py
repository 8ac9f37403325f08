"""
Configuration management for kubestig.

Provides configuration classes for the scanned cluster, the rulesets
to run and operator rule options.
"""

from kubestig.config.scan_config import (
    ConfigError,
    ProviderConfig,
    RuleOptionsConfig,
    RulesetArgs,
    RulesetConfig,
    ScanConfiguration,
    SkipConfig,
    create_default_config,
    load_config_from_env,
)

__all__ = [
    "ConfigError",
    "ProviderConfig",
    "RuleOptionsConfig",
    "RulesetArgs",
    "RulesetConfig",
    "ScanConfiguration",
    "SkipConfig",
    "create_default_config",
    "load_config_from_env",
]
