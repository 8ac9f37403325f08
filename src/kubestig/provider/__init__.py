"""Providers connecting kubestig to the scanned cluster."""

from kubestig.provider.managedk8s import ManagedK8sProvider, ProviderError, ProviderResult

__all__ = ["ManagedK8sProvider", "ProviderError", "ProviderResult"]
