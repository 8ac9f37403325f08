"""
Observability for kubestig.

Provides structured logging with JSON and human-readable output.
"""

from kubestig.observability.logging import (
    HumanReadableFormatter,
    ScanLogger,
    StructuredFormatter,
    configure_logging,
    configure_logging_from_env,
    get_logger,
)

__all__ = [
    "HumanReadableFormatter",
    "ScanLogger",
    "StructuredFormatter",
    "configure_logging",
    "configure_logging_from_env",
    "get_logger",
]
