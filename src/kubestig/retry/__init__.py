"""
Retry primitives for kubestig.

- until: poll a probe at a fixed interval until it is done or times out
- ok / minor_error / severe_error: probe outcome classifications
"""

from __future__ import annotations

from kubestig.retry.scheduler import (
    Probe,
    ProbeResult,
    RetryTimeoutError,
    minor_error,
    ok,
    severe_error,
    until,
)

__all__ = [
    "Probe",
    "ProbeResult",
    "RetryTimeoutError",
    "minor_error",
    "ok",
    "severe_error",
    "until",
]
