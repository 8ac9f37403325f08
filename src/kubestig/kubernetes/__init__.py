"""
Kubernetes integration for kubestig.

- SimplePodContext / SimplePodExecutor: ops pod lifecycle and command execution
- ChannelStreamExecutor / FallbackStreamExecutor: exec stream transports
- utils: API listing and error helpers used by rules
"""

from __future__ import annotations

from kubestig.kubernetes.pod import (
    CommandStderrError,
    PodContext,
    PodExecError,
    PodExecutor,
    SimplePodContext,
    SimplePodExecutor,
    is_retryable_stream_error,
    ops_pod_session,
)
from kubestig.kubernetes.remotecommand import (
    ChannelStreamExecutor,
    ExecStatusError,
    FallbackStreamExecutor,
    StreamError,
    StreamExecutor,
    UpgradeFailureError,
)

__all__ = [
    "ChannelStreamExecutor",
    "CommandStderrError",
    "ExecStatusError",
    "FallbackStreamExecutor",
    "PodContext",
    "PodExecError",
    "PodExecutor",
    "SimplePodContext",
    "SimplePodExecutor",
    "StreamError",
    "StreamExecutor",
    "UpgradeFailureError",
    "is_retryable_stream_error",
    "ops_pod_session",
]
