"""
Stream transports for the pod exec sub-resource.

Two channel protocols are supported over WebSocket:

- v5.channel.k8s.io: bidirectional streaming that can signal the end of
  stdin to the remote command
- v4.channel.k8s.io: legacy multiplexed channels without a way to close
  stdin, so the stdin script is ended with an explicit exit

FallbackStreamExecutor attempts the primary transport and only falls
through to the secondary when the connection upgrade is refused, the way
kubectl exec negotiates with clusters of different versions.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, TextIO

import websocket
import yaml
from kubernetes.client import ApiClient
from kubernetes.stream.ws_client import (
    ERROR_CHANNEL,
    STDERR_CHANNEL,
    STDIN_CHANNEL,
    STDOUT_CHANNEL,
    WSClient,
    get_websocket_url,
)

from kubestig.context import ScanContext

logger = logging.getLogger(__name__)

STREAM_PROTOCOL_V5 = "v5.channel.k8s.io"
STREAM_PROTOCOL_V4 = "v4.channel.k8s.io"

# v5 control channel; a frame [255, channel] closes that channel
CLOSE_CHANNEL = 255

# Commands are shell scripts read from stdin
SHELL_STDIN_TERMINATOR = "\nexit\n"


class StreamError(Exception):
    """Base exception for exec stream failures."""


class UpgradeFailureError(StreamError):
    """Raised when the server refuses the protocol upgrade."""

    def __init__(self, message: str, protocol: str, proxy: bool = False):
        self.protocol = protocol
        self.proxy = proxy
        super().__init__(message)


class ExecStatusError(StreamError):
    """Raised when the error channel reports a non-success status."""

    def __init__(self, message: str, status: dict[str, Any] | None = None):
        self.status = status or {}
        super().__init__(message)


def is_upgrade_failure(err: BaseException) -> bool:
    """Check if err is a refused protocol upgrade."""
    return isinstance(err, UpgradeFailureError) and not err.proxy


def is_https_proxy_error(err: BaseException) -> bool:
    """Check if err stems from a proxy that cannot tunnel the stream."""
    return isinstance(err, UpgradeFailureError) and err.proxy


def should_fallback(err: BaseException) -> bool:
    """Default fallback condition of FallbackStreamExecutor."""
    return is_upgrade_failure(err) or is_https_proxy_error(err)


class StreamExecutor(ABC):
    """Runs one exec stream against a prepared request."""

    @abstractmethod
    def stream(
        self,
        ctx: ScanContext,
        stdin: str,
        stdout: TextIO,
        stderr: TextIO,
    ) -> None:
        """
        Stream stdin to the remote command and collect its output.

        Args:
            ctx: Context bounding the stream
            stdin: Payload written to the command's stdin
            stdout: Sink for the command's stdout
            stderr: Sink for the command's stderr

        Raises:
            StreamError: On transport or command failures
        """


class ChannelStreamExecutor(StreamExecutor):
    """WebSocket exec stream speaking one channel protocol."""

    def __init__(
        self,
        api_client: ApiClient,
        url: str,
        protocol: str = STREAM_PROTOCOL_V5,
        poll_interval: float = 1.0,
        stdin_terminator: str = SHELL_STDIN_TERMINATOR,
    ):
        """
        Initialize the executor.

        Args:
            api_client: Client providing host, TLS and credentials
            url: Full URL of the exec sub-resource including its query
            protocol: WebSocket sub-protocol to request
            poll_interval: Maximum seconds to block on a single read
            stdin_terminator: Appended to stdin on protocols that cannot
                close it, so that the remote command exits on its own
        """
        self._api_client = api_client
        self._url = url
        self._protocol = protocol
        self._poll_interval = poll_interval
        self._stdin_terminator = stdin_terminator

    @property
    def protocol(self) -> str:
        return self._protocol

    def _headers(self) -> dict[str, str]:
        headers = {"sec-websocket-protocol": self._protocol}
        token = self._api_client.configuration.get_api_key_with_prefix("authorization")
        if token:
            headers["authorization"] = token
        return headers

    def _connect(self) -> WSClient:
        try:
            return WSClient(
                self._api_client.configuration,
                get_websocket_url(self._url),
                self._headers(),
                capture_all=False,
            )
        except websocket.WebSocketProxyException as e:
            raise UpgradeFailureError(
                f"proxy does not support {self._protocol} streams: {e}",
                self._protocol,
                proxy=True,
            ) from e
        except websocket.WebSocketBadStatusException as e:
            raise UpgradeFailureError(
                f"unable to upgrade connection to {self._protocol}: {e}",
                self._protocol,
            ) from e

    def stream(
        self,
        ctx: ScanContext,
        stdin: str,
        stdout: TextIO,
        stderr: TextIO,
    ) -> None:
        ctx.check()
        client = self._connect()
        try:
            if self._protocol == STREAM_PROTOCOL_V5:
                if stdin:
                    client.write_stdin(stdin)
                client.sock.send_binary(bytes([CLOSE_CHANNEL, STDIN_CHANNEL]))
            else:
                # v4 cannot close stdin, the shell has to end the session itself
                client.write_stdin(stdin + self._stdin_terminator)

            while client.is_open():
                ctx.check()
                timeout = self._poll_interval
                remaining = ctx.remaining()
                if remaining is not None:
                    timeout = min(timeout, remaining)
                client.update(timeout=timeout)
                self._drain(client, stdout, stderr)

            self._drain(client, stdout, stderr)
            status = client.read_channel(ERROR_CHANNEL)
        finally:
            client.close()

        self._check_status(status)

    @staticmethod
    def _drain(client: WSClient, stdout: TextIO, stderr: TextIO) -> None:
        stdout.write(client.read_channel(STDOUT_CHANNEL))
        stderr.write(client.read_channel(STDERR_CHANNEL))

    @staticmethod
    def _check_status(raw_status: str) -> None:
        if not raw_status:
            return
        status = yaml.safe_load(raw_status)
        if not isinstance(status, dict) or status.get("status") == "Success":
            return
        raise ExecStatusError(status.get("message") or raw_status, status)


class FallbackStreamExecutor(StreamExecutor):
    """Executor trying a primary transport before a secondary one."""

    def __init__(
        self,
        primary: StreamExecutor,
        secondary: StreamExecutor,
        should_fallback: Callable[[BaseException], bool] = should_fallback,
    ):
        """
        Initialize the executor.

        Args:
            primary: Transport attempted first
            secondary: Transport used when the primary cannot be negotiated
            should_fallback: Decides whether a primary failure falls through
        """
        self._primary = primary
        self._secondary = secondary
        self._should_fallback = should_fallback

    def stream(
        self,
        ctx: ScanContext,
        stdin: str,
        stdout: TextIO,
        stderr: TextIO,
    ) -> None:
        try:
            self._primary.stream(ctx, stdin, stdout, stderr)
        except Exception as e:
            if not self._should_fallback(e):
                raise
            logger.debug(f"Primary exec transport unavailable, falling back: {e}")
            self._secondary.stream(ctx, stdin, stdout, stderr)
