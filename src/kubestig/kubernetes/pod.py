"""
Helper pod lifecycle and command execution.

SimplePodContext creates a pod, waits until it is Running and hands out
a SimplePodExecutor bound to it. The executor runs commands in the pod
over the exec sub-resource, retrying transient stream failures.
"""

from __future__ import annotations

import io
import json
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Callable, Iterator
from urllib.parse import quote, urlencode

from kubernetes import client
from kubernetes.client.rest import ApiException

from kubestig.context import ContextCancelledError, ScanContext
from kubestig.kubernetes.remotecommand import (
    STREAM_PROTOCOL_V4,
    STREAM_PROTOCOL_V5,
    ChannelStreamExecutor,
    FallbackStreamExecutor,
    StreamExecutor,
    should_fallback,
)
from kubestig.kubernetes.utils import api_error_message
from kubestig.retry import minor_error, ok, severe_error, until

logger = logging.getLogger(__name__)

PodConstructor = Callable[[], client.V1Pod]

RETRYABLE_STREAM_ERROR_SUBSTRINGS = (
    "timeout occurred",
    "operation timed out",
    "connection reset by peer",
    "context deadline exceeded",
)


class PodExecError(Exception):
    """Raised when a command could not be executed in a pod."""


class CommandStderrError(PodExecError):
    """
    Raised when a command wrote to stderr.

    Any stderr output counts as a failure, even if the stream itself
    reported success.
    """

    def __init__(
        self,
        command: str,
        command_arg: str,
        stderr: str,
        stream_error: Exception | None = None,
    ):
        self.command = command
        self.command_arg = command_arg
        self.stderr = stderr
        self.stream_error = stream_error
        message = f"command {command} {command_arg} stderr output: {stderr}"
        if stream_error is not None:
            message = f"err: {stream_error}, {message}"
        super().__init__(message)


def is_retryable_stream_error(message: str) -> bool:
    """
    Default classifier of stream errors.

    Args:
        message: Error text, compared case-insensitively

    Returns:
        True if the error is a known transient transport failure
    """
    message = message.strip().lower()
    return any(s in message for s in RETRYABLE_STREAM_ERROR_SUBSTRINGS)


class PodExecutor(ABC):
    """Executes commands inside one running pod."""

    @abstractmethod
    def execute(self, ctx: ScanContext, command: str, command_arg: str) -> str:
        """
        Run command in the pod, streaming command_arg to its stdin.

        Returns:
            The command's stdout
        """


class PodContext(ABC):
    """Creates and deletes helper pods."""

    @abstractmethod
    def create(self, ctx: ScanContext, pod_constructor: PodConstructor) -> PodExecutor:
        """Create a pod and wait until it is Running."""

    @abstractmethod
    def delete(self, ctx: ScanContext, name: str, namespace: str) -> None:
        """Delete a pod and wait until it is gone."""


class SimplePodExecutor(PodExecutor):
    """
    Executes commands in a pod over the exec sub-resource.

    Attributes:
        wait_interval: Seconds between retries of a command run
        wait_timeout: Seconds a command run may be retried
    """

    def __init__(
        self,
        api_client: client.ApiClient,
        name: str,
        namespace: str,
        container: str = "container",
        wait_interval: float = 3.0,
        wait_timeout: float = 15.0,
        error_classifier: Callable[[str], bool] = is_retryable_stream_error,
        fallback_condition: Callable[[BaseException], bool] = should_fallback,
        stream_executor_factory: Callable[[str], StreamExecutor] | None = None,
    ):
        """
        Initialize the executor.

        Args:
            api_client: Client of the cluster running the pod
            name: Pod name
            namespace: Pod namespace
            container: Container to execute in
            wait_interval: Seconds between retries of a command run
            wait_timeout: Seconds a command run may be retried
            error_classifier: Decides whether a stream error is transient
            fallback_condition: Decides whether to fall back to the legacy transport
            stream_executor_factory: Builds the stream executor for an exec URL
        """
        self._api_client = api_client
        self.name = name
        self.namespace = namespace
        self.container = container
        self.wait_interval = wait_interval
        self.wait_timeout = wait_timeout
        self._error_classifier = error_classifier
        self._fallback_condition = fallback_condition
        self._stream_executor_factory = (
            stream_executor_factory or self._default_stream_executor
        )

    def exec_url(self, command: str) -> str:
        """Build the URL of the exec sub-resource for command."""
        query = urlencode(
            [
                ("container", self.container),
                ("command", command),
                ("stdin", "true"),
                ("stdout", "true"),
                ("stderr", "true"),
                ("tty", "false"),
            ]
        )
        host = self._api_client.configuration.host.rstrip("/")
        return (
            f"{host}/api/v1/namespaces/{quote(self.namespace, safe='')}"
            f"/pods/{quote(self.name, safe='')}/exec?{query}"
        )

    def _default_stream_executor(self, url: str) -> StreamExecutor:
        return FallbackStreamExecutor(
            ChannelStreamExecutor(self._api_client, url, STREAM_PROTOCOL_V5),
            ChannelStreamExecutor(self._api_client, url, STREAM_PROTOCOL_V4),
            self._fallback_condition,
        )

    def execute(self, ctx: ScanContext, command: str, command_arg: str) -> str:
        executor = self._stream_executor_factory(self.exec_url(command))
        output: list[str] = []

        def attempt(attempt_ctx: ScanContext):
            stdout, stderr = io.StringIO(), io.StringIO()
            stream_error: Exception | None = None
            try:
                executor.stream(attempt_ctx, command_arg, stdout, stderr)
            except ContextCancelledError:
                raise
            except Exception as e:
                stream_error = e

            stderr_text = stderr.getvalue()
            if stderr_text:
                return severe_error(
                    CommandStderrError(command, command_arg, stderr_text, stream_error)
                )

            if stream_error is not None:
                err = PodExecError(
                    f"err: {stream_error}, command {command} {command_arg}"
                )
                err.__cause__ = stream_error
                if self._error_classifier(str(stream_error)):
                    return minor_error(err)
                return severe_error(err)

            output.append(stdout.getvalue())
            return ok()

        until(ctx.with_timeout(self.wait_timeout), self.wait_interval, attempt)
        return output[-1]


class SimplePodContext(PodContext):
    """
    Creates pods through the core API and waits for them to converge.

    Attributes:
        additional_pod_labels: Labels added to every created pod unless the
            pod constructor already set the key
        wait_interval: Seconds between pod status polls
        wait_timeout: Seconds to wait for a pod to be Running or deleted
        exec_wait_interval: Seconds between retries of a command run
        exec_wait_timeout: Seconds a command run may be retried
    """

    def __init__(
        self,
        api_client: client.ApiClient,
        additional_pod_labels: dict[str, str] | None = None,
        wait_interval: float = 2.0,
        wait_timeout: float = 60.0,
        exec_wait_interval: float = 3.0,
        exec_wait_timeout: float = 15.0,
        core_v1: client.CoreV1Api | None = None,
    ):
        self._api_client = api_client
        self._core_v1 = core_v1 or client.CoreV1Api(api_client)
        self.additional_pod_labels = dict(additional_pod_labels or {})
        self.wait_interval = wait_interval
        self.wait_timeout = wait_timeout
        self.exec_wait_interval = exec_wait_interval
        self.exec_wait_timeout = exec_wait_timeout

    def create(self, ctx: ScanContext, pod_constructor: PodConstructor) -> SimplePodExecutor:
        pod = pod_constructor()
        if pod.metadata is None or not pod.metadata.name:
            raise ValueError("pod constructor must set metadata.name")

        labels = dict(pod.metadata.labels or {})
        for key, value in self.additional_pod_labels.items():
            labels.setdefault(key, value)
        pod.metadata.labels = labels

        name = pod.metadata.name
        namespace = pod.metadata.namespace or "default"
        pod.metadata.namespace = namespace

        ctx.check()
        self._core_v1.create_namespaced_pod(namespace, pod)
        logger.debug(f"Created pod {namespace}/{name}")

        self._wait_pod_healthy(ctx, name, namespace)

        return SimplePodExecutor(
            self._api_client,
            name,
            namespace,
            wait_interval=self.exec_wait_interval,
            wait_timeout=self.exec_wait_timeout,
        )

    def delete(self, ctx: ScanContext, name: str, namespace: str) -> None:
        ctx.check()
        try:
            self._core_v1.delete_namespaced_pod(name, namespace)
        except ApiException as e:
            if e.status == 404:
                return
            raise

        self._wait_pod_deleted(ctx, name, namespace)
        logger.debug(f"Deleted pod {namespace}/{name}")

    def _wait_pod_healthy(self, ctx: ScanContext, name: str, namespace: str) -> None:
        key = f"{namespace}/{name}"

        def probe(probe_ctx: ScanContext):
            try:
                pod = self._core_v1.read_namespaced_pod(name, namespace)
            except ApiException as e:
                if e.status == 404:
                    return minor_error(PodExecError(api_error_message(e)))
                return severe_error(e)

            if pod.status is not None and pod.status.phase == "Running":
                return ok()

            conditions = pod.status.conditions if pod.status is not None else None
            try:
                serialized = json.dumps(
                    self._api_client.sanitize_for_serialization(conditions)
                )
            except (TypeError, ValueError) as e:
                return minor_error(
                    PodExecError(f"failed parsing pod {key} status conditions: {e}")
                )
            return minor_error(
                PodExecError(f"pod {key} is not yet Running, pod conditions: {serialized}")
            )

        until(ctx.with_timeout(self.wait_timeout), self.wait_interval, probe)

    def _wait_pod_deleted(self, ctx: ScanContext, name: str, namespace: str) -> None:
        key = f"{namespace}/{name}"

        def probe(probe_ctx: ScanContext):
            try:
                self._core_v1.read_namespaced_pod(name, namespace)
            except ApiException as e:
                if e.status == 404:
                    return ok()
                return severe_error(e)
            return minor_error(PodExecError(f"pod {key} is not yet deleted"))

        until(ctx.with_timeout(self.wait_timeout), self.wait_interval, probe)


@contextmanager
def ops_pod_session(
    pod_context: PodContext,
    ctx: ScanContext,
    pod_constructor: PodConstructor,
) -> Iterator[PodExecutor]:
    """
    Create a helper pod for the duration of a with block.

    The pod is deleted exactly once when the block exits, including when
    creation itself failed after the pod was submitted. Deletion runs on
    a fresh context so that a cancelled scan does not leave pods behind.

    Example:
        >>> with ops_pod_session(pod_context, ctx, constructor) as executor:
        ...     output = executor.execute(ctx, "/bin/sh", "uname -r")
    """
    built: list[client.V1Pod] = []

    def constructor() -> client.V1Pod:
        pod = pod_constructor()
        built.append(pod)
        return pod

    body_error: BaseException | None = None
    try:
        yield pod_context.create(ctx, constructor)
    except BaseException as e:
        body_error = e
        raise
    finally:
        pod = built[0] if built else None
        if pod is not None and pod.metadata is not None and pod.metadata.name:
            try:
                pod_context.delete(
                    ScanContext.background(),
                    pod.metadata.name,
                    pod.metadata.namespace or "default",
                )
            except Exception as e:
                # the error of the with block wins over a failed cleanup
                if body_error is None:
                    raise
                logger.error(f"Failed to delete ops pod {pod.metadata.name}: {e}")
