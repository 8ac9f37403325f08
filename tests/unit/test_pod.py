"""
Unit tests for ops pod lifecycle and command execution.

Tests cover:
- Pod creation with additional labels and readiness polling
- Pod deletion, including pods that are already gone
- Command execution, stderr handling and stream error retries
- ops_pod_session cleanup
- Ops pod specifications
"""

from __future__ import annotations

import json
import time
from unittest.mock import MagicMock, patch

import pytest
import websocket
from kubernetes import client
from kubernetes.client.rest import ApiException
from kubernetes.stream.ws_client import ERROR_CHANNEL, STDOUT_CHANNEL

from kubestig.context import ScanContext
from kubestig.kubernetes import (
    CommandStderrError,
    PodExecError,
    SimplePodContext,
    SimplePodExecutor,
    StreamExecutor,
    is_retryable_stream_error,
    ops_pod_session,
)
from kubestig.kubernetes.opspod import (
    OPS_POD_CONTAINER,
    generate_ops_pod_name,
    new_privileged_pod,
)
from kubestig.kubernetes.remotecommand import STREAM_PROTOCOL_V5
from kubestig.retry import RetryTimeoutError


def not_found(name: str = "kubestig-242393-abc") -> ApiException:
    err = ApiException(status=404, reason="Not Found")
    err.body = json.dumps(
        {"kind": "Status", "status": "Failure", "message": f'pods "{name}" not found'}
    )
    return err


class FakeStream(StreamExecutor):
    """Stream executor replaying prepared (stdout, stderr, error) outcomes."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = 0
        self.stdins: list[str] = []

    def stream(self, ctx, stdin, stdout, stderr):
        self.calls += 1
        self.stdins.append(stdin)
        out, err, exc = self.outcomes[min(self.calls, len(self.outcomes)) - 1]
        stdout.write(out)
        stderr.write(err)
        if exc is not None:
            raise exc


class ShellWSClient:
    """WSClient stand-in for a shell that exits once its stdin script ends."""

    def __init__(self, output: str):
        self.output = output
        self.stdin = ""
        self.sock = MagicMock()
        self._channels: dict[int, str] = {}
        self._open = True

    def is_open(self) -> bool:
        return self._open

    def update(self, timeout: float = 0) -> None:
        if self.stdin.endswith("exit\n") or self.sock.send_binary.called:
            self._channels[STDOUT_CHANNEL] = self.output
            self._channels[ERROR_CHANNEL] = '{"status": "Success"}'
            self._open = False
        else:
            time.sleep(timeout)

    def read_channel(self, channel: int, timeout: float = 0) -> str:
        return self._channels.pop(channel, "")

    def write_stdin(self, data: str) -> None:
        self.stdin += data

    def close(self, **kwargs) -> None:
        self._open = False


def make_executor(api_client, stream: FakeStream, **kwargs) -> SimplePodExecutor:
    kwargs.setdefault("wait_interval", 0.01)
    kwargs.setdefault("wait_timeout", 2)
    return SimplePodExecutor(
        api_client,
        "kubestig-242393-abc",
        "kube-system",
        stream_executor_factory=lambda url: stream,
        **kwargs,
    )


@pytest.fixture
def pod_context(api_client, core_v1) -> SimplePodContext:
    return SimplePodContext(
        api_client,
        additional_pod_labels={"team": "security", "app": "default"},
        wait_interval=0.01,
        wait_timeout=1,
        core_v1=core_v1,
    )


def ops_pod(name: str = "kubestig-242393-abc", labels=None) -> client.V1Pod:
    return new_privileged_pod(name, "kube-system", "busybox:1.36", "node-1", labels)


class TestRetryableStreamErrors:
    """Tests for the default stream error classifier."""

    @pytest.mark.parametrize(
        "message",
        [
            "Timeout occurred",
            "dial tcp 10.0.0.1:10250: operation timed out",
            "read: connection reset by peer",
            "context deadline exceeded\n",
        ],
    )
    def test_transient_errors(self, message):
        """Test known transport failures are retryable."""
        assert is_retryable_stream_error(message)

    def test_other_errors(self):
        """Test other failures are not retryable."""
        assert not is_retryable_stream_error("command terminated with exit code 1")


class TestSimplePodExecutor:
    """Tests for SimplePodExecutor."""

    def test_exec_url(self, api_client):
        """Test the exec URL carries container, command and stream flags."""
        executor = make_executor(api_client, FakeStream())

        url = executor.exec_url("/bin/sh")

        assert url.startswith(
            "https://api.test.local:6443/api/v1/namespaces/kube-system"
            "/pods/kubestig-242393-abc/exec?"
        )
        assert "container=container" in url
        assert "command=%2Fbin%2Fsh" in url
        assert "stdin=true" in url
        assert "tty=false" in url

    def test_returns_stdout(self, ctx, api_client):
        """Test stdout of a clean run is returned."""
        stream = FakeStream(("active\n", "", None))

        output = make_executor(api_client, stream).execute(ctx, "/bin/sh", "echo")

        assert output == "active\n"
        assert stream.stdins == ["echo"]

    def test_stderr_is_severe(self, ctx, api_client):
        """Test stderr output fails the command without retry."""
        stream = FakeStream(("partial", "cat: /x: No such file", None))

        with pytest.raises(CommandStderrError) as exc_info:
            make_executor(api_client, stream).execute(ctx, "/bin/sh", "cat /x")

        assert stream.calls == 1
        message = str(exc_info.value)
        assert "/bin/sh" in message
        assert "cat /x" in message
        assert "cat: /x: No such file" in message

    def test_stderr_with_retryable_stream_error_is_severe(self, ctx, api_client):
        """Test stderr wins over a retryable stream error."""
        stream = FakeStream(("", "oops", RuntimeError("connection reset by peer")))

        with pytest.raises(CommandStderrError) as exc_info:
            make_executor(api_client, stream).execute(ctx, "/bin/sh", "ls")

        assert stream.calls == 1
        assert "connection reset by peer" in str(exc_info.value)

    def test_transient_stream_error_is_retried(self, ctx, api_client):
        """Test retryable stream errors re-run the command with fresh buffers."""
        stream = FakeStream(
            ("garbage", "", RuntimeError("Timeout occurred")),
            ("clean", "", None),
        )

        output = make_executor(api_client, stream).execute(ctx, "/bin/sh", "ls")

        assert stream.calls == 2
        assert output == "clean"

    def test_other_stream_error_is_severe(self, ctx, api_client):
        """Test non retryable stream errors end the command immediately."""
        stream = FakeStream(("", "", RuntimeError("command terminated with exit code 2")))

        with pytest.raises(PodExecError, match="exit code 2") as exc_info:
            make_executor(api_client, stream).execute(ctx, "/bin/sh", "false")

        assert stream.calls == 1
        assert not isinstance(exc_info.value, CommandStderrError)

    def test_persistent_transient_error_times_out(self, ctx, api_client):
        """Test the retry window bounds transient error retries."""
        stream = FakeStream(("", "", RuntimeError("operation timed out")))

        with pytest.raises(RetryTimeoutError, match="operation timed out"):
            make_executor(api_client, stream, wait_timeout=0.1).execute(
                ctx, "/bin/sh", "ls"
            )

        assert stream.calls >= 2

    @patch("kubestig.kubernetes.remotecommand.WSClient")
    def test_command_completes_over_legacy_transport(self, mock_ws, ctx, api_client):
        """Test a shell script finishes over v4 when the v5 upgrade is refused."""
        shell = ShellWSClient("ok\n")

        def connect(configuration, url, headers, **kwargs):
            if headers["sec-websocket-protocol"] == STREAM_PROTOCOL_V5:
                raise websocket.WebSocketBadStatusException(
                    "Handshake status %d %s", 400, "Bad Request"
                )
            return shell

        mock_ws.side_effect = connect
        executor = SimplePodExecutor(
            api_client,
            "kubestig-242393-abc",
            "kube-system",
            wait_interval=0.01,
            wait_timeout=2,
        )

        output = executor.execute(ctx, "/bin/sh", "pidof kubelet || true")

        assert output == "ok\n"
        assert shell.stdin == "pidof kubelet || true\nexit\n"
        assert mock_ws.call_count == 2


class TestSimplePodContext:
    """Tests for SimplePodContext."""

    def test_create_merges_labels_without_overriding(self, ctx, pod_context, core_v1):
        """Test additional labels never override constructor labels."""
        core_v1.read_namespaced_pod.return_value = client.V1Pod(
            status=client.V1PodStatus(phase="Running")
        )

        executor = pod_context.create(ctx, lambda: ops_pod(labels={"app": "kubestig"}))

        created = core_v1.create_namespaced_pod.call_args[0][1]
        assert created.metadata.labels == {"app": "kubestig", "team": "security"}
        assert core_v1.create_namespaced_pod.call_args[0][0] == "kube-system"
        assert executor.name == "kubestig-242393-abc"
        assert executor.namespace == "kube-system"

    def test_create_waits_until_running(self, ctx, pod_context, core_v1):
        """Test creation polls through 404 and Pending until Running."""
        core_v1.read_namespaced_pod.side_effect = [
            not_found(),
            client.V1Pod(status=client.V1PodStatus(phase="Pending")),
            client.V1Pod(status=client.V1PodStatus(phase="Running")),
        ]

        pod_context.create(ctx, ops_pod)

        assert core_v1.read_namespaced_pod.call_count == 3

    def test_create_timeout_reports_not_found(self, ctx, pod_context, core_v1):
        """Test the timeout error carries the API not found message."""
        pod_context.wait_timeout = 0.1
        core_v1.read_namespaced_pod.side_effect = not_found()

        with pytest.raises(RetryTimeoutError) as exc_info:
            pod_context.create(ctx, ops_pod)

        assert 'pods "kubestig-242393-abc" not found' in str(exc_info.value)

    def test_create_timeout_reports_conditions(self, ctx, pod_context, core_v1):
        """Test a pod stuck in Pending reports its conditions."""
        pod_context.wait_timeout = 0.1
        core_v1.read_namespaced_pod.return_value = client.V1Pod(
            status=client.V1PodStatus(
                phase="Pending",
                conditions=[
                    client.V1PodCondition(
                        type="PodScheduled", status="False", reason="Unschedulable"
                    )
                ],
            )
        )

        with pytest.raises(RetryTimeoutError) as exc_info:
            pod_context.create(ctx, ops_pod)

        assert "is not yet Running" in str(exc_info.value)
        assert "Unschedulable" in str(exc_info.value)

    def test_create_server_error_is_severe(self, ctx, pod_context, core_v1):
        """Test errors other than 404 end the wait immediately."""
        core_v1.read_namespaced_pod.side_effect = ApiException(
            status=403, reason="Forbidden"
        )

        with pytest.raises(ApiException):
            pod_context.create(ctx, ops_pod)

        assert core_v1.read_namespaced_pod.call_count == 1

    def test_create_requires_name(self, ctx, pod_context):
        """Test pods without a name are rejected."""
        with pytest.raises(ValueError, match="metadata.name"):
            pod_context.create(ctx, lambda: client.V1Pod(metadata=client.V1ObjectMeta()))

    def test_delete_already_gone(self, ctx, pod_context, core_v1):
        """Test deleting a missing pod succeeds without polling."""
        core_v1.delete_namespaced_pod.side_effect = not_found()

        pod_context.delete(ctx, "kubestig-242393-abc", "kube-system")

        core_v1.read_namespaced_pod.assert_not_called()

    def test_delete_waits_until_gone(self, ctx, pod_context, core_v1):
        """Test deletion polls until the pod is not found."""
        core_v1.read_namespaced_pod.side_effect = [client.V1Pod(), not_found()]

        pod_context.delete(ctx, "kubestig-242393-abc", "kube-system")

        core_v1.delete_namespaced_pod.assert_called_once_with(
            "kubestig-242393-abc", "kube-system"
        )
        assert core_v1.read_namespaced_pod.call_count == 2

    def test_delete_other_error_raises(self, ctx, pod_context, core_v1):
        """Test deletion errors other than 404 propagate."""
        core_v1.delete_namespaced_pod.side_effect = ApiException(status=500, reason="boom")

        with pytest.raises(ApiException):
            pod_context.delete(ctx, "kubestig-242393-abc", "kube-system")


class TestOpsPodSession:
    """Tests for ops_pod_session."""

    def test_deletes_pod_once(self, ctx):
        """Test the pod is deleted exactly once after the block."""
        pod_context = MagicMock()
        pod_context.create.side_effect = lambda c, constructor: (constructor(), "executor")[1]

        with ops_pod_session(pod_context, ctx, ops_pod) as executor:
            assert executor == "executor"

        pod_context.delete.assert_called_once()
        _, name, namespace = pod_context.delete.call_args[0]
        assert (name, namespace) == ("kubestig-242393-abc", "kube-system")

    def test_deletes_pod_when_creation_fails(self, ctx):
        """Test a pod submitted before a failed wait is still deleted."""
        pod_context = MagicMock()

        def create(c, constructor):
            constructor()
            raise RetryTimeoutError()

        pod_context.create.side_effect = create

        with pytest.raises(RetryTimeoutError):
            with ops_pod_session(pod_context, ctx, ops_pod):
                pass

        pod_context.delete.assert_called_once()

    def test_deletes_with_live_context_after_cancel(self, ctx):
        """Test cleanup does not inherit a cancelled scan context."""
        pod_context = MagicMock()
        pod_context.create.side_effect = lambda c, constructor: (constructor(), "executor")[1]

        with ops_pod_session(pod_context, ctx, ops_pod):
            ctx.cancel()

        delete_ctx = pod_context.delete.call_args[0][0]
        assert isinstance(delete_ctx, ScanContext)
        assert not delete_ctx.cancelled

    def test_delete_failure_keeps_block_error(self, ctx):
        """Test a failed cleanup does not replace the error of the block."""
        pod_context = MagicMock()
        pod_context.create.side_effect = lambda c, constructor: (constructor(), "executor")[1]
        pod_context.delete.side_effect = RetryTimeoutError()

        with pytest.raises(CommandStderrError):
            with ops_pod_session(pod_context, ctx, ops_pod):
                raise CommandStderrError("/bin/sh", "ls", "denied")

        pod_context.delete.assert_called_once()

    def test_delete_failure_raises_after_clean_block(self, ctx):
        """Test a failed cleanup is raised when the block succeeded."""
        pod_context = MagicMock()
        pod_context.create.side_effect = lambda c, constructor: (constructor(), "executor")[1]
        pod_context.delete.side_effect = RetryTimeoutError()

        with pytest.raises(RetryTimeoutError):
            with ops_pod_session(pod_context, ctx, ops_pod):
                pass

    def test_no_delete_without_pod(self, ctx):
        """Test nothing is deleted when the constructor never ran."""
        pod_context = MagicMock()
        pod_context.create.side_effect = RuntimeError("api down")

        with pytest.raises(RuntimeError):
            with ops_pod_session(pod_context, ctx, ops_pod):
                pass

        pod_context.delete.assert_not_called()


class TestOpsPod:
    """Tests for ops pod specifications."""

    def test_generate_name(self):
        """Test names carry the prefix, rule ID and a random suffix."""
        name = generate_ops_pod_name("242393")

        assert name.startswith("kubestig-242393-")
        assert len(name) == len("kubestig-242393-") + 10
        assert name != generate_ops_pod_name("242393")

    def test_privileged_pod(self):
        """Test the pod is pinned, privileged and mounts the host root."""
        pod = ops_pod(labels={"kubestig.io/rule": "242393"})

        assert pod.spec.node_name == "node-1"
        assert pod.spec.host_pid is True
        container = pod.spec.containers[0]
        assert container.name == OPS_POD_CONTAINER
        assert container.security_context.privileged is True
        assert container.volume_mounts[0].mount_path == "/host"
        assert pod.spec.volumes[0].host_path.path == "/"
        assert pod.metadata.labels == {"kubestig.io/rule": "242393"}
