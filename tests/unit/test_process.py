"""
Unit tests for pipecall process management

Tests SpawnConfig validation, WorkerProcess bookkeeping and spawning
workers in both target and command mode.
"""

import os
import subprocess
import sys
import time
from unittest.mock import MagicMock, patch

import pytest

from pipecall.core.process import (
    ProcessManager,
    ProcessStatus,
    SpawnConfig,
    WorkerProcess,
)
from pipecall.ipc.protocol import read_text, write_text
from pipecall.ipc.transport import ChannelPair
from pipecall.utils.errors import ProcessError


def _echo_once(endpoint, expected):
    """Worker target: one call, exit code 3 on a wrong answer."""
    if endpoint.call("echo", "hi") != expected:
        sys.exit(3)


def _idle(endpoint):
    time.sleep(30)


class TestSpawnConfig:
    """Test SpawnConfig data class."""

    def test_target_config(self):
        """Target workers take args and kwargs."""
        config = SpawnConfig(name="w", target=_echo_once, args=("hi",))

        assert config.mode == "target"
        assert config.args == ("hi",)
        assert config.handle_env_var == "PIPECALL_HANDLES"

    def test_command_config(self):
        config = SpawnConfig(name="w", command=[sys.executable, "-c", "pass"])
        assert config.mode == "command"

    def test_requires_exactly_one_entry_point(self):
        """Neither, or both, of target and command is an error."""
        with pytest.raises(ProcessError) as exc_info:
            SpawnConfig(name="worker")
        assert "Exactly one" in str(exc_info.value)

        with pytest.raises(ProcessError):
            SpawnConfig(name="worker", target=_idle, command=["true"])

    def test_command_must_be_a_list(self):
        """A shell string or an empty list is refused."""
        with pytest.raises(ProcessError):
            SpawnConfig(name="w", command="python worker.py")
        with pytest.raises(ProcessError):
            SpawnConfig(name="w", command=[])

    def test_command_rejects_args(self):
        with pytest.raises(ProcessError):
            SpawnConfig(name="w", command=["true"], args=(1,))

    def test_target_must_be_callable(self):
        with pytest.raises(ProcessError):
            SpawnConfig(name="w", target="not-callable")


class TestWorkerProcess:
    """Test WorkerProcess bookkeeping with a mocked child."""

    def _worker(self, popen):
        config = SpawnConfig(name="mock", command=["true"])
        return WorkerProcess(config=config, pid=12345, popen=popen)

    def test_wait_records_exit_code(self):
        """A zero exit marks the worker stopped."""
        popen = MagicMock()
        popen.wait.return_value = 0
        worker = self._worker(popen)

        assert worker.wait() == 0
        assert worker.status == ProcessStatus.STOPPED
        assert worker.is_alive is False
        assert worker.uptime is None

    def test_wait_nonzero_is_failure(self):
        popen = MagicMock()
        popen.wait.return_value = 1
        worker = self._worker(popen)

        assert worker.wait() == 1
        assert worker.status == ProcessStatus.FAILED

    def test_wait_timeout(self):
        """A timeout returns None and leaves the worker running."""
        popen = MagicMock()
        popen.wait.side_effect = subprocess.TimeoutExpired(cmd="true", timeout=0.1)
        popen.poll.return_value = None
        worker = self._worker(popen)

        assert worker.wait(timeout=0.1) is None
        assert worker.status == ProcessStatus.RUNNING
        assert worker.is_alive
        assert worker.uptime >= 0

    def test_describe_vanished_process(self):
        """describe() still reports bookkeeping when the OS has no such process."""
        import psutil

        worker = self._worker(MagicMock())
        with patch("pipecall.core.process.psutil.Process", side_effect=psutil.NoSuchProcess(12345)):
            info = worker.describe()

        assert info["pid"] == 12345
        assert info["mode"] == "command"
        assert info["os_status"] is None


@pytest.mark.skipif(os.name != "posix", reason="Pipe descriptor hand-off requires POSIX")
class TestProcessManager:
    """Test spawning real workers onto a channel pair."""

    def setup_method(self):
        """Set up test fixtures."""
        self.manager = ProcessManager()
        self.pair = ChannelPair(name="spawn-test")

    def teardown_method(self):
        """Clean up after tests."""
        self.manager.cleanup()
        self.pair.close()

    def test_spawn_target_worker(self):
        """A forked target gets a working endpoint; the host keeps only its ends."""
        worker = self.manager.spawn_worker(
            SpawnConfig(name="echo", target=_echo_once, args=("hi back",)), self.pair
        )
        assert all(end.closed for end in self.pair.worker_ends())

        host_reader, host_writer = self.pair.host_ends()
        assert read_text(host_reader) == "echo"
        assert read_text(host_reader) == "hi"
        write_text(host_writer, "hi back")

        assert read_text(host_reader) is None
        assert worker.wait(timeout=30) == 0
        assert worker.status == ProcessStatus.STOPPED

    def test_target_worker_exit_code_reported(self):
        """A wrong answer makes the test target exit with code 3."""
        worker = self.manager.spawn_worker(
            SpawnConfig(name="echo", target=_echo_once, args=("expected",)), self.pair
        )
        host_reader, host_writer = self.pair.host_ends()
        read_text(host_reader)
        read_text(host_reader)
        write_text(host_writer, "something else")

        assert worker.wait(timeout=30) == 3
        assert worker.status == ProcessStatus.FAILED

    def test_spawn_command_worker(self, worker_env):
        """A command worker finds its descriptors in the environment."""
        script = (
            "import os\n"
            "r, w = (int(fd) for fd in os.environ['PIPECALL_HANDLES'].split(','))\n"
            "os.write(w, os.read(r, 5)[::-1])\n"
        )
        worker = self.manager.spawn_worker(
            SpawnConfig(name="rev", command=[sys.executable, "-c", script], env=worker_env),
            self.pair,
        )
        assert all(end.closed for end in self.pair.worker_ends())

        host_reader, host_writer = self.pair.host_ends()
        host_writer.write(b"hello")
        assert host_reader.read(5) == b"olleh"
        assert host_reader.read(1) == b""
        assert worker.wait(timeout=30) == 0

    def test_custom_handle_variable(self):
        """A non-default variable name is advertised to the worker."""
        script = (
            "import os\n"
            "name = os.environ['PIPECALL_HANDLE_ENV_VAR']\n"
            "r, w = (int(fd) for fd in os.environ[name].split(','))\n"
            "os.write(w, name.encode())\n"
        )
        worker = self.manager.spawn_worker(
            SpawnConfig(name="var", command=[sys.executable, "-c", script],
                        handle_env_var="MY_HANDLES"),
            self.pair,
        )
        host_reader, _ = self.pair.host_ends()
        assert host_reader.read(64) == b"MY_HANDLES"
        assert worker.wait(timeout=30) == 0

    def test_failed_spawn_still_releases_worker_ends(self):
        """The host never keeps the worker's ends, even when exec fails."""
        with pytest.raises(ProcessError):
            self.manager.spawn_worker(
                SpawnConfig(name="missing", command=["/nonexistent/pipecall-worker"]),
                self.pair,
            )
        assert all(end.closed for end in self.pair.worker_ends())
        assert "missing" not in self.manager.list_processes()

    def test_describe_running_worker(self):
        """psutil reports on a live worker."""
        worker = self.manager.spawn_worker(SpawnConfig(name="idle", target=_idle), self.pair)

        info = worker.describe()
        assert info["pid"] == worker.pid
        assert info["os_status"] is not None
        assert info["memory_rss"] > 0

    def test_terminate_process(self):
        """Terminating a tracked worker stops and forgets it."""
        worker = self.manager.spawn_worker(SpawnConfig(name="idle", target=_idle), self.pair)

        assert self.manager.terminate_process("idle", timeout=5.0) is True
        assert not worker.is_alive
        assert self.manager.get_process_info("idle") is None

    def test_terminate_unknown_process(self):
        assert self.manager.terminate_process("nobody") is False
