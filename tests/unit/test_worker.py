"""
Unit tests for the pipecall worker bootstrap

Tests taking over handed-off descriptors and the worker's fatal error policy.
"""

import os

import pytest

from pipecall.ipc.protocol import read_message, read_text, write_text
from pipecall.utils.config import RuntimeConfig
from pipecall.utils.errors import ConfigError, PeerClosed
from pipecall.worker import connect, run_worker


def _hand_off(pair) -> str:
    """Detach the worker ends from the pair, as if they crossed a fork."""
    handles = str(pair.worker_handles())
    for end in pair.worker_ends():
        end.detach()
    return handles


class TestConnect:
    """Test building the worker endpoint from the environment."""

    def test_connect_from_environment(self, channel_pair):
        """The endpoint reads from and writes to the advertised descriptors."""
        environ = {"PIPECALL_HANDLES": _hand_off(channel_pair)}
        host_reader, host_writer = channel_pair.host_ends()

        with connect(RuntimeConfig(), environ=environ) as endpoint:
            write_text(host_writer, "pong")
            assert endpoint.call("ping", "") == "pong"
            assert not os.get_inheritable(endpoint.writer.fileno())

        assert read_text(host_reader) == "ping"
        assert read_text(host_reader) == ""
        assert read_message(host_reader) is None

    def test_custom_variable(self, channel_pair):
        environ = {"OTHER_HANDLES": _hand_off(channel_pair)}
        config = RuntimeConfig(handle_env_var="OTHER_HANDLES")

        endpoint = connect(config, environ=environ)
        endpoint.close()
        assert endpoint.closed

    def test_missing_variable(self):
        """A process not started by a host gets a clear error."""
        with pytest.raises(ConfigError) as exc_info:
            connect(RuntimeConfig(), environ={})
        assert "PIPECALL_HANDLES" in str(exc_info.value)

    def test_descriptor_not_open(self):
        """Handles naming closed descriptors are rejected."""
        read_fd, write_fd = os.pipe()
        os.close(read_fd)
        os.close(write_fd)

        with pytest.raises(ConfigError) as exc_info:
            connect(RuntimeConfig(), environ={"PIPECALL_HANDLES": f"{read_fd},{write_fd}"})
        assert "not open" in str(exc_info.value)


class TestRunWorker:
    """Test the worker entry point."""

    def test_runs_main_and_closes(self, channel_pair, monkeypatch):
        """After main returns, the host sees end-of-stream."""
        monkeypatch.setenv("PIPECALL_HANDLES", _hand_off(channel_pair))
        host_reader, host_writer = channel_pair.host_ends()
        write_text(host_writer, "Foo was called with arg 100")
        results = []

        assert run_worker(lambda ep: results.append(ep.call("foo", "100")), RuntimeConfig()) == 0

        assert results == ["Foo was called with arg 100"]
        assert read_text(host_reader) == "foo"
        assert read_text(host_reader) == "100"
        assert read_message(host_reader) is None

    def test_fatal_error_exits(self, channel_pair, monkeypatch, caplog):
        """A peer that vanishes mid-call ends the worker with status 1."""
        monkeypatch.setenv("PIPECALL_HANDLES", _hand_off(channel_pair))
        channel_pair.host_to_worker.write_end.close()

        with pytest.raises(SystemExit) as exc_info:
            run_worker(lambda ep: ep.call("foo", "1"), RuntimeConfig(exit_on_fatal=True))
        assert exc_info.value.code == 1
        assert "Channel failure" in caplog.text

    def test_fatal_error_propagates_when_configured(self, channel_pair, monkeypatch):
        monkeypatch.setenv("PIPECALL_HANDLES", _hand_off(channel_pair))
        channel_pair.host_to_worker.write_end.close()

        with pytest.raises(PeerClosed):
            run_worker(lambda ep: ep.call("foo", "1"), RuntimeConfig(exit_on_fatal=False))

    def test_missing_handles_exit_code(self, monkeypatch):
        monkeypatch.delenv("PIPECALL_HANDLES", raising=False)

        with pytest.raises(SystemExit) as exc_info:
            run_worker(lambda ep: None, RuntimeConfig())
        assert exc_info.value.code == 2

    def test_other_errors_propagate(self, channel_pair, monkeypatch):
        """Bugs in main are not disguised as channel failures."""
        monkeypatch.setenv("PIPECALL_HANDLES", _hand_off(channel_pair))

        def main(endpoint):
            raise KeyError("oops")

        with pytest.raises(KeyError):
            run_worker(main, RuntimeConfig())
