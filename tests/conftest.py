"""
pipecall test configuration and fixtures

This module provides shared test fixtures, configuration,
and utilities for the entire test suite.
"""

import os
import shutil
import sys
import tempfile
from pathlib import Path
from typing import Generator, List

import pytest

from pipecall.ipc.protocol import HEADER
from pipecall.ipc.router import OperationTable
from pipecall.ipc.transport import ChannelPair
from pipecall.utils.config import RuntimeConfig
from pipecall.utils.logging import get_logger

PROJECT_ROOT = Path(__file__).resolve().parent.parent


class ChunkedReader:
    """In-memory reader that hands out at most ``chunk`` bytes per read."""

    def __init__(self, data: bytes, chunk: int = 1):
        self.data = bytearray(data)
        self.chunk = chunk
        self.read_sizes: List[int] = []
        self.closed = False

    def read(self, size: int) -> bytes:
        self.read_sizes.append(size)
        n = min(size, self.chunk)
        out = bytes(self.data[:n])
        del self.data[:n]
        return out

    def close(self):
        self.closed = True


class ShortWriter:
    """In-memory writer that accepts at most ``max_write`` bytes per call."""

    def __init__(self, max_write: int = 1, zero_writes: int = 0):
        self.buffer = bytearray()
        self.max_write = max_write
        self.zero_writes = zero_writes
        self.calls = 0
        self.closed = False

    def write(self, data) -> int:
        self.calls += 1
        if self.zero_writes:
            self.zero_writes -= 1
            return 0
        n = min(len(data), self.max_write)
        self.buffer += bytes(data[:n])
        return n

    def close(self):
        self.closed = True


def frame(*payloads: bytes) -> bytes:
    """Wire bytes for a sequence of messages."""
    return b"".join(HEADER.pack(len(p)) + p for p in payloads)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    temp_dir = Path(tempfile.mkdtemp(prefix="pipecall_test_"))
    try:
        yield temp_dir
    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def channel_pair() -> Generator[ChannelPair, None, None]:
    """A fresh channel pair, fully closed after the test."""
    pair = ChannelPair(name="test")
    try:
        yield pair
    finally:
        pair.close()


@pytest.fixture
def demo_operations() -> OperationTable:
    """The foo/bar operation table used across scenarios."""
    operations = OperationTable()
    operations.register("foo", lambda arg: "Foo was called with arg " + arg)
    operations.register("bar", lambda arg: "Bar was called with arg " + arg)
    return operations


@pytest.fixture
def runtime_config() -> RuntimeConfig:
    """Settings for in-process hosts: errors propagate instead of exiting."""
    return RuntimeConfig(exit_on_fatal=False, wait_timeout=30.0)


@pytest.fixture
def worker_env() -> dict:
    """Environment that lets a command worker import this checkout."""
    path = os.pathsep.join(filter(None, [str(PROJECT_ROOT), os.environ.get("PYTHONPATH")]))
    return {"PYTHONPATH": path}


@pytest.fixture
def python() -> str:
    return sys.executable


@pytest.fixture
def logger():
    """Get a test logger instance."""
    return get_logger("test", level="DEBUG")


@pytest.fixture
def chunked_reader():
    return ChunkedReader


@pytest.fixture
def short_writer():
    return ShortWriter


@pytest.fixture
def framed():
    return frame


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "slow: mark test as slow running")
    config.addinivalue_line("markers", "integration: mark test as integration test")
    config.addinivalue_line("markers", "posix: mark test as needing fork and fd passing")


def pytest_collection_modifyitems(config, items):
    """Add markers based on test location."""
    for item in items:
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
            item.add_marker(pytest.mark.posix)


def pytest_runtest_setup(item):
    """Skip descriptor-passing tests where the platform cannot run them."""
    if item.get_closest_marker("posix") and os.name != "posix":
        pytest.skip("Pipe descriptor hand-off requires POSIX")
