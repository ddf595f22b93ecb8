"""
pipecall Pipe Transport Layer

This module wraps anonymous OS pipes in owned channel ends. Each end has
exactly one owner process and explicit, idempotent close semantics; a
ChannelPair bundles the two pipes that give host and worker a full-duplex
link built from unidirectional primitives.
"""

import os
from dataclasses import dataclass
from typing import Optional, Tuple

from pipecall.utils.errors import ChannelError, ConfigError
from pipecall.utils.logging import get_logger

logger = get_logger(__name__)

READ = "r"
WRITE = "w"


class ChannelEnd:
    """One end of a pipe, owned by the current process."""

    def __init__(self, fd: int, mode: str, name: Optional[str] = None):
        if mode not in (READ, WRITE):
            raise ChannelError(f"Invalid channel mode: {mode!r}", details={'fd': fd})
        if fd < 0:
            raise ChannelError(f"Invalid descriptor: {fd}", details={'mode': mode})
        self._fd: Optional[int] = fd
        self.mode = mode
        self.name = name or f"fd{fd}"

    @property
    def closed(self) -> bool:
        return self._fd is None

    @property
    def readable(self) -> bool:
        return self.mode == READ

    @property
    def writable(self) -> bool:
        return self.mode == WRITE

    def fileno(self) -> int:
        if self._fd is None:
            raise ChannelError(f"Channel end {self.name} is closed")
        return self._fd

    def read(self, size: int) -> bytes:
        """Read at most ``size`` bytes; empty bytes means end-of-stream."""
        if not self.readable:
            raise ChannelError(f"Channel end {self.name} is not readable")
        return os.read(self.fileno(), size)

    def write(self, data: bytes) -> int:
        """Write some prefix of ``data`` and return how many bytes were accepted."""
        if not self.writable:
            raise ChannelError(f"Channel end {self.name} is not writable")
        return os.write(self.fileno(), data)

    def detach(self) -> int:
        """Give up ownership without closing; returns the descriptor."""
        fd = self.fileno()
        self._fd = None
        return fd

    def close(self):
        """Release the descriptor. Closing twice is a no-op."""
        if self._fd is None:
            return
        fd, self._fd = self._fd, None
        try:
            os.close(fd)
        except OSError as e:
            logger.warning(f"Error closing channel end {self.name}: {e}")
        else:
            logger.debug(f"Closed channel end {self.name} (fd {fd})")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __repr__(self) -> str:
        state = "closed" if self.closed else f"fd={self._fd}"
        return f"ChannelEnd({self.name!r}, mode={self.mode!r}, {state})"


@dataclass
class Channel:
    """A unidirectional byte stream: one pipe with a read end and a write end."""

    read_end: ChannelEnd
    write_end: ChannelEnd

    @classmethod
    def create(cls, name: str) -> "Channel":
        read_fd, write_fd = os.pipe()
        return cls(
            read_end=ChannelEnd(read_fd, READ, name=f"{name}.r"),
            write_end=ChannelEnd(write_fd, WRITE, name=f"{name}.w"),
        )

    @property
    def closed(self) -> bool:
        return self.read_end.closed and self.write_end.closed

    def close(self):
        self.read_end.close()
        self.write_end.close()


@dataclass(frozen=True)
class HandleSpec:
    """The two numeric descriptors a worker uses, in (reader, writer) order."""

    read_fd: int
    write_fd: int

    def __str__(self) -> str:
        return f"{self.read_fd},{self.write_fd}"

    @classmethod
    def parse(cls, value: str) -> "HandleSpec":
        """
        Parse the ``"<read_fd>,<write_fd>"`` hand-off format.

        Raises:
            ConfigError: If the value is not two non-negative integers
        """
        parts = value.strip().split(',') if value else []
        if len(parts) != 2:
            raise ConfigError(
                f"Malformed channel handles: {value!r}",
                details={'expected': '<read_fd>,<write_fd>'}
            )
        try:
            read_fd, write_fd = (int(part) for part in parts)
        except ValueError as e:
            raise ConfigError(f"Malformed channel handles: {value!r}") from e
        if read_fd < 0 or write_fd < 0 or read_fd == write_fd:
            raise ConfigError(f"Invalid channel handles: {value!r}")
        return cls(read_fd=read_fd, write_fd=write_fd)

    def open(self) -> Tuple[ChannelEnd, ChannelEnd]:
        """Take ownership of the described descriptors."""
        return (
            ChannelEnd(self.read_fd, READ, name="worker.r"),
            ChannelEnd(self.write_fd, WRITE, name="worker.w"),
        )


class ChannelPair:
    """
    Two channels, one per direction, between a host and a worker.

    The creating process owns all four ends. Right after the worker is
    created each side must release the two ends it does not use, or
    end-of-stream is never observed.
    """

    def __init__(self, name: str = "pipecall"):
        self.name = name
        self.host_to_worker = Channel.create(f"{name}.h2w")
        try:
            self.worker_to_host = Channel.create(f"{name}.w2h")
        except OSError:
            self.host_to_worker.close()
            raise
        logger.debug(f"Created channel pair {name}")

    def host_ends(self) -> Tuple[ChannelEnd, ChannelEnd]:
        """Ends the host keeps: (reader, writer)."""
        return self.worker_to_host.read_end, self.host_to_worker.write_end

    def worker_ends(self) -> Tuple[ChannelEnd, ChannelEnd]:
        """Ends the worker keeps: (reader, writer)."""
        return self.host_to_worker.read_end, self.worker_to_host.write_end

    def worker_handles(self) -> HandleSpec:
        reader, writer = self.worker_ends()
        return HandleSpec(read_fd=reader.fileno(), write_fd=writer.fileno())

    def release_worker_ends(self):
        """Called by the host once the worker exists."""
        for end in self.worker_ends():
            end.close()

    def release_host_ends(self):
        """Called by the worker once it is running."""
        for end in self.host_ends():
            end.close()

    @property
    def closed(self) -> bool:
        return self.host_to_worker.closed and self.worker_to_host.closed

    def close(self):
        self.host_to_worker.close()
        self.worker_to_host.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __repr__(self) -> str:
        return f"ChannelPair({self.name!r}, closed={self.closed})"
