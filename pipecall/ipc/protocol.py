"""
pipecall Framing Protocol

Every message on the wire is a little-endian ``uint32`` length followed by
exactly that many payload bytes. A request is two messages (operation name,
then argument); a response is one message (the result, or the reserved
``__BAD API__`` marker when the name is not registered).

There is no magic number, version field or checksum: the channel is a
private, single-session link between two processes on one host.
"""

import struct
from dataclasses import dataclass
from typing import Optional, Protocol, Tuple

from pipecall.utils.errors import ProtocolError, TransportError
from pipecall.utils.logging import get_logger

logger = get_logger(__name__)

HEADER = struct.Struct("<I")
HEADER_SIZE = HEADER.size
MAX_MESSAGE_SIZE = 2 ** 32 - 1

# Upper bound for a single read() so huge payloads are pulled in pieces
READ_CHUNK = 1 << 20
ZERO_WRITE_LIMIT = 8

BAD_API = "__BAD API__"
ENCODING = "utf-8"

LENGTH_PHASE = "length read"
PAYLOAD_PHASE = "payload read"
WRITE_PHASE = "write"


class Reader(Protocol):
    def read(self, size: int) -> bytes: ...


class Writer(Protocol):
    def write(self, data: bytes) -> int: ...


def encode_message(payload: bytes) -> bytes:
    """Frame ``payload`` as ``length || payload``."""
    if len(payload) > MAX_MESSAGE_SIZE:
        raise ProtocolError(
            f"Payload of {len(payload)} bytes does not fit a 32-bit length",
            phase=WRITE_PHASE
        )
    return HEADER.pack(len(payload)) + bytes(payload)


def decode_message(data: bytes) -> Tuple[bytes, bytes]:
    """
    Split one framed message off the front of ``data``.

    Returns:
        (payload, rest): the payload and any bytes after the message

    Raises:
        ProtocolError: If ``data`` holds less than one complete message
    """
    if len(data) < HEADER_SIZE:
        raise ProtocolError(
            f"Need {HEADER_SIZE} header bytes, got {len(data)}",
            phase=LENGTH_PHASE
        )
    (length,) = HEADER.unpack_from(data)
    end = HEADER_SIZE + length
    if len(data) < end:
        raise ProtocolError(
            f"Message declares {length} bytes, only {len(data) - HEADER_SIZE} present",
            phase=PAYLOAD_PHASE
        )
    return bytes(data[HEADER_SIZE:end]), bytes(data[end:])


def _read_upto(end: Reader, size: int, phase: str) -> bytes:
    """Read until ``size`` bytes arrive or the stream ends; may return fewer."""
    buffer = bytearray()
    while len(buffer) < size:
        try:
            chunk = end.read(min(size - len(buffer), READ_CHUNK))
        except OSError as e:
            raise TransportError(f"Read failed during {phase}: {e}", phase=phase) from e
        if not chunk:
            break
        buffer += chunk
    return bytes(buffer)


def _write_all(end: Writer, data: bytes):
    view = memoryview(data)
    zero_writes = 0
    while view:
        try:
            written = end.write(view)
        except OSError as e:
            raise TransportError(f"Write failed: {e}", phase=WRITE_PHASE) from e
        if not written:
            zero_writes += 1
            if zero_writes >= ZERO_WRITE_LIMIT:
                raise TransportError(
                    f"Write made no progress after {zero_writes} attempts",
                    phase=WRITE_PHASE,
                    details={'remaining': len(view)}
                )
            continue
        zero_writes = 0
        view = view[written:]


def write_message(end: Writer, payload: bytes):
    """
    Write one framed message, retrying short writes until every byte is out.

    Raises:
        ProtocolError: If the payload is too large to frame
        TransportError: If the underlying write fails or stops making progress
    """
    if len(payload) > MAX_MESSAGE_SIZE:
        raise ProtocolError(
            f"Payload of {len(payload)} bytes does not fit a 32-bit length",
            phase=WRITE_PHASE
        )
    _write_all(end, HEADER.pack(len(payload)))
    _write_all(end, payload)


def read_message(end: Reader, max_size: int = MAX_MESSAGE_SIZE) -> Optional[bytes]:
    """
    Read one framed message.

    Returns ``None`` when the peer closed the stream cleanly, i.e. the first
    read of the length header returned no bytes. A zero-length message is
    returned as ``b""``.

    Raises:
        ProtocolError: If the stream ends inside the header or the payload,
            or the declared length exceeds ``max_size``
        TransportError: If the underlying read fails
    """
    header = _read_upto(end, HEADER_SIZE, LENGTH_PHASE)
    if not header:
        return None
    if len(header) < HEADER_SIZE:
        raise ProtocolError(
            f"Stream closed after {len(header)} of {HEADER_SIZE} header bytes",
            phase=LENGTH_PHASE
        )

    (length,) = HEADER.unpack(header)
    if length > max_size:
        raise ProtocolError(
            f"Declared message length {length} exceeds limit {max_size}",
            phase=LENGTH_PHASE,
            details={'length': length, 'max_size': max_size}
        )

    payload = _read_upto(end, length, PAYLOAD_PHASE)
    if len(payload) < length:
        raise ProtocolError(
            f"Stream closed after {len(payload)} of {length} payload bytes",
            phase=PAYLOAD_PHASE
        )
    return payload


def write_text(end: Writer, text: str):
    write_message(end, text.encode(ENCODING))


def read_text(end: Reader, max_size: int = MAX_MESSAGE_SIZE) -> Optional[str]:
    """Like :func:`read_message`, decoding the payload as UTF-8."""
    payload = read_message(end, max_size)
    if payload is None:
        return None
    try:
        return payload.decode(ENCODING)
    except UnicodeDecodeError as e:
        raise ProtocolError(f"Payload is not valid {ENCODING}: {e}", phase=PAYLOAD_PHASE) from e


@dataclass(frozen=True)
class Request:
    """An operation name plus its single argument."""

    name: str
    argument: str

    def write_to(self, end: Writer):
        write_text(end, self.name)
        write_text(end, self.argument)

    @classmethod
    def read_from(cls, end: Reader, max_size: int = MAX_MESSAGE_SIZE) -> Optional["Request"]:
        """
        Read one request, or ``None`` if the peer closed between requests.

        End-of-stream after the name but before the argument is a protocol
        violation, not a clean close.
        """
        name = read_text(end, max_size)
        if name is None:
            return None
        argument = read_text(end, max_size)
        if argument is None:
            raise ProtocolError(
                f"Stream closed before the argument of request {name!r}",
                phase=LENGTH_PHASE,
                details={'operation': name}
            )
        return cls(name=name, argument=argument)


@dataclass(frozen=True)
class Response:
    """
    A single result string.

    Only ``result`` travels on the wire. ``ok`` is the in-process view of
    whether the result is a real value or the unknown-operation marker.
    """

    result: str
    ok: bool = True

    @classmethod
    def unknown(cls) -> "Response":
        return cls(result=BAD_API, ok=False)

    @classmethod
    def from_result(cls, result: str) -> "Response":
        return cls(result=result, ok=result != BAD_API)

    def write_to(self, end: Writer):
        write_text(end, self.result)

    @classmethod
    def read_from(cls, end: Reader, max_size: int = MAX_MESSAGE_SIZE) -> Optional["Response"]:
        result = read_text(end, max_size)
        if result is None:
            return None
        return cls.from_result(result)
