"""
pipecall Endpoints

An Endpoint is one side's view of a channel pair: the end it reads from
and the end it writes to. The calling side uses ``call()``; the serving
side runs ``serve()`` until the caller closes its write end.

Calls are synchronous and strictly one at a time. Requests carry no
identifier, so the response is correlated by position: a second call must
not start before the previous response has been read.
"""

from enum import Enum
from typing import Optional

from .protocol import BAD_API, MAX_MESSAGE_SIZE, Reader, Request, Response, Writer
from .router import OperationTable
from pipecall.utils.errors import ChannelError, PeerClosed, UnknownOperationError, is_fatal
from pipecall.utils.logging import get_logger

logger = get_logger(__name__)


class LoopState(Enum):
    """Read loop states."""

    SERVING = "serving"
    CLOSED = "closed"


class Endpoint:
    """
    Owner of one reader end and one writer end.

    Closing the endpoint closes both ends; closing the writer is what tells
    the peer's read loop that no more requests are coming.
    """

    def __init__(self, reader: Reader, writer: Writer, name: str = "endpoint",
                 max_message_size: int = MAX_MESSAGE_SIZE):
        self.reader = reader
        self.writer = writer
        self.name = name
        self.max_message_size = max_message_size
        self._in_flight = False
        self._state = LoopState.SERVING
        self.calls_made = 0
        self.requests_served = 0

    @property
    def state(self) -> LoopState:
        return self._state

    @property
    def closed(self) -> bool:
        return self._state == LoopState.CLOSED

    def call(self, name: str, argument: str) -> str:
        """
        Send one request and block until its response arrives.

        Returns:
            The result string, which is ``__BAD API__`` when the peer has no
            operation called ``name``

        Any fatal channel error closes the endpoint before it propagates, so
        later calls fail fast instead of reading from the middle of a frame.

        Raises:
            PeerClosed: If the peer closed its end before responding
            ProtocolError: If the response is malformed
            TransportError: If the underlying read or write fails
            ChannelError: If the endpoint is closed, or a call is already
                outstanding on it
        """
        if self.closed:
            raise ChannelError(f"Endpoint {self.name} is closed")
        if self._in_flight:
            raise ChannelError(
                f"Call to {name!r} issued while another call is outstanding",
                details={'endpoint': self.name}
            )

        self._in_flight = True
        try:
            Request(name=name, argument=argument).write_to(self.writer)
            response = Response.read_from(self.reader, self.max_message_size)
        except Exception as e:
            if is_fatal(e):
                self.close()
            raise
        finally:
            self._in_flight = False

        if response is None:
            self.close()
            raise PeerClosed(
                f"Peer closed the channel before responding to {name!r}",
                details={'endpoint': self.name, 'operation': name}
            )
        self.calls_made += 1
        logger.debug(f"{self.name}: {name}({argument!r}) -> {response.result!r}")
        return response.result

    def call_checked(self, name: str, argument: str) -> str:
        """Like :meth:`call`, raising UnknownOperationError for the marker."""
        result = self.call(name, argument)
        if result == BAD_API:
            raise UnknownOperationError(name)
        return result

    def serve(self, operations: OperationTable) -> int:
        """
        Answer requests until the peer closes its write end.

        Clean end-of-stream at a request boundary ends the loop; both ends
        are closed on every exit path. Framing and transport errors
        propagate: a desynchronized stream cannot be recovered.

        Returns:
            Number of requests served
        """
        if self.closed:
            raise ChannelError(f"Endpoint {self.name} is closed")

        logger.info(f"{self.name}: serving {len(operations)} operations")
        try:
            while True:
                request = Request.read_from(self.reader, self.max_message_size)
                if request is None:
                    break
                result = operations.dispatch(request.name, request.argument)
                Response(result=result).write_to(self.writer)
                self.requests_served += 1
        finally:
            self.close()

        logger.info(f"{self.name}: peer finished after {self.requests_served} requests")
        return self.requests_served

    def close(self):
        if self._state == LoopState.CLOSED:
            return
        self._state = LoopState.CLOSED
        for end in (self.writer, self.reader):
            close = getattr(end, 'close', None)
            if close is not None:
                close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __repr__(self) -> str:
        return f"Endpoint({self.name!r}, state={self._state.value})"


def call(out_end: Writer, in_end: Reader, name: str, argument: str) -> str:
    """One-shot call over raw ends; the ends stay open."""
    Request(name=name, argument=argument).write_to(out_end)
    response = Response.read_from(in_end)
    if response is None:
        raise PeerClosed(
            f"Peer closed the channel before responding to {name!r}",
            details={'operation': name}
        )
    return response.result


def serve(in_end: Reader, out_end: Writer, operations: OperationTable,
          name: Optional[str] = None) -> int:
    """Run the read loop over raw ends, closing them when it finishes."""
    return Endpoint(in_end, out_end, name=name or "serve").serve(operations)
