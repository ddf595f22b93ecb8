"""
pipecall IPC (Inter-Process Communication)

This package provides the pipe transport, the length-prefixed framing
codec, the operation router and the endpoints that tie them together.
"""

from .transport import Channel, ChannelEnd, ChannelPair, HandleSpec
from .protocol import (
    BAD_API,
    MAX_MESSAGE_SIZE,
    Request,
    Response,
    decode_message,
    encode_message,
    read_message,
    write_message,
)
from .router import OperationInfo, OperationTable, operation
from .endpoint import Endpoint, LoopState, call, serve

__all__ = [
    'Channel',
    'ChannelEnd',
    'ChannelPair',
    'HandleSpec',
    'BAD_API',
    'MAX_MESSAGE_SIZE',
    'Request',
    'Response',
    'decode_message',
    'encode_message',
    'read_message',
    'write_message',
    'OperationInfo',
    'OperationTable',
    'operation',
    'Endpoint',
    'LoopState',
    'call',
    'serve',
]
