"""
pipecall - synchronous RPC between a host process and its worker over pipes

A host spawns a worker with two anonymous pipes, one per direction, and
answers the worker's named single-argument requests from an operation
table. Messages are length-prefixed; one request is in flight at a time.
"""

__version__ = "0.1.0"
__license__ = "MIT"

from pipecall.core.host import Host
from pipecall.core.process import ProcessManager, SpawnConfig, WorkerProcess
from pipecall.ipc.endpoint import Endpoint, LoopState
from pipecall.ipc.protocol import BAD_API, Request, Response
from pipecall.ipc.router import OperationTable, operation
from pipecall.ipc.transport import ChannelEnd, ChannelPair, HandleSpec
from pipecall.worker import connect, run_worker

from pipecall.utils.errors import (
    PipeCallError,
    IPCError,
    ChannelError,
    TransportError,
    ProtocolError,
    PeerClosed,
    UnknownOperationError,
    ProcessError,
    ConfigError,
    ValidationError,
)

__all__ = [
    # Core classes
    "Host",
    "ProcessManager",
    "SpawnConfig",
    "WorkerProcess",

    # IPC
    "Endpoint",
    "LoopState",
    "BAD_API",
    "Request",
    "Response",
    "OperationTable",
    "operation",
    "ChannelEnd",
    "ChannelPair",
    "HandleSpec",

    # Worker side
    "connect",
    "run_worker",

    # Exceptions
    "PipeCallError",
    "IPCError",
    "ChannelError",
    "TransportError",
    "ProtocolError",
    "PeerClosed",
    "UnknownOperationError",
    "ProcessError",
    "ConfigError",
    "ValidationError",

    "__version__",
]
