"""
Utility modules

This package provides common utilities, error handling,
logging and configuration management.
"""

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
from pipecall.utils.logging import configure_logging, get_logger
from pipecall.utils.config import ConfigManager, RuntimeConfig, load_config

__all__ = [
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

    # Utilities
    "get_logger",
    "configure_logging",
    "ConfigManager",
    "RuntimeConfig",
    "load_config",
]
