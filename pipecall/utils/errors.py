"""
pipecall exception classes

This module defines all custom exceptions used throughout pipecall,
providing clear error messages and a single exception hierarchy.
"""

import functools
from typing import Optional


class PipeCallError(Exception):
    """Base exception for all pipecall errors"""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class IPCError(PipeCallError):
    """Errors related to inter-process communication"""
    pass


class ChannelError(IPCError):
    """Misuse of a channel end (closed, wrong direction, bad descriptor)"""
    pass


class PhaseError(IPCError):
    """IPC error raised while a specific codec phase was in progress"""

    def __init__(self, message: str, phase: str, details: Optional[dict] = None):
        details = dict(details or {})
        details.setdefault('phase', phase)
        super().__init__(message, details=details)
        self.phase = phase


class TransportError(PhaseError):
    """The underlying read or write primitive failed"""
    pass


class ProtocolError(PhaseError):
    """End-of-stream or malformed data in the middle of a message"""
    pass


class PeerClosed(IPCError):
    """The peer closed its end before sending the expected response"""
    pass


class UnknownOperationError(IPCError):
    """The peer reported that no operation is registered under a name"""

    def __init__(self, name: str):
        super().__init__(f"Unknown operation: {name}", details={'operation': name})
        self.name = name


class ProcessError(PipeCallError):
    """Errors related to worker process management"""
    pass


class ConfigError(PipeCallError):
    """Errors related to configuration management"""
    pass


class ValidationError(PipeCallError):
    """Errors related to input validation"""
    pass


def is_fatal(error: BaseException) -> bool:
    """Transport and protocol errors leave the stream unusable."""
    return isinstance(error, (TransportError, ProtocolError, PeerClosed))


def describe_failure(error: BaseException) -> str:
    """One-line diagnostic naming the codec phase that failed, when known."""
    phase = getattr(error, "phase", None)
    if phase:
        return f"Channel failure during {phase}: {error}"
    return f"Channel failure: {error}"


def handle_exception(func):
    """
    Decorator to handle exceptions and convert them to pipecall exceptions
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except PipeCallError:
            # Re-raise pipecall exceptions as-is
            raise
        except Exception as e:
            raise PipeCallError(
                f"Unexpected error in {func.__name__}: {str(e)}",
                details={'original_exception': type(e).__name__}
            ) from e
    return wrapper
