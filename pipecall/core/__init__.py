"""
Core pipecall modules

This package contains the process-level components of pipecall:
- Worker spawning and lifecycle tracking
- The host that serves an operation table to its workers
"""

from pipecall.core.host import Host
from pipecall.core.process import ProcessManager, ProcessStatus, SpawnConfig, WorkerProcess

__all__ = [
    "Host",
    "ProcessManager",
    "ProcessStatus",
    "SpawnConfig",
    "WorkerProcess",
]
