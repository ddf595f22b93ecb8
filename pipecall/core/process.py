"""
pipecall Worker Process Management

This module spawns worker processes attached to a channel pair and tracks
their lifecycle. Spawning is where channel end ownership changes hands:
the worker receives exactly the two ends it uses, and the host gives them
up right after creation on every path, including failures.
"""

import multiprocessing as mp
import os
import subprocess
import sys
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Sequence, Tuple, Union

import psutil

from pipecall.ipc.endpoint import Endpoint
from pipecall.ipc.protocol import MAX_MESSAGE_SIZE
from pipecall.ipc.transport import ChannelPair
from pipecall.utils.config import DEFAULT_HANDLE_ENV_VAR, HANDLE_VAR_SETTING
from pipecall.utils.errors import ProcessError, describe_failure, handle_exception, is_fatal
from pipecall.utils.logging import get_logger

logger = get_logger(__name__)


class ProcessStatus(Enum):
    """Worker process status."""

    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    FAILED = "failed"


@dataclass
class SpawnConfig:
    """
    How to start one worker.

    Exactly one of ``target`` or ``command`` is set. A ``target`` runs in a
    forked child and is called as ``target(endpoint, *args, **kwargs)``. A
    ``command`` is executed as a new program that finds its two descriptors
    in the ``handle_env_var`` environment variable.
    """

    name: str
    target: Optional[Callable] = None
    command: Optional[Sequence[str]] = None
    args: Tuple[Any, ...] = field(default_factory=tuple)
    kwargs: Dict[str, Any] = field(default_factory=dict)
    env: Optional[Dict[str, str]] = None
    working_directory: Optional[Union[str, Path]] = None
    handle_env_var: str = DEFAULT_HANDLE_ENV_VAR
    max_message_size: int = MAX_MESSAGE_SIZE

    def __post_init__(self):
        """Validate configuration after initialization."""
        if (self.target is None) == (self.command is None):
            raise ProcessError(
                "Exactly one of target or command is required",
                details={'name': self.name}
            )
        if self.target is not None and not callable(self.target):
            raise ProcessError("Worker target must be callable", details={'name': self.name})
        if self.command is not None:
            if isinstance(self.command, str) or not self.command:
                raise ProcessError(
                    "Worker command must be a non-empty argument list",
                    details={'name': self.name, 'command': self.command}
                )
            if self.args or self.kwargs:
                raise ProcessError(
                    "args and kwargs apply to target workers only",
                    details={'name': self.name}
                )

    @property
    def mode(self) -> str:
        return "target" if self.target is not None else "command"


@dataclass
class WorkerProcess:
    """Handle on a spawned worker."""

    config: SpawnConfig
    pid: int
    status: ProcessStatus = ProcessStatus.RUNNING
    started_at: float = field(default_factory=time.time)
    exit_code: Optional[int] = None
    popen: Optional[subprocess.Popen] = None
    process: Optional[Any] = None

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def is_alive(self) -> bool:
        if self.exit_code is not None:
            return False
        if self.popen is not None:
            return self.popen.poll() is None
        return self.process is not None and self.process.is_alive()

    @property
    def uptime(self) -> Optional[float]:
        """Get process uptime in seconds."""
        if self.started_at and self.status == ProcessStatus.RUNNING:
            return time.time() - self.started_at
        return None

    def wait(self, timeout: Optional[float] = None) -> Optional[int]:
        """
        Wait for the worker to exit.

        Returns:
            The exit code (negative for a signal), or None if the worker is
            still running when ``timeout`` expires
        """
        if self.exit_code is not None:
            return self.exit_code

        if self.popen is not None:
            try:
                code = self.popen.wait(timeout=timeout)
            except subprocess.TimeoutExpired:
                return None
        else:
            self.process.join(timeout)
            code = self.process.exitcode
            if code is None:
                return None

        self.exit_code = code
        self.status = ProcessStatus.STOPPED if code == 0 else ProcessStatus.FAILED
        logger.info(f"Worker {self.name} (PID {self.pid}) exited with code {code}")
        return code

    def terminate(self, timeout: float = 5.0) -> bool:
        """Terminate the worker, escalating to kill after ``timeout``."""
        if not self.is_alive:
            self.wait(timeout=0)
            return True

        logger.info(f"Terminating worker {self.name} (PID: {self.pid})")
        self.status = ProcessStatus.STOPPING
        target = self.popen if self.popen is not None else self.process
        target.terminate()
        if self.wait(timeout) is None:
            logger.warning(f"Force killing worker {self.name}")
            target.kill()
            if self.wait(2.0) is None:
                logger.error(f"Failed to kill worker {self.name}")
                return False
        return True

    def describe(self) -> Dict[str, Any]:
        """Snapshot of the worker as seen by the OS."""
        info: Dict[str, Any] = {
            'name': self.name,
            'pid': self.pid,
            'mode': self.config.mode,
            'status': self.status.value,
            'exit_code': self.exit_code,
        }
        try:
            proc = psutil.Process(self.pid)
            with proc.oneshot():
                info['os_status'] = proc.status()
                info['cpu_times'] = proc.cpu_times()._asdict()
                info['memory_rss'] = proc.memory_info().rss
                info['num_fds'] = proc.num_fds() if hasattr(proc, 'num_fds') else None
        except (psutil.NoSuchProcess, psutil.AccessDenied) as e:
            info['os_status'] = None
            logger.debug(f"No OS details for worker {self.name}: {e}")
        return info


def _worker_bootstrap(
    target: Callable,
    args: Tuple[Any, ...],
    kwargs: Dict[str, Any],
    worker_name: str,
    pair: ChannelPair,
    env: Optional[Dict[str, str]],
    working_directory: Optional[Union[str, Path]],
    max_message_size: int,
):
    """
    Runs in the forked child.

    The child inherited all four ends; it keeps only its own two, runs the
    target, then closes its writer so the host sees end-of-stream.
    """
    process_logger = get_logger(f"pipecall.worker.{worker_name}")
    pair.release_host_ends()
    if env:
        os.environ.update(env)
    if working_directory:
        os.chdir(working_directory)

    reader, writer = pair.worker_ends()
    endpoint = Endpoint(reader, writer, name=f"worker.{worker_name}",
                        max_message_size=max_message_size)
    process_logger.info(f"Worker {worker_name} starting")
    try:
        target(endpoint, *args, **kwargs)
        process_logger.info(f"Worker {worker_name} completed successfully")
    except KeyboardInterrupt:
        process_logger.info(f"Worker {worker_name} interrupted")
    except Exception as e:
        if is_fatal(e):
            process_logger.critical(describe_failure(e))
            sys.exit(1)
        process_logger.error(f"Worker {worker_name} failed: {str(e)}", exc_info=True)
        raise
    finally:
        endpoint.close()


class ProcessManager:
    """
    Spawns workers onto channel pairs and tracks them by name.
    """

    def __init__(self):
        self.processes: Dict[str, WorkerProcess] = {}
        logger.debug("ProcessManager initialized")

    @handle_exception
    def spawn_worker(self, config: SpawnConfig, pair: ChannelPair) -> WorkerProcess:
        """
        Start a worker attached to the worker ends of ``pair``.

        The worker ends are released in this process before returning,
        whether or not the spawn succeeded.

        Raises:
            ProcessError: If the platform cannot hand descriptors to a child
                or the process cannot be started
        """
        existing = self.processes.get(config.name)
        if existing is not None and existing.is_alive:
            logger.warning(f"Worker {config.name} already exists, terminating first")
            self.terminate_process(config.name)

        if os.name != 'posix':
            pair.release_worker_ends()
            raise ProcessError(
                "Pipe descriptor hand-off requires a POSIX platform",
                details={'platform': sys.platform}
            )

        logger.info(f"Spawning {config.mode} worker: {config.name}")
        try:
            if config.command is not None:
                worker = self._spawn_command(config, pair)
            else:
                worker = self._spawn_target(config, pair)
        finally:
            pair.release_worker_ends()

        self.processes[config.name] = worker
        logger.info(f"Worker {config.name} started with PID {worker.pid}")
        return worker

    def _spawn_command(self, config: SpawnConfig, pair: ChannelPair) -> WorkerProcess:
        handles = pair.worker_handles()
        env = os.environ.copy()
        if config.env:
            env.update(config.env)
        env[config.handle_env_var] = str(handles)
        if config.handle_env_var != DEFAULT_HANDLE_ENV_VAR:
            env[HANDLE_VAR_SETTING] = config.handle_env_var

        try:
            popen = subprocess.Popen(
                list(config.command),
                pass_fds=(handles.read_fd, handles.write_fd),
                env=env,
                cwd=config.working_directory,
            )
        except (OSError, ValueError) as e:
            raise ProcessError(
                f"Failed to spawn worker {config.name}: {str(e)}",
                details={'worker': config.name, 'command': list(config.command)}
            ) from e

        return WorkerProcess(config=config, pid=popen.pid, popen=popen)

    def _spawn_target(self, config: SpawnConfig, pair: ChannelPair) -> WorkerProcess:
        if 'fork' not in mp.get_all_start_methods():
            raise ProcessError(
                "Target workers need the fork start method",
                details={'worker': config.name, 'platform': sys.platform}
            )

        process = mp.get_context('fork').Process(
            target=_worker_bootstrap,
            args=(config.target, config.args, config.kwargs, config.name, pair,
                  config.env, config.working_directory, config.max_message_size),
            name=f"pipecall-worker-{config.name}",
            daemon=False,
        )
        try:
            process.start()
        except OSError as e:
            raise ProcessError(
                f"Failed to spawn worker {config.name}: {str(e)}",
                details={'worker': config.name}
            ) from e

        return WorkerProcess(config=config, pid=process.pid, process=process)

    def get_process_info(self, name: str) -> Optional[WorkerProcess]:
        return self.processes.get(name)

    def list_processes(self) -> Dict[str, WorkerProcess]:
        return self.processes.copy()

    def is_process_running(self, name: str) -> bool:
        worker = self.processes.get(name)
        return worker is not None and worker.is_alive

    def terminate_process(self, name: str, timeout: float = 5.0) -> bool:
        """
        Terminate a tracked worker and stop tracking it.

        Returns:
            bool: True if the worker is gone
        """
        worker = self.processes.get(name)
        if worker is None:
            logger.warning(f"Worker {name} not found")
            return False

        stopped = worker.terminate(timeout)
        if stopped:
            del self.processes[name]
        return stopped

    def cleanup(self):
        """Terminate every tracked worker."""
        for name in list(self.processes.keys()):
            self.terminate_process(name)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.cleanup()
