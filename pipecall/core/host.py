"""
pipecall Host

This module provides the Host class: it owns the operation table, creates
the channel pair for each worker session, spawns the worker and serves its
requests until the worker closes its side.
"""

import sys
from typing import Any, Callable, Mapping, Optional, Sequence, Tuple, Union

from pipecall.core.process import ProcessManager, SpawnConfig, WorkerProcess
from pipecall.ipc.endpoint import Endpoint
from pipecall.ipc.router import Handler, OperationTable
from pipecall.ipc.transport import ChannelPair
from pipecall.utils.config import RuntimeConfig, load_config
from pipecall.utils.errors import describe_failure, handle_exception, is_fatal
from pipecall.utils.logging import configure_logging, get_logger

logger = get_logger(__name__)

# Grace period for a worker to exit on its own after the host side failed
FAILURE_GRACE_SECONDS = 1.0


class Host:
    """
    Serves one operation table to worker processes.

    Each session is synchronous: ``run()`` returns only after the worker
    has closed its write end and exited.
    """

    def __init__(
        self,
        operations: Union[OperationTable, Mapping[str, Handler]],
        config: Optional[RuntimeConfig] = None,
        name: str = "host",
    ):
        """
        Initialize a host.

        Args:
            operations: Operation table, or a mapping of name to handler
            config: Runtime settings, loaded from the environment if omitted
            name: Name used in logs
        """
        if not isinstance(operations, OperationTable):
            operations = OperationTable(operations)
        self.operations = operations.freeze()
        self.config = config or load_config()
        configure_logging(self.config)
        self.name = name
        self.process_manager = ProcessManager()
        self.last_served: Optional[int] = None

        logger.info(f"Host '{name}' initialized with operations {self.operations.names()}")

    def spawn_config(
        self,
        name: str = "worker",
        target: Optional[Callable] = None,
        command: Optional[Sequence[str]] = None,
        **kwargs: Any,
    ) -> SpawnConfig:
        """Build a SpawnConfig that uses this host's handle variable and size limit."""
        kwargs.setdefault('handle_env_var', self.config.handle_env_var)
        kwargs.setdefault('max_message_size', self.config.max_message_size)
        return SpawnConfig(name=name, target=target, command=command, **kwargs)

    @handle_exception
    def open_session(self, spawn_config: SpawnConfig) -> Tuple[Endpoint, WorkerProcess]:
        """
        Create a channel pair and start a worker on it.

        The returned endpoint owns the host's two ends. Use it to ``serve()``
        worker requests, or to ``call()`` a worker that serves.
        """
        pair = ChannelPair(name=f"{self.name}.{spawn_config.name}")
        try:
            worker = self.process_manager.spawn_worker(spawn_config, pair)
        except BaseException:
            pair.close()
            raise

        reader, writer = pair.host_ends()
        endpoint = Endpoint(
            reader,
            writer,
            name=f"{self.name}.{spawn_config.name}",
            max_message_size=self.config.max_message_size,
        )
        return endpoint, worker

    def run(self, spawn_config: SpawnConfig) -> Optional[int]:
        """
        Run one worker session to completion.

        Returns:
            The worker's exit code, or None if it is still running after
            ``config.wait_timeout``

        Raises:
            TransportError, ProtocolError: If the stream fails; the worker
                is stopped before the error propagates
        """
        endpoint, worker = self.open_session(spawn_config)
        try:
            self.last_served = endpoint.serve(self.operations)
        except BaseException:
            if worker.wait(FAILURE_GRACE_SECONDS) is None:
                worker.terminate()
            raise

        return worker.wait(self.config.wait_timeout)

    def run_target(self, target: Callable, *args: Any, name: str = "worker",
                   **kwargs: Any) -> Optional[int]:
        """Run ``target(endpoint, *args, **kwargs)`` in a forked worker."""
        return self.run(self.spawn_config(name, target=target, args=args, kwargs=kwargs))

    def run_command(self, command: Sequence[str], name: str = "worker",
                    **kwargs: Any) -> Optional[int]:
        """Run ``command`` as a worker program."""
        return self.run(self.spawn_config(name, command=command, **kwargs))

    def run_or_exit(self, spawn_config: SpawnConfig) -> Optional[int]:
        """
        Like ``run()``, but a broken channel ends this process.

        A diagnostic naming the failed phase is logged first. When
        ``config.exit_on_fatal`` is false the error propagates instead.
        """
        try:
            return self.run(spawn_config)
        except Exception as e:
            if not is_fatal(e):
                raise
            logger.critical(describe_failure(e))
            if self.config.exit_on_fatal:
                sys.exit(1)
            raise

    def cleanup(self):
        self.process_manager.cleanup()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.cleanup()

    def __repr__(self) -> str:
        return f"Host(name='{self.name}', operations={len(self.operations)})"
