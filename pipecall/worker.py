"""
pipecall worker bootstrap

Entry points for a worker started as a separate program. The host passes
the two descriptors the worker owns as ``"<read_fd>,<write_fd>"`` in an
environment variable (``PIPECALL_HANDLES`` unless configured otherwise).

    from pipecall.worker import run_worker

    def main(endpoint):
        print(endpoint.call("foo", "100"))

    if __name__ == "__main__":
        run_worker(main)
"""

import os
import sys
from typing import Callable, Mapping, Optional

from pipecall.ipc.endpoint import Endpoint
from pipecall.ipc.transport import HandleSpec
from pipecall.utils.config import RuntimeConfig, load_config
from pipecall.utils.errors import ConfigError, describe_failure, is_fatal
from pipecall.utils.logging import configure_logging, get_logger

logger = get_logger(__name__)


def connect(
    config: Optional[RuntimeConfig] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Endpoint:
    """
    Take ownership of the descriptors the host handed over.

    Raises:
        ConfigError: If the handle variable is missing, malformed, or names
            descriptors that are not open in this process
    """
    config = config or load_config(environ=environ)
    environ = os.environ if environ is None else environ

    value = environ.get(config.handle_env_var)
    if not value:
        raise ConfigError(
            f"No channel handles in ${config.handle_env_var}; "
            "was this process started by a pipecall host?",
            details={'env_var': config.handle_env_var}
        )

    spec = HandleSpec.parse(value)
    for fd in (spec.read_fd, spec.write_fd):
        try:
            os.fstat(fd)
        except OSError as e:
            raise ConfigError(
                f"Channel descriptor {fd} is not open in this process",
                details={'env_var': config.handle_env_var, 'value': value}
            ) from e
        # Keep the descriptors out of anything this worker spawns
        os.set_inheritable(fd, False)

    reader, writer = spec.open()
    logger.debug(f"Worker connected on descriptors {spec}")
    return Endpoint(reader, writer, name="worker", max_message_size=config.max_message_size)


def run_worker(main: Callable[[Endpoint], None], config: Optional[RuntimeConfig] = None) -> int:
    """
    Connect, run ``main(endpoint)``, and close the endpoint.

    Closing the endpoint closes the worker's write end, which is how the
    host learns the session is over. Transport and protocol failures are
    fatal: a diagnostic naming the failed phase is logged and the process
    exits with status 1 when ``config.exit_on_fatal`` is set.
    """
    config = config or load_config()
    configure_logging(config)
    try:
        endpoint = connect(config)
    except ConfigError as e:
        logger.critical(f"Worker cannot start: {e}")
        if config.exit_on_fatal:
            sys.exit(2)
        raise

    try:
        with endpoint:
            main(endpoint)
    except Exception as e:
        if is_fatal(e):
            logger.critical(describe_failure(e))
            if config.exit_on_fatal:
                sys.exit(1)
        raise

    logger.info(f"Worker finished after {endpoint.calls_made} calls")
    return 0
