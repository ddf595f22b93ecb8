"""
End-to-end demonstration of a host serving a worker.

    python -m pipecall.demo host

starts a host that serves ``foo`` and ``bar``, spawns
``python -m pipecall.demo worker`` as its worker, and answers the worker's
calls until it exits.
"""

import argparse
import sys
from typing import List, Optional

from pipecall.core.host import Host
from pipecall.ipc.endpoint import Endpoint
from pipecall.ipc.router import OperationTable
from pipecall.utils.logging import get_logger
from pipecall.worker import run_worker

logger = get_logger(__name__)


def foo(arg: str) -> str:
    return "Foo was called with arg " + arg


def bar(arg: str) -> str:
    return "Bar was called with arg " + arg


def build_operations() -> OperationTable:
    operations = OperationTable()
    operations.register("foo", foo, service="demo")
    operations.register("bar", bar, service="demo")
    return operations.freeze()


def worker_main(endpoint: Endpoint, rounds: int = 10) -> List[str]:
    """Calls made by the demo worker, in order; returns every result."""
    results = [
        endpoint.call("foo", "100"),
        endpoint.call("baz", "x"),
    ]
    for i in range(rounds):
        results.append(endpoint.call("foo", str(i)))
        results.append(endpoint.call("bar", str(i)))

    for result in results:
        logger.info(f"worker received: {result}")
    return results


def _parse_args(argv: Optional[List[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="pipecall host/worker demo")
    parser.add_argument("role", choices=("host", "worker"), help="Which side to run.")
    parser.add_argument("--rounds", type=int, default=10,
                        help="Alternating foo/bar rounds issued by the worker.")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)

    if args.role == "worker":
        return run_worker(lambda endpoint: worker_main(endpoint, rounds=args.rounds))

    with Host(build_operations(), name="demo") as host:
        command = [sys.executable, "-m", "pipecall.demo", "worker", "--rounds", str(args.rounds)]
        code = host.run_or_exit(host.spawn_config("demo-worker", command=command))
        logger.info(f"Host served {host.last_served} requests; worker exit code {code}")
    return 0 if code == 0 else 1


if __name__ == "__main__":
    raise SystemExit(main())
