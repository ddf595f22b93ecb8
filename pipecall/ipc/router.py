"""
pipecall Operation Router

This module provides the operation table that maps request names to
handlers, and the dispatcher that turns a request into a response.
"""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Optional

from .protocol import BAD_API, Response
from pipecall.utils.errors import ValidationError
from pipecall.utils.logging import get_logger

logger = get_logger(__name__)

Handler = Callable[[str], str]


@dataclass(frozen=True)
class OperationInfo:
    """Information about a registered operation."""

    name: str
    handler: Handler
    service: str = "default"
    description: Optional[str] = None


def operation(name: Optional[str] = None, description: Optional[str] = None):
    """
    Decorator to mark a method as an operation for ``register_service``.

    Args:
        name: Operation name, defaults to the function name
        description: Operation description, defaults to the docstring
    """
    def decorator(func: Callable) -> Callable:
        func._operation_name = name or func.__name__
        if description:
            func.__doc__ = description
        return func

    return decorator


class OperationTable:
    """
    Registry of named single-argument operations.

    Built once at startup. ``freeze()`` makes it read-only for the rest of
    the session; a Host freezes its table before serving.
    """

    def __init__(self, operations: Optional[Mapping[str, Handler]] = None):
        self._operations: Dict[str, OperationInfo] = {}
        self._frozen = False

        for name, handler in (operations or {}).items():
            self.register(name, handler)

        logger.debug("OperationTable initialized")

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> "OperationTable":
        if not self._frozen:
            self._operations = MappingProxyType(dict(self._operations))
            self._frozen = True
            logger.debug(f"Operation table frozen with {len(self)} operations")
        return self

    def register(self, name: str, handler: Handler, service: str = "default",
                 description: Optional[str] = None) -> OperationInfo:
        """
        Register an individual operation.

        Args:
            name: Operation name, matched exactly
            handler: Callable taking one string and returning one string
            service: Service name the operation belongs to
            description: Operation description

        Raises:
            ValidationError: On a frozen table, a bad name, a duplicate name
                or a non-callable handler
        """
        if self._frozen:
            raise ValidationError(
                f"Cannot register {name!r}: operation table is frozen",
                details={'operation': name}
            )
        if not isinstance(name, str) or not name:
            raise ValidationError(f"Operation name must be a non-empty string, got {name!r}")
        if name == BAD_API:
            raise ValidationError(f"{BAD_API!r} is reserved and cannot name an operation")
        if name in self._operations:
            raise ValidationError(
                f"Operation already registered: {name}",
                details={'operation': name, 'service': self._operations[name].service}
            )
        if not callable(handler):
            raise ValidationError(f"Handler for {name} must be callable")

        info = OperationInfo(
            name=name,
            handler=handler,
            service=service,
            description=description or getattr(handler, '__doc__', None),
        )
        self._operations[name] = info
        logger.debug(f"Registered operation: {name}")
        return info

    def register_service(self, service_obj: Any, prefix: Optional[str] = None,
                         service_name: Optional[str] = None) -> List[str]:
        """
        Register every ``@operation`` method of a service object.

        Args:
            service_obj: Object whose decorated methods become operations
            prefix: Optional name prefix, joined with a dot
            service_name: Service name, defaults to the object's class name

        Returns:
            List of registered operation names
        """
        service_name = service_name or type(service_obj).__name__
        registered = []

        for attr_name in dir(service_obj):
            attr = getattr(service_obj, attr_name)
            op_name = getattr(attr, '_operation_name', None)
            if op_name is None:
                continue
            if prefix:
                op_name = f"{prefix}.{op_name}"
            self.register(op_name, attr, service=service_name)
            registered.append(op_name)

        logger.debug(f"Registered service {service_name}: {registered}")
        return registered

    def get(self, name: str) -> Optional[OperationInfo]:
        return self._operations.get(name)

    def names(self) -> List[str]:
        return sorted(self._operations)

    def __contains__(self, name: object) -> bool:
        return name in self._operations

    def __len__(self) -> int:
        return len(self._operations)

    def dispatch_response(self, name: str, argument: str) -> Response:
        """
        Run the operation registered under ``name``.

        An unknown name is not an error: it yields the ``__BAD API__``
        response and the session carries on. Exceptions raised by the
        handler propagate to the caller.
        """
        info = self._operations.get(name)
        if info is None:
            logger.warning(f"Unknown operation requested: {name!r}")
            return Response.unknown()

        result = info.handler(argument)
        if not isinstance(result, str):
            raise ValidationError(
                f"Operation {name} returned {type(result).__name__}, expected str",
                details={'operation': name}
            )
        if result == BAD_API:
            logger.error(
                f"Operation {name} returned the reserved {BAD_API!r} marker; "
                "the caller will read it as an unknown operation"
            )
        return Response(result=result)

    def dispatch(self, name: str, argument: str) -> str:
        """Wire-level dispatch: the result text or ``__BAD API__``."""
        return self.dispatch_response(name, argument).result

    def __repr__(self) -> str:
        return f"OperationTable(operations={self.names()}, frozen={self._frozen})"
