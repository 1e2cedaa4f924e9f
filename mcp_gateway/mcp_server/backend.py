"""
Backend Capability
==================

Interface to the business engine that executes named operations, plus the
in-process ``LocalBackend`` used by default and in tests.
"""

from typing import Any, Callable, Dict, Iterator, List, Optional, Protocol
from contextlib import contextmanager
from contextvars import ContextVar
import importlib

from ..config.logging import get_logger
from ..config.settings import Settings

logger = get_logger(__name__)

Operation = Callable[[Dict[str, Any]], Any]


class OperationNotFoundError(LookupError):
    """Raised when the backend has no operation with the requested name."""

    def __init__(self, operation: str):
        super().__init__(f"Operation not found: {operation}")
        self.operation = operation


class Authorization(Protocol):
    def disable_authz(self) -> bool: ...

    def enable_authz(self) -> None: ...


class Backend(Protocol):
    """Business engine invoked by the tool adapter."""

    authorization: Authorization

    def invoke(self, operation: str, arguments: Dict[str, Any]) -> Any: ...


class ArtifactAuthorization:
    """Per-context switch for artifact authorization checks.

    State lives in a context variable so concurrent requests running on
    different threads or tasks do not see each other's suspension.
    """

    def __init__(self) -> None:
        self._disabled: ContextVar[bool] = ContextVar(f"authz_disabled_{id(self)}", default=False)

    @property
    def is_disabled(self) -> bool:
        return self._disabled.get()

    def disable_authz(self) -> bool:
        """Disable checks and return whether they were already disabled."""
        previous = self._disabled.get()
        self._disabled.set(True)
        return previous

    def enable_authz(self) -> None:
        self._disabled.set(False)


@contextmanager
def authorization_suspended(backend: Backend) -> Iterator[None]:
    """Suspend authorization for the block and restore the previous state."""
    authz = backend.authorization
    already_disabled = authz.disable_authz()
    try:
        yield
    finally:
        if not already_disabled:
            authz.enable_authz()


class LocalBackend:
    """In-process backend with decorator based operation registration."""

    def __init__(self) -> None:
        self.authorization = ArtifactAuthorization()
        self.logger: Any = logger.bind(component="local_backend")
        self._operations: Dict[str, Operation] = {}

    def register(self, name: str, func: Operation) -> Operation:
        if not name:
            raise ValueError("Operation name cannot be empty")
        self._operations[name] = func
        return func

    def operation(self, name: str) -> Callable[[Operation], Operation]:
        """Decorator registering ``func`` under ``name``."""

        def decorator(func: Operation) -> Operation:
            return self.register(name, func)

        return decorator

    def has_operation(self, name: str) -> bool:
        return name in self._operations

    def get_operation_names(self) -> List[str]:
        return sorted(self._operations)

    def invoke(self, operation: str, arguments: Optional[Dict[str, Any]] = None) -> Any:
        func = self._operations.get(operation)
        if func is None:
            raise OperationNotFoundError(operation)
        self.logger.debug("Invoking operation", operation=operation)
        return func(dict(arguments or {}))


def load_backend(factory_path: str, settings: Optional[Settings] = None) -> Backend:
    """Build a backend from a ``package.module:callable`` path.

    When ``settings`` is given it is passed to the factory as the ``settings``
    keyword, so factories used with a configured gateway must accept it.
    """
    module_name, _, attr = factory_path.partition(":")
    module = importlib.import_module(module_name)
    factory = getattr(module, attr)
    backend = factory(settings=settings) if settings is not None else factory()
    logger.info("Backend loaded", factory=factory_path, backend=type(backend).__name__)
    return backend
