"""Request-scoped logging hooks for CLI commands.

Every command runs inside a ``CLILogContext`` so its log lines and its
response envelope share one request id.
"""

import logging
import time
import uuid
from contextvars import ContextVar
from functools import wraps
from typing import Any, Callable, Optional, TypeVar

__all__ = [
    "CLILogContext",
    "cli_command",
    "generate_request_id",
    "get_request_id",
    "set_request_id",
]

T = TypeVar("T")

logger = logging.getLogger("context_engine.cli")

_request_id: ContextVar[str] = ContextVar("request_id", default="")


def generate_request_id() -> str:
    """Short UUID suitable for log correlation."""
    return f"cli_{uuid.uuid4().hex[:12]}"


def get_request_id() -> str:
    """Get the current request ID, or empty string if not set."""
    return _request_id.get()


def set_request_id(request_id: str) -> None:
    _request_id.set(request_id)


class CLILogContext:
    """Context manager binding a request ID for the duration of a command.

    Example:
        >>> with CLILogContext() as ctx:
        ...     logger.info(f"Processing {ctx.request_id}")
    """

    def __init__(self, request_id: Optional[str] = None):
        self.request_id = request_id or generate_request_id()
        self._token = None

    def __enter__(self) -> "CLILogContext":
        self._token = _request_id.set(self.request_id)
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self._token is not None:
            _request_id.reset(self._token)


def cli_command(
    command_name: Optional[str] = None,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Decorator giving a command a request ID and start/end log lines.

    Example:
        >>> @cli_command("estimate")
        ... def estimate_cmd(path: str):
        ...     ...
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        name = command_name or func.__name__

        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            with CLILogContext() as ctx:
                start = time.perf_counter()
                success = True
                logger.debug(f"CLI command started: {name} ({ctx.request_id})")
                try:
                    return func(*args, **kwargs)
                except SystemExit as e:
                    success = e.code in (0, None)
                    raise
                except Exception:
                    success = False
                    raise
                finally:
                    duration_ms = (time.perf_counter() - start) * 1000
                    logger.debug(
                        f"CLI command completed: {name} ({ctx.request_id}) "
                        f"success={success} duration_ms={duration_ms:.2f}"
                    )

        return wrapper

    return decorator
