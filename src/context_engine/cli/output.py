"""JSON output helpers for the context-engine CLI.

The CLI is JSON-first: every command writes one ``response-v2`` envelope,
on stdout for success and on stderr (exit code 1) for failure.
"""

import json
import sys
from dataclasses import asdict
from typing import Any, Mapping, NoReturn, Optional, Sequence, Union

from context_engine.cli.logging import generate_request_id, get_request_id, set_request_id
from context_engine.core.errors import ContextEngineError
from context_engine.core.responses import (
    ErrorCode,
    ErrorType,
    ToolResponse,
    engine_error_response,
    error_response,
    success_response,
    validation_error,
)


def _ensure_request_id() -> str:
    request_id = get_request_id()
    if request_id:
        return request_id
    request_id = generate_request_id()
    set_request_id(request_id)
    return request_id


def emit(data: Any, *, stream: Any = None) -> None:
    """Emit minified JSON to stdout (or ``stream``)."""
    print(json.dumps(data, separators=(",", ":"), default=str), file=stream or sys.stdout)


def _fail(response: ToolResponse) -> NoReturn:
    emit(asdict(response), stream=sys.stderr)
    sys.exit(1)


def emit_error(
    message: str,
    code: Union[ErrorCode, str] = ErrorCode.INTERNAL_ERROR,
    *,
    error_type: Union[ErrorType, str] = ErrorType.INTERNAL,
    remediation: Optional[str] = None,
    details: Optional[Mapping[str, Any]] = None,
) -> NoReturn:
    """Emit an error envelope to stderr and exit with code 1."""
    _fail(
        error_response(
            message,
            error_code=code,
            error_type=error_type,
            remediation=remediation,
            details=details,
            request_id=_ensure_request_id(),
        )
    )


def emit_validation_error(
    message: str,
    *,
    field: Optional[str] = None,
    remediation: Optional[str] = None,
    details: Optional[Mapping[str, Any]] = None,
) -> NoReturn:
    """Emit a VALIDATION_ERROR envelope to stderr and exit with code 1."""
    _fail(
        validation_error(
            message,
            field=field,
            details=details,
            remediation=remediation,
            request_id=_ensure_request_id(),
        )
    )


def emit_engine_error(exc: ContextEngineError) -> NoReturn:
    """Emit the envelope for an engine exception and exit with code 1."""
    _fail(engine_error_response(exc, request_id=_ensure_request_id()))


def emit_success(
    data: Any,
    *,
    warnings: Optional[Sequence[str]] = None,
    telemetry: Optional[Mapping[str, Any]] = None,
    meta: Optional[Mapping[str, Any]] = None,
) -> None:
    """Emit a success envelope to stdout.

    Non-dict payloads are wrapped under a ``result`` key.
    """
    response = success_response(
        data=data if isinstance(data, dict) else {"result": data},
        warnings=warnings,
        telemetry=telemetry,
        meta=meta,
        request_id=_ensure_request_id(),
    )
    emit(asdict(response))
