"""Shared request parsing for commands that read a JSON document."""

import json
from typing import Any, IO, Type, TypeVar

from pydantic import BaseModel, ValidationError

from context_engine.cli.output import emit_error, emit_validation_error
from context_engine.core.responses import ErrorCode, ErrorType

M = TypeVar("M", bound=BaseModel)


def read_request(stream: IO[str], model: Type[M]) -> M:
    """Parse ``stream`` as JSON and validate it against ``model``.

    Emits a VALIDATION_ERROR/INVALID_FORMAT envelope and exits on failure.
    """
    name = getattr(stream, "name", "<input>")
    try:
        payload: Any = json.load(stream)
    except json.JSONDecodeError as e:
        emit_error(
            f"Input is not valid JSON: {e.msg} (line {e.lineno}, column {e.colno})",
            code=ErrorCode.INVALID_FORMAT,
            error_type=ErrorType.VALIDATION,
            remediation="Pass a JSON object; use '-' to read from stdin",
            details={"input": name},
        )

    try:
        return model.model_validate(payload)
    except ValidationError as e:
        emit_validation_error(
            f"Input does not match the {model.__name__} schema",
            remediation="Fix the listed fields and retry",
            details={
                "input": name,
                "errors": [
                    {"loc": ".".join(str(p) for p in err["loc"]), "msg": err["msg"]}
                    for err in e.errors()
                ],
            },
        )
