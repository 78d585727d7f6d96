"""context-engine command-line interface.

JSON-only output designed for scripts and agent tooling.
"""

from context_engine.cli.config import CLIContext, create_context
from context_engine.cli.logging import (
    CLILogContext,
    cli_command,
    get_request_id,
    set_request_id,
)
from context_engine.cli.main import cli
from context_engine.cli.output import emit, emit_error, emit_success, emit_validation_error
from context_engine.cli.registry import get_context

__all__ = [
    # Entry point
    "cli",
    # Context
    "CLIContext",
    "create_context",
    "get_context",
    # Output
    "emit",
    "emit_error",
    "emit_success",
    "emit_validation_error",
    # Logging
    "CLILogContext",
    "cli_command",
    "get_request_id",
    "set_request_id",
]
