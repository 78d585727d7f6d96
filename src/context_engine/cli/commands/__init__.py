"""CLI commands, grouped by the engine component they drive."""

from context_engine.cli.commands.budget import estimate_cmd, models_cmd
from context_engine.cli.commands.context import assemble_cmd, break_cmd

__all__ = [
    "assemble_cmd",
    "break_cmd",
    "estimate_cmd",
    "models_cmd",
]
