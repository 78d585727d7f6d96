"""Command registry for the context-engine CLI."""

import click

from context_engine.cli.config import CLIContext


def get_context(ctx: click.Context) -> CLIContext:
    """Get the CLI context stored on the Click context by the root group."""
    return ctx.obj["cli_context"]


def register_all_commands(cli: click.Group) -> None:
    """Register all commands with the CLI group."""
    from context_engine.cli.commands import (
        assemble_cmd,
        break_cmd,
        estimate_cmd,
        models_cmd,
    )

    cli.add_command(models_cmd)
    cli.add_command(estimate_cmd)
    cli.add_command(assemble_cmd)
    cli.add_command(break_cmd)
