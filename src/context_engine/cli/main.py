"""context-engine CLI entry point.

JSON-only output; every command prints one response-v2 envelope.
"""

from typing import Optional

import click

from context_engine.cli.config import create_context
from context_engine.cli.registry import register_all_commands


@click.group()
@click.option(
    "--config",
    "config_file",
    envvar="CONTEXT_ENGINE_CONFIG_FILE",
    type=click.Path(exists=False, dir_okay=False),
    help="Path to a context-engine TOML config file",
)
@click.option(
    "--model",
    envvar="CONTEXT_ENGINE_DEFAULT_MODEL",
    help="Model id to budget for (must be registered)",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Override the configured log level",
)
@click.pass_context
def cli(
    ctx: click.Context,
    config_file: Optional[str],
    model: Optional[str],
    log_level: Optional[str],
) -> None:
    """context-engine - token budgeting and context compaction for LLM prompts.

    All commands output JSON on stdout; diagnostics go to stderr.
    """
    ctx.ensure_object(dict)
    cli_context = create_context(config_file=config_file, model=model)
    if log_level:
        cli_context.config.logging.level = log_level.upper()
    cli_context.config.setup_logging()
    ctx.obj["cli_context"] = cli_context


register_all_commands(cli)


if __name__ == "__main__":
    cli()
