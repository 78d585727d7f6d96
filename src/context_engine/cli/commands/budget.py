"""Model profile and token estimation commands."""

from typing import IO, Optional

import click

from context_engine.cli.logging import cli_command
from context_engine.cli.output import emit_engine_error, emit_success
from context_engine.cli.registry import get_context
from context_engine.core.errors import ModelNotFoundError
from context_engine.core.items import ContentType


@click.command("models")
@click.pass_context
@cli_command("models")
def models_cmd(ctx: click.Context) -> None:
    """List registered model profiles and the current selection."""
    try:
        tracker = get_context(ctx).tracker
    except ModelNotFoundError as e:
        emit_engine_error(e)

    models = [profile.to_dict() for profile in tracker.list_models()]
    emit_success(
        {
            "current_model": tracker.current_model_id,
            "models": models,
            "count": len(models),
        }
    )


@click.command("estimate")
@click.argument("source", type=click.File("r", encoding="utf-8"), default="-")
@click.option(
    "--content-type",
    type=click.Choice([ct.value for ct in ContentType]),
    help="Content type to estimate as (detected when omitted)",
)
@click.pass_context
@cli_command("estimate")
def estimate_cmd(ctx: click.Context, source: IO[str], content_type: Optional[str]) -> None:
    """Estimate tokens for a file, or stdin when SOURCE is omitted or '-'.

    Examples:
        context-engine estimate src/app.py
        cat notes.md | context-engine estimate --content-type markdown
    """
    try:
        tracker = get_context(ctx).tracker
    except ModelNotFoundError as e:
        emit_engine_error(e)

    text = source.read()
    detected = tracker.detect_content_type(text)
    effective = ContentType(content_type) if content_type else detected

    emit_success(
        {
            "model_id": tracker.current_model_id,
            "tokens": tracker.estimate_tokens(text, effective),
            "characters": len(text),
            "content_type": effective.value,
            "detected_content_type": detected.value,
        }
    )
