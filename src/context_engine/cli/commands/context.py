"""Prompt assembly and context breaking commands.

Both commands read one JSON request document (a path, or '-' for stdin)
and print the engine's result under ``data``.
"""

from datetime import datetime
from typing import IO, Any, Optional

import click
from pydantic import BaseModel, ConfigDict, Field

from context_engine.cli.commands._input import read_request
from context_engine.cli.logging import cli_command
from context_engine.cli.output import emit_engine_error, emit_success, emit_validation_error
from context_engine.cli.registry import get_context
from context_engine.core.breaking_chain import ContextBreakingChain
from context_engine.core.errors import ModelNotFoundError
from context_engine.core.feeder import ContextFeeder
from context_engine.core.items import ContextItem
from context_engine.core.models import AgentContext
from context_engine.core.relevance import RelevanceKeywordSet
from context_engine.core.token_budget import TokenBudget


class AssembleRequest(BaseModel):
    """Input document for ``assemble``."""

    model_config = ConfigDict(extra="ignore")

    agent_type: str = "default"
    user_message: str
    system_prompt: str = ""
    context: AgentContext = Field(default_factory=AgentContext)
    extra_items: list[dict[str, Any]] = Field(default_factory=list)
    now: Optional[datetime] = None


class BreakRequest(BaseModel):
    """Input document for ``break``."""

    model_config = ConfigDict(extra="ignore")

    items: list[dict[str, Any]]
    keywords: dict[str, list[str]] = Field(default_factory=dict)
    available: Optional[int] = Field(default=None, ge=0)
    now: Optional[datetime] = None


def _parse_items(raw_items: list[dict[str, Any]]) -> list[ContextItem]:
    items = []
    for index, raw in enumerate(raw_items):
        try:
            items.append(ContextItem.from_dict(raw))
        except (KeyError, TypeError, ValueError) as e:
            emit_validation_error(
                f"Invalid context item at index {index}: {e}",
                field="items",
                remediation=(
                    "Each item needs an 'id'; content_type, category and priority "
                    "must use known values"
                ),
                details={"index": index},
            )
    return items


@click.command("assemble")
@click.argument("request", type=click.File("r", encoding="utf-8"))
@click.pass_context
@cli_command("assemble")
def assemble_cmd(ctx: click.Context, request: IO[str]) -> None:
    """Build a budget-fitting message list from an agent context.

    REQUEST is a JSON file with agent_type, user_message, system_prompt and
    context (task, ticket, plan, conversation_history, additional_context).

    Examples:
        context-engine assemble request.json
        context-engine --model local/llama-8b assemble - < request.json
    """
    cli_ctx = get_context(ctx)
    payload = read_request(request, AssembleRequest)
    extra_items = _parse_items(payload.extra_items)

    try:
        tracker = cli_ctx.tracker
    except ModelNotFoundError as e:
        emit_engine_error(e)

    feeder = ContextFeeder(
        tracker, recent_history_messages=cli_ctx.config.feeder.recent_history_messages
    )
    result = feeder.build_optimized_messages(
        agent_type=payload.agent_type,
        user_message=payload.user_message,
        system_prompt=payload.system_prompt,
        context=payload.context,
        extra_items=extra_items,
        now=payload.now,
    )

    warnings = []
    if result.excluded_items:
        warnings.append(f"{len(result.excluded_items)} context items did not fit the budget")
    if result.budget.consumed > result.budget.available_for_input:
        warnings.append("System prompt and user message alone exceed the input budget")
    emit_success(result.to_dict(), warnings=warnings or None)


@click.command("break")
@click.argument("request", type=click.File("r", encoding="utf-8"))
@click.option(
    "--available",
    type=click.IntRange(min=0),
    help="Input token budget (defaults to the request's 'available', then the model's)",
)
@click.pass_context
@cli_command("break")
def break_cmd(ctx: click.Context, request: IO[str], available: Optional[int]) -> None:
    """Run the context breaking chain over an item list.

    REQUEST is a JSON file with items (serialized context items) and
    keywords (task_keywords, file_keywords, domain_keywords).

    Examples:
        context-engine break working-set.json --available 4000
    """
    cli_ctx = get_context(ctx)
    payload = read_request(request, BreakRequest)
    items = _parse_items(payload.items)

    try:
        tracker = cli_ctx.tracker
    except ModelNotFoundError as e:
        emit_engine_error(e)

    limit = available if available is not None else payload.available
    if limit is None:
        budget = tracker.create_budget("context_breaking_chain")
    else:
        budget = TokenBudget.for_input(limit, profile=tracker.current_profile)

    chain = ContextBreakingChain(tracker)
    result = chain.apply_chain(
        items, budget, RelevanceKeywordSet.from_dict(payload.keywords), now=payload.now
    )

    warnings = []
    if result.fresh_start_triggered:
        warnings.append(
            "Fresh start triggered; persist data.snapshot to restore the full context"
        )
    if result.result_tokens > budget.available_for_input:
        warnings.append("Result still exceeds the input budget")
    emit_success(result.to_dict(), warnings=warnings or None)
