"""Pydantic models for the records the engine consumes and produces.

Inputs arrive from the persistence/agent layer as loosely typed records;
optional fields default to empty or neutral values instead of failing.
"""

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# Input Records
# =============================================================================


class Task(BaseModel):
    """The task an agent is currently working on."""

    model_config = ConfigDict(extra="ignore")

    id: str
    title: str = ""
    description: str = ""
    priority: str = ""
    status: str = ""
    acceptance_criteria: str = ""
    files_modified: list[str] = Field(default_factory=list)
    dependencies: list[str] = Field(default_factory=list)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class Ticket(BaseModel):
    """A ticket linked to the current work."""

    model_config = ConfigDict(extra="ignore")

    id: str
    ticket_number: int = 0
    title: str = ""
    body: str = ""
    status: str = ""
    priority: str = ""
    creator: str = ""
    task_id: Optional[str] = None
    created_at: Optional[str] = None


class Plan(BaseModel):
    """The active plan; ``config_json`` may or may not be valid JSON."""

    model_config = ConfigDict(extra="ignore")

    id: str
    name: str = ""
    status: str = ""
    config_json: str = ""
    created_at: Optional[str] = None


class ConversationEntry(BaseModel):
    """One message of prior conversation."""

    model_config = ConfigDict(extra="ignore")

    role: str
    content: str = ""
    task_id: Optional[str] = None
    ticket_id: Optional[str] = None
    created_at: Optional[str] = None


class DesignComponent(BaseModel):
    """A node of a page's design tree."""

    model_config = ConfigDict(extra="ignore")

    id: str
    page_id: str = ""
    type: str = "container"
    name: str = ""
    parent_id: Optional[str] = None
    sort_order: int = 0
    x: float = 0
    y: float = 0
    width: float = 0
    height: float = 0
    content: str = ""


class AgentContext(BaseModel):
    """Everything an agent offers the feeder for one request."""

    model_config = ConfigDict(extra="ignore")

    task: Optional[Task] = None
    ticket: Optional[Ticket] = None
    plan: Optional[Plan] = None
    conversation_history: list[ConversationEntry] = Field(default_factory=list)
    additional_context: dict[str, Any] = Field(default_factory=dict)


# =============================================================================
# Output Records
# =============================================================================


class LLMMessage(BaseModel):
    """A role-tagged message ready for a model-invocation client."""

    role: Literal["system", "user", "assistant"]
    content: str


class ContextSnapshot(BaseModel):
    """Durable record written when the breaking chain reaches Fresh-Start.

    Ownership passes to the caller's persistence layer; the engine never
    stores it.
    """

    id: str
    agent_type: str = "context_breaking_chain"
    task_id: Optional[str] = None
    ticket_id: Optional[str] = None
    summary: str
    essential_context: str = Field(..., description="JSON list of retained mandatory items")
    resume_instructions: str
    item_count: int = 0
    created_at: datetime
