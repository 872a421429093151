"""Core domain models used across layers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal, Union

ChatRole = Literal["user", "assistant", "system"]
TaskStatus = Literal["pending", "in_progress", "completed"]
AutomationKind = Literal["ai_news_briefing", "competitor_monitor", "other"]

# Binding slots resolved through the persisted alias table.
ALIAS_NAMES = frozenset(
    {
        "ask-default",
        "ask-default-cn",
        "ask-fallback-1",
        "ask-fallback-2",
        "ask-fallback-cn-1",
        "ask-fallback-cn-2",
    }
)


@dataclass(slots=True)
class ChatMessage:
    """One entry of the message list sent upstream."""

    role: ChatRole
    content: str

    def to_payload(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True, slots=True)
class LiteralKey:
    """Candidate key naming a model config directly by id or model id."""

    id: str


@dataclass(frozen=True, slots=True)
class AliasKey:
    """Candidate key naming a binding slot."""

    name: str


CandidateKey = Union[LiteralKey, AliasKey]


def parse_candidate_key(raw: str) -> CandidateKey:
    """Classify a symbolic key as an alias slot or a literal id."""

    value = raw.strip()
    if value in ALIAS_NAMES:
        return AliasKey(value)
    return LiteralKey(value)


def candidate_key_text(key: CandidateKey) -> str:
    return key.name if isinstance(key, AliasKey) else key.id


@dataclass(frozen=True, slots=True)
class ModelCandidate:
    """A resolved, callable backend identity."""

    key: str
    model_id: str
    api_key: str

    @property
    def signature(self) -> str:
        return f"{self.key}::{self.model_id}"


@dataclass(slots=True)
class ChatTurn:
    """Request-scoped input for one logical user turn."""

    user_id: str
    messages: list[ChatMessage]
    task_id: str
    requested_model_key: str = ""


@dataclass(slots=True)
class ThinkingStep:
    label: str


@dataclass(slots=True)
class TaskPlanItem:
    title: str
    status: TaskStatus = "pending"


@dataclass(slots=True)
class AutomationDirective:
    """Automation request sourced from the model's JSON or from schedule inference."""

    auto_create: bool = False
    name: str | None = None
    cron: str | None = None
    timezone: str | None = None
    kind: AutomationKind = "other"
    target: str = ""


@dataclass(slots=True)
class ResponseEnvelope:
    """Structured output parsed from the upstream model text."""

    reply: str
    thinking_steps: list[ThinkingStep] = field(default_factory=list)
    task_plan: list[TaskPlanItem] = field(default_factory=list)
    automation: AutomationDirective | None = None


@dataclass(slots=True)
class ScheduleMatch:
    """Daily schedule detected in natural language."""

    cron: str
    timezone: str


@dataclass(slots=True)
class TodoItem:
    id: str
    text: str
    done: bool = False


@dataclass(slots=True)
class PreviewConfig:
    auto_confirm: bool = True
    confirm_timeout_seconds: int = 10


@dataclass(slots=True)
class Automation:
    """Represents a persisted automation in preview state."""

    id: str
    user_id: str
    name: str
    cron: str
    timezone: str | None
    enabled: bool = False
    task_id: str | None = None
    todos: list[TodoItem] = field(default_factory=list)
    preview_config: PreviewConfig = field(default_factory=PreviewConfig)
    confirm_at: datetime | None = None
    internal: dict[str, Any] = field(default_factory=dict)
    last_run_at: datetime | None = None
    last_run_ok: bool | None = None
    last_error: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(slots=True)
class ChargeResult:
    """Outcome of one billing attempt."""

    billed: bool
    credits_used: int = 0
    new_total: int | None = None


@dataclass(slots=True)
class GeoInfo:
    country: str | None
    is_mainland_china: bool
    source: Literal["header", "ipapi", "unknown"]


@dataclass(slots=True)
class CompletionResult:
    """Successful upstream call and the text extracted from it."""

    candidate: ModelCandidate
    data: dict[str, Any] | None
    content: str
