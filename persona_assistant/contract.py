"""Best-effort extraction of the structured reply envelope from model text."""

from __future__ import annotations

import json
from typing import Any

from persona_assistant.models import (
    AutomationDirective,
    ResponseEnvelope,
    TaskPlanItem,
    ThinkingStep,
)

META_DELIMITER = "\n---AIPERSONA_META---\n"
NO_VISIBLE_REPLY = "(The model returned no visible reply.)"

MAX_THINKING_STEPS = 20
MAX_TASK_PLAN_ITEMS = 12

_TASK_STATUSES = {"pending", "in_progress", "completed"}
_AUTOMATION_KINDS = {"ai_news_briefing", "competitor_monitor", "other"}

# Generic titles models emit when they have no real plan.
PLACEHOLDER_PLAN_TITLES = frozenset(
    {
        "understand requirements and constraints",
        "understand the requirements",
        "analyze the request",
        "gather information",
        "draft response",
        "review and finalize",
        "理解需求",
        "分析需求",
    }
)


def extract_first_json_object(text: str) -> dict[str, Any] | None:
    """Return the first balanced `{...}` in text parsed as a JSON object.

    Braces inside string literals (including escaped quotes) do not count
    toward depth. Returns None if there is no balanced object or it fails
    to parse.
    """
    start = text.find("{")
    if start < 0:
        return None

    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                try:
                    parsed = json.loads(text[start : index + 1])
                except json.JSONDecodeError:
                    return None
                return parsed if isinstance(parsed, dict) else None
    return None


def _parse_thinking_steps(raw: Any) -> list[ThinkingStep]:
    if not isinstance(raw, list):
        return []
    steps: list[ThinkingStep] = []
    for item in raw:
        if len(steps) >= MAX_THINKING_STEPS:
            break
        label = item.get("label") if isinstance(item, dict) else None
        if isinstance(label, str) and label.strip():
            steps.append(ThinkingStep(label=label.strip()))
    return steps


def _parse_task_plan(raw: Any) -> list[TaskPlanItem]:
    if not isinstance(raw, list):
        return []
    plan: list[TaskPlanItem] = []
    for item in raw:
        if len(plan) >= MAX_TASK_PLAN_ITEMS:
            break
        if not isinstance(item, dict):
            continue
        title = item.get("title")
        if not isinstance(title, str) or not title.strip():
            continue
        title = title.strip()
        if title.lower() in PLACEHOLDER_PLAN_TITLES:
            continue
        status = item.get("status")
        plan.append(TaskPlanItem(title=title, status=status if status in _TASK_STATUSES else "pending"))
    return plan


def _optional_str(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _parse_automation(raw: Any) -> AutomationDirective | None:
    if not isinstance(raw, dict):
        return None
    kind = raw.get("kind")
    return AutomationDirective(
        auto_create=raw.get("auto_create") is True,
        name=_optional_str(raw.get("name")),
        cron=_optional_str(raw.get("cron")),
        timezone=_optional_str(raw.get("timezone")),
        kind=kind if kind in _AUTOMATION_KINDS else "other",
        target=_optional_str(raw.get("target")) or "",
    )


def parse_envelope(raw_text: str) -> ResponseEnvelope:
    """Parse upstream content into a ResponseEnvelope whose reply is never empty."""

    raw_text = raw_text or ""
    parsed = extract_first_json_object(raw_text)
    fallback_reply = raw_text.strip() or NO_VISIBLE_REPLY
    if parsed is None:
        return ResponseEnvelope(reply=fallback_reply)

    reply = parsed.get("reply")
    return ResponseEnvelope(
        reply=reply.strip() if isinstance(reply, str) and reply.strip() else fallback_reply,
        thinking_steps=_parse_thinking_steps(parsed.get("thinking_steps")),
        task_plan=_parse_task_plan(parsed.get("task_plan")),
        automation=_parse_automation(parsed.get("automation")),
    )


def build_meta(envelope: ResponseEnvelope, automation: dict[str, Any] | None = None) -> dict[str, Any]:
    meta: dict[str, Any] = {}
    if envelope.thinking_steps:
        meta["thinking_steps"] = [{"label": step.label} for step in envelope.thinking_steps]
    if envelope.task_plan:
        meta["task_plan"] = [{"title": item.title, "status": item.status} for item in envelope.task_plan]
    if automation:
        meta["automation"] = automation
    return meta


def render_reply(reply: str, meta: dict[str, Any]) -> str:
    """Append the metadata block behind the delimiter for the client to split out."""

    if not meta:
        return reply
    return f"{reply}{META_DELIMITER}{json.dumps(meta, ensure_ascii=False)}"
