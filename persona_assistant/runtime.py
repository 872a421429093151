"""Per-turn completion runtime."""

from __future__ import annotations

import copy
import logging
import re
import sqlite3
import uuid
from typing import Any, Mapping

from persona_assistant.automations import AutomationProvisioner, ProvisionResult
from persona_assistant.billing import BillingLedger
from persona_assistant.contract import build_meta, parse_envelope, render_reply
from persona_assistant.errors import ConfigurationError, InvalidTurnError
from persona_assistant.geo import GeoResolver
from persona_assistant.llm.candidates import CandidateResolver, build_candidate_keys
from persona_assistant.models import ChatMessage, ChatTurn, GeoInfo, ResponseEnvelope
from persona_assistant.orchestrator import FallbackOrchestrator

LOGGER = logging.getLogger(__name__)

_UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$", re.IGNORECASE)
_ROLES = {"user", "assistant", "system"}

CONTRACT_SYSTEM_PROMPT = (
    "You are a persona social-media assistant. Answer with a single JSON object and nothing else. "
    'Fields: "reply" (string, the visible answer), optional "thinking_steps" (list of {"label"}), '
    'optional "task_plan" (list of {"title", "status"} with status pending, in_progress or completed), '
    'and, only when the user asks for something recurring, "automation" with '
    '{"auto_create": true, "name", "cron" (5-field), "timezone", "kind" '
    '(ai_news_briefing, competitor_monitor or other), "target"}.'
)


def is_uuid(value: str) -> bool:
    return bool(_UUID_RE.match(value))


def resolve_task_id(raw: str | None) -> str:
    """Use the client-supplied id only if it is a valid UUID, else generate one."""

    candidate = (raw or "").strip()
    if candidate and is_uuid(candidate):
        return candidate
    return str(uuid.uuid4())


def parse_messages(raw: Any) -> list[ChatMessage]:
    """Keep well-formed `{role, content}` entries; anything else is dropped."""

    if not isinstance(raw, list):
        return []
    out: list[ChatMessage] = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        role = item.get("role")
        content = item.get("content")
        if role not in _ROLES or not isinstance(content, str):
            continue
        out.append(ChatMessage(role=role, content=content))
    return out


class CompletionRuntime:
    """Runs one chat turn: routing, upstream call, parsing, automation and billing."""

    def __init__(
        self,
        geo: GeoResolver,
        resolver: CandidateResolver,
        orchestrator: FallbackOrchestrator,
        provisioner: AutomationProvisioner,
        ledger: BillingLedger,
        system_prompt: str | None = CONTRACT_SYSTEM_PROMPT,
    ) -> None:
        self._geo = geo
        self._resolver = resolver
        self._orchestrator = orchestrator
        self._provisioner = provisioner
        self._ledger = ledger
        self._system_prompt = system_prompt

    async def handle_turn(self, turn: ChatTurn, headers: Mapping[str, str]) -> dict[str, Any]:
        """Handle one turn and return the response payload.

        Raises:
            InvalidTurnError: the message list is empty.
            ConfigurationError: no model config or credential is available.
            UpstreamTransientError, UpstreamRejectedError: see FallbackOrchestrator.run.
        """
        if not turn.messages:
            LOGGER.error("invalid_messages task_id=%s user_id=%s", turn.task_id, turn.user_id)
            raise InvalidTurnError("Message list is empty or malformed")
        if not self._resolver.has_sources():
            LOGGER.error("no_model_configs task_id=%s user_id=%s", turn.task_id, turn.user_id)
            raise ConfigurationError("No model configuration or API key available")

        geo = await self._geo.resolve(headers)
        candidate_keys = build_candidate_keys(turn.requested_model_key, geo.is_mainland_china)
        LOGGER.info(
            "task_started task_id=%s user_id=%s model=%r country=%s",
            turn.task_id,
            turn.user_id,
            turn.requested_model_key or None,
            geo.country,
        )

        result = await self._orchestrator.run(candidate_keys, self._with_system_prompt(turn.messages), turn.task_id)
        candidate = result.candidate

        charge = self._ledger.charge(
            user_id=turn.user_id,
            model_key=candidate.key,
            task_id=turn.task_id,
            title=f"Chat usage · chat/complete · {candidate.key}",
        )

        envelope = parse_envelope(result.content)
        provisioned = await self._provision(turn, envelope, headers, geo, candidate.key)

        reply = provisioned.reply if provisioned else envelope.reply
        meta = build_meta(envelope, provisioned.to_meta() if provisioned else None)
        content = render_reply(reply, meta)

        LOGGER.info(
            "task_completed task_id=%s user_id=%s credits_used=%d candidate=%s model=%s",
            turn.task_id,
            turn.user_id,
            charge.credits_used,
            candidate.key,
            candidate.model_id,
        )
        return _response_payload(result.data, content, turn.task_id, charge.credits_used)

    def _with_system_prompt(self, messages: list[ChatMessage]) -> list[ChatMessage]:
        if not self._system_prompt:
            return list(messages)
        system = ChatMessage(role="system", content=self._system_prompt)
        if messages[0].role == "system":
            return [messages[0], system, *messages[1:]]
        return [system, *messages]

    async def _provision(
        self,
        turn: ChatTurn,
        envelope: ResponseEnvelope,
        headers: Mapping[str, str],
        geo: GeoInfo,
        model_key: str,
    ) -> ProvisionResult | None:
        try:
            return await self._provisioner.provision(
                user_id=turn.user_id,
                task_id=turn.task_id,
                envelope=envelope,
                messages=turn.messages,
                headers=headers,
                geo_info=geo,
                model_key=model_key,
            )
        except sqlite3.Error as exc:
            LOGGER.error("automation_store_failed task_id=%s user_id=%s error=%s", turn.task_id, turn.user_id, exc)
            return None


def _response_payload(data: dict[str, Any] | None, content: str, task_id: str, credits_used: int) -> dict[str, Any]:
    """Upstream body with the first choice's content replaced, plus task_id and credits_used."""

    payload = copy.deepcopy(data) if data else {}
    choices = payload.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        message = choices[0].get("message")
        if isinstance(message, dict):
            message["content"] = content
        else:
            choices[0]["message"] = {"role": "assistant", "content": content}
    else:
        payload["choices"] = [{"index": 0, "message": {"role": "assistant", "content": content}}]
    payload["task_id"] = task_id
    payload["credits_used"] = credits_used
    return payload
