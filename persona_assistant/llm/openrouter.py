"""OpenRouter implementation of CompletionGateway."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import httpx

from persona_assistant.llm.base import CompletionGateway, GatewayResponse
from persona_assistant.models import ModelCandidate

_LOGGER = logging.getLogger(__name__)


class OpenRouterGateway(CompletionGateway):
    """Gateway using an OpenAI-compatible `/chat/completions` endpoint."""

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 25.0,
        referer: str | None = None,
        title: str | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = timeout_seconds
        self._referer = referer
        self._title = title

    async def complete(self, candidate: ModelCandidate, messages: list[dict[str, str]]) -> GatewayResponse:
        if not candidate.api_key:
            raise ValueError(f"Candidate {candidate.key} has no API key")

        payload: dict[str, Any] = {
            "model": candidate.model_id,
            "messages": messages,
        }
        headers = {
            "Authorization": f"Bearer {candidate.api_key}",
            "Content-Type": "application/json",
        }
        if self._referer:
            headers["HTTP-Referer"] = self._referer
        if self._title:
            headers["X-Title"] = self._title

        timeout = httpx.Timeout(self._timeout_seconds)
        async with httpx.AsyncClient(base_url=self._base_url, timeout=timeout) as client:
            response = await asyncio.wait_for(
                client.post("/chat/completions", headers=headers, json=payload),
                timeout=self._timeout_seconds,
            )
            data = _safe_json_loads(response.text)

        _LOGGER.info(
            "upstream response: candidate=%s model=%s status=%d",
            candidate.key,
            candidate.model_id,
            response.status_code,
        )
        return GatewayResponse(status_code=response.status_code, data=data)


def extract_content(data: Any) -> str:
    """Pull the first choice's message text out of an OpenAI-style body.

    Content may be a string or a list of `{text}` parts, joined with newlines.
    """
    if not isinstance(data, dict):
        return ""
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return ""
    message = choices[0].get("message")
    if not isinstance(message, dict):
        return ""
    content = message.get("content")
    if isinstance(content, str) and content:
        return content
    if isinstance(content, list):
        parts = [part["text"].strip() for part in content if isinstance(part, dict) and isinstance(part.get("text"), str)]
        return "\n".join(part for part in parts if part)
    return ""


def upstream_error_message(data: Any) -> str:
    """Return the `error.message` of an upstream error body, or an empty string."""

    if not isinstance(data, dict):
        return ""
    detail = data.get("error")
    if isinstance(detail, str):
        return detail.strip()
    if isinstance(detail, dict) and isinstance(detail.get("message"), str):
        return detail["message"].strip()
    return ""


def _safe_json_loads(raw: str) -> Any:
    if not raw:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return None
