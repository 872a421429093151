"""Sequential fallback over backend candidates.

Candidates are tried strictly in order and the first success wins. Retry is
expressed as advancing to the next candidate, never as re-calling the same
one. Infra and stale-config failures advance the chain; any other upstream
rejection ends the turn at once, so a bad request is not masked behind
several wasted calls.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

import httpx

from persona_assistant.errors import UpstreamRejectedError, UpstreamTransientError
from persona_assistant.llm.base import CompletionGateway
from persona_assistant.llm.candidates import CandidateResolver
from persona_assistant.llm.openrouter import extract_content, upstream_error_message
from persona_assistant.models import CandidateKey, ChatMessage, CompletionResult, candidate_key_text

LOGGER = logging.getLogger(__name__)

_STALE_MODEL_MARKERS = ("not a valid model id", "invalid model id")


def should_fallback(status: int, data: object) -> bool:
    """Whether a non-2xx upstream response may advance to the next candidate."""

    if status == 429 or status >= 500:
        return True
    if status != 400:
        return False
    message = upstream_error_message(data).lower()
    return any(marker in message for marker in _STALE_MODEL_MARKERS)


def backoff_seconds(index: int) -> float:
    return 0.25 + index * 0.2


class FallbackOrchestrator:
    """Drives the completion gateway across an ordered candidate list."""

    def __init__(
        self,
        resolver: CandidateResolver,
        gateway: CompletionGateway,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._resolver = resolver
        self._gateway = gateway
        self._sleep = sleep

    async def run(
        self,
        candidate_keys: list[CandidateKey],
        messages: list[ChatMessage],
        task_id: str,
    ) -> CompletionResult:
        """Return the first successful completion.

        Raises:
            UpstreamRejectedError: a candidate returned a non-retryable error.
            UpstreamTransientError: every dispatched candidate failed retryably,
                or no candidate could be dispatched at all.
        """
        payload = [message.to_payload() for message in messages]
        attempted: set[str] = set()
        last_index = len(candidate_keys) - 1

        for index, key in enumerate(candidate_keys):
            key_text = candidate_key_text(key)
            is_last = index == last_index

            candidate = self._resolver.resolve(key)
            if candidate is None or not candidate.api_key:
                LOGGER.error("missing_model_config task_id=%s candidate=%s", task_id, key_text)
                continue
            if candidate.signature in attempted:
                LOGGER.info(
                    "skip_duplicate_candidate task_id=%s candidate=%s signature=%s",
                    task_id,
                    key_text,
                    candidate.signature,
                )
                continue
            attempted.add(candidate.signature)

            try:
                response = await self._gateway.complete(candidate, payload)
            except (httpx.HTTPError, asyncio.TimeoutError, OSError) as exc:
                LOGGER.error(
                    "candidate_error task_id=%s candidate=%s model=%s error=%r",
                    task_id,
                    key_text,
                    candidate.model_id,
                    exc,
                )
                if not is_last:
                    await self._sleep(backoff_seconds(index))
                    continue
                raise UpstreamTransientError(f"Upstream request failed for {key_text}") from exc

            if not response.ok:
                LOGGER.error(
                    "upstream_failed task_id=%s candidate=%s model=%s status=%d detail=%r",
                    task_id,
                    key_text,
                    candidate.model_id,
                    response.status_code,
                    upstream_error_message(response.data),
                )
                if should_fallback(response.status_code, response.data):
                    if not is_last:
                        await self._sleep(backoff_seconds(index))
                        continue
                    raise UpstreamTransientError(f"Upstream returned {response.status_code} for {key_text}")
                raise UpstreamRejectedError(
                    f"Upstream rejected request with {response.status_code}",
                    status=response.status_code,
                    detail=response.data,
                )

            data = response.data if isinstance(response.data, dict) else None
            return CompletionResult(candidate=candidate, data=data, content=extract_content(data))

        LOGGER.error("all_failed task_id=%s candidates=%s", task_id, [candidate_key_text(k) for k in candidate_keys])
        raise UpstreamTransientError("No candidate produced a completion")
