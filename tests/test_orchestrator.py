"""Tests for FallbackOrchestrator."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import httpx
import pytest

from persona_assistant.errors import UpstreamRejectedError, UpstreamTransientError
from persona_assistant.llm.base import CompletionGateway, GatewayResponse
from persona_assistant.models import AliasKey, ChatMessage, LiteralKey, ModelCandidate, candidate_key_text
from persona_assistant.orchestrator import FallbackOrchestrator, backoff_seconds, should_fallback

MESSAGES = [ChatMessage(role="user", content="hello")]


def _ok(text: str) -> GatewayResponse:
    return GatewayResponse(status_code=200, data={"choices": [{"message": {"content": text}}]})


class FakeResolver:
    def __init__(self, table: dict[str, ModelCandidate]) -> None:
        self._table = table

    def resolve(self, key):
        return self._table.get(candidate_key_text(key))


class FakeGateway(CompletionGateway):
    """Replays one scripted outcome per call, keyed by candidate key."""

    def __init__(self, outcomes: dict[str, GatewayResponse | Exception]) -> None:
        self._outcomes = outcomes
        self.calls: list[str] = []

    async def complete(self, candidate, messages):
        self.calls.append(candidate.key)
        outcome = self._outcomes[candidate.key]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _candidate(key: str, model_id: str | None = None) -> ModelCandidate:
    return ModelCandidate(key=key, model_id=model_id or f"vendor/{key}", api_key="k")


RESOLVER = FakeResolver(
    {
        "a": _candidate("a"),
        "b": _candidate("b"),
        "c": _candidate("c"),
    }
)
KEYS = [LiteralKey("a"), LiteralKey("b"), LiteralKey("c")]


def _orchestrator(gateway: FakeGateway, resolver=RESOLVER) -> tuple[FallbackOrchestrator, AsyncMock]:
    sleep = AsyncMock()
    return FallbackOrchestrator(resolver, gateway, sleep=sleep), sleep


@pytest.mark.asyncio
async def test_first_success_stops_the_chain():
    gateway = FakeGateway({"a": _ok("from a"), "b": _ok("from b")})
    orchestrator, sleep = _orchestrator(gateway)

    result = await orchestrator.run(KEYS, MESSAGES, "task-1")

    assert result.candidate.key == "a"
    assert result.content == "from a"
    assert gateway.calls == ["a"]
    sleep.assert_not_called()


@pytest.mark.asyncio
async def test_server_errors_and_rate_limits_fall_back_with_backoff():
    gateway = FakeGateway(
        {
            "a": GatewayResponse(status_code=503, data=None),
            "b": GatewayResponse(status_code=429, data={"error": {"message": "slow down"}}),
            "c": _ok("from c"),
        }
    )
    orchestrator, sleep = _orchestrator(gateway)

    result = await orchestrator.run(KEYS, MESSAGES, "task-1")

    assert result.content == "from c"
    assert gateway.calls == ["a", "b", "c"]
    assert [call.args[0] for call in sleep.await_args_list] == [pytest.approx(0.25), pytest.approx(0.45)]


@pytest.mark.asyncio
async def test_invalid_model_id_400_falls_back():
    gateway = FakeGateway(
        {
            "a": GatewayResponse(status_code=400, data={"error": {"message": "foo/bar is not a valid model ID"}}),
            "b": _ok("from b"),
        }
    )
    orchestrator, _ = _orchestrator(gateway)

    result = await orchestrator.run(KEYS, MESSAGES, "task-1")

    assert result.candidate.key == "b"
    assert gateway.calls == ["a", "b"]


@pytest.mark.asyncio
async def test_other_client_errors_are_terminal():
    gateway = FakeGateway(
        {
            "a": GatewayResponse(status_code=400, data={"error": {"message": "context length exceeded"}}),
            "b": _ok("from b"),
        }
    )
    orchestrator, sleep = _orchestrator(gateway)

    with pytest.raises(UpstreamRejectedError) as excinfo:
        await orchestrator.run(KEYS, MESSAGES, "task-1")

    assert excinfo.value.status == 400
    assert gateway.calls == ["a"]
    sleep.assert_not_called()


@pytest.mark.asyncio
async def test_unauthorized_is_terminal():
    gateway = FakeGateway({"a": GatewayResponse(status_code=401, data=None), "b": _ok("from b")})
    orchestrator, _ = _orchestrator(gateway)

    with pytest.raises(UpstreamRejectedError):
        await orchestrator.run(KEYS, MESSAGES, "task-1")
    assert gateway.calls == ["a"]


@pytest.mark.asyncio
async def test_transport_errors_fall_back_until_the_last_candidate():
    gateway = FakeGateway(
        {
            "a": httpx.ConnectError("refused"),
            "b": httpx.ReadTimeout("timed out"),
            "c": httpx.ReadTimeout("timed out"),
        }
    )
    orchestrator, sleep = _orchestrator(gateway)

    with pytest.raises(UpstreamTransientError):
        await orchestrator.run(KEYS, MESSAGES, "task-1")

    assert gateway.calls == ["a", "b", "c"]
    assert sleep.await_count == 2


@pytest.mark.asyncio
async def test_retryable_status_on_last_candidate_raises_transient():
    gateway = FakeGateway({"a": GatewayResponse(status_code=502, data=None)})
    orchestrator, sleep = _orchestrator(gateway)

    with pytest.raises(UpstreamTransientError):
        await orchestrator.run([LiteralKey("a")], MESSAGES, "task-1")
    sleep.assert_not_called()


@pytest.mark.asyncio
async def test_unresolved_candidates_are_skipped():
    gateway = FakeGateway({"b": _ok("from b")})
    orchestrator, _ = _orchestrator(gateway)

    result = await orchestrator.run([AliasKey("ask-default"), LiteralKey("b")], MESSAGES, "task-1")

    assert result.candidate.key == "b"
    assert gateway.calls == ["b"]


@pytest.mark.asyncio
async def test_nothing_resolvable_raises_transient_without_calls():
    gateway = FakeGateway({})
    orchestrator, _ = _orchestrator(gateway)

    with pytest.raises(UpstreamTransientError):
        await orchestrator.run([AliasKey("ask-default"), AliasKey("ask-fallback-1")], MESSAGES, "task-1")
    assert gateway.calls == []


@pytest.mark.asyncio
async def test_duplicate_signature_is_not_called_twice():
    shared = _candidate("gpt-5.2", "openai/gpt-5.2")
    resolver = FakeResolver({"ask-default": shared, "ask-fallback-1": shared, "c": _candidate("c")})
    gateway = FakeGateway({"gpt-5.2": GatewayResponse(status_code=500, data=None), "c": _ok("from c")})
    orchestrator, _ = _orchestrator(gateway, resolver)

    result = await orchestrator.run(
        [AliasKey("ask-default"), AliasKey("ask-fallback-1"), LiteralKey("c")], MESSAGES, "task-1"
    )

    assert result.candidate.key == "c"
    assert gateway.calls == ["gpt-5.2", "c"]


@pytest.mark.asyncio
async def test_non_object_success_body_yields_empty_content():
    gateway = FakeGateway({"a": GatewayResponse(status_code=200, data=None)})
    orchestrator, _ = _orchestrator(gateway)

    result = await orchestrator.run([LiteralKey("a")], MESSAGES, "task-1")

    assert result.data is None
    assert result.content == ""


def test_should_fallback_classification():
    assert should_fallback(429, None)
    assert should_fallback(500, None)
    assert should_fallback(504, None)
    assert should_fallback(400, {"error": {"message": "Invalid model id: x"}})
    assert not should_fallback(400, {"error": {"message": "bad request"}})
    assert not should_fallback(400, None)
    assert not should_fallback(403, None)
    assert not should_fallback(404, None)


def test_backoff_grows_linearly():
    assert backoff_seconds(0) == pytest.approx(0.25)
    assert backoff_seconds(1) == pytest.approx(0.45)
    assert backoff_seconds(2) == pytest.approx(0.65)


@pytest.mark.asyncio
async def test_timeouts_fall_back_like_transport_errors():
    gateway = FakeGateway({"a": asyncio.TimeoutError(), "b": _ok("from b")})
    orchestrator, sleep = _orchestrator(gateway)

    result = await orchestrator.run(KEYS, MESSAGES, "task-1")

    assert result.candidate.key == "b"
    assert gateway.calls == ["a", "b"]
    sleep.assert_awaited_once()
