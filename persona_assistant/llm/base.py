"""Completion gateway interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from persona_assistant.models import ModelCandidate


@dataclass(slots=True)
class GatewayResponse:
    """Raw outcome of one upstream call: HTTP status and parsed JSON body (None if unparseable)."""

    status_code: int
    data: Any

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class CompletionGateway(ABC):
    """Single bounded-timeout call to one backend. Never retries."""

    @abstractmethod
    async def complete(self, candidate: ModelCandidate, messages: list[dict[str, str]]) -> GatewayResponse:
        """Send messages to candidate. Transport failures and asyncio.TimeoutError raise."""
