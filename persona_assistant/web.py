"""HTTP surface for the completion runtime."""

from __future__ import annotations

import json
import logging
from typing import Any, Callable

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from persona_assistant.errors import OrchestratorError
from persona_assistant.geo import GeoResolver
from persona_assistant.models import ChatTurn
from persona_assistant.runtime import CompletionRuntime, parse_messages, resolve_task_id

LOGGER = logging.getLogger(__name__)

SessionResolver = Callable[[Request], str | None]

USER_ID_HEADER = "x-user-id"


def header_session_resolver(request: Request) -> str | None:
    """Trust the user id injected by the fronting auth gateway."""

    value = request.headers.get(USER_ID_HEADER, "").strip()
    return value or None


def request_failed(request_id: str) -> dict[str, str]:
    return {"error": f"request failed,requestid={request_id}"}


async def _read_json_body(request: Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return {}
    return body if isinstance(body, dict) else {}


def create_app(
    runtime: CompletionRuntime,
    geo: GeoResolver,
    session_resolver: SessionResolver = header_session_resolver,
) -> FastAPI:
    app = FastAPI(title="persona-assistant")

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/api/geo")
    async def geo_info(request: Request) -> dict[str, Any]:
        info = await geo.resolve(request.headers)
        return {"country": info.country, "isMainlandChina": info.is_mainland_china, "source": info.source}

    @app.post("/api/chat/complete")
    async def chat_complete(request: Request) -> JSONResponse:
        user_id = session_resolver(request)
        if not user_id:
            return JSONResponse({"error": "Unauthorized"}, status_code=401)

        task_id = resolve_task_id(request.headers.get("x-task-id") or request.headers.get("x-request-id"))
        body = await _read_json_body(request)
        model_id = body.get("modelId")
        turn = ChatTurn(
            user_id=user_id,
            messages=parse_messages(body.get("messages")),
            task_id=task_id,
            requested_model_key=model_id.strip() if isinstance(model_id, str) else "",
        )

        try:
            payload = await runtime.handle_turn(turn, request.headers)
        except OrchestratorError as exc:
            LOGGER.error(
                "chat_complete_failed task_id=%s user_id=%s kind=%s error=%s",
                task_id,
                user_id,
                type(exc).__name__,
                exc,
            )
            return JSONResponse(request_failed(task_id), status_code=exc.status_code)
        except Exception:  # noqa: BLE001
            LOGGER.exception("chat_complete_unexpected task_id=%s user_id=%s", task_id, user_id)
            return JSONResponse(request_failed(task_id), status_code=500)
        return JSONResponse(payload, status_code=200)

    return app
