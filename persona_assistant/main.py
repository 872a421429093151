"""Application entrypoint."""

from __future__ import annotations

import logging

import uvicorn
from fastapi import FastAPI

from persona_assistant.automations import AutomationProvisioner
from persona_assistant.billing import BillingLedger
from persona_assistant.config import Settings, load_settings, model_api_keys
from persona_assistant.db import Database
from persona_assistant.geo import GeoResolver
from persona_assistant.llm.candidates import CandidateResolver
from persona_assistant.llm.openrouter import OpenRouterGateway
from persona_assistant.orchestrator import FallbackOrchestrator
from persona_assistant.runtime import CompletionRuntime
from persona_assistant.web import create_app

LOGGER = logging.getLogger(__name__)


def build_app(settings: Settings) -> FastAPI:
    """Construct the store and clients explicitly and wire them into the app."""

    db = Database(settings.database_path)
    db.initialize()

    geo = GeoResolver(
        lookup_base_url=settings.geo_lookup_base_url,
        timeout_seconds=settings.geo_lookup_timeout_seconds,
    )
    resolver = CandidateResolver(db, model_api_keys(settings))
    gateway = OpenRouterGateway(
        base_url=settings.openrouter_base_url,
        timeout_seconds=settings.request_timeout_seconds,
        referer=settings.app_referer,
        title=settings.app_title,
    )
    runtime = CompletionRuntime(
        geo=geo,
        resolver=resolver,
        orchestrator=FallbackOrchestrator(resolver, gateway),
        provisioner=AutomationProvisioner(
            db,
            geo,
            confirm_timeout_seconds=settings.automation_confirm_timeout_seconds,
        ),
        ledger=BillingLedger(db),
    )
    return create_app(runtime, geo)


def main() -> None:
    """Load settings, build the app and serve it."""

    settings = load_settings()
    logging.basicConfig(level=settings.log_level.upper())
    app = build_app(settings)
    LOGGER.info("Serving persona assistant on %s:%d", settings.host, settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
