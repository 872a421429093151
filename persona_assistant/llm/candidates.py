"""Backend candidate list construction and key resolution."""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from typing import Iterable

from persona_assistant.db import Database
from persona_assistant.models import (
    AliasKey,
    CandidateKey,
    ModelCandidate,
    candidate_key_text,
    parse_candidate_key,
)

LOGGER = logging.getLogger(__name__)

DEFAULT_KEY = "ask-default"
DEFAULT_KEY_CN = "ask-default-cn"
FALLBACK_KEYS = ("ask-fallback-1", "ask-fallback-2")
FALLBACK_KEYS_CN = ("ask-fallback-cn-1", "ask-fallback-cn-2")

SHARED_KEY_NAME = "OPENROUTER_API_KEY"


@dataclass(frozen=True, slots=True)
class BuiltinModel:
    id: str
    model_id: str
    key_name: str


BUILTIN_MODELS: tuple[BuiltinModel, ...] = (
    BuiltinModel("persona-ai", "google/gemini-3-pro-preview", "OPENROUTER_API_KEY"),
    BuiltinModel("gpt-5.2", "openai/gpt-5.2", "GPT52_API_KEY"),
    BuiltinModel("gpt-oss", "openai/gpt-oss-120b:free", "OPENROUTER_API_KEY"),
    BuiltinModel("nanobanana", "google/gemini-3-pro-image-preview", "OPENROUTER_API_KEY"),
    BuiltinModel("gemini-3.0-pro", "google/gemini-3-pro-preview", "OPENROUTER_API_KEY"),
    BuiltinModel("minimax-m2", "minimax/minimax-m2", "MINIMAX_API_KEY"),
    BuiltinModel("kimi-0905", "moonshotai/kimi-k2-0905", "KIMI_API_KEY"),
    BuiltinModel("claude-3.5-sonnet", "anthropic/claude-3.5-sonnet", "CLAUDE_API_KEY"),
)


def unique_non_empty(values: Iterable[str | None]) -> list[str]:
    """Strip values and drop blanks and repeats, keeping first-seen order."""

    out: list[str] = []
    seen: set[str] = set()
    for value in values:
        item = (value or "").strip()
        if not item or item in seen:
            continue
        seen.add(item)
        out.append(item)
    return out


def build_candidate_keys(model_key: str | None, is_mainland_china: bool) -> list[CandidateKey]:
    """Return the ordered fallback chain: explicit-or-default key, then two region fallbacks."""

    default_key = DEFAULT_KEY_CN if is_mainland_china else DEFAULT_KEY
    fallbacks = FALLBACK_KEYS_CN if is_mainland_china else FALLBACK_KEYS
    primary = (model_key or "").strip() or default_key
    return [parse_candidate_key(key) for key in unique_non_empty([primary, *fallbacks])]


def _find(configs: list[ModelCandidate], key: str) -> ModelCandidate | None:
    for config in configs:
        if config.key == key or config.model_id == key:
            return config
    return None


class CandidateResolver:
    """Resolves symbolic candidate keys to concrete model configs.

    Sources are the persisted model_configs table followed by the built-in
    defaults, each ordered by priority. Both are reloaded on every call.
    """

    def __init__(self, db: Database, api_keys: dict[str, str]) -> None:
        self._db = db
        self._api_keys = api_keys

    def builtin_candidates(self) -> list[ModelCandidate]:
        shared = self._api_keys.get(SHARED_KEY_NAME, "").strip()
        out: list[ModelCandidate] = []
        for model in BUILTIN_MODELS:
            api_key = self._api_keys.get(model.key_name, "").strip() or shared
            if api_key:
                out.append(ModelCandidate(key=model.id, model_id=model.model_id, api_key=api_key))
        return out

    def stored_candidates(self) -> list[ModelCandidate]:
        try:
            rows = self._db.list_model_configs()
        except sqlite3.Error as exc:
            LOGGER.warning("model config store unavailable, using built-in defaults: %s", exc)
            return []
        out: list[ModelCandidate] = []
        for row in rows:
            config_id = str(row.get("id") or "").strip()
            model_id = str(row.get("model_id") or "").strip()
            api_key = str(row.get("api_key") or "").strip()
            if config_id and model_id and api_key:
                out.append(ModelCandidate(key=config_id, model_id=model_id, api_key=api_key))
        return out

    def _sources(self) -> list[list[ModelCandidate]]:
        return [source for source in (self.stored_candidates(), self.builtin_candidates()) if source]

    def has_sources(self) -> bool:
        """Whether any stored or built-in config with an API key exists."""

        return bool(self._sources())

    def _lookup_binding(self, alias: str) -> str:
        try:
            return (self._db.get_binding(alias) or "").strip()
        except sqlite3.Error as exc:
            LOGGER.warning("binding store unavailable for alias=%s: %s", alias, exc)
            return ""

    def resolve(self, key: CandidateKey | str | None) -> ModelCandidate | None:
        """Resolve one key, or return None when nothing usable matches.

        An empty key resolves to the first config of the first non-empty source.
        """
        sources = self._sources()
        if not sources:
            return None

        if key is None or isinstance(key, str):
            key = parse_candidate_key(key or "")
        text = candidate_key_text(key)
        if not text:
            return sources[0][0]

        for source in sources:
            found = _find(source, text)
            if found:
                return found

        if isinstance(key, AliasKey):
            target_id = self._lookup_binding(key.name)
            if target_id:
                for source in sources:
                    found = _find(source, target_id)
                    if found:
                        return found
        return None

