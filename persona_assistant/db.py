"""SQLite persistence layer."""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

from persona_assistant.models import Automation, PreviewConfig, TodoItem

SCHEMA_VERSION = 1


class Database:
    """Small SQLite wrapper with explicit schema management.

    Holds the model config and alias tables (read-only for the pipeline),
    the per-user credit balance, the append-only credit ledger and the
    automation documents.
    """

    def __init__(self, path: Path) -> None:
        self._path = path

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def initialize(self) -> None:
        """Create or migrate schema."""

        with self._connect() as conn:
            conn.execute("CREATE TABLE IF NOT EXISTS schema_version (version INTEGER NOT NULL)")
            row = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
            if row is None:
                self._create_schema(conn)
                conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
            elif row["version"] != SCHEMA_VERSION:
                raise RuntimeError(
                    f"Unsupported schema version {row['version']} (expected {SCHEMA_VERSION})"
                )

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS model_configs (
                id TEXT PRIMARY KEY,
                model_id TEXT,
                api_key TEXT,
                enabled INTEGER NOT NULL DEFAULT 1,
                priority INTEGER NOT NULL DEFAULT 100
            );

            CREATE TABLE IF NOT EXISTS model_bindings (
                alias TEXT PRIMARY KEY,
                target_id TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                credits INTEGER NOT NULL DEFAULT 0
            );

            CREATE TABLE IF NOT EXISTS credit_history (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                title TEXT NOT NULL,
                qty INTEGER NOT NULL,
                total INTEGER NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS automations (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                task_id TEXT,
                name TEXT NOT NULL,
                enabled INTEGER NOT NULL,
                cron TEXT NOT NULL,
                timezone TEXT,
                todos_json TEXT NOT NULL,
                preview_config_json TEXT,
                confirm_at TEXT,
                internal_json TEXT NOT NULL,
                last_run_at TEXT,
                last_run_ok INTEGER,
                last_error TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                UNIQUE(user_id, task_id)
            );
            """
        )

    # Model configs

    def upsert_model_config(
        self,
        config_id: str,
        model_id: str,
        api_key: str | None = None,
        enabled: bool = True,
        priority: int = 100,
    ) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO model_configs(id, model_id, api_key, enabled, priority)
                VALUES(?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    model_id=excluded.model_id,
                    api_key=excluded.api_key,
                    enabled=excluded.enabled,
                    priority=excluded.priority
                """,
                (config_id, model_id, api_key, int(enabled), priority),
            )

    def list_model_configs(self) -> list[dict[str, Any]]:
        """Return enabled model configs ordered by ascending priority."""

        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT id, model_id, api_key, priority
                FROM model_configs
                WHERE enabled = 1
                ORDER BY priority ASC, id ASC
                """
            ).fetchall()
        return [dict(row) for row in rows]

    def set_binding(self, alias: str, target_id: str) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO model_bindings(alias, target_id) VALUES(?, ?)
                ON CONFLICT(alias) DO UPDATE SET target_id=excluded.target_id
                """,
                (alias, target_id),
            )

    def get_binding(self, alias: str) -> str | None:
        with self._connect() as conn:
            row = conn.execute("SELECT target_id FROM model_bindings WHERE alias = ?", (alias,)).fetchone()
        return row["target_id"] if row else None

    # Credits

    def get_user_credits(self, user_id: str) -> int | None:
        with self._connect() as conn:
            row = conn.execute("SELECT credits FROM users WHERE id = ?", (user_id,)).fetchone()
        return int(row["credits"]) if row else None

    def set_user_credits(self, user_id: str, credits: int) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO users(id, credits) VALUES(?, ?)
                ON CONFLICT(id) DO UPDATE SET credits=excluded.credits
                """,
                (user_id, credits),
            )

    def insert_credit_entry(self, entry_id: str, user_id: str, title: str, qty: int, total: int) -> None:
        """Append a ledger row. Raises sqlite3.IntegrityError if entry_id already exists."""

        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO credit_history(id, user_id, title, qty, total, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (entry_id, user_id, title, qty, total, _utc_now_iso()),
            )

    def list_credit_entries(self, user_id: str, limit: int = 50) -> list[dict[str, Any]]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT id, user_id, title, qty, total, created_at
                FROM credit_history
                WHERE user_id = ?
                ORDER BY created_at DESC
                LIMIT ?
                """,
                (user_id, limit),
            ).fetchall()
        return [dict(row) for row in rows]

    # Automations

    def create_automation(self, automation: Automation) -> None:
        """Insert an automation. Raises sqlite3.IntegrityError if the user already has one for task_id."""

        now = _utc_now_iso()
        created_at = _to_iso(automation.created_at) or now
        updated_at = _to_iso(automation.updated_at) or created_at
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO automations(
                    id, user_id, task_id, name, enabled, cron, timezone, todos_json,
                    preview_config_json, confirm_at, internal_json,
                    last_run_at, last_run_ok, last_error, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, NULL, NULL, NULL, ?, ?)
                """,
                (
                    automation.id,
                    automation.user_id,
                    automation.task_id,
                    automation.name,
                    int(automation.enabled),
                    automation.cron,
                    automation.timezone,
                    json.dumps([{"id": t.id, "text": t.text, "done": t.done} for t in automation.todos]),
                    json.dumps(
                        {
                            "auto_confirm": automation.preview_config.auto_confirm,
                            "confirm_timeout_seconds": automation.preview_config.confirm_timeout_seconds,
                        }
                    ),
                    _to_iso(automation.confirm_at),
                    json.dumps(automation.internal),
                    created_at,
                    updated_at,
                ),
            )

    def get_automation(self, automation_id: str) -> Automation | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM automations WHERE id = ?", (automation_id,)).fetchone()
        return _row_to_automation(row) if row else None

    def get_automation_by_task(self, user_id: str, task_id: str) -> Automation | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM automations WHERE user_id = ? AND task_id = ?", (user_id, task_id)
            ).fetchone()
        return _row_to_automation(row) if row else None

    def list_automations(self, user_id: str) -> list[Automation]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM automations WHERE user_id = ? ORDER BY created_at ASC", (user_id,)
            ).fetchall()
        return [_row_to_automation(row) for row in rows]


def _row_to_automation(row: sqlite3.Row) -> Automation:
    preview = json.loads(row["preview_config_json"] or "{}")
    return Automation(
        id=row["id"],
        user_id=row["user_id"],
        task_id=row["task_id"],
        name=row["name"],
        enabled=bool(row["enabled"]),
        cron=row["cron"],
        timezone=row["timezone"],
        todos=[TodoItem(id=t["id"], text=t["text"], done=bool(t["done"])) for t in json.loads(row["todos_json"])],
        preview_config=PreviewConfig(
            auto_confirm=bool(preview.get("auto_confirm", True)),
            confirm_timeout_seconds=int(preview.get("confirm_timeout_seconds", 10)),
        ),
        confirm_at=_parse_iso(row["confirm_at"]),
        internal=json.loads(row["internal_json"]),
        last_run_at=_parse_iso(row["last_run_at"]),
        last_run_ok=None if row["last_run_ok"] is None else bool(row["last_run_ok"]),
        last_error=row["last_error"],
        created_at=_parse_iso(row["created_at"]),
        updated_at=_parse_iso(row["updated_at"]),
    )


def _to_iso(value: datetime | None) -> str | None:
    return value.astimezone(timezone.utc).isoformat() if value else None


def _parse_iso(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
