import sqlite3
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from persona_assistant.db import Database
from persona_assistant.models import Automation, PreviewConfig, TodoItem


def _db(tmp_path) -> Database:
    db = Database(tmp_path / "persona.db")
    db.initialize()
    return db


def _automation(automation_id: str = "a-1", task_id: str | None = "task-1") -> Automation:
    now = datetime.now(timezone.utc)
    return Automation(
        id=automation_id,
        user_id="user-1",
        task_id=task_id,
        name="AI news digest",
        cron="0 8 * * *",
        timezone="UTC",
        todos=[TodoItem(id="t-1", text="Collect news")],
        preview_config=PreviewConfig(auto_confirm=True, confirm_timeout_seconds=10),
        confirm_at=now + timedelta(seconds=10),
        internal={"kind": "ai_news_briefing"},
    )


def test_initialize_is_idempotent(tmp_path):
    db = _db(tmp_path)
    db.initialize()
    assert db.list_model_configs() == []


def test_model_configs_are_ordered_by_priority_and_filtered(tmp_path):
    db = _db(tmp_path)
    db.upsert_model_config("late", "vendor/late", "k1", priority=20)
    db.upsert_model_config("early", "vendor/early", "k2", priority=5)
    db.upsert_model_config("off", "vendor/off", "k3", enabled=False, priority=1)

    ids = [row["id"] for row in db.list_model_configs()]
    assert ids == ["early", "late"]


def test_bindings_round_trip_and_overwrite(tmp_path):
    db = _db(tmp_path)
    assert db.get_binding("ask-default") is None
    db.set_binding("ask-default", "early")
    db.set_binding("ask-default", "late")
    assert db.get_binding("ask-default") == "late"


def test_credit_entry_id_is_unique(tmp_path):
    db = _db(tmp_path)
    db.insert_credit_entry("task-1", "user-1", "Chat usage", qty=-2, total=8)
    with pytest.raises(sqlite3.IntegrityError):
        db.insert_credit_entry("task-1", "user-1", "Chat usage", qty=-2, total=6)
    assert len(db.list_credit_entries("user-1")) == 1


def test_user_credits(tmp_path):
    db = _db(tmp_path)
    assert db.get_user_credits("user-1") is None
    db.set_user_credits("user-1", 10)
    db.set_user_credits("user-1", 7)
    assert db.get_user_credits("user-1") == 7


def test_automation_round_trip(tmp_path):
    db = _db(tmp_path)
    db.create_automation(_automation())

    stored = db.get_automation("a-1")
    assert stored is not None
    assert stored.enabled is False
    assert stored.cron == "0 8 * * *"
    assert stored.todos[0].text == "Collect news"
    assert stored.preview_config.confirm_timeout_seconds == 10
    assert stored.confirm_at is not None
    assert stored.internal == {"kind": "ai_news_briefing"}
    assert db.get_automation_by_task("user-1", "task-1").id == "a-1"
    assert [a.id for a in db.list_automations("user-1")] == ["a-1"]


def test_automation_task_id_is_unique(tmp_path):
    db = _db(tmp_path)
    db.create_automation(_automation("a-1", "task-1"))
    with pytest.raises(sqlite3.IntegrityError):
        db.create_automation(_automation("a-2", "task-1"))


def test_task_id_uniqueness_is_per_user(tmp_path):
    db = _db(tmp_path)
    db.create_automation(_automation("a-1", "task-1"))
    db.create_automation(replace(_automation("a-2", "task-1"), user_id="user-2"))

    assert db.get_automation_by_task("user-1", "task-1").id == "a-1"
    assert db.get_automation_by_task("user-2", "task-1").id == "a-2"
    assert db.get_automation_by_task("user-3", "task-1") is None


def test_automation_timestamps_come_from_the_model(tmp_path):
    db = _db(tmp_path)
    created = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    db.create_automation(replace(_automation(), created_at=created, updated_at=created))

    stored = db.get_automation("a-1")
    assert stored.created_at == created
    assert stored.updated_at == created


def test_automations_without_task_id_do_not_collide(tmp_path):
    db = _db(tmp_path)
    db.create_automation(_automation("a-1", None))
    db.create_automation(_automation("a-2", None))
    assert len(db.list_automations("user-1")) == 2
