"""At-most-once credit charging keyed by task id."""

from __future__ import annotations

import logging
import sqlite3

from persona_assistant.db import Database
from persona_assistant.models import ChargeResult

LOGGER = logging.getLogger(__name__)

DEFAULT_CREDITS_PER_REQUEST = 2
MODEL_CREDITS: dict[str, int] = {
    "gpt-oss": 0,
    "claude-3.5-sonnet": 3,
    "nanobanana": 2,
    "gpt-5.2": 2,
}


def credits_for_model(model_key: str | None) -> int:
    return MODEL_CREDITS.get((model_key or "").strip(), DEFAULT_CREDITS_PER_REQUEST)


class BillingLedger:
    """Charges a user once per task id.

    The ledger row is inserted before the balance is touched; its primary
    key is the task id, so a replayed task hits the unique constraint and
    leaves the balance alone. If the balance update fails after the insert
    the charge is reported as billed with an unknown total.
    """

    def __init__(self, db: Database) -> None:
        self._db = db

    def charge(self, user_id: str, model_key: str | None, task_id: str, title: str) -> ChargeResult:
        """Charge the model's cost. Never raises; failures are logged and reported as unbilled."""

        cost = credits_for_model(model_key)
        if cost <= 0:
            return ChargeResult(billed=False)

        try:
            current = self._db.get_user_credits(user_id) or 0
        except sqlite3.Error as exc:
            LOGGER.error("billing failed_to_read_credits task_id=%s user_id=%s error=%s", task_id, user_id, exc)
            return ChargeResult(billed=False)
        new_total = current - cost

        try:
            self._db.insert_credit_entry(task_id, user_id, title, qty=-cost, total=new_total)
        except sqlite3.IntegrityError:
            LOGGER.info("billing already_billed task_id=%s user_id=%s", task_id, user_id)
            return ChargeResult(billed=False)
        except sqlite3.Error as exc:
            LOGGER.error("billing failed_to_insert_history task_id=%s user_id=%s error=%s", task_id, user_id, exc)
            return ChargeResult(billed=False)

        try:
            self._db.set_user_credits(user_id, new_total)
        except sqlite3.Error as exc:
            LOGGER.error("billing failed_to_update_credits task_id=%s user_id=%s error=%s", task_id, user_id, exc)
            return ChargeResult(billed=True, credits_used=cost, new_total=None)

        LOGGER.info(
            "billing charged task_id=%s user_id=%s credits_used=%d new_total=%d",
            task_id,
            user_id,
            cost,
            new_total,
        )
        return ChargeResult(billed=True, credits_used=cost, new_total=new_total)
