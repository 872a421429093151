"""Preview automation provisioning from a parsed reply envelope."""

from __future__ import annotations

import logging
import sqlite3
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Mapping

from persona_assistant.db import Database
from persona_assistant.geo import GeoResolver
from persona_assistant.models import (
    Automation,
    AutomationDirective,
    ChatMessage,
    GeoInfo,
    PreviewConfig,
    ResponseEnvelope,
    TodoItem,
)
from persona_assistant.schedule import (
    DEFAULT_TIMEZONE,
    infer_automation_kind,
    infer_schedule_from_messages,
    is_chinese_text,
    last_user_text,
)

LOGGER = logging.getLogger(__name__)

GENERIC_NAME_CHARS = 24

_GENERIC_TODOS_EN = (
    "Confirm schedule and scope",
    "Collect the latest information",
    "Generate a summary",
    "Save results to the library",
)
_GENERIC_TODOS_CN = ("确认执行时间与范围", "拉取最新信息", "生成摘要", "保存到资源库")


@dataclass(slots=True)
class ProvisionResult:
    automation: Automation
    reply: str
    created: bool

    def to_meta(self) -> dict[str, Any]:
        automation = self.automation
        return {
            "id": automation.id,
            "name": automation.name,
            "cron": automation.cron,
            "timezone": automation.timezone,
            "enabled": automation.enabled,
            "auto_confirm": automation.preview_config.auto_confirm,
            "confirm_timeout_seconds": automation.preview_config.confirm_timeout_seconds,
            "confirm_at": automation.confirm_at.isoformat() if automation.confirm_at else None,
        }


def automation_name(directive: AutomationDirective, user_text: str, chinese: bool) -> str:
    """Explicit name, else a template chosen by the directive kind."""

    if directive.name:
        return directive.name
    if directive.kind == "ai_news_briefing":
        return "AI新闻早报" if chinese else "AI news digest"
    if directive.kind == "competitor_monitor":
        target = directive.target or user_text[:80]
        return f"竞品监控：{target}" if chinese else f"Competitor monitor: {target}"
    snippet = user_text.strip()[:GENERIC_NAME_CHARS]
    return f"自动化任务：{snippet}" if chinese else f"Automation: {snippet}"


def confirm_notice(seconds: int, chinese: bool) -> str:
    if chinese:
        return f"\n\n我将于{seconds}秒后按以上配置创建并启用该自动化任务；如需取消或修改，请在倒计时结束前告知我。"
    return (
        f"\n\nI will enable this automation with the settings above in {seconds} seconds. "
        "Let me know before the countdown ends if you want to cancel or change it."
    )


def mentions_countdown(reply: str, seconds: int) -> bool:
    lower = reply.lower()
    return f"{seconds}秒后" in reply or f"{seconds} seconds" in lower


class AutomationProvisioner:
    """Creates automations in preview state: disabled, auto-confirming after a countdown.

    Promotion out of preview is owned by the external scheduler.
    """

    def __init__(
        self,
        db: Database,
        geo: GeoResolver,
        confirm_timeout_seconds: int = 10,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._db = db
        self._geo = geo
        self._confirm_timeout_seconds = confirm_timeout_seconds
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def provision(
        self,
        user_id: str,
        task_id: str,
        envelope: ResponseEnvelope,
        messages: list[ChatMessage],
        headers: Mapping[str, str],
        geo_info: GeoInfo | None = None,
        model_key: str | None = None,
    ) -> ProvisionResult | None:
        """Create the automation the envelope asks for, or return None.

        Requires an automation directive. Creation then needs explicit
        auto_create or an inferred schedule, plus a cron from either source.
        """
        directive = envelope.automation
        if directive is None:
            return None

        user_text = last_user_text(messages)
        inferred = infer_schedule_from_messages(messages)
        if not (directive.auto_create or inferred):
            return None
        cron = directive.cron or (inferred.cron if inferred else None)
        if not cron:
            return None

        if directive.kind == "other" and not directive.target:
            kind, target = infer_automation_kind(user_text)
            directive = replace(directive, kind=kind, target=target)
        chinese = is_chinese_text(user_text)
        name = automation_name(directive, user_text, chinese)
        if not name.strip():
            return None

        existing = self._existing(user_id, task_id)
        if existing is not None:
            LOGGER.info("automation_exists task_id=%s automation_id=%s", task_id, existing.id)
            return ProvisionResult(automation=existing, reply=self._with_notice(envelope.reply, chinese), created=False)

        tz_name = directive.timezone or await self._geo.infer_timezone(
            headers,
            fallback=inferred.timezone if inferred else DEFAULT_TIMEZONE,
            geo=geo_info,
        )
        now = self._clock()
        titles = [item.title for item in envelope.task_plan] or list(
            _GENERIC_TODOS_CN if chinese else _GENERIC_TODOS_EN
        )
        automation = Automation(
            id=str(uuid.uuid4()),
            user_id=user_id,
            task_id=task_id,
            name=name,
            enabled=False,
            cron=cron,
            timezone=tz_name,
            todos=[TodoItem(id=str(uuid.uuid4()), text=title, done=False) for title in titles],
            preview_config=PreviewConfig(auto_confirm=True, confirm_timeout_seconds=self._confirm_timeout_seconds),
            confirm_at=now + timedelta(seconds=self._confirm_timeout_seconds),
            internal={
                "kind": directive.kind,
                "target": directive.target,
                "source": "chat",
                "model_key": model_key,
            },
            created_at=now,
            updated_at=now,
        )

        try:
            self._db.create_automation(automation)
        except sqlite3.IntegrityError:
            # Lost a race with a retry of the same turn.
            existing = self._existing(user_id, task_id)
            if existing is None:
                raise
            return ProvisionResult(automation=existing, reply=self._with_notice(envelope.reply, chinese), created=False)

        LOGGER.info(
            "automation_created task_id=%s user_id=%s automation_id=%s cron=%r timezone=%s",
            task_id,
            user_id,
            automation.id,
            cron,
            tz_name,
        )
        return ProvisionResult(automation=automation, reply=self._with_notice(envelope.reply, chinese), created=True)

    def _existing(self, user_id: str, task_id: str) -> Automation | None:
        return self._db.get_automation_by_task(user_id, task_id)

    def _with_notice(self, reply: str, chinese: bool) -> str:
        if mentions_countdown(reply, self._confirm_timeout_seconds):
            return reply
        return f"{reply}{confirm_notice(self._confirm_timeout_seconds, chinese)}"
