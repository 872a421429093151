"""Daily schedule detection in English and Chinese user text."""

from __future__ import annotations

import re

from persona_assistant.models import AutomationKind, ChatMessage, ScheduleMatch

CHINA_TIMEZONE = "Asia/Shanghai"
DEFAULT_TIMEZONE = "UTC"

_CN_DAILY_MARKERS = ("每天", "每日")
_CN_PATTERN = re.compile(
    r"(每天|每日)\s*(早上|上午|中午|下午|晚上|夜里|凌晨)?\s*([0-9]{1,2})"
    r"(?:\s*[:：]\s*([0-9]{1,2}))?\s*(?:点|时)?(?:\s*([0-9]{1,2})\s*分?)?"
)
_CN_AFTERNOON_PERIODS = {"下午", "晚上", "夜里", "中午"}

_EN_DAILY = r"(?:every\s+day|daily|each\s+day)"
_EN_DAILY_PATTERN = re.compile(_EN_DAILY, re.IGNORECASE)
# Tried in order: phrase then time, time with am/pm then phrase, "at TIME ... phrase".
_EN_PATTERNS = (
    re.compile(rf"\b{_EN_DAILY}\b[\s,]*(?:at\s*)?([0-9]{{1,2}})(?::([0-9]{{2}}))?\s*(am|pm)?\b", re.IGNORECASE),
    re.compile(rf"\b([0-9]{{1,2}})(?::([0-9]{{2}}))?\s*(am|pm)\b[\s,]*{_EN_DAILY}\b", re.IGNORECASE),
    re.compile(rf"\bat\s+([0-9]{{1,2}})(?::([0-9]{{2}}))?\s*(am|pm)?\b[\s,]*{_EN_DAILY}\b", re.IGNORECASE),
)

_CJK = re.compile(r"[\u4e00-\u9fff]")


def _daily_cron(minute: int, hour: int) -> str:
    return f"{minute} {hour} * * *"


def parse_chinese_schedule(text: str) -> ScheduleMatch | None:
    """Match 每天/每日 + optional day period + hour[:minute]."""

    raw = text or ""
    if not any(marker in raw for marker in _CN_DAILY_MARKERS):
        return None
    match = _CN_PATTERN.search(raw)
    if not match:
        return None

    period = match.group(2) or ""
    hour = int(match.group(3))
    if match.group(4) is not None:
        minute = int(match.group(4))
    elif match.group(5) is not None:
        minute = int(match.group(5))
    else:
        minute = 0
    if hour > 23 or minute > 59:
        return None

    if period in _CN_AFTERNOON_PERIODS and hour < 12:
        hour += 12
    if period == "凌晨" and hour == 12:
        hour = 0
    return ScheduleMatch(cron=_daily_cron(minute, hour), timezone=CHINA_TIMEZONE)


def parse_english_schedule(text: str) -> ScheduleMatch | None:
    """Match "every day" / "daily" / "each day" combined with a clock time."""

    raw = (text or "").strip()
    if not raw or not _EN_DAILY_PATTERN.search(raw):
        return None

    match = None
    for pattern in _EN_PATTERNS:
        match = pattern.search(raw)
        if match:
            break
    if not match:
        return None

    hour = int(match.group(1))
    minute = int(match.group(2)) if match.group(2) else 0
    suffix = (match.group(3) or "").lower()
    if minute > 59:
        return None
    if suffix:
        if hour < 1 or hour > 12:
            return None
        if suffix == "am" and hour == 12:
            hour = 0
        elif suffix == "pm" and hour != 12:
            hour += 12
    elif hour > 23:
        return None
    return ScheduleMatch(cron=_daily_cron(minute, hour), timezone=DEFAULT_TIMEZONE)


def infer_schedule(text: str) -> ScheduleMatch | None:
    """Chinese patterns first; a Chinese match suppresses English evaluation."""

    return parse_chinese_schedule(text) or parse_english_schedule(text)


def last_user_text(messages: list[ChatMessage]) -> str:
    for message in reversed(messages):
        if message.role == "user":
            return message.content
    return ""


def infer_schedule_from_messages(messages: list[ChatMessage]) -> ScheduleMatch | None:
    """Run schedule inference over the last user message only."""

    return infer_schedule(last_user_text(messages))


def is_chinese_text(text: str) -> bool:
    return bool(_CJK.search(text or ""))


def infer_automation_kind(text: str) -> tuple[AutomationKind, str]:
    """Classify what a scheduled request is about; returns (kind, target)."""

    raw = (text or "").strip()
    lower = raw.lower()
    mentions_news = bool(re.search(r"早报|新闻|资讯", raw)) or any(
        word in lower for word in ("news", "digest", "briefing")
    )
    mentions_ai = "人工智能" in raw or bool(re.search(r"\bai\b", lower)) or "AI" in raw
    if mentions_news and mentions_ai:
        return "ai_news_briefing", "AI news"
    if "竞品" in raw or "竞对" in raw or "competitor" in lower:
        return "competitor_monitor", raw[:80]
    return "other", raw[:80]
