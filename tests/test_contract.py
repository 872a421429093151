"""Tests for response envelope parsing and reply rendering."""

from __future__ import annotations

import json

from persona_assistant.contract import (
    META_DELIMITER,
    NO_VISIBLE_REPLY,
    build_meta,
    extract_first_json_object,
    parse_envelope,
    render_reply,
)


def test_fenced_json_with_prose_is_parsed():
    envelope = parse_envelope('Sure! ```json\n{"reply":"hi"}\n```')
    assert envelope.reply == "hi"
    assert envelope.automation is None


def test_braces_inside_strings_do_not_end_the_object():
    text = 'prefix {"reply": "use {braces} and \\"quotes}\\"", "thinking_steps": []} trailing }'
    parsed = extract_first_json_object(text)
    assert parsed == {"reply": 'use {braces} and "quotes}"', "thinking_steps": []}


def test_unbalanced_or_invalid_json_returns_none():
    assert extract_first_json_object("no json here") is None
    assert extract_first_json_object('{"reply": "never closed"') is None
    assert extract_first_json_object("{not: valid}") is None


def test_plain_text_becomes_the_reply():
    envelope = parse_envelope("  just words  ")
    assert envelope.reply == "just words"
    assert envelope.thinking_steps == []
    assert envelope.task_plan == []


def test_empty_text_gets_placeholder_reply():
    assert parse_envelope("").reply == NO_VISIBLE_REPLY
    assert parse_envelope("   ").reply == NO_VISIBLE_REPLY


def test_missing_reply_falls_back_to_raw_text():
    raw = '{"thinking_steps": [{"label": "Think"}]}'
    envelope = parse_envelope(raw)
    assert envelope.reply == raw
    assert [step.label for step in envelope.thinking_steps] == ["Think"]


def test_thinking_steps_are_capped_and_cleaned():
    steps = [{"label": f"step {i}"} for i in range(30)] + [{"label": "  "}]
    envelope = parse_envelope(json.dumps({"reply": "ok", "thinking_steps": [{"label": ""}, "x", *steps]}))
    assert len(envelope.thinking_steps) == 20
    assert envelope.thinking_steps[0].label == "step 0"


def test_task_plan_caps_drops_placeholders_and_normalizes_status():
    plan = [
        {"title": "Understand requirements and constraints", "status": "completed"},
        {"title": "Collect sources", "status": "done"},
        {"title": "Write digest", "status": "in_progress"},
    ] + [{"title": f"extra {i}"} for i in range(20)]
    envelope = parse_envelope(json.dumps({"reply": "ok", "task_plan": plan}))

    assert len(envelope.task_plan) == 12
    assert envelope.task_plan[0].title == "Collect sources"
    assert envelope.task_plan[0].status == "pending"
    assert envelope.task_plan[1].status == "in_progress"


def test_automation_directive_parsing():
    envelope = parse_envelope(
        json.dumps(
            {
                "reply": "ok",
                "automation": {
                    "auto_create": True,
                    "name": " Morning digest ",
                    "cron": "0 8 * * *",
                    "timezone": "",
                    "kind": "weather",
                },
            }
        )
    )
    directive = envelope.automation
    assert directive.auto_create is True
    assert directive.name == "Morning digest"
    assert directive.cron == "0 8 * * *"
    assert directive.timezone is None
    assert directive.kind == "other"
    assert directive.target == ""


def test_auto_create_requires_literal_true():
    envelope = parse_envelope('{"reply": "ok", "automation": {"auto_create": "true"}}')
    assert envelope.automation.auto_create is False


def test_render_reply_appends_meta_once():
    envelope = parse_envelope('{"reply": "你好", "thinking_steps": [{"label": "想一想"}]}')
    meta = build_meta(envelope, {"id": "a-1"})
    rendered = render_reply(envelope.reply, meta)

    reply, _, block = rendered.partition(META_DELIMITER)
    assert reply == "你好"
    assert rendered.count(META_DELIMITER) == 1
    assert json.loads(block) == {"thinking_steps": [{"label": "想一想"}], "automation": {"id": "a-1"}}
    assert "想一想" in block


def test_render_reply_without_meta_is_unchanged():
    assert render_reply("hi", build_meta(parse_envelope("hi"))) == "hi"
