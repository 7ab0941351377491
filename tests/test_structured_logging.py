"""Tests for structured logging helpers."""

import logging

from churchsync.core.structured_logging import build_log_context, configure_logging


def test_build_log_context_includes_only_provided_fields():
    context = build_log_context(
        member_id="rec1",
        volunteer_id="recVol",
        table="Members",
        operation="update",
        attempt=2,
        event="member_fields_merged",
    )

    assert context == {
        "member_id": "rec1",
        "volunteer_id": "recVol",
        "table": "Members",
        "operation": "update",
        "attempt": 2,
        "event": "member_fields_merged",
    }


def test_build_log_context_ignores_empty_fields():
    context = build_log_context(
        member_id="",
        volunteer_id=None,
        attempt=0,
    )

    assert context == {"attempt": 0}


def test_configure_logging_sets_root_level(monkeypatch):
    calls = []
    monkeypatch.setattr("logging.basicConfig", lambda **kwargs: calls.append(kwargs))

    configure_logging("warning")

    assert calls[0]["level"] == logging.WARNING
