"""
Tests for structured logging helpers.
"""
import json
import logging

import pytest

from services.logging_service import (
    StructuredJSONFormatter, log_operation, setup_logging
)


def make_record(msg="hello", **extra):
    record = logging.LogRecord("poker.test", logging.INFO, __file__, 10, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestStructuredJSONFormatter:

    def test_formats_json_with_extra_fields(self):
        output = StructuredJSONFormatter().format(make_record(event_type="poker_story_insert_partial"))
        data = json.loads(output)
        assert data["message"] == "hello"
        assert data["level"] == "INFO"
        assert data["logger"] == "poker.test"
        assert data["extra"]["event_type"] == "poker_story_insert_partial"

    def test_game_and_user_ids_are_top_level(self):
        data = json.loads(StructuredJSONFormatter().format(make_record(poker_id="poker_rec", user_id="user_rec")))
        assert data["poker_id"] == "poker_rec"
        assert data["user_id"] == "user_rec"
        assert "poker_id" not in data.get("extra", {})

    def test_missing_ids_are_empty(self):
        data = json.loads(StructuredJSONFormatter().format(make_record()))
        assert data["poker_id"] == ""
        assert data["user_id"] == ""

    def test_unserializable_extra_is_stringified(self):
        data = json.loads(StructuredJSONFormatter().format(make_record(payload=object())))
        assert data["extra"]["payload"].startswith("<object object")


class TestLogOperation:

    @pytest.mark.asyncio
    async def test_logs_start_and_completion(self, caplog):
        @log_operation("sample_op")
        async def sample():
            return 42

        with caplog.at_level(logging.INFO):
            assert await sample() == 42

        messages = [r.getMessage() for r in caplog.records]
        assert "Operation started: sample_op" in messages
        assert "Operation completed: sample_op" in messages

    @pytest.mark.asyncio
    async def test_logs_and_reraises_failures(self, caplog):
        @log_operation("failing_op")
        async def failing():
            raise RuntimeError("boom")

        with caplog.at_level(logging.INFO):
            with pytest.raises(RuntimeError):
                await failing()

        errors = [r for r in caplog.records if r.levelno == logging.ERROR]
        assert errors[0].error_type == "RuntimeError"
        assert errors[0].operation == "failing_op"


class TestSetupLogging:

    def test_text_format(self, monkeypatch):
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        monkeypatch.setenv("LOG_FORMAT", "text")
        try:
            setup_logging("debug")
            assert root.level == logging.DEBUG
            assert not isinstance(root.handlers[0].formatter, StructuredJSONFormatter)
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)

    def test_json_format_by_default(self, monkeypatch):
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        monkeypatch.delenv("LOG_FORMAT", raising=False)
        monkeypatch.setenv("LOG_LEVEL", "WARNING")
        try:
            setup_logging()
            assert root.level == logging.WARNING
            assert isinstance(root.handlers[0].formatter, StructuredJSONFormatter)
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)
