"""
Tests for utils.logging module.
"""

import json
import logging
import sys

import pytest

from llm_rank_watcher.utils.logging import (
    JSONFormatter,
    SecretRedactingFilter,
    log_with_context,
    setup_logging,
)


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


def make_record(msg, **extra):
    record = logging.LogRecord(
        name="llm_rank_watcher.test",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=msg,
        args=None,
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:
    def test_basic_fields(self):
        entry = json.loads(JSONFormatter().format(make_record("hello")))

        assert entry["level"] == "INFO"
        assert entry["component"] == "llm_rank_watcher.test"
        assert entry["message"] == "hello"
        assert entry["timestamp"].endswith("Z")
        assert "context" not in entry

    def test_context_and_run_id(self):
        record = make_record("x", context={"attempt": 2}, run_id="run-1")

        entry = json.loads(JSONFormatter().format(record))

        assert entry["context"] == {"attempt": 2}
        assert entry["run_id"] == "run-1"

    def test_exception(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = make_record("failed")
            record.exc_info = sys.exc_info()

        entry = json.loads(JSONFormatter().format(record))

        assert "RuntimeError: boom" in entry["exception"]


class TestSecretRedactingFilter:
    @pytest.mark.parametrize(
        ("secret", "masked"),
        [
            ("sk-proj-abcdefghijklmnopqrstuvwxyz1234", "sk-...1234"),
            ("AIzaSyA1234567890abcdefghijklmnopqrstu", "AIza...rstu"),
            ("pplx-abcdefghijklmnopqrstuvwxyz9876", "pplx-...9876"),
        ],
    )
    def test_masks_provider_keys(self, secret, masked):
        redacted = SecretRedactingFilter.redact(f"key={secret} rejected")

        assert secret not in redacted
        assert masked in redacted

    def test_plain_text_untouched(self):
        assert SecretRedactingFilter.redact("OpenAI error 401") == "OpenAI error 401"

    def test_filters_message_and_context(self):
        record = make_record(
            "using sk-abcdefghijklmnopqrstuvwxyz",
            context={"header": "Bearer abcdefghijklmnopqrstuvwxyz0123", "n": 3},
        )

        assert SecretRedactingFilter().filter(record) is True
        assert "abcdefghijklmnopqrst" not in record.msg
        assert "abcdefghijklmnopqrst" not in record.context["header"]
        assert record.context["n"] == 3


class TestSetupLogging:
    @pytest.mark.parametrize(
        ("verbose", "quiet_logs", "level"),
        [
            (True, False, logging.DEBUG),
            (True, True, logging.DEBUG),
            (False, True, logging.WARNING),
            (False, False, logging.INFO),
        ],
    )
    def test_levels(self, restore_root_logger, verbose, quiet_logs, level):
        setup_logging(verbose=verbose, quiet_logs=quiet_logs)

        assert restore_root_logger.level == level
        assert len(restore_root_logger.handlers) == 1

    def test_repeated_setup_does_not_duplicate_handlers(self, restore_root_logger):
        setup_logging()
        setup_logging()

        assert len(restore_root_logger.handlers) == 1

    def test_writes_json_to_stderr(self, restore_root_logger, capsys):
        setup_logging()

        log_with_context(
            logging.getLogger("llm_rank_watcher.test"),
            logging.WARNING,
            "checkpoint failed",
            context={"completed_llm_calls": 15},
            run_id="run-1",
        )

        captured = capsys.readouterr()
        assert captured.out == ""
        entry = json.loads(captured.err.strip().splitlines()[-1])
        assert entry["message"] == "checkpoint failed"
        assert entry["context"] == {"completed_llm_calls": 15}
        assert entry["run_id"] == "run-1"


class TestLogWithContext:
    def test_without_extras(self, caplog):
        logger = logging.getLogger("llm_rank_watcher.test")

        with caplog.at_level(logging.INFO):
            log_with_context(logger, logging.INFO, "plain")

        record = caplog.records[-1]
        assert record.getMessage() == "plain"
        assert not hasattr(record, "run_id")
