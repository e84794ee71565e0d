"""
Structured JSON logging for LLM Rank Watcher.

Every log line is a JSON object written to stderr (stdout is reserved for
CLI output) with a UTC timestamp, level, component, message and optional
structured context and run_id. A redaction filter masks anything that looks
like a provider API key before it is formatted.

Examples:
    >>> from llm_rank_watcher.utils.logging import setup_logging, log_with_context
    >>> setup_logging(verbose=True)
    >>> logger = logging.getLogger("llm_rank_watcher.analysis.orchestrator")
    >>> log_with_context(logger, logging.INFO, "Run started", run_id="2025-...")

Security:
    - NEVER log full API keys
    - Provider error bodies are logged truncated and pass through redaction
"""

import json
import logging
import re
import sys
from typing import Any

from llm_rank_watcher.utils.time import utc_timestamp


class JSONFormatter(logging.Formatter):
    """
    Format log records as single-line JSON objects.

    Fields: timestamp, level, component, message, plus context (from
    extra={"context": {...}}), run_id (from extra={"run_id": ...}) and
    exception when exc_info is set.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": utc_timestamp(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        if hasattr(record, "context") and isinstance(record.context, dict):
            log_entry["context"] = record.context

        if hasattr(record, "run_id"):
            log_entry["run_id"] = record.run_id

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


class SecretRedactingFilter(logging.Filter):
    """
    Redact API keys and bearer tokens from log messages and context.

    Matches are replaced with a masked form keeping the last 4 characters:
    "sk-proj-abcdef123456..." -> "sk-...3456", "AIzaSy..." -> "AIza...wxyz".
    """

    SECRET_PATTERNS = [
        # OpenAI / Anthropic style keys
        (re.compile(r"\bsk-[a-zA-Z0-9_-]{20,}\b"), "sk-...{last4}"),
        # Google API keys
        (re.compile(r"\bAIza[a-zA-Z0-9_-]{30,}\b"), "AIza...{last4}"),
        # Perplexity keys
        (re.compile(r"\bpplx-[a-zA-Z0-9_-]{20,}\b"), "pplx-...{last4}"),
        (re.compile(r"\bBearer\s+[a-zA-Z0-9_.-]{20,}\b"), "Bearer ***{last4}"),
        # Generic long tokens
        (re.compile(r"\b[a-zA-Z0-9_-]{40,}\b"), "***{last4}"),
    ]

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = self.redact(str(record.msg))

        if record.args:
            if isinstance(record.args, dict):
                record.args = {k: self.redact(str(v)) for k, v in record.args.items()}
            elif isinstance(record.args, tuple):
                record.args = tuple(self.redact(str(arg)) for arg in record.args)

        if hasattr(record, "context") and isinstance(record.context, dict):
            record.context = self._redact_dict(record.context)

        # Always emit; only the content changes
        return True

    @classmethod
    def redact(cls, text: str) -> str:
        """
        Redact secrets in text, keeping only the last 4 characters.

        Args:
            text: Input string potentially containing secrets

        Returns:
            String with secrets replaced by masked versions
        """
        for pattern, template in cls.SECRET_PATTERNS:
            text = pattern.sub(
                lambda match, t=template: t.format(last4=match.group(0)[-4:]), text
            )
        return text

    def _redact_dict(self, data: dict[str, Any]) -> dict[str, Any]:
        result = {}
        for key, value in data.items():
            if isinstance(value, str):
                result[key] = self.redact(value)
            elif isinstance(value, dict):
                result[key] = self._redact_dict(value)
            elif isinstance(value, list):
                result[key] = [self.redact(v) if isinstance(v, str) else v for v in value]
            else:
                result[key] = value
        return result


def setup_logging(verbose: bool = False, quiet_logs: bool = False) -> None:
    """
    Configure structured JSON logging on the root logger.

    Args:
        verbose: If True, log at DEBUG. Takes precedence over quiet_logs.
        quiet_logs: If True (and not verbose), only WARNING and above are
            emitted so human-mode CLI output is not interleaved with JSON.

    Example:
        >>> setup_logging(verbose=False, quiet_logs=True)
    """
    if verbose:
        level = logging.DEBUG
    elif quiet_logs:
        level = logging.WARNING
    else:
        level = logging.INFO

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Prevents duplicate lines when called more than once (tests, CLI re-entry)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter())
    handler.addFilter(SecretRedactingFilter())
    root_logger.addHandler(handler)

    # httpx logs every request URL at INFO; Gemini URLs carry the model name only
    logging.getLogger("httpx").setLevel(logging.WARNING)


def log_with_context(
    logger: logging.Logger,
    level: int,
    message: str,
    context: dict[str, Any] | None = None,
    run_id: str | None = None,
) -> None:
    """
    Log a message with structured context and optional run_id.

    Equivalent to logger.log(level, message, extra={"context": ..., "run_id": ...}).

    Args:
        logger: Logger instance
        level: Log level (logging.INFO, logging.WARNING, etc.)
        message: Human-readable log message
        context: Optional dict with additional structured data
        run_id: Optional analysis run identifier

    Example:
        >>> log_with_context(
        ...     logger,
        ...     logging.WARNING,
        ...     "Checkpoint failed",
        ...     context={"completed_llm_calls": 15},
        ...     run_id="2025-11-02T08-30-00Z-3f9c2a1b",
        ... )
    """
    extra = {}

    if context is not None:
        extra["context"] = context

    if run_id is not None:
        extra["run_id"] = run_id

    logger.log(level, message, extra=extra if extra else None)
