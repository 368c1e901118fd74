"""Secret-safe logging for media-resolver.

httpx logs every request URL at INFO, and TMDB authenticates with an
``api_key`` query parameter, so anything that reaches a handler must be
scrubbed before it is written:
- credential query parameters and bearer tokens in messages
- sensitive keys in dictionaries dumped for debugging
"""

from __future__ import annotations

import logging
import re
from typing import Any

# Fields that should be redacted in logs
REDACT_FIELDS = frozenset(
    {
        "password",
        "secret",
        "token",
        "api_key",
        "apikey",
        "authorization",
        "credential",
        "access_token",
        "client_secret",
    }
)

PATTERNS = {
    "query_secret": re.compile(
        r"([?&](?:api_key|apikey|access_token|token)=)[^&\s\"']+", re.IGNORECASE
    ),
    "bearer": re.compile(r"(Bearer\s+)[A-Za-z0-9._~+/=-]+", re.IGNORECASE),
    "email": re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"),
}


def redact_value(value: str, visible_chars: int = 4) -> str:
    """Redact a sensitive value, keeping only its first few characters.

    Args:
        value: Value to redact
        visible_chars: Number of characters to show

    Returns:
        Redacted string (e.g., "sk-a***")
    """
    if len(value) <= visible_chars:
        return "***"
    return f"{value[:visible_chars]}***"


def redact_dict(
    data: dict[str, Any],
    redact_fields: frozenset[str] | None = None,
) -> dict[str, Any]:
    """Recursively redact sensitive fields in a dictionary.

    Args:
        data: Dictionary to redact
        redact_fields: Field names to redact (case-insensitive substring match)

    Returns:
        New dictionary with sensitive string values redacted
    """
    if redact_fields is None:
        redact_fields = REDACT_FIELDS

    result: dict[str, Any] = {}
    for key, value in data.items():
        key_lower = key.lower()
        sensitive = key_lower in redact_fields or any(f in key_lower for f in redact_fields)

        if sensitive and isinstance(value, str):
            result[key] = redact_value(value)
        elif isinstance(value, dict):
            result[key] = redact_dict(value, redact_fields)
        elif isinstance(value, list):
            result[key] = [
                redact_dict(item, redact_fields) if isinstance(item, dict) else item
                for item in value
            ]
        else:
            result[key] = value

    return result


def sanitize_message(message: str) -> str:
    """Strip credentials and e-mail addresses from a log message."""
    result = PATTERNS["query_secret"].sub(r"\1***", message)
    result = PATTERNS["bearer"].sub(r"\1***", result)
    result = PATTERNS["email"].sub("[EMAIL]", result)
    return result


class SafeLogFormatter(logging.Formatter):
    """Formatter that renders the message and scrubs it before output.

    Arguments are interpolated first so that secrets passed as ``%s``
    parameters (httpx passes the request URL this way) are caught too.
    """

    def format(self, record: logging.LogRecord) -> str:
        # Work on a copy; other handlers may share the record
        record = logging.makeLogRecord(record.__dict__)
        record.msg = sanitize_message(record.getMessage())
        record.args = None
        return super().format(record)


def configure_safe_logging(
    level: int = logging.INFO,
    format_string: str | None = None,
) -> None:
    """Configure root logging with secret-safe formatting.

    Args:
        level: Logging level
        format_string: Optional custom format string
    """
    if format_string is None:
        format_string = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    handler = logging.StreamHandler()
    handler.setFormatter(SafeLogFormatter(fmt=format_string))

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    # Repeated calls replace the handler rather than stacking another one
    for existing in list(root_logger.handlers):
        if isinstance(existing.formatter, SafeLogFormatter):
            root_logger.removeHandler(existing)
    root_logger.addHandler(handler)

    # httpx/httpcore are chatty below WARNING unless we are debugging
    if level > logging.DEBUG:
        logging.getLogger("httpcore").setLevel(logging.WARNING)


## Tests


def test_redact_value():
    assert redact_value("sk-secret-key-12345") == "sk-s***"
    assert redact_value("abc") == "***"
    assert redact_value("abcdef", 3) == "abc***"


def test_redact_dict():
    data = {
        "catalog": {"api_key": "0123456789abcdef", "language": "en-US"},
        "classifier": {"api_key_env": "OPENAI_API_KEY", "model_id": "gpt-4o-mini"},
        "items": [{"token": "abcdefgh", "kind": "bearer"}],
    }

    redacted = redact_dict(data)

    assert redacted["catalog"]["api_key"] == "0123***"
    assert redacted["catalog"]["language"] == "en-US"
    assert redacted["classifier"]["model_id"] == "gpt-4o-mini"
    assert redacted["items"][0]["token"] == "abcd***"
    assert redacted["items"][0]["kind"] == "bearer"


def test_sanitize_message_query_secret():
    msg = "GET https://api.themoviedb.org/3/search/movie?query=Up&api_key=deadbeef&page=1"
    sanitized = sanitize_message(msg)
    assert "deadbeef" not in sanitized
    assert "api_key=***" in sanitized
    assert "page=1" in sanitized
    assert "query=Up" in sanitized


def test_sanitize_message_bearer_and_email():
    sanitized = sanitize_message("Authorization: Bearer eyJhbGciOi.x.y for me@example.com")
    assert "eyJhbGciOi" not in sanitized
    assert "[EMAIL]" in sanitized


def test_safe_log_formatter_scrubs_args():
    formatter = SafeLogFormatter(fmt="%(message)s")
    record = logging.LogRecord(
        name="httpx",
        level=logging.INFO,
        pathname="",
        lineno=0,
        msg='HTTP Request: %s %s "%s"',
        args=("GET", "https://api.themoviedb.org/3/movie/27205?api_key=s3cr3t", "200 OK"),
        exc_info=None,
    )

    formatted = formatter.format(record)
    assert "s3cr3t" not in formatted
    assert "api_key=***" in formatted
    # Original record untouched
    assert record.args is not None


def test_configure_safe_logging_replaces_handler():
    root_logger = logging.getLogger()
    level = root_logger.level
    try:
        configure_safe_logging(level=logging.WARNING)
        configure_safe_logging(level=logging.WARNING)
        safe = [h for h in root_logger.handlers if isinstance(h.formatter, SafeLogFormatter)]
        assert len(safe) == 1
    finally:
        for handler in list(root_logger.handlers):
            if isinstance(handler.formatter, SafeLogFormatter):
                root_logger.removeHandler(handler)
        root_logger.setLevel(level)
