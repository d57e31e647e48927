"""
Logging utilities for the auth service and the refresh orchestrator.

Provides a consistent format and keeps bearer material out of log output:
messages are passed through ``TokenRedactingFilter`` before any handler
formats them.
"""

import logging
import re
import sys

REDACTED = "[redacted]"

_SECRET_PATTERNS = (
    # JWTs (access, Skype and ID tokens).
    re.compile(r"\beyJ[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]*"),
    # Bearer values, including the URL-encoded authtoken cookie form.
    re.compile(r"(Bearer(?:%3D|=|\s+))[^\s&\"',;]+", re.IGNORECASE),
    # Form-encoded or JSON refresh tokens.
    re.compile(r"(refresh_token[\"']?\s*[:=]\s*[\"']?)[^\s&\"',;]+", re.IGNORECASE),
)


def redact(text: str) -> str:
    for pattern in _SECRET_PATTERNS:
        if pattern.groups:
            text = pattern.sub(lambda match: f"{match.group(1)}{REDACTED}", text)
        else:
            text = pattern.sub(REDACTED, text)
    return text


class TokenRedactingFilter(logging.Filter):
    """Rewrite records so token values never reach a handler."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        cleaned = redact(message)
        if cleaned != message:
            record.msg = cleaned
            record.args = None
        return True


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging with a sensible default format."""
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        stream=sys.stdout,
    )
    for handler in logging.getLogger().handlers:
        if not any(isinstance(f, TokenRedactingFilter) for f in handler.filters):
            handler.addFilter(TokenRedactingFilter())
    # httpx logs every request URL at INFO, which includes tenant ids.
    logging.getLogger("httpx").setLevel(logging.WARNING)


__all__ = ["REDACTED", "TokenRedactingFilter", "configure_logging", "redact"]
