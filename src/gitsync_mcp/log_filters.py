"""Logging filter that keeps access tokens out of log output."""

from __future__ import annotations

import logging
import re

_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"gh[pousr]_[A-Za-z0-9_]+"), "[REDACTED_ACCESS_TOKEN]"),
    (re.compile(r"github_pat_[A-Za-z0-9_]+"), "[REDACTED_PAT]"),
    (re.compile(r'("(?:access|refresh)_token"\s*:\s*)"[^"]*"', re.IGNORECASE), r'\1"[REDACTED_TOKEN]"'),
    (re.compile(r'("token"\s*:\s*)"[A-Za-z0-9_\-\.]+"', re.IGNORECASE), r'\1"[REDACTED_TOKEN]"'),
    (
        re.compile(r"(Authorization\s*:\s*Bearer)\s+[A-Za-z0-9_\-\.~=+/]+", re.IGNORECASE),
        r"\1 [REDACTED]",
    ),
    (re.compile(r"(Bearer)\s+[A-Za-z0-9_\-\.~=+/]{8,}"), r"\1 [REDACTED]"),
)


def redact_sensitive(message: str) -> str:
    """Replace GitHub tokens, bearer headers and JSON token fields."""

    if not message:
        return message
    for pattern, replacement in _PATTERNS:
        message = pattern.sub(replacement, message)
    return message


class TokenRedactionFilter(logging.Filter):
    """Rewrites each record's message and string extras before it is emitted."""

    _RESERVED = frozenset(logging.makeLogRecord({}).__dict__) | {"message", "asctime"}

    def filter(self, record: logging.LogRecord) -> bool:
        if record.args:
            record.msg = record.getMessage()
            record.args = None
        record.msg = redact_sensitive(str(record.msg))
        for key, value in list(record.__dict__.items()):
            if key not in self._RESERVED and isinstance(value, str):
                setattr(record, key, redact_sensitive(value))
        return True


__all__ = ["TokenRedactionFilter", "redact_sensitive"]
