"""Logging filters that scrub sensitive content."""

from __future__ import annotations

import logging
import re

_SENSITIVE_PATTERN = re.compile(
    r"(Authorization: Bearer\s+[\w\.-]+|Bearer\s+[\w-]+\.[\w-]+\.[\w-]+|access_token\"\s*:\s*\"[^\"]+\")",
    re.IGNORECASE,
)
# ten-digit national health identifiers, bare or in 3-3-4 grouping
_IDENTIFIER_PATTERN = re.compile(r"(?<!\d)\d{3}[ -]?\d{3}[ -]?\d{4}(?!\d)")


def scrub(message: str) -> str:
    message = _SENSITIVE_PATTERN.sub("**REDACTED**", message)
    return _IDENTIFIER_PATTERN.sub("***-***-****", message)


class SensitiveFilter(logging.Filter):
    """Replace tokens and resident identifiers in log messages with redaction markers."""

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = scrub(record.msg)
        if record.args:
            if isinstance(record.args, dict):
                record.args = {
                    key: scrub(value) if isinstance(value, str) else value
                    for key, value in record.args.items()
                }
            else:
                record.args = tuple(
                    scrub(arg) if isinstance(arg, str) else arg for arg in record.args
                )
        return True


__all__ = ["SensitiveFilter", "scrub"]
