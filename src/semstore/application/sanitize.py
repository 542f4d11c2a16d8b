"""Redaction of sensitive patterns before text is stored."""

from __future__ import annotations

import re

_CARD = re.compile(r"\b\d{4}[\s-]?\d{4}[\s-]?\d{4}[\s-]?\d{4}\b")
_SSN = re.compile(r"\b\d{3}-\d{2}-\d{4}\b")
_EMAIL = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")

CARD_MARKER = "[REDACTED_CC]"
SSN_MARKER = "[REDACTED_SSN]"
EMAIL_MARKER = "[REDACTED_EMAIL]"


class Sanitizer:
    """Replaces card numbers, SSNs and optionally e-mail addresses."""

    def __init__(self, enabled: bool = True, redact_emails: bool = False) -> None:
        self.enabled = enabled
        self.redact_emails = redact_emails

    def __call__(self, text: str) -> str:
        return self.sanitize(text)

    def sanitize(self, text: str) -> str:
        if not self.enabled:
            return text
        text = _CARD.sub(CARD_MARKER, text)
        text = _SSN.sub(SSN_MARKER, text)
        if self.redact_emails:
            text = _EMAIL.sub(EMAIL_MARKER, text)
        return text
