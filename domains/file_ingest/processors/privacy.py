"""
Secret and PII scrubbing applied to extracted text before analysis.

Best effort: the patterns catch common credential shapes, not every secret.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Pattern, Sequence

from app.utils.config import Settings
from app.utils.helpers import redact_text

REDACTED = "[REDACTED]"


@dataclass(frozen=True)
class SecretPattern:
    name: str
    regex: Pattern[str]


@dataclass(frozen=True)
class SecretFinding:
    pattern: str
    start: int
    end: int


SECRET_PATTERNS: Sequence[SecretPattern] = (
    SecretPattern("AWS Access Key", re.compile(r"\b(?:AKIA|ASIA)[0-9A-Z]{16}\b")),
    SecretPattern(
        "AWS Secret Key",
        re.compile(r"(?i)aws[_\-\s]*secret[_\-\s]*(?:access[_\-\s]*)?key['\"]?\s*[:=]\s*['\"]?[A-Za-z0-9/+=]{40}"),
    ),
    SecretPattern("GitHub Token", re.compile(r"\bgh[pousr]_[A-Za-z0-9]{36,}\b")),
    SecretPattern("API Key", re.compile(r"\bsk-(?:or-v1-|proj-|ant-)?[A-Za-z0-9_\-]{20,}")),
    SecretPattern("Slack Token", re.compile(r"\bxox[abposr]-[A-Za-z0-9\-]{10,}")),
    SecretPattern(
        "Private Key",
        re.compile(
            r"-----BEGIN [A-Z ]*PRIVATE KEY-----(?:[\s\S]*?-----END [A-Z ]*PRIVATE KEY-----)?"
        ),
    ),
    SecretPattern("JWT", re.compile(r"\beyJ[A-Za-z0-9_\-]{10,}\.[A-Za-z0-9_\-]{10,}\.[A-Za-z0-9_\-]{10,}")),
    SecretPattern(
        "Credential Assignment",
        re.compile(r"(?i)\b(?:password|passwd|secret|api[_-]?key|access[_-]?token)\s*[:=]\s*['\"][^'\"\s]{8,}['\"]"),
    ),
)

PII_PATTERNS: Sequence[SecretPattern] = (
    SecretPattern("Email", re.compile(r"\b[A-Za-z0-9._%+\-]+@[A-Za-z0-9.\-]+\.[A-Za-z]{2,}\b")),
    SecretPattern("Phone Number", re.compile(r"(?<!\d)(?:\+?1[\s.\-]?)?\(?\d{3}\)?[\s.\-]\d{3}[\s.\-]\d{4}(?!\d)")),
)


def _active_patterns(include_pii: bool) -> List[SecretPattern]:
    patterns = list(SECRET_PATTERNS)
    if include_pii:
        patterns.extend(PII_PATTERNS)
    return patterns


def scan_for_secrets(text: str, include_pii: bool = False) -> List[SecretFinding]:
    """Report every pattern match in ``text`` ordered by position."""
    findings = [
        SecretFinding(pattern=pattern.name, start=match.start(), end=match.end())
        for pattern in _active_patterns(include_pii)
        for match in pattern.regex.finditer(text)
    ]
    return sorted(findings, key=lambda finding: (finding.start, finding.end))


def redact_secrets(text: str, include_pii: bool = False, extra_patterns: Iterable[str] = ()) -> str:
    """Replace every secret (and optionally PII) match with ``[REDACTED]``."""
    for pattern in _active_patterns(include_pii):
        text = pattern.regex.sub(REDACTED, text)
    return redact_text(text, list(extra_patterns))


class Redactor:
    """Settings-bound redaction pass."""

    def __init__(self, settings: Optional[Settings] = None, *, enabled: bool = True,
                 include_pii: bool = False, extra_patterns: Sequence[str] = ()):
        if settings is not None:
            enabled = settings.redact_secrets
            include_pii = settings.redact_pii
            extra_patterns = settings.get_redact_patterns()
        self.enabled = enabled
        self.include_pii = include_pii
        self.extra_patterns = list(extra_patterns)

    def __call__(self, text: str) -> str:
        if not self.enabled:
            return redact_text(text, self.extra_patterns)
        return redact_secrets(text, include_pii=self.include_pii, extra_patterns=self.extra_patterns)
