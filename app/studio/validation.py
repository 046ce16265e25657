"""
Input validation shared by the canvas and data API modules.

Free text that ends up rendered in the admin UI is rejected (not escaped) when it
looks like markup or a script vector.
"""
from __future__ import annotations

import re
from collections.abc import Iterable

from app.studio.constants import CONTENT_MAX_LENGTH, EVIDENCE_MAX_LENGTH
from app.studio.results import validation_error

_HTML_TAG = re.compile(r"<[^>]*>")
_XSS_PATTERNS = (
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"on\w+\s*=", re.IGNORECASE),  # onclick=, onerror=, ...
    re.compile(r"data:", re.IGNORECASE),
)


def unsafe_markup_reason(text: str) -> str | None:
    if _HTML_TAG.search(text):
        return "cannot contain HTML tags"
    for pattern in _XSS_PATTERNS:
        if pattern.search(text):
            return "contains invalid characters"
    return None


def clean_text(
    value: object,
    *,
    label: str,
    max_length: int,
    required: bool = False,
) -> str | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise validation_error(f"{label} is required")
        return None
    if not isinstance(value, str):
        raise validation_error(f"{label} must be a string")
    trimmed = value.strip()
    if len(trimmed) > max_length:
        raise validation_error(f"{label} must be {max_length} characters or less")
    reason = unsafe_markup_reason(trimmed)
    if reason:
        raise validation_error(f"{label} {reason}")
    return trimmed


def validate_item_content(content: object) -> str:
    return clean_text(content, label="Item content", max_length=CONTENT_MAX_LENGTH, required=True)  # type: ignore[return-value]


def validate_evidence(evidence: object) -> str | None:
    return clean_text(evidence, label="Evidence", max_length=EVIDENCE_MAX_LENGTH)


def validate_choice(value: object, choices: Iterable[str], *, label: str) -> str | None:
    """Empty means "not set"; anything else must be one of ``choices``."""
    if value is None or value == "":
        return None
    allowed = tuple(choices)
    if value not in allowed:
        raise validation_error(f"Invalid {label}: {value}. Must be one of: {', '.join(allowed)}")
    return str(value)


def validate_id(value: object, *, label: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise validation_error(f"{label} is required")
    return value.strip()
