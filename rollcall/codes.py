"""Utility functions to classify decoded scan payloads."""

from __future__ import annotations

import re
from dataclasses import dataclass

STRUCTURED = "structured"
TOKEN = "token"
INVALID = "invalid"

MAX_TOKEN_LENGTH = 128
TOKEN_PATTERN = re.compile(r"^[\w.\-:/#@+]+$")
PERSON_ID_PATTERN = re.compile(r"^[\w\-]+$")


@dataclass(slots=True)
class ParsedPayload:
    """Structured representation of a decoded payload."""

    kind: str
    value: str
    reason: str = ""


def parse_payload(payload: str, prefix: str) -> ParsedPayload:
    """Split a payload into a structured person id or a raw lookup token."""

    text = payload.strip()
    if not text:
        return ParsedPayload(INVALID, text, "empty payload")

    if prefix and text.startswith(prefix):
        person_id = text[len(prefix):]
        if not person_id:
            return ParsedPayload(INVALID, text, "missing person id")
        if not PERSON_ID_PATTERN.match(person_id):
            return ParsedPayload(INVALID, text, "invalid person id")
        return ParsedPayload(STRUCTURED, person_id)

    return ParsedPayload(TOKEN, text)


def is_plausible_token(token: str) -> bool:
    return len(token) <= MAX_TOKEN_LENGTH and bool(TOKEN_PATTERN.match(token))


def structured_code(person_id: str, prefix: str) -> str:
    """Return the payload a person's printed code carries."""

    return f"{prefix}{person_id}"


__all__ = [
    "ParsedPayload",
    "parse_payload",
    "is_plausible_token",
    "structured_code",
    "STRUCTURED",
    "TOKEN",
    "INVALID",
]
