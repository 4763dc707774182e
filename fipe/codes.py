"""Parsing and normalisation of FIPE reference codes."""
from __future__ import annotations

import re
from typing import Hashable, Iterable, List, Optional, TypeVar

CODE_PATTERN = re.compile(r"^\d{6}-\d$", re.ASCII)
_TOKEN_SEPARATORS = re.compile(r"[\s,;]+")
_NON_DIGITS = re.compile(r"\D", re.ASCII)

NO_VALID_CODES_MESSAGE = "Provide at least one FIPE code in the format 000000-0."

T = TypeVar("T", bound=Hashable)


class NoValidCodesError(ValueError):
    """Raised when a batch contains no code that survives normalisation."""

    def __init__(self, message: str = NO_VALID_CODES_MESSAGE) -> None:
        super().__init__(message)


def normalize_code(raw: object) -> Optional[str]:
    """Return ``raw`` as a canonical ``000000-0`` code, or ``None`` if it is not one.

    Values already in canonical form are returned untouched. Anything else is
    reduced to its digits and accepted only when exactly seven remain.
    """

    if raw is None:
        return None
    if isinstance(raw, float) and raw.is_integer():
        raw = int(raw)
    trimmed = str(raw).strip()
    if not trimmed:
        return None

    if CODE_PATTERN.match(trimmed):
        return trimmed

    digits = _NON_DIGITS.sub("", trimmed)
    if len(digits) == 7:
        return f"{digits[:6]}-{digits[6]}"
    return None


def parse_codes(text: Optional[str]) -> List[str]:
    """Split free-form text on whitespace, commas and semicolons into valid codes."""

    if not text:
        return []
    codes: List[str] = []
    for token in _TOKEN_SEPARATORS.split(str(text)):
        normalized = normalize_code(token)
        if normalized:
            codes.append(normalized)
    return codes


def merge_texts(*sources: Optional[str]) -> str:
    """Join independent text inputs so their order is kept when parsed."""

    return "\n".join(source or "" for source in sources)


def unique_preserve_order(items: Iterable[T]) -> List[T]:
    seen: set = set()
    result: List[T] = []
    for item in items:
        if item in seen:
            continue
        seen.add(item)
        result.append(item)
    return result


def collect_codes(codes: object = None, text: Optional[str] = None) -> List[str]:
    """Merge explicit candidate codes with codes found in ``text``.

    ``codes`` is only honoured when it is a list or tuple. Explicit candidates
    come first, followed by whatever ``text`` yields; the merged sequence is
    normalised and deduplicated. Invalid candidates are dropped silently.
    """

    candidates: List[object] = list(codes) if isinstance(codes, (list, tuple)) else []
    candidates.extend(parse_codes(text))
    normalized = (normalize_code(candidate) for candidate in candidates)
    return unique_preserve_order(code for code in normalized if code)


def decode_upload(data: bytes) -> str:
    """Decode uploaded file bytes, tolerating a UTF-8 BOM and stray bytes."""

    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError:
        return data.decode("utf-8", errors="ignore")


__all__ = [
    "CODE_PATTERN",
    "NO_VALID_CODES_MESSAGE",
    "NoValidCodesError",
    "collect_codes",
    "decode_upload",
    "merge_texts",
    "normalize_code",
    "parse_codes",
    "unique_preserve_order",
]
