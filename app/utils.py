"""Utility helpers for the Top Picks service."""

from __future__ import annotations

import re
from typing import Any, Iterable


LANGUAGE_CODE_RE = re.compile(r"^[a-z]{2,3}$")


def coerce_external_id(value: Any) -> str | None:
    """Return a provider identifier as a non-empty string, or ``None``."""

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if value <= 0:
            return None
        return str(int(value))
    text = str(value).strip()
    if not text or text in {"0", "null", "None"}:
        return None
    return text


def parse_year(value: Any) -> int | None:
    """Extract a four digit year from ints or ISO-ish date strings."""

    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if not isinstance(value, str) or len(value) < 4:
        return None
    try:
        return int(value[:4])
    except ValueError:
        return None


def build_image_url(path: str | None, base_url: str) -> str | None:
    """Join a provider image path onto its CDN base URL."""

    if not path:
        return None
    if path.startswith("http"):
        return path
    return f"{base_url.rstrip('/')}/{path.lstrip('/')}"


def normalize_language_codes(value: object) -> tuple[str, ...]:
    """Normalise an allow-list given as a comma string or iterable of codes."""

    if value is None:
        return ()
    if isinstance(value, str):
        raw_values: Iterable[object] = value.split(",")
    elif isinstance(value, Iterable):
        raw_values = value
    else:
        raise TypeError("languages must be a string or iterable of strings")

    cleaned: list[str] = []
    for entry in raw_values:
        code = str(entry).strip().lower()
        if not code:
            continue
        if not LANGUAGE_CODE_RE.match(code):
            raise ValueError(f"Invalid language code: {entry!r}")
        if code not in cleaned:
            cleaned.append(code)
    return tuple(cleaned)
