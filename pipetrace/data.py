"""
Helpers for cleaning raw GitLab payloads before they become span attributes.
"""

from __future__ import annotations

import copy
import re
from typing import Any, Dict

from .models import RawMap

_ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;]*[a-zA-Z]")


def strip_ansi(text: str) -> str:
    """Remove ANSI colour/control sequences from job output fields."""
    if "\x1b" not in text:
        return text
    return _ANSI_ESCAPE.sub("", text)


def clean_raw(raw: RawMap) -> RawMap:
    """Strip escape sequences from every string in ``raw``, in place."""
    for key, value in raw.items():
        if isinstance(value, str):
            raw[key] = strip_ansi(value)
        elif isinstance(value, dict):
            clean_raw(value)
        elif isinstance(value, list):
            for index, item in enumerate(value):
                if isinstance(item, str):
                    value[index] = strip_ansi(item)
    return raw


def to_raw(payload: Dict[str, Any]) -> RawMap:
    """Return a sanitized deep copy of an API payload."""
    if not isinstance(payload, dict):
        raise TypeError(f"expected a JSON object, got {type(payload).__name__}")
    return clean_raw(copy.deepcopy(payload))
