"""
Flattening of nested GitLab payloads into span attributes.
"""

from __future__ import annotations

from .models import AttributeSet, RawMap


def flatten_map(prefix: str, raw: RawMap) -> AttributeSet:
    """Flatten ``raw`` into dotted ``(key, value)`` string pairs.

    Nested objects extend the key with ``.``. Lists contribute only their
    first element, and only when it is a string. Numbers are rendered
    without a fractional part, booleans as ``true``/``false`` and nulls
    as ``None``. Values of any other type are dropped.
    """
    attrs: AttributeSet = []
    for key, value in raw.items():
        full_key = f"{prefix}.{key}" if prefix else key
        if isinstance(value, dict):
            attrs.extend(flatten_map(full_key, value))
        elif isinstance(value, list):
            if value and isinstance(value[0], str):
                attrs.append((full_key, value[0]))
        elif isinstance(value, str):
            attrs.append((full_key, value))
        elif isinstance(value, bool):
            # bool must be checked before int.
            attrs.append((full_key, "true" if value else "false"))
        elif isinstance(value, (int, float)):
            attrs.append((full_key, _format_number(value)))
        elif value is None:
            attrs.append((full_key, "None"))
    return attrs


def _format_number(value) -> str:
    # JSON numbers are treated as doubles; fractions are rounded away.
    try:
        return f"{float(value):.0f}"
    except OverflowError:
        return str(value)
