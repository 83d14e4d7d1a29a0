"""
levelstore.engine.values — Tagged Setting Values
=================================================

Settings and statistics are stored as text.  To read back exactly what was
written, every value is stored together with a short type tag:

    ======  =======================  ==========================
    tag     Python value             stored text
    ======  =======================  ==========================
    bool    ``True`` / ``False``     ``"true"`` / ``"false"``
    number  ``int`` / ``float``      ``"42"`` / ``"1.5"``
    json    ``dict`` / ``list`` /    ``json.dumps(value)``
            ``tuple`` / ``None``
    string  anything else            ``str(value)``
    ======  =======================  ==========================

Rows written by the legacy schema have no tag.  They are decoded by
:func:`sniff_legacy`, which treats ``{``/``[``-prefixed text as JSON and the
literals ``"true"``/``"false"`` as booleans.  That means an untagged
string ``"true"`` always comes back as ``True``; tagged rows do not have
this problem.
"""

from __future__ import annotations

import json
import logging
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)


class ValueType(StrEnum):
    BOOL = "bool"
    NUMBER = "number"
    STRING = "string"
    JSON = "json"


def encode_value(value: Any) -> tuple[str, ValueType]:
    """Return ``(text, tag)`` for *value*.

    ``bool`` is checked before ``int`` since it is a subclass of it.
    """
    if isinstance(value, bool):
        return ("true" if value else "false"), ValueType.BOOL
    if isinstance(value, (int, float)):
        return repr(value), ValueType.NUMBER
    if value is None or isinstance(value, (dict, list, tuple)):
        return json.dumps(value), ValueType.JSON
    return str(value), ValueType.STRING


def sniff_legacy(text: str | None) -> Any:
    """Decode an untagged legacy value."""
    if text is None:
        return None
    if text.startswith(("{", "[")):
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            return text
    if text == "true":
        return True
    if text == "false":
        return False
    return text


def decode_value(text: str | None, tag: str | None) -> Any:
    """Decode stored *text* according to *tag*.

    Unknown or missing tags fall back to :func:`sniff_legacy`.
    """
    if tag is None:
        return sniff_legacy(text)
    if tag == ValueType.BOOL:
        return text == "true"
    if tag == ValueType.NUMBER:
        try:
            return int(text)
        except (TypeError, ValueError):
            try:
                return float(text)
            except (TypeError, ValueError):
                logger.warning("Undecodable number %r — returning raw text", text)
                return text
    if tag == ValueType.JSON:
        try:
            return json.loads(text)
        except (json.JSONDecodeError, TypeError):
            logger.warning("Undecodable JSON %r — returning raw text", text)
            return text
    if tag == ValueType.STRING:
        return text
    return sniff_legacy(text)
