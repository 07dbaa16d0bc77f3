# msgbox/box/sniff.py
"""
Two-stage payload parser: binary codec first (unless the payload opens like
JSON text), then JSON, then opaque plain text. Returns a tagged result rather
than leaving callers to chain exception handlers.
"""

import json
from dataclasses import dataclass
from typing import Any, Literal

from msgbox.core import cbor
from msgbox.core.errors import CBORDecodeError

JSON_OPENERS = (0x7B, 0x5B)         # '{' '['


@dataclass(frozen=True)
class Sniffed:
    format: Literal["cbor", "json", "plain"]
    value: Any                      # decoded object, or the text for "plain"


def _looks_binary(first: int) -> bool:
    return (first >> 5) != cbor.MAJOR_TAG and first not in JSON_OPENERS


def sniff_format(data: bytes) -> Sniffed:
    if data and _looks_binary(data[0]):
        try:
            value = cbor.decode(data)
        except CBORDecodeError:
            value = None
        if isinstance(value, dict) and value.get("type"):
            return Sniffed("cbor", value)

    text = data.decode("utf-8", errors="replace")
    try:
        return Sniffed("json", json.loads(text))
    except (ValueError, RecursionError):
        return Sniffed("plain", text)
