# msgbox/core/cbor.py
"""
Minimal self-describing binary codec (a CBOR subset).

Every item starts with one byte: the top 3 bits select the major type, the low
5 bits hold either the value itself (0-23) or a marker (24/25/26) announcing a
1/2/4-byte big-endian argument that follows.

Supported Python types:
- None (null), UNDEFINED (undefined), bool
- int: 0 .. 2**32-1 and -1 .. -24 as integers, anything else as float64
- float (always float64)
- bytes / bytearray, str
- list / tuple, dict (pairs written in iteration order)

The decoder is not canonical: it accepts non-minimal argument widths, so two
encoders may produce different bytes for equal values. Arrays and maps nested
more than MAX_DEPTH levels deep are rejected.
"""

import struct
from typing import Any, List, Tuple

from msgbox.core.errors import CBORDecodeError, CBORTruncated, CBORUnsupportedTag

MAJOR_UINT = 0
MAJOR_NINT = 1
MAJOR_BYTES = 2
MAJOR_TEXT = 3
MAJOR_ARRAY = 4
MAJOR_MAP = 5
MAJOR_TAG = 6
MAJOR_SIMPLE = 7

SIMPLE_FALSE = 20
SIMPLE_TRUE = 21
SIMPLE_NULL = 22
SIMPLE_UNDEFINED = 23
SIMPLE_FLOAT64 = 27

MAX_DEPTH = 64                      # nested arrays/maps beyond this are rejected


class _Undefined:
    """The CBOR `undefined` simple value; distinct from None."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNDEFINED"

    def __bool__(self) -> bool:
        return False


UNDEFINED = _Undefined()


# ── Encoder ─────────────────────────────────────────────────────────────

def _head(major: int, n: int) -> bytes:
    if n < 24:
        return bytes([(major << 5) | n])
    if n < 0x100:
        return bytes([(major << 5) | 24, n])
    if n < 0x10000:
        return bytes([(major << 5) | 25]) + n.to_bytes(2, "big")
    if n < 0x100000000:
        return bytes([(major << 5) | 26]) + n.to_bytes(4, "big")
    raise OverflowError(f"Length {n} does not fit a 4-byte argument")


def _encode_float(value: float) -> bytes:
    return bytes([(MAJOR_SIMPLE << 5) | SIMPLE_FLOAT64]) + struct.pack(">d", value)


def _encode_item(value: Any, out: bytearray) -> None:
    if value is None:
        out.append(0xF6)
    elif value is UNDEFINED:
        out.append(0xF7)
    elif isinstance(value, bool):
        out.append(0xF5 if value else 0xF4)
    elif isinstance(value, int):
        if 0 <= value < 0x100000000:
            out += _head(MAJOR_UINT, value)
        elif -24 <= value < 0:
            out += _head(MAJOR_NINT, -1 - value)
        else:
            out += _encode_float(float(value))
    elif isinstance(value, float):
        out += _encode_float(value)
    elif isinstance(value, str):
        data = value.encode("utf-8")
        out += _head(MAJOR_TEXT, len(data))
        out += data
    elif isinstance(value, (bytes, bytearray)):
        out += _head(MAJOR_BYTES, len(value))
        out += value
    elif isinstance(value, (list, tuple)):
        out += _head(MAJOR_ARRAY, len(value))
        for item in value:
            _encode_item(item, out)
    elif isinstance(value, dict):
        out += _head(MAJOR_MAP, len(value))
        for key, item in value.items():
            _encode_item(key, out)
            _encode_item(item, out)
    else:
        raise TypeError(f"Unsupported type for binary encoding: {type(value).__name__}")


def encode(value: Any) -> bytes:
    """Encode a value into the binary format."""
    out = bytearray()
    _encode_item(value, out)
    return bytes(out)


# ── Decoder ─────────────────────────────────────────────────────────────

class _Reader:
    def __init__(self, data: bytes):
        self.data = data
        self.offset = 0

    def take(self, n: int) -> bytes:
        end = self.offset + n
        if end > len(self.data):
            raise CBORTruncated(
                f"Unexpected end of data: need {n} bytes at offset {self.offset}, have {len(self.data) - self.offset}"
            )
        chunk = self.data[self.offset:end]
        self.offset = end
        return chunk

    def argument(self, info: int) -> int:
        if info < 24:
            return info
        if info == 24:
            return self.take(1)[0]
        if info == 25:
            return int.from_bytes(self.take(2), "big")
        if info == 26:
            return int.from_bytes(self.take(4), "big")
        raise CBORUnsupportedTag(f"Unsupported additional info: {info}")

    def item(self, depth: int = 0) -> Any:
        if depth > MAX_DEPTH:
            raise CBORDecodeError(f"Nesting deeper than {MAX_DEPTH} levels")
        initial = self.take(1)[0]
        major = initial >> 5
        info = initial & 0x1F

        if major == MAJOR_UINT:
            return self.argument(info)
        if major == MAJOR_NINT:
            return -1 - self.argument(info)
        if major == MAJOR_BYTES:
            return bytes(self.take(self.argument(info)))
        if major == MAJOR_TEXT:
            raw = self.take(self.argument(info))
            try:
                return raw.decode("utf-8")
            except UnicodeDecodeError as e:
                raise CBORDecodeError(f"Invalid UTF-8 in text string: {e}") from e
        if major == MAJOR_ARRAY:
            return [self.item(depth + 1) for _ in range(self.argument(info))]
        if major == MAJOR_MAP:
            count = self.argument(info)
            result = {}
            for _ in range(count):
                key = self.item(depth + 1)
                if isinstance(key, (list, dict)):
                    raise CBORDecodeError("Map keys must be scalars")
                result[key] = self.item(depth + 1)
            return result
        if major == MAJOR_SIMPLE:
            return self.simple(info)
        raise CBORUnsupportedTag(f"Unsupported major type: {major}")

    def simple(self, info: int) -> Any:
        if info == SIMPLE_FALSE:
            return False
        if info == SIMPLE_TRUE:
            return True
        if info == SIMPLE_NULL:
            return None
        if info == SIMPLE_UNDEFINED:
            return UNDEFINED
        if info == SIMPLE_FLOAT64:
            return struct.unpack(">d", self.take(8))[0]
        raise CBORUnsupportedTag(f"Unsupported special value: {info}")


def decode_prefix(data: bytes) -> Tuple[Any, int]:
    """Decode the first item in `data`; returns (value, bytes consumed)."""
    reader = _Reader(bytes(data))
    value = reader.item()
    return value, reader.offset


def decode(data: bytes) -> Any:
    """Decode exactly one item; trailing bytes are an error."""
    value, consumed = decode_prefix(data)
    if consumed != len(data):
        raise CBORDecodeError(f"{len(data) - consumed} trailing bytes after top-level item")
    return value


__all__: List[str] = ["encode", "decode", "decode_prefix", "UNDEFINED"]
