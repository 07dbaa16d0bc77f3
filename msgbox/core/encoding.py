# msgbox/core/encoding.py
import base64
import binascii


def b64_encode(data: bytes) -> str:
    """Encode bytes to standard base64 (with padding), as carried in envelopes."""
    return base64.b64encode(data).decode("ascii")


def b64_decode(s: str) -> bytes:
    """Decode standard base64; raises ValueError on malformed input."""
    try:
        return base64.b64decode(s, validate=True)
    except binascii.Error as e:
        raise ValueError(f"Invalid base64: {e}") from e


def hex_to_bytes(value: str | bytes, what: str = "value") -> bytes:
    """Accept raw bytes or a hex string (optional 0x prefix); ValueError on bad hex."""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    text = value.strip()
    if text[:2].lower() == "0x":
        text = text[2:]
    try:
        return bytes.fromhex(text)
    except ValueError:
        raise ValueError(f"Invalid hex for {what}") from None
