# msgbox/core/canon.py
from typing import Any

try:
    import jcs
except ImportError:
    raise ImportError("Please install jcs: pip install jcs")


def canonical_json(obj: Any) -> bytes:
    """
    Produce deterministic UTF-8 bytes according to RFC 8785 (JSON Canonicalization Scheme).
    Object keys are sorted at every level, no whitespace is inserted, array order is kept.
    This is the only input ever handed to sign() / verify().
    """
    return jcs.canonicalize(obj)


def canonicalize(obj: Any) -> str:
    """Same as above, but returns string (used when embedding or comparing)."""
    return canonical_json(obj).decode("utf-8")
