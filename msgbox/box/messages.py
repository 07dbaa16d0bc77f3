# msgbox/box/messages.py
import json
import logging
from datetime import datetime, timezone

from msgbox.box.sniff import sniff_format
from msgbox.core.encoding import b64_decode
from msgbox.core.errors import DecryptionFailed, UnsupportedCurve, UnsupportedEncryptionFormat
from msgbox.core.types import ENCRYPTED_MESSAGE, PUBLIC_KEY, BoxMessage, RawEntry
from msgbox.crypto.hybrid import decrypt_message
from msgbox.crypto.keys import KeyPair

logger = logging.getLogger(__name__)


def consensus_to_iso(timestamp: str) -> str:
    """'1700000000.123456789' → ISO 8601 UTC with millis; passthrough if unparseable."""
    try:
        seconds = float(timestamp)
    except (TypeError, ValueError):
        return timestamp or ""
    return datetime.fromtimestamp(seconds, timezone.utc).isoformat(timespec="milliseconds")


def _published_key_text(value) -> str:
    key = value.get("publicKey")
    if key is None and isinstance(value.get("payload"), dict):
        key = value["payload"].get("publicKey")
    return key if isinstance(key, str) else json.dumps(key, separators=(",", ":"))


def decode_entry(entry: RawEntry, keypair: KeyPair) -> BoxMessage:
    """Sniff, decode and (for encrypted envelopes) decrypt one log entry."""
    try:
        data = b64_decode(entry.message)
    except ValueError:
        data = entry.message.encode("utf-8")
    sniffed = sniff_format(data)
    value = sniffed.value
    base = dict(
        sequence=entry.sequence_number,
        timestamp=consensus_to_iso(entry.consensus_timestamp),
        sender=entry.payer_account_id,
        format=sniffed.format,
    )

    if isinstance(value, dict) and value.get("type") == ENCRYPTED_MESSAGE:
        try:
            content = decrypt_message(value.get("data"), keypair)
        except (DecryptionFailed, UnsupportedEncryptionFormat, UnsupportedCurve) as e:
            logger.warning("Cannot decrypt entry %s: %s", entry.sequence_number, e)
            return BoxMessage(kind="encrypted", content="", error=str(e), **base)
        return BoxMessage(kind="encrypted", content=content, **base)

    if isinstance(value, dict) and (
        value.get("type") == PUBLIC_KEY
        or (isinstance(value.get("payload"), dict) and value["payload"].get("type") == PUBLIC_KEY)
    ):
        return BoxMessage(kind="public_key", content=_published_key_text(value), **base)

    text = data.decode("utf-8", errors="replace")
    return BoxMessage(kind="plain", content=text, **base)


def format_message(msg: BoxMessage) -> str:
    header = f"[Seq: {msg.sequence}] [{msg.timestamp}] [{msg.format.upper()}]"
    if msg.kind == "encrypted":
        if msg.error:
            return f"{header} Encrypted message from {msg.sender} (cannot decrypt):\n{msg.error}"
        return f"{header} Encrypted message from {msg.sender}:\n{msg.content}"
    if msg.kind == "public_key":
        return f"{header} Public key published by {msg.sender}:\n{msg.content}"
    return f"{header} Plain text message from {msg.sender}:\n{msg.content}"
