# msgbox/box/service.py
"""
Message-box lifecycle for one ledger account.

    setup   NO_BOX → NOT_FOUND | MALFORMED | MISMATCH → (decision) → CREATE_NEW | ABORT
                   → MATCH → BOX_READY (no writes)
    send    resolve recipient box → verify ownership proof → encrypt → publish
    poll / check / listen / remove
"""

import asyncio
import enum
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from msgbox.box.chunks import reassemble_chunks
from msgbox.box.messages import decode_entry
from msgbox.box.polling import PollState, poll, range_query
from msgbox.box.sniff import sniff_format
from msgbox.core import cbor
from msgbox.core.encoding import b64_decode
from msgbox.core.errors import (
    AccountNotFound,
    BoxNotFound,
    DecryptionFailed,
    EncryptionFailed,
    MalformedKeyContainer,
    MessageBoxError,
    MissingStructure,
    SetupAborted,
    UnsupportedCurve,
    UnsupportedEncryptionFormat,
)
from msgbox.core.types import (
    ECDSA_SECP256K1,
    ECIES,
    RSA,
    BoxMessage,
    EncryptionType,
    PublicKeyPayload,
    RawEntry,
    SignerCredentials,
    WireFormat,
    encrypted_envelope,
)
from msgbox.crypto.hybrid import decrypt_message, encrypt_message
from msgbox.crypto.keys import KeyPair
from msgbox.crypto.keystore import RSAKeyStore, resolve_keypair
from msgbox.network import LedgerClient, MirrorClient
from msgbox.verify.verifier import build_first_entry, verify_first_entry

logger = logging.getLogger(__name__)

MEMO_PATTERN = re.compile(r"\[HIP-9999:(\d+\.\d+\.\d+)\]")
KEY_PROBE = "key_verification_test"
WIRE_FORMATS = ("json", "cbor")


def extract_box_id(memo: Optional[str]) -> Optional[str]:
    match = MEMO_PATTERN.search(memo or "")
    return match.group(1) if match else None


def topic_memo(account_id: str) -> str:
    return f"[HIP-9999:{account_id}] {account_id} listens here for HIP-9999 encrypted messages."


def account_memo(box_id: str) -> str:
    return (
        f"[HIP-9999:{box_id}] If you want to contact me, "
        f"send HIP-9999 encrypted messages to {box_id}."
    )


def _compact_json(value: Any) -> bytes:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


class BoxStatus(enum.Enum):
    """Why setup needs the operator to approve creating a new box."""
    NOT_FOUND = "not_found"
    MALFORMED = "malformed"
    MISMATCH = "mismatch"
    UNSUPPORTED_SIGNING_KEY = "unsupported_signing_key"

    @property
    def question(self) -> str:
        return {
            BoxStatus.NOT_FOUND: "No message box found for this account. Create a new one?",
            BoxStatus.MALFORMED: "The existing message box has a malformed first entry. Create a new one?",
            BoxStatus.MISMATCH: "The existing message box was set up with different keys. Create a new one?",
            BoxStatus.UNSUPPORTED_SIGNING_KEY: (
                "ECIES needs a secp256k1 signing key but this account uses ED25519. Use RSA instead?"
            ),
        }[self]


Decision = Callable[[BoxStatus], bool]


def auto_create(status: BoxStatus) -> bool:
    return True


@dataclass(frozen=True)
class SendReceipt:
    box_id: str
    sequence: int
    format: WireFormat


class MessageBox:
    """
    Operations of one account against a ledger (writes, account reads) and a
    read replica (ordered entries). The two may be the same object.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        mirror: MirrorClient,
        signer: SignerCredentials,
        encryption_type: EncryptionType = RSA,
        keystore: Optional[RSAKeyStore] = None,
        decide: Decision = auto_create,
    ):
        self.ledger = ledger
        self.mirror = mirror
        self.signer = signer
        self.encryption_type = encryption_type
        self.keystore = keystore
        self.decide = decide
        self._keypair: Optional[KeyPair] = None

    @property
    def account_id(self) -> str:
        return self.signer.account_id

    # ── Keys ────────────────────────────────────────────────────────────

    def keypair(self) -> KeyPair:
        """The local encryption key pair, resolved once per instance."""
        if self._keypair is not None:
            return self._keypair

        encryption_type = self.encryption_type
        if encryption_type == ECIES and self.signer.key_type != ECDSA_SECP256K1:
            if not self.decide(BoxStatus.UNSUPPORTED_SIGNING_KEY):
                raise UnsupportedCurve(
                    f"ECIES requires a secp256k1 signing key; account {self.account_id} uses {self.signer.key_type}"
                )
            logger.warning("Falling back to RSA encryption for %s", self.account_id)
            encryption_type = RSA

        self._keypair = resolve_keypair(encryption_type, self.signer, self.keystore)
        return self._keypair

    @staticmethod
    def keys_match(published: PublicKeyPayload, keypair: KeyPair) -> bool:
        """Encrypt a probe to the published key and decrypt it locally."""
        if published.encryption_type != keypair.encryption_type:
            return False
        try:
            envelope = encrypt_message(KEY_PROBE, published.public_key, published.encryption_type)
            return decrypt_message(envelope, keypair) == KEY_PROBE
        except (
            DecryptionFailed,
            EncryptionFailed,
            UnsupportedCurve,
            UnsupportedEncryptionFormat,
            MalformedKeyContainer,
        ) as e:
            logger.debug("Key probe failed: %s", e)
            return False

    # ── First entry ─────────────────────────────────────────────────────

    async def fetch_first_entry(self, box_id: str) -> Optional[RawEntry]:
        """The box's first logical entry, reassembled if it was chunked."""
        first = await self.mirror.get_first_message(box_id)
        if first is None or first.chunk_info is None:
            return first
        parts = await self.mirror.query_messages(
            box_id, after=first.sequence_number - 1, limit=max(first.chunk_info.total, 1)
        )
        for entry in reassemble_chunks(parts):
            if entry.sequence_number == first.sequence_number:
                return entry
        return None

    @staticmethod
    def parse_first_entry(entry: RawEntry) -> Any:
        try:
            data = b64_decode(entry.message)
        except ValueError:
            return None
        return sniff_format(data).value

    async def resolve_box_id(self, account_id: str) -> Optional[str]:
        return extract_box_id(await self.ledger.get_account_memo(account_id))

    # ── Setup / remove ──────────────────────────────────────────────────

    async def setup(self) -> str:
        """Return the account's box id, creating (or re-creating) it when approved."""
        keypair = self.keypair()
        box_id = await self.resolve_box_id(self.account_id)

        if box_id is None:
            status = BoxStatus.NOT_FOUND
        else:
            status = await self._check_existing(box_id, keypair)
            if status is None:
                logger.info("Message box %s is ready for %s", box_id, self.account_id)
                return box_id

        logger.info("Message box status for %s: %s", self.account_id, status.value)
        if not self.decide(status):
            raise SetupAborted(f"Setup aborted: message box {status.value}")
        return await self._create_box(keypair)

    async def _check_existing(self, box_id: str, keypair: KeyPair) -> Optional[BoxStatus]:
        raw = await self.fetch_first_entry(box_id)
        if raw is None:
            return BoxStatus.NOT_FOUND
        entry = self.parse_first_entry(raw)
        if not isinstance(entry, dict) or not isinstance(entry.get("payload"), dict) \
                or not isinstance(entry.get("proof"), dict):
            return BoxStatus.MALFORMED
        if not self.keys_match(PublicKeyPayload.from_dict(entry["payload"]), keypair):
            return BoxStatus.MISMATCH
        return None

    async def _create_box(self, keypair: KeyPair) -> str:
        box_id = await self.ledger.create_topic(topic_memo(self.account_id))
        payload = PublicKeyPayload(keypair.published_key(), keypair.encryption_type)
        first = build_first_entry(payload, self.signer)
        await self.ledger.submit_message(box_id, _compact_json(first.to_dict()))
        await self.ledger.update_account_memo(self.account_id, account_memo(box_id))
        logger.info("Created message box %s for %s (%s)", box_id, self.account_id, keypair.encryption_type)
        return box_id

    async def remove(self) -> bool:
        """Clear the account memo. Returns False when there was nothing to clear."""
        memo = await self.ledger.get_account_memo(self.account_id)
        if not memo:
            logger.info("Account %s has no message box memo", self.account_id)
            return False
        await self.ledger.update_account_memo(self.account_id, "")
        logger.info("Message box memo cleared for %s", self.account_id)
        return True

    # ── Send ────────────────────────────────────────────────────────────

    async def send(self, recipient: str, message: str, fmt: WireFormat = "json") -> SendReceipt:
        if fmt not in WIRE_FORMATS:
            raise ValueError(f"Unknown wire format: {fmt}")
        if not await self.ledger.account_exists(recipient):
            raise AccountNotFound(f"Account {recipient} does not exist")
        box_id = await self.resolve_box_id(recipient)
        if box_id is None:
            raise BoxNotFound(f"Account {recipient} has no message box")

        raw = await self.fetch_first_entry(box_id)
        if raw is None:
            raise MissingStructure(box_id, "message box has no first entry")
        native_key = await self.ledger.get_account_key(recipient)
        first = verify_first_entry(self.parse_first_entry(raw), box_id, recipient, native_key)

        envelope = encrypt_message(message, first.payload.public_key, first.payload.encryption_type)
        wire = encrypted_envelope(envelope, fmt)
        data = cbor.encode(wire) if fmt == "cbor" else _compact_json(wire)
        sequence = await self.ledger.submit_message(box_id, data)
        logger.info("Sent %s message to %s (box %s, sequence %d)", fmt, recipient, box_id, sequence)
        return SendReceipt(box_id, sequence, fmt)

    # ── Read ────────────────────────────────────────────────────────────

    async def own_box_id(self) -> str:
        box_id = await self.resolve_box_id(self.account_id)
        if box_id is None:
            raise BoxNotFound(f"Account {self.account_id} has no message box; run setup first")
        return box_id

    async def poll_state(self) -> PollState:
        return PollState(await self.own_box_id(), self.keypair())

    async def poll(self, state: PollState) -> List[BoxMessage]:
        return await poll(self.mirror, state)

    async def check(self, start: int = 1, end: Optional[int] = None) -> List[BoxMessage]:
        box_id = await self.own_box_id()
        keypair = self.keypair()
        return [decode_entry(entry, keypair) for entry in await range_query(self.mirror, box_id, start, end)]

    async def listen(
        self,
        state: PollState,
        interval: float = 3.0,
        stop_event: Optional[asyncio.Event] = None,
        on_message: Optional[Callable[[BoxMessage], None]] = None,
    ) -> None:
        """Poll every `interval` seconds until `stop_event` is set."""
        stop_event = stop_event or asyncio.Event()
        while not stop_event.is_set():
            try:
                messages = await self.poll(state)
            except MessageBoxError as e:
                logger.error("Polling box %s failed: %s", state.box_id, e)
                messages = []
            for message in messages:
                if on_message is not None:
                    on_message(message)
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
