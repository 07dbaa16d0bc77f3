# msgbox/core/types.py
from dataclasses import dataclass
from typing import Any, Dict, Literal, Optional, Union

KeyType = Literal["ED25519", "ECDSA_SECP256K1"]
EncryptionType = Literal["RSA", "ECIES"]
WireFormat = Literal["json", "cbor"]

ED25519: KeyType = "ED25519"
ECDSA_SECP256K1: KeyType = "ECDSA_SECP256K1"
KEY_TYPES = (ED25519, ECDSA_SECP256K1)

RSA: EncryptionType = "RSA"
ECIES: EncryptionType = "ECIES"
ENCRYPTION_TYPES = (RSA, ECIES)

SECP256K1_CURVE = "secp256k1"

PUBLIC_KEY = "PUBLIC_KEY"
ENCRYPTED_MESSAGE = "ENCRYPTED_MESSAGE"


@dataclass(frozen=True)
class PublicKeyPayload:
    """The encryption key a box owner publishes. PEM string for RSA, key object for ECIES."""
    public_key: Union[str, Dict[str, Any]]
    encryption_type: EncryptionType
    type: str = PUBLIC_KEY

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "publicKey": self.public_key,
            "encryptionType": self.encryption_type,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "PublicKeyPayload":
        return cls(
            public_key=d.get("publicKey"),
            encryption_type=d.get("encryptionType", RSA),
            type=d.get("type", ""),
        )


@dataclass(frozen=True)
class OwnershipProof:
    """Signature over canonical(payload) made with the account's ledger key."""
    account_id: str
    signer_public_key: str          # hex, raw key bytes
    signer_key_type: KeyType
    signature: str                  # hex

    def to_dict(self) -> dict:
        return {
            "accountId": self.account_id,
            "signerPublicKey": self.signer_public_key,
            "signerKeyType": self.signer_key_type,
            "signature": self.signature,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "OwnershipProof":
        return cls(
            account_id=d.get("accountId", ""),
            signer_public_key=d.get("signerPublicKey", ""),
            signer_key_type=d.get("signerKeyType", ""),
            signature=d.get("signature", ""),
        )


@dataclass(frozen=True)
class FirstEntry:
    """Root-of-trust record: always the first entry of a box."""
    payload: PublicKeyPayload
    proof: OwnershipProof

    def to_dict(self) -> dict:
        return {"payload": self.payload.to_dict(), "proof": self.proof.to_dict()}


@dataclass(frozen=True)
class AccountKey:
    """Ledger-native public key of an account (never taken from a box)."""
    public_key: bytes
    key_type: KeyType


@dataclass(frozen=True)
class SignerCredentials:
    """The operator's authoritative ledger signing key."""
    account_id: str
    private_key: bytes              # raw 32 bytes
    key_type: KeyType

    def __repr__(self) -> str:
        return f"SignerCredentials(account_id={self.account_id!r}, key_type={self.key_type!r})"


@dataclass(frozen=True)
class ChunkInfo:
    group_key: str                  # derived from the initial transaction id
    number: int                     # 1-based
    total: int


@dataclass(frozen=True)
class RawEntry:
    """One log entry as returned by the read replica; `message` is base64."""
    sequence_number: int
    message: str
    consensus_timestamp: str = ""
    payer_account_id: str = ""
    chunk_info: Optional[ChunkInfo] = None
    max_sequence: Optional[int] = None   # set on reassembled multi-part entries

    @property
    def last_sequence(self) -> int:
        return self.max_sequence or self.sequence_number


@dataclass(frozen=True)
class BoxMessage:
    """A decoded entry delivered to the caller by poll / check."""
    sequence: int
    timestamp: str
    sender: str
    format: str                     # "json" | "cbor" | "plain"
    kind: Literal["encrypted", "public_key", "plain"]
    content: str
    error: Optional[str] = None


def encrypted_envelope(data: dict, fmt: WireFormat) -> dict:
    """Wrap an EncryptionEnvelope as the ENCRYPTED_MESSAGE wire payload."""
    return {"type": ENCRYPTED_MESSAGE, "format": fmt, "data": data}
