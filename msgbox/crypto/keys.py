# msgbox/crypto/keys.py
"""
Key containers for the two ledger key families, plus encryption key pairs.

Ledger keys travel as raw bytes (32-byte Ed25519, 32-byte secp256k1 scalar,
33/65-byte secp256k1 points). The `cryptography` loaders only accept standard
containers, so raw bytes are wrapped in the fixed DER structures below:

    Ed25519 private   PKCS#8       30 2e 02 01 00 30 05 06 03 2b 65 70 04 22 04 20 || key
    Ed25519 public    SPKI         30 2a 30 05 06 03 2b 65 70 03 21 00 || key
    secp256k1 private SEC1         30 L 02 01 01 04 20 || key || a0 07 <curve oid> || a1 .. 03 .. 00 || point
    secp256k1 public  SPKI         30 L 30 10 <ecPublicKey oid> <curve oid> 03 .. 00 || point
"""

from dataclasses import dataclass
from typing import Optional, Tuple, Union

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, rsa

from msgbox.core.errors import MalformedKeyContainer, UnsupportedCurve
from msgbox.core.types import (
    ECDSA_SECP256K1,
    ECIES,
    ED25519,
    RSA,
    SECP256K1_CURVE,
    EncryptionType,
    KeyType,
    SignerCredentials,
)

DER_SEQUENCE = 0x30
DER_BIT_STRING = 0x03

ED25519_OID = bytes([0x06, 0x03, 0x2B, 0x65, 0x70])                                   # 1.3.101.112
EC_PUBLIC_KEY_OID = bytes([0x06, 0x07, 0x2A, 0x86, 0x48, 0xCE, 0x3D, 0x02, 0x01])     # 1.2.840.10045.2.1
SECP256K1_OID = bytes([0x06, 0x05, 0x2B, 0x81, 0x04, 0x00, 0x0A])                     # 1.3.132.0.10

ED25519_PKCS8_PREFIX = bytes([
    0x30, 0x2E, 0x02, 0x01, 0x00, 0x30, 0x05, *ED25519_OID, 0x04, 0x22, 0x04, 0x20,
])
ED25519_SPKI_PREFIX = bytes([0x30, 0x2A, 0x30, 0x05, *ED25519_OID, 0x03, 0x21, 0x00])

# Bit-string headers (tag, length, unused-bits) that precede a raw public key.
_BIT_STRING_MARKERS = {
    ED25519: (bytes([0x03, 0x21, 0x00]),),
    ECDSA_SECP256K1: (bytes([0x03, 0x22, 0x00]), bytes([0x03, 0x42, 0x00])),
}

# Fixed container length -> raw suffix length, last-resort slicing only.
_SUFFIX_BY_CONTAINER_LENGTH = {
    ED25519: {44: 32},
    ECDSA_SECP256K1: {56: 33, 88: 65},
}


def _require_key_type(key_type: str) -> None:
    if key_type not in (ED25519, ECDSA_SECP256K1):
        raise MalformedKeyContainer(f"Unsupported key type: {key_type}")


def _is_valid_raw_public(raw: bytes, key_type: KeyType) -> bool:
    if key_type == ED25519:
        return len(raw) == 32
    if len(raw) == 33:
        return raw[0] in (0x02, 0x03)
    if len(raw) == 65:
        return raw[0] == 0x04
    return False


def _der_length(n: int) -> bytes:
    # all containers here stay below 128 bytes of content
    if n >= 0x80:
        raise MalformedKeyContainer(f"Container content too long: {n}")
    return bytes([n])


def _read_tlv(data: bytes, offset: int) -> Tuple[int, int, int]:
    """Return (tag, value_start, value_end) for the TLV at `offset`."""
    if offset + 2 > len(data):
        raise MalformedKeyContainer("Truncated DER element")
    tag = data[offset]
    first = data[offset + 1]
    start = offset + 2
    if first < 0x80:
        length = first
    else:
        width = first & 0x7F
        if width == 0 or width > 2 or start + width > len(data):
            raise MalformedKeyContainer("Unsupported DER length encoding")
        length = int.from_bytes(data[start:start + width], "big")
        start += width
    end = start + length
    if end > len(data):
        raise MalformedKeyContainer("DER element overruns container")
    return tag, start, end


# ── Container construction ──────────────────────────────────────────────

def build_public_container(raw: bytes, key_type: KeyType) -> bytes:
    """Wrap a raw public key in its family's SPKI structure."""
    _require_key_type(key_type)
    if not _is_valid_raw_public(raw, key_type):
        raise MalformedKeyContainer(f"Invalid raw {key_type} public key ({len(raw)} bytes)")

    if key_type == ED25519:
        return ED25519_SPKI_PREFIX + raw

    algorithm = bytes([DER_SEQUENCE, len(EC_PUBLIC_KEY_OID) + len(SECP256K1_OID)]) + EC_PUBLIC_KEY_OID + SECP256K1_OID
    bit_string = bytes([DER_BIT_STRING, len(raw) + 1, 0x00]) + raw
    body = algorithm + bit_string
    return bytes([DER_SEQUENCE]) + _der_length(len(body)) + body


def build_private_container(raw: bytes, key_type: KeyType, public: Optional[bytes] = None) -> bytes:
    """
    Wrap a raw 32-byte private key: PKCS#8 for Ed25519, SEC1 ECPrivateKey for secp256k1.
    The SEC1 form embeds the public point; it is derived when not supplied.
    """
    _require_key_type(key_type)
    if len(raw) != 32:
        raise MalformedKeyContainer(f"Invalid raw {key_type} private key ({len(raw)} bytes)")

    if key_type == ED25519:
        return ED25519_PKCS8_PREFIX + raw

    if public is None:
        public = derive_public_key(raw, ECDSA_SECP256K1, compressed=False)
    if not _is_valid_raw_public(public, ECDSA_SECP256K1):
        raise MalformedKeyContainer("Invalid secp256k1 public point for private container")

    version = bytes([0x02, 0x01, 0x01])
    private = bytes([0x04, 0x20]) + raw
    curve = bytes([0xA0, len(SECP256K1_OID)]) + SECP256K1_OID
    bit_string = bytes([DER_BIT_STRING, len(public) + 1, 0x00]) + public
    public_part = bytes([0xA1]) + _der_length(len(bit_string)) + bit_string
    body = version + private + curve + public_part
    return bytes([DER_SEQUENCE]) + _der_length(len(body)) + body


# ── Container parsing ───────────────────────────────────────────────────

def _structural_public_key(data: bytes) -> bytes:
    tag, start, end = _read_tlv(data, 0)
    if tag != DER_SEQUENCE:
        raise MalformedKeyContainer("Container does not start with a SEQUENCE")
    alg_tag, _, alg_end = _read_tlv(data, start)
    if alg_tag != DER_SEQUENCE:
        raise MalformedKeyContainer("Missing AlgorithmIdentifier")
    bits_tag, bits_start, bits_end = _read_tlv(data, alg_end)
    if bits_tag != DER_BIT_STRING or bits_end > end or bits_start >= bits_end:
        raise MalformedKeyContainer("Missing BIT STRING")
    if data[bits_start] != 0x00:
        raise MalformedKeyContainer("BIT STRING has unused bits")
    return data[bits_start + 1:bits_end]


def _marker_public_key(data: bytes, key_type: KeyType) -> Optional[bytes]:
    for marker in _BIT_STRING_MARKERS[key_type]:
        idx = data.rfind(marker)
        if idx >= 0:
            candidate = data[idx + len(marker):idx + len(marker) + marker[1] - 1]
            if _is_valid_raw_public(candidate, key_type):
                return candidate
    return None


def extract_raw_public_key(data: bytes, key_type: KeyType) -> bytes:
    """
    Recover raw public key bytes from an SPKI container, or pass raw bytes through.

    Order: structural DER walk, then bit-string marker search, then fixed-length
    suffix slicing (fragile, only for the known container sizes).
    """
    _require_key_type(key_type)
    data = bytes(data)

    if data and data[0] == DER_SEQUENCE and not _is_valid_raw_public(data, key_type):
        try:
            raw = _structural_public_key(data)
            if _is_valid_raw_public(raw, key_type):
                return raw
        except MalformedKeyContainer:
            pass

        raw = _marker_public_key(data, key_type)
        if raw is not None:
            return raw

        suffix = _SUFFIX_BY_CONTAINER_LENGTH[key_type].get(len(data))
        if suffix is not None and _is_valid_raw_public(data[-suffix:], key_type):
            return data[-suffix:]
        raise MalformedKeyContainer(f"Could not extract {key_type} public key from container")

    if _is_valid_raw_public(data, key_type):
        return data
    raise MalformedKeyContainer(f"Not a {key_type} public key or container ({len(data)} bytes)")


# ── Loading into cryptography objects ───────────────────────────────────

def derive_public_key(private_raw: bytes, key_type: KeyType, compressed: bool = True) -> bytes:
    """Raw public key for a raw private key (secp256k1 compressed by default)."""
    _require_key_type(key_type)
    try:
        if key_type == ED25519:
            key = ed25519.Ed25519PrivateKey.from_private_bytes(private_raw)
            return key.public_key().public_bytes(serialization.Encoding.Raw, serialization.PublicFormat.Raw)
        key = ec.derive_private_key(int.from_bytes(private_raw, "big"), ec.SECP256K1())
    except ValueError:
        raise MalformedKeyContainer(f"Invalid {key_type} private key") from None
    fmt = serialization.PublicFormat.CompressedPoint if compressed else serialization.PublicFormat.UncompressedPoint
    return key.public_key().public_bytes(serialization.Encoding.X962, fmt)


def load_private_key(private_raw: bytes, key_type: KeyType):
    """Raw private bytes -> cryptography private key, via the family's container."""
    container = build_private_container(private_raw, key_type)
    try:
        return serialization.load_der_private_key(container, password=None)
    except (ValueError, TypeError):
        raise MalformedKeyContainer(f"Could not load {key_type} private key") from None


def load_public_key(public: bytes, key_type: KeyType):
    """Raw public bytes (or an SPKI container) -> cryptography public key."""
    raw = extract_raw_public_key(public, key_type)
    container = build_public_container(raw, key_type)
    try:
        return serialization.load_der_public_key(container)
    except (ValueError, TypeError):
        raise MalformedKeyContainer(f"Could not load {key_type} public key") from None


# ── Encryption key pairs ────────────────────────────────────────────────

@dataclass(frozen=True)
class KeyPair:
    """
    Encryption credential for a message box.
    RSA: PEM strings (SPKI public / PKCS8 private).
    ECIES: hex strings (compressed point / 32-byte scalar) on secp256k1.
    """
    encryption_type: EncryptionType
    public_key: str
    private_key: str
    curve: Optional[str] = None

    def published_key(self) -> Union[str, dict]:
        """The value stored as payload.publicKey in the first entry."""
        if self.encryption_type == ECIES:
            return {"type": ECIES, "key": self.public_key, "curve": self.curve or SECP256K1_CURVE}
        return self.public_key

    def __repr__(self) -> str:
        return f"KeyPair(encryption_type={self.encryption_type!r}, curve={self.curve!r})"


def generate_rsa_keypair(bits: int = 2048) -> KeyPair:
    private = rsa.generate_private_key(public_exponent=65537, key_size=bits)
    private_pem = private.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode("ascii")
    public_pem = private.public_key().public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")
    return KeyPair(RSA, public_pem, private_pem)


def derive_ecies_keypair(credentials: SignerCredentials) -> KeyPair:
    """ECIES key pair taken directly from the account's secp256k1 signing key."""
    if credentials.key_type != ECDSA_SECP256K1:
        raise UnsupportedCurve(
            f"ECIES requires a secp256k1 signing key; {credentials.key_type} cannot be used for ECDH key exchange"
        )
    public = derive_public_key(credentials.private_key, ECDSA_SECP256K1, compressed=True)
    return KeyPair(ECIES, public.hex(), credentials.private_key.hex(), SECP256K1_CURVE)


def generate_signer(account_id: str, key_type: KeyType) -> SignerCredentials:
    """Fresh ledger signing key; used by the local ledger and tests."""
    _require_key_type(key_type)
    if key_type == ED25519:
        raw = ed25519.Ed25519PrivateKey.generate().private_bytes(
            serialization.Encoding.Raw, serialization.PrivateFormat.Raw, serialization.NoEncryption()
        )
    else:
        raw = ec.generate_private_key(ec.SECP256K1()).private_numbers().private_value.to_bytes(32, "big")
    return SignerCredentials(account_id=account_id, private_key=raw, key_type=key_type)


def normalize_public_key(public: bytes, key_type: KeyType) -> bytes:
    """Raw public key in its comparison form (secp256k1 points compressed)."""
    raw = extract_raw_public_key(public, key_type)
    if key_type == ED25519:
        return raw
    key = load_public_key(raw, key_type)
    return key.public_bytes(serialization.Encoding.X962, serialization.PublicFormat.CompressedPoint)
