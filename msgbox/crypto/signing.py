# msgbox/crypto/signing.py
from typing import Union

from cryptography.exceptions import InvalidSignature as _InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec

from msgbox.core.encoding import hex_to_bytes
from msgbox.core.errors import MalformedKeyContainer, MalformedSignature
from msgbox.core.types import ECDSA_SECP256K1, ED25519, KeyType
from msgbox.crypto.keys import load_private_key, load_public_key


def sign(message: bytes, private_key: Union[str, bytes], key_type: KeyType) -> str:
    """
    Sign `message` with a raw ledger private key; returns hex.
    Ed25519 signs the bytes as-is, secp256k1 signs SHA-256(bytes) (DER signature).
    """
    try:
        raw = hex_to_bytes(private_key, "private key")
    except ValueError:
        raise MalformedKeyContainer("Private key is not valid hex") from None

    key = load_private_key(raw, key_type)
    if key_type == ED25519:
        return key.sign(message).hex()
    return key.sign(message, ec.ECDSA(hashes.SHA256())).hex()


def verify(message: bytes, signature_hex: str, public_key: Union[str, bytes], key_type: KeyType) -> bool:
    """
    True iff `signature_hex` is a valid signature of `message`.
    Wrong-but-well-formed signatures return False; undecodable signatures raise
    MalformedSignature and unusable keys raise MalformedKeyContainer.
    """
    if key_type not in (ED25519, ECDSA_SECP256K1):
        raise MalformedKeyContainer(f"Unsupported key type: {key_type}")
    try:
        signature = hex_to_bytes(signature_hex, "signature")
    except (ValueError, AttributeError):
        raise MalformedSignature("Signature is not valid hex") from None
    if not signature:
        raise MalformedSignature("Signature is empty")
    try:
        raw_public = hex_to_bytes(public_key, "public key")
    except (ValueError, AttributeError):
        raise MalformedKeyContainer("Public key is not valid hex") from None

    key = load_public_key(raw_public, key_type)
    try:
        if key_type == ED25519:
            key.verify(signature, message)
        else:
            key.verify(signature, message, ec.ECDSA(hashes.SHA256()))
    except _InvalidSignature:
        return False
    return True
