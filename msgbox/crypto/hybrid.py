# msgbox/crypto/hybrid.py
"""
Hybrid encryption for message-box envelopes.

RSA:   AES-256-CBC (PKCS7) for the message, RSA-OAEP(SHA-256) for the AES key.
ECIES: ephemeral secp256k1 ECDH, key = SHA-256(shared x), AES-256-GCM with a
       16-byte nonce and 16-byte tag.

All failures collapse into EncryptionFailed / DecryptionFailed with a fixed
message; library exceptions are not chained.
"""

import hashlib
import logging
import os
from typing import Any, Mapping, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes, padding as sym_padding, serialization
from cryptography.hazmat.primitives.asymmetric import ec, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from msgbox.core.encoding import b64_decode, b64_encode, hex_to_bytes
from msgbox.core.errors import (
    DecryptionFailed,
    EncryptionFailed,
    MalformedKeyContainer,
    UnsupportedCurve,
    UnsupportedEncryptionFormat,
)
from msgbox.core.types import ECDSA_SECP256K1, ECIES, RSA, SECP256K1_CURVE
from msgbox.crypto.keys import KeyPair, load_private_key, load_public_key

logger = logging.getLogger(__name__)

AES_KEY_SIZE = 32
IV_SIZE = 16
TAG_SIZE = 16

_OAEP = padding.OAEP(mgf=padding.MGF1(algorithm=hashes.SHA256()), algorithm=hashes.SHA256(), label=None)


def _require_secp256k1(curve: str) -> None:
    if curve != SECP256K1_CURVE:
        raise UnsupportedCurve(
            f"Only secp256k1 is supported for ECIES. Received: {curve}. "
            "ED25519 cannot be used for ECDH key exchange."
        )


# ── RSA + AES-CBC ───────────────────────────────────────────────────────

def encrypt_hybrid_rsa(message: str, public_key_pem: str) -> dict:
    try:
        recipient = serialization.load_pem_public_key(public_key_pem.encode("ascii"))
        aes_key = os.urandom(AES_KEY_SIZE)
        iv = os.urandom(IV_SIZE)

        padder = sym_padding.PKCS7(128).padder()
        padded = padder.update(message.encode("utf-8")) + padder.finalize()
        encryptor = Cipher(algorithms.AES(aes_key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()

        encrypted_key = recipient.encrypt(aes_key, _OAEP)
    except (ValueError, TypeError, AttributeError, UnicodeError):
        raise EncryptionFailed("RSA encryption failed") from None

    return {
        "type": RSA,
        "encryptedKey": b64_encode(encrypted_key),
        "iv": b64_encode(iv),
        "encryptedData": b64_encode(ciphertext),
    }


def decrypt_hybrid_rsa(envelope: Mapping[str, Any], private_key_pem: str) -> str:
    try:
        private = serialization.load_pem_private_key(private_key_pem.encode("ascii"), password=None)
        aes_key = private.decrypt(b64_decode(envelope["encryptedKey"]), _OAEP)
        iv = b64_decode(envelope["iv"])

        decryptor = Cipher(algorithms.AES(aes_key), modes.CBC(iv)).decryptor()
        padded = decryptor.update(b64_decode(envelope["encryptedData"])) + decryptor.finalize()
        unpadder = sym_padding.PKCS7(128).unpadder()
        plaintext = unpadder.update(padded) + unpadder.finalize()
        return plaintext.decode("utf-8")
    except (ValueError, TypeError, KeyError, AttributeError, UnicodeError):
        raise DecryptionFailed("RSA decryption failed") from None


# ── ECIES (secp256k1 ECDH + AES-GCM) ────────────────────────────────────

def _derive_key(private: ec.EllipticCurvePrivateKey, peer: ec.EllipticCurvePublicKey) -> bytes:
    shared = private.exchange(ec.ECDH(), peer)
    return hashlib.sha256(shared).digest()


def encrypt_ecies(message: str, recipient_public_key: Union[str, bytes], curve: str = SECP256K1_CURVE) -> dict:
    _require_secp256k1(curve)
    try:
        raw = hex_to_bytes(recipient_public_key, "recipient public key")
    except (ValueError, AttributeError):
        raise EncryptionFailed("ECIES encryption failed") from None
    if len(raw) == 32:
        raise UnsupportedCurve("Recipient key is a 32-byte ED25519 key; ECIES needs a secp256k1 point")
    try:
        recipient = load_public_key(raw, ECDSA_SECP256K1)
        ephemeral = ec.generate_private_key(ec.SECP256K1())
        key = _derive_key(ephemeral, recipient)

        iv = os.urandom(IV_SIZE)
        sealed = AESGCM(key).encrypt(iv, message.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]

        ephemeral_public = ephemeral.public_key().public_bytes(
            serialization.Encoding.X962, serialization.PublicFormat.CompressedPoint
        )
    except (ValueError, TypeError, UnicodeError, MalformedKeyContainer):
        raise EncryptionFailed("ECIES encryption failed") from None

    return {
        "type": ECIES,
        "ephemeralPublicKey": ephemeral_public.hex(),
        "iv": b64_encode(iv),
        "encryptedData": b64_encode(ciphertext),
        "authTag": b64_encode(tag),
        "curve": curve,
    }


def decrypt_ecies(envelope: Mapping[str, Any], private_key: Union[str, bytes], curve: str = SECP256K1_CURVE) -> str:
    _require_secp256k1(envelope.get("curve", curve) or curve)
    try:
        private = load_private_key(hex_to_bytes(private_key, "private key"), ECDSA_SECP256K1)
        ephemeral = load_public_key(hex_to_bytes(envelope["ephemeralPublicKey"]), ECDSA_SECP256K1)
        key = _derive_key(private, ephemeral)

        iv = b64_decode(envelope["iv"])
        sealed = b64_decode(envelope["encryptedData"]) + b64_decode(envelope["authTag"])
        return AESGCM(key).decrypt(iv, sealed, None).decode("utf-8")
    except (InvalidTag, ValueError, TypeError, KeyError, AttributeError, UnicodeError, MalformedKeyContainer):
        raise DecryptionFailed("ECIES decryption failed") from None


# ── Dispatch on explicit scheme tags ────────────────────────────────────

def encrypt_message(message: str, public_key: Union[str, Mapping[str, Any]], encryption_type: str) -> dict:
    """
    Encrypt for a published key. `encryption_type` comes from the payload's
    encryptionType; the message itself is never inspected.
    """
    if encryption_type == RSA:
        if not isinstance(public_key, str):
            raise UnsupportedEncryptionFormat("RSA public key must be a PEM string")
        return encrypt_hybrid_rsa(message, public_key)
    if encryption_type == ECIES:
        if not isinstance(public_key, Mapping) or "key" not in public_key:
            raise UnsupportedEncryptionFormat("ECIES public key must be an object with 'key' and 'curve'")
        return encrypt_ecies(message, public_key["key"], public_key.get("curve") or SECP256K1_CURVE)
    raise UnsupportedEncryptionFormat(f"Unsupported encryption type: {encryption_type}")


def decrypt_message(envelope: Mapping[str, Any], keypair: KeyPair) -> str:
    """Decrypt an EncryptionEnvelope, dispatching on its `type` tag."""
    if not isinstance(envelope, Mapping):
        raise UnsupportedEncryptionFormat("Encryption envelope must be an object")
    scheme = envelope.get("type")
    if scheme != keypair.encryption_type and scheme in (RSA, ECIES):
        logger.debug("Envelope scheme %s does not match key pair scheme %s", scheme, keypair.encryption_type)
        raise DecryptionFailed()
    if scheme == RSA:
        return decrypt_hybrid_rsa(envelope, keypair.private_key)
    if scheme == ECIES:
        return decrypt_ecies(envelope, keypair.private_key, keypair.curve or SECP256K1_CURVE)
    raise UnsupportedEncryptionFormat(f"Unsupported encryption format: {scheme!r}")
