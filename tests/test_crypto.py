# tests/test_crypto.py
import base64

import pytest

from msgbox.core.errors import (
    DecryptionFailed,
    EncryptionFailed,
    MalformedKeyContainer,
    MalformedSignature,
    UnsupportedCurve,
    UnsupportedEncryptionFormat,
)
from msgbox.core.types import ECDSA_SECP256K1, ED25519
from msgbox.crypto.hybrid import (
    decrypt_ecies,
    decrypt_hybrid_rsa,
    decrypt_message,
    encrypt_ecies,
    encrypt_hybrid_rsa,
    encrypt_message,
)
from msgbox.crypto.keys import derive_ecies_keypair, derive_public_key, generate_rsa_keypair, generate_signer
from msgbox.crypto.signing import sign, verify


@pytest.fixture(scope="module")
def rsa_pair():
    return generate_rsa_keypair()


@pytest.fixture(scope="module")
def other_rsa_pair():
    return generate_rsa_keypair()


@pytest.fixture
def ecies_pair():
    return derive_ecies_keypair(generate_signer("0.0.7", ECDSA_SECP256K1))


# ── RSA hybrid ──────────────────────────────────────────────────────────

def test_rsa_roundtrip(rsa_pair):
    envelope = encrypt_hybrid_rsa("hello world", rsa_pair.public_key)
    assert set(envelope) == {"type", "encryptedKey", "iv", "encryptedData"}
    assert envelope["type"] == "RSA"
    assert len(base64.b64decode(envelope["iv"])) == 16
    assert decrypt_hybrid_rsa(envelope, rsa_pair.private_key) == "hello world"


def test_rsa_unicode_and_empty_messages(rsa_pair):
    for text in ("", "héllo ✓ 你好", "x" * 5000):
        assert decrypt_hybrid_rsa(encrypt_hybrid_rsa(text, rsa_pair.public_key), rsa_pair.private_key) == text


def test_rsa_wrong_key_fails_with_fixed_message(rsa_pair, other_rsa_pair):
    envelope = encrypt_hybrid_rsa("hello world", rsa_pair.public_key)
    with pytest.raises(DecryptionFailed) as exc:
        decrypt_hybrid_rsa(envelope, other_rsa_pair.private_key)
    assert str(exc.value) == "RSA decryption failed"
    assert exc.value.__cause__ is None
    assert exc.value.__suppress_context__


def test_rsa_bad_public_key():
    with pytest.raises(EncryptionFailed):
        encrypt_hybrid_rsa("hi", "not a pem")


# ── ECIES ───────────────────────────────────────────────────────────────

def test_ecies_roundtrip(ecies_pair):
    envelope = encrypt_ecies("secret", ecies_pair.public_key)
    assert envelope["type"] == "ECIES"
    assert envelope["curve"] == "secp256k1"
    assert len(bytes.fromhex(envelope["ephemeralPublicKey"])) == 33
    assert len(base64.b64decode(envelope["authTag"])) == 16
    assert decrypt_ecies(envelope, ecies_pair.private_key) == "secret"


def test_ecies_tampered_tag(ecies_pair):
    envelope = encrypt_ecies("secret", ecies_pair.public_key)
    tag = bytearray(base64.b64decode(envelope["authTag"]))
    tag[0] ^= 0x01
    envelope["authTag"] = base64.b64encode(bytes(tag)).decode()
    with pytest.raises(DecryptionFailed):
        decrypt_ecies(envelope, ecies_pair.private_key)


def test_ecies_wrong_key(ecies_pair):
    other = derive_ecies_keypair(generate_signer("0.0.8", ECDSA_SECP256K1))
    envelope = encrypt_ecies("secret", ecies_pair.public_key)
    with pytest.raises(DecryptionFailed):
        decrypt_ecies(envelope, other.private_key)


def test_ecies_rejects_eddsa_keys_and_curves(ecies_pair):
    ed_signer = generate_signer("0.0.9", ED25519)
    ed_public = derive_public_key(ed_signer.private_key, ED25519).hex()
    with pytest.raises(UnsupportedCurve):
        encrypt_ecies("secret", ed_public)
    with pytest.raises(UnsupportedCurve):
        encrypt_ecies("secret", ecies_pair.public_key, curve="ed25519")

    envelope = encrypt_ecies("secret", ecies_pair.public_key)
    envelope["curve"] = "p256"
    with pytest.raises(UnsupportedCurve):
        decrypt_ecies(envelope, ecies_pair.private_key)


# ── Dispatch ────────────────────────────────────────────────────────────

def test_dispatch_roundtrips(rsa_pair, ecies_pair):
    for pair in (rsa_pair, ecies_pair):
        envelope = encrypt_message("dispatch", pair.published_key(), pair.encryption_type)
        assert decrypt_message(envelope, pair) == "dispatch"


def test_dispatch_scheme_mismatch(rsa_pair, ecies_pair):
    envelope = encrypt_message("x", ecies_pair.published_key(), "ECIES")
    with pytest.raises(DecryptionFailed):
        decrypt_message(envelope, rsa_pair)


def test_dispatch_unknown_schemes(rsa_pair):
    with pytest.raises(UnsupportedEncryptionFormat):
        encrypt_message("x", rsa_pair.public_key, "ROT13")
    with pytest.raises(UnsupportedEncryptionFormat):
        encrypt_message("x", {"key": "00"}, "RSA")
    with pytest.raises(UnsupportedEncryptionFormat):
        decrypt_message({"type": "ROT13"}, rsa_pair)


# ── Signatures ──────────────────────────────────────────────────────────

@pytest.mark.parametrize("key_type", [ED25519, ECDSA_SECP256K1])
def test_sign_verify(key_type):
    signer = generate_signer("0.0.3", key_type)
    public = derive_public_key(signer.private_key, key_type)
    message = b'{"publicKey":"abc","type":"PUBLIC_KEY"}'

    signature = sign(message, signer.private_key, key_type)
    assert verify(message, signature, public, key_type) is True
    assert verify(message, signature, public.hex(), key_type) is True
    assert verify(message + b" ", signature, public, key_type) is False

    flipped = bytearray(bytes.fromhex(signature))
    flipped[-1] ^= 0x01
    assert verify(message, flipped.hex(), public, key_type) is False


@pytest.mark.parametrize("key_type", [ED25519, ECDSA_SECP256K1])
def test_verify_with_other_key(key_type):
    signer = generate_signer("0.0.3", key_type)
    other = generate_signer("0.0.4", key_type)
    signature = sign(b"m", signer.private_key, key_type)
    assert verify(b"m", signature, derive_public_key(other.private_key, key_type), key_type) is False


def test_malformed_signature_and_key():
    signer = generate_signer("0.0.3", ED25519)
    public = derive_public_key(signer.private_key, ED25519)
    with pytest.raises(MalformedSignature):
        verify(b"m", "zz-not-hex", public, ED25519)
    with pytest.raises(MalformedSignature):
        verify(b"m", "", public, ED25519)
    with pytest.raises(MalformedKeyContainer):
        verify(b"m", "ab" * 64, b"\x01\x02", ED25519)
    with pytest.raises(MalformedKeyContainer):
        verify(b"m", "ab" * 64, public, "RSA")
