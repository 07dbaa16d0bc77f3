# msgbox/verify/verifier.py
"""
Ownership proofs: construction by the box owner, verification by senders.

A sender trusts a box's published key only after four checks pass, in order:

  1. structure  - payload and proof present, every proof field populated
  2. account    - proof.accountId is the recipient account
  3. signer     - proof.signerPublicKey equals the recipient's ledger-native key
  4. signature  - proof.signature verifies over canonical(payload)

Any failure raises the matching SecurityViolation subclass.
"""

import logging
from typing import Any, Mapping

from msgbox.core.canon import canonical_json
from msgbox.core.encoding import hex_to_bytes
from msgbox.core.errors import (
    AccountMismatch,
    InvalidSignature,
    MalformedKeyContainer,
    MalformedSignature,
    MissingStructure,
    SignerMismatch,
)
from msgbox.core.types import (
    ENCRYPTION_TYPES,
    KEY_TYPES,
    PUBLIC_KEY,
    AccountKey,
    FirstEntry,
    OwnershipProof,
    PublicKeyPayload,
    SignerCredentials,
)
from msgbox.crypto.keys import derive_public_key, normalize_public_key
from msgbox.crypto.signing import sign, verify

logger = logging.getLogger(__name__)

PROOF_FIELDS = ("accountId", "signerPublicKey", "signerKeyType", "signature")


def build_first_entry(payload: PublicKeyPayload, signer: SignerCredentials) -> FirstEntry:
    """Sign canonical(payload) with the account's ledger key and bundle the proof."""
    signature = sign(canonical_json(payload.to_dict()), signer.private_key, signer.key_type)
    proof = OwnershipProof(
        account_id=signer.account_id,
        signer_public_key=derive_public_key(signer.private_key, signer.key_type).hex(),
        signer_key_type=signer.key_type,
        signature=signature,
    )
    return FirstEntry(payload=payload, proof=proof)


def has_valid_structure(entry: Any) -> bool:
    """Payload and proof substructures exist and every proof field is populated."""
    if not isinstance(entry, Mapping):
        return False
    payload, proof = entry.get("payload"), entry.get("proof")
    if not isinstance(payload, Mapping) or not isinstance(proof, Mapping):
        return False
    if payload.get("type") != PUBLIC_KEY or not payload.get("publicKey"):
        return False
    if payload.get("encryptionType", "RSA") not in ENCRYPTION_TYPES:
        return False
    return all(isinstance(proof.get(f), str) and proof.get(f) for f in PROOF_FIELDS)


def _same_key(claimed_hex: str, native: AccountKey) -> bool:
    try:
        claimed = normalize_public_key(hex_to_bytes(claimed_hex), native.key_type)
        expected = normalize_public_key(native.public_key, native.key_type)
    except (ValueError, MalformedKeyContainer):
        return False
    return claimed == expected


def verify_first_entry(entry: Any, box_id: str, account_id: str, native_key: AccountKey) -> FirstEntry:
    """Run the four ownership checks; returns the parsed entry only if all pass."""
    # 1. Structure
    if not has_valid_structure(entry):
        raise MissingStructure(box_id, "first entry lacks a complete payload/proof")
    payload_dict = entry["payload"]
    proof = OwnershipProof.from_dict(entry["proof"])

    # 2. Identity
    if proof.account_id != account_id:
        raise AccountMismatch(
            box_id, f"proof is for account {proof.account_id}, expected {account_id}"
        )

    # 3. Authority: signer must be the account's ledger-native key, never a key from the box
    if proof.signer_key_type != native_key.key_type or not _same_key(proof.signer_public_key, native_key):
        raise SignerMismatch(box_id, f"proof signer is not the ledger key of account {account_id}")

    # 4. Signature over the payload exactly as published
    if proof.signer_key_type not in KEY_TYPES:
        raise InvalidSignature(box_id, f"unsupported signer key type {proof.signer_key_type}")
    try:
        valid = verify(canonical_json(dict(payload_dict)), proof.signature, proof.signer_public_key, proof.signer_key_type)
    except (MalformedSignature, MalformedKeyContainer) as e:
        raise InvalidSignature(box_id, f"proof signature is malformed: {e}") from e
    if not valid:
        raise InvalidSignature(box_id, "proof signature does not verify")

    logger.debug("Ownership proof for box %s verified against account %s", box_id, account_id)
    return FirstEntry(payload=PublicKeyPayload.from_dict(payload_dict), proof=proof)
