# msgbox/crypto/keystore.py
"""
On-disk storage of the RSA encryption key pair (PEM, PKCS8 private / SPKI public).
ECIES pairs are never stored: they are derived from the ledger signing key.
"""

import logging
import os
from pathlib import Path
from typing import Optional

from cryptography.hazmat.primitives import serialization

from msgbox.core.errors import MalformedKeyContainer, UnsupportedEncryptionFormat
from msgbox.core.types import ECIES, RSA, SignerCredentials
from msgbox.crypto.keys import KeyPair, derive_ecies_keypair, generate_rsa_keypair

logger = logging.getLogger(__name__)

PRIVATE_KEY_FILE = "rsa_private.pem"
PUBLIC_KEY_FILE = "rsa_public.pem"


class RSAKeyStore:
    """Loads or generates the RSA pair kept in `data_dir`."""

    def __init__(self, data_dir: str | Path | None = None):
        if data_dir is None:
            env_dir = os.environ.get("MSGBOX_DATA_DIR")
            data_dir = env_dir if env_dir else Path.home() / ".msgbox" / "keys"
        self.data_dir = Path(data_dir)

    @property
    def private_key_path(self) -> Path:
        return self.data_dir / PRIVATE_KEY_FILE

    @property
    def public_key_path(self) -> Path:
        return self.data_dir / PUBLIC_KEY_FILE

    def exists(self) -> bool:
        return self.private_key_path.exists() and self.public_key_path.exists()

    def load(self) -> KeyPair:
        private_pem = self.private_key_path.read_text(encoding="utf-8")
        public_pem = self.public_key_path.read_text(encoding="utf-8")
        try:
            serialization.load_pem_private_key(private_pem.encode("ascii"), password=None)
            serialization.load_pem_public_key(public_pem.encode("ascii"))
        except (ValueError, TypeError):
            raise MalformedKeyContainer(f"Unreadable RSA key files in {self.data_dir}") from None
        logger.info("RSA key pair loaded from %s", self.data_dir)
        return KeyPair(RSA, public_pem, private_pem)

    def generate(self, bits: int = 2048) -> KeyPair:
        logger.info("Generating new RSA key pair (%d bits)", bits)
        keypair = generate_rsa_keypair(bits)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.private_key_path.write_text(keypair.private_key, encoding="utf-8")
        os.chmod(self.private_key_path, 0o600)
        self.public_key_path.write_text(keypair.public_key, encoding="utf-8")
        logger.info("RSA key pair saved to %s", self.data_dir)
        return keypair

    def load_or_generate(self) -> KeyPair:
        if self.exists():
            return self.load()
        return self.generate()


def resolve_keypair(
    encryption_type: str,
    credentials: SignerCredentials,
    keystore: Optional[RSAKeyStore] = None,
) -> KeyPair:
    """RSA: from the key store (generated on first use). ECIES: from the signing key."""
    if encryption_type == ECIES:
        return derive_ecies_keypair(credentials)
    if encryption_type == RSA:
        return (keystore or RSAKeyStore()).load_or_generate()
    raise UnsupportedEncryptionFormat(f"Unknown encryption type: {encryption_type}")
