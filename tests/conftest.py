# tests/conftest.py
from pathlib import Path

import pytest

from msgbox.core.types import ED25519
from msgbox.crypto.keys import derive_public_key, generate_signer
from msgbox.crypto.keystore import RSAKeyStore
from msgbox.network import SQLiteLedger


@pytest.fixture
def ledger(tmp_path: Path):
    """Fresh local ledger on a temporary SQLite file."""
    led = SQLiteLedger(tmp_path / "ledger.db", operator_id="0.0.2")
    yield led
    led.close_sync()


@pytest.fixture
def register(ledger: SQLiteLedger):
    """Factory: create an account on the ledger and return its signing credentials."""
    def _register(account_id: str, key_type: str = ED25519):
        signer = generate_signer(account_id, key_type)
        ledger.register_account(account_id, derive_public_key(signer.private_key, key_type), key_type)
        return signer
    return _register


@pytest.fixture
def keystore(tmp_path: Path) -> RSAKeyStore:
    return RSAKeyStore(tmp_path / "keys")
