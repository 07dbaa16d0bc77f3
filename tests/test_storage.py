# tests/test_storage.py
import asyncio
import base64
from pathlib import Path

import pytest

from msgbox.box.chunks import reassemble_chunks
from msgbox.core.errors import AccountNotFound, LedgerError
from msgbox.core.types import ED25519
from msgbox.network import MirrorNodeClient, SQLiteLedger, create_backend
from msgbox.network.sqlite import CHUNK_SIZE, MAX_CHUNKS


def test_create_backend_routing(tmp_path: Path):
    db_path = tmp_path / "routed.db"
    backend = create_backend(f"sqlite://{db_path}")
    assert isinstance(backend, SQLiteLedger)
    assert str(backend.db_path) == str(db_path.resolve())
    backend.close_sync()

    memory = create_backend("sqlite://:memory:", operator_id="0.0.5")
    assert str(memory.db_path) == ":memory:"
    assert memory.operator_id == "0.0.5"
    memory.close_sync()

    mirror = create_backend("https://testnet.mirrornode.example.com/")
    assert isinstance(mirror, MirrorNodeClient)
    assert mirror.base_url == "https://testnet.mirrornode.example.com"
    asyncio.run(mirror.close())

    with pytest.raises(ValueError):
        create_backend("jsonl:/tmp/x")


def test_default_path_from_env(tmp_path: Path, monkeypatch):
    env_path = tmp_path / "env" / "ledger.db"
    monkeypatch.setenv("MSGBOX_DB_PATH", str(env_path))
    with SQLiteLedger() as led:
        assert led.db_path == env_path.resolve()
    assert env_path.exists()


def test_accounts(ledger: SQLiteLedger):
    ledger.register_account("0.0.5", b"\x01" * 32, ED25519, memo="hi")

    async def main():
        assert await ledger.account_exists("0.0.5")
        assert not await ledger.account_exists("0.0.6")
        assert await ledger.get_account_memo("0.0.5") == "hi"
        await ledger.update_account_memo("0.0.5", "[HIP-9999:0.0.1001] box")
        assert await ledger.get_account_memo("0.0.5") == "[HIP-9999:0.0.1001] box"
        key = await ledger.get_account_key("0.0.5")
        assert key.public_key == b"\x01" * 32
        assert key.key_type == ED25519
        with pytest.raises(AccountNotFound):
            await ledger.get_account_memo("0.0.6")
        with pytest.raises(AccountNotFound):
            await ledger.update_account_memo("0.0.6", "x")

    asyncio.run(main())


def test_register_rejects_unknown_key_type(ledger: SQLiteLedger):
    with pytest.raises(ValueError):
        ledger.register_account("0.0.5", b"\x01" * 32, "RSA")


def test_topics_and_sequences(ledger: SQLiteLedger):
    async def main():
        first = await ledger.create_topic("memo one")
        second = await ledger.create_topic("memo two")
        assert (first, second) == ("0.0.1001", "0.0.1002")

        assert await ledger.submit_message(first, b"a") == 1
        assert await ledger.submit_message(first, "b") == 2
        assert await ledger.submit_message(second, b"c") == 1

        entries = await ledger.query_messages(first)
        assert [e.sequence_number for e in entries] == [1, 2]
        assert base64.b64decode(entries[1].message) == b"b"
        assert entries[0].payer_account_id == "0.0.2"
        assert entries[0].chunk_info is None

        assert [e.sequence_number for e in await ledger.query_messages(first, after=1)] == [2]
        assert (await ledger.get_first_message(first)).sequence_number == 1
        assert await ledger.get_latest_sequence(first) == 2
        assert await ledger.get_latest_sequence("0.0.4040") is None

        with pytest.raises(LedgerError):
            await ledger.submit_message("0.0.4040", b"x")

    asyncio.run(main())


def test_large_submission_is_chunked(ledger: SQLiteLedger):
    payload = bytes(range(256)) * 10          # 2560 bytes → 3 chunks

    async def main():
        topic = await ledger.create_topic("big")
        await ledger.submit_message(topic, b"before")
        first_seq = await ledger.submit_message(topic, payload)
        return first_seq, await ledger.query_messages(topic)

    first_seq, entries = asyncio.run(main())
    assert first_seq == 2
    chunks = [e for e in entries if e.chunk_info]
    assert [c.chunk_info.number for c in chunks] == [1, 2, 3]
    assert {c.chunk_info.total for c in chunks} == {3}
    assert len({c.chunk_info.group_key for c in chunks}) == 1
    assert len(base64.b64decode(chunks[0].message)) == CHUNK_SIZE

    merged = reassemble_chunks(entries)
    assert [(e.sequence_number, e.max_sequence) for e in merged] == [(1, None), (2, 4)]
    assert base64.b64decode(merged[1].message) == payload


def test_oversized_submission_rejected(ledger: SQLiteLedger):
    async def main():
        topic = await ledger.create_topic("big")
        with pytest.raises(LedgerError):
            await ledger.submit_message(topic, b"x" * (CHUNK_SIZE * MAX_CHUNKS + 1))
        assert ledger.get_message_count(topic) == 0

    asyncio.run(main())


def test_query_desc_and_limit(ledger: SQLiteLedger):
    async def main():
        topic = await ledger.create_topic("t")
        for i in range(5):
            await ledger.submit_message(topic, str(i))
        newest = await ledger.query_messages(topic, order="desc", limit=2)
        assert [e.sequence_number for e in newest] == [5, 4]

    asyncio.run(main())


def test_closed_ledger_raises(tmp_path: Path):
    led = SQLiteLedger(tmp_path / "closed.db")
    led.close_sync()
    with pytest.raises(RuntimeError):
        led.get_message_count("0.0.1001")
