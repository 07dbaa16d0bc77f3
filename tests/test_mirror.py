# tests/test_mirror.py
import asyncio
import base64

import httpx
import pytest
import respx

from msgbox.core.errors import LedgerError
from msgbox.network.mirror import MirrorNodeClient, parse_entry

BASE = "https://mirror.test"
TOPIC_URL = f"{BASE}/api/v1/topics/0.0.1001/messages"


def _item(seq: int, body: bytes, chunk=None) -> dict:
    item = {
        "sequence_number": seq,
        "message": base64.b64encode(body).decode(),
        "consensus_timestamp": f"1700000000.00000000{seq}",
        "payer_account_id": "0.0.42",
        "topic_id": "0.0.1001",
    }
    if chunk:
        item["chunk_info"] = chunk
    return item


def _run(coro_fn):
    async def main():
        async with MirrorNodeClient(BASE, timeout=5) as client:
            return await coro_fn(client)
    return asyncio.run(main())


def test_parse_entry_with_chunk_info():
    entry = parse_entry(_item(3, b"abc", chunk={
        "initial_transaction_id": {
            "account_id": "0.0.42",
            "transaction_valid_start": "1699999999.000000001",
            "nonce": 0,
        },
        "number": 2,
        "total": 3,
    }))
    assert entry.sequence_number == 3
    assert entry.chunk_info.group_key == "0.0.42-1699999999.000000001-0"
    assert (entry.chunk_info.number, entry.chunk_info.total) == (2, 3)


def test_parse_entry_without_transaction_id_gets_unusable_group():
    entry = parse_entry(_item(3, b"abc", chunk={"number": 1, "total": 2}))
    assert entry.chunk_info.group_key == ""


@respx.mock
def test_query_messages_sends_cursor_params():
    route = respx.get(TOPIC_URL).mock(
        return_value=httpx.Response(200, json={"messages": [_item(6, b"six"), _item(7, b"seven")], "links": {}})
    )

    entries = _run(lambda c: c.query_messages("0.0.1001", after=5))

    assert route.called
    params = route.calls.last.request.url.params
    assert params["sequencenumber"] == "gt:5"
    assert params["order"] == "asc"
    assert params["limit"] == "100"
    assert [e.sequence_number for e in entries] == [6, 7]
    assert base64.b64decode(entries[1].message) == b"seven"
    assert entries[0].payer_account_id == "0.0.42"


@respx.mock
def test_latest_and_first_helpers():
    route = respx.get(TOPIC_URL).mock(
        return_value=httpx.Response(200, json={"messages": [_item(9, b"nine")]})
    )

    assert _run(lambda c: c.get_latest_sequence("0.0.1001")) == 9
    assert route.calls.last.request.url.params["order"] == "desc"
    assert route.calls.last.request.url.params["limit"] == "1"

    first = _run(lambda c: c.get_first_message("0.0.1001"))
    assert first.sequence_number == 9
    assert "sequencenumber" not in route.calls.last.request.url.params


@respx.mock
def test_missing_topic_is_empty():
    respx.get(TOPIC_URL).mock(return_value=httpx.Response(404, json={"_status": {"messages": []}}))
    assert _run(lambda c: c.query_messages("0.0.1001")) == []
    assert _run(lambda c: c.get_first_message("0.0.1001")) is None


@respx.mock
def test_malformed_items_are_skipped():
    respx.get(TOPIC_URL).mock(
        return_value=httpx.Response(200, json={"messages": [{"message": "AA=="}, _item(2, b"ok")]})
    )
    entries = _run(lambda c: c.query_messages("0.0.1001"))
    assert [e.sequence_number for e in entries] == [2]


@respx.mock
def test_server_error_raises_ledger_error():
    respx.get(TOPIC_URL).mock(return_value=httpx.Response(503))
    with pytest.raises(LedgerError):
        _run(lambda c: c.query_messages("0.0.1001"))


@respx.mock
def test_transport_error_raises_ledger_error():
    respx.get(TOPIC_URL).mock(side_effect=httpx.ConnectError("refused"))
    with pytest.raises(LedgerError):
        _run(lambda c: c.query_messages("0.0.1001"))
