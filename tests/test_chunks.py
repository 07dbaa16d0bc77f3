# tests/test_chunks.py
import base64
import logging

from msgbox.box.chunks import reassemble_chunks
from msgbox.box.sniff import sniff_format
from msgbox.core import cbor
from msgbox.core.types import ChunkInfo, RawEntry

GROUP = "0.0.2-1700000000.000000001-0"


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _chunk(seq: int, number: int, data: bytes, total: int = 3, group: str = GROUP) -> RawEntry:
    return RawEntry(
        sequence_number=seq,
        message=_b64(data),
        consensus_timestamp=f"17000000{seq:02d}.000000000",
        payer_account_id="0.0.2",
        chunk_info=ChunkInfo(group, number, total),
    )


def _plain(seq: int, data: bytes) -> RawEntry:
    return RawEntry(seq, _b64(data), payer_account_id="0.0.3")


# ── Reassembly ──────────────────────────────────────────────────────────

def test_three_chunks_reassemble():
    parts = [b"first-", b"second-", b"third"]
    out = reassemble_chunks([_chunk(5 + i, i + 1, part) for i, part in enumerate(parts)])

    assert len(out) == 1
    entry = out[0]
    assert base64.b64decode(entry.message) == b"first-second-third"
    assert entry.sequence_number == 5
    assert entry.max_sequence == 7
    assert entry.last_sequence == 7
    assert entry.chunk_info is None
    assert entry.consensus_timestamp == "1700000005.000000000"


def test_chunks_out_of_order_with_plain_entries():
    entries = [
        _chunk(4, 2, b"world"),
        _plain(1, b"one"),
        _chunk(3, 1, b"hello "),
        _plain(6, b"six"),
        _chunk(5, 3, b"!"),
    ]
    out = reassemble_chunks(entries)
    assert [e.sequence_number for e in out] == [1, 3, 6]
    assert base64.b64decode(out[1].message) == b"hello world!"


def test_missing_middle_chunk_drops_group(caplog):
    entries = [_plain(1, b"keep"), _chunk(2, 1, b"a"), _chunk(4, 3, b"c")]
    with caplog.at_level(logging.WARNING, logger="msgbox.box.chunks"):
        out = reassemble_chunks(entries)

    assert [e.sequence_number for e in out] == [1]
    assert base64.b64decode(out[0].message) == b"keep"
    assert "Incomplete chunked message" in caplog.text
    assert "2/3" in caplog.text


def test_missing_first_chunk_drops_group():
    out = reassemble_chunks([_chunk(3, 2, b"b"), _chunk(4, 3, b"c")])
    assert out == []


def test_independent_groups():
    other = "0.0.9-1700000001.000000000-0"
    entries = [
        _chunk(1, 1, b"A1", total=2),
        _chunk(2, 1, b"B1", total=2, group=other),
        _chunk(3, 2, b"A2", total=2),
        _chunk(4, 2, b"B2", total=2, group=other),
    ]
    out = reassemble_chunks(entries)
    assert [(e.sequence_number, e.max_sequence) for e in out] == [(1, 3), (2, 4)]
    assert [base64.b64decode(e.message) for e in out] == [b"A1A2", b"B1B2"]


def test_unusable_entries_are_skipped(caplog):
    entries = [
        RawEntry(1, ""),
        _chunk(2, 1, b"x", total=1, group=""),
        _chunk(3, 9, b"y", total=2),
        _plain(4, b"ok"),
    ]
    with caplog.at_level(logging.WARNING):
        out = reassemble_chunks(entries)
    assert [e.sequence_number for e in out] == [4]


def test_undecodable_chunk_drops_group():
    good = _chunk(1, 1, b"a", total=2)
    bad = RawEntry(2, "%%%", chunk_info=ChunkInfo(GROUP, 2, 2))
    assert reassemble_chunks([good, bad]) == []


def test_non_chunked_passthrough_is_sorted():
    out = reassemble_chunks([_plain(9, b"9"), _plain(2, b"2")])
    assert [e.sequence_number for e in out] == [2, 9]
    assert out[0].max_sequence is None


# ── Format sniffing ─────────────────────────────────────────────────────

def test_sniff_cbor_mapping_with_type():
    data = cbor.encode({"type": "ENCRYPTED_MESSAGE", "format": "cbor", "data": {}})
    sniffed = sniff_format(data)
    assert sniffed.format == "cbor"
    assert sniffed.value["type"] == "ENCRYPTED_MESSAGE"


def test_sniff_cbor_without_type_is_not_accepted():
    sniffed = sniff_format(cbor.encode({"a": 1}))
    assert sniffed.format == "plain"


def test_sniff_json():
    sniffed = sniff_format(b'{"type":"PUBLIC_KEY","publicKey":"k"}')
    assert sniffed.format == "json"
    assert sniffed.value == {"type": "PUBLIC_KEY", "publicKey": "k"}
    assert sniff_format(b"[1,2]").value == [1, 2]


def test_sniff_plain_text():
    assert sniff_format(b"hello there") == sniff_format(b"hello there")
    sniffed = sniff_format(b"hello there")
    assert sniffed.format == "plain"
    assert sniffed.value == "hello there"

    broken = sniff_format(b'{"type": ')
    assert broken.format == "plain"
    assert broken.value == '{"type": '


def test_sniff_empty_payload():
    assert sniff_format(b"").format == "plain"


def test_sniff_deeply_nested_payloads_fall_back_to_plain():
    nested_binary = sniff_format(b"\x81" * 1000 + b"\x00")
    assert nested_binary.format == "plain"

    text = "[" * 100000 + "]" * 100000
    nested_json = sniff_format(text.encode())
    assert nested_json.format == "plain"
    assert nested_json.value == text
