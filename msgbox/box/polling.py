# msgbox/box/polling.py
"""
Cursor-based reads of a message box.

A PollState belongs to one listener. The first poll only records the latest
sequence number so history is not replayed; later polls deliver every entry
past the cursor and move the cursor to the highest sequence observed,
including the trailing parts of reassembled entries.

A multi-part entry whose parts are still arriving is skipped for that poll.
If a later entry is delivered in the same poll, the cursor moves past the
partial group and that message is never delivered by poll; `range_query`
still returns it once complete.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from msgbox.box.chunks import reassemble_chunks
from msgbox.box.messages import decode_entry
from msgbox.core.types import BoxMessage, RawEntry
from msgbox.crypto.keys import KeyPair
from msgbox.network import PAGE_LIMIT, MirrorClient

logger = logging.getLogger(__name__)


@dataclass
class PollState:
    box_id: str
    keypair: KeyPair
    first_call: bool = True
    last_sequence_number: int = 0
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)

    def advance(self, sequence: int) -> None:
        """Move the cursor forward; never backwards."""
        if sequence > self.last_sequence_number:
            self.last_sequence_number = sequence


async def fetch_after(mirror: MirrorClient, box_id: str, after: int) -> List[RawEntry]:
    """All entries with sequence > `after`, page by page, chunks reassembled."""
    collected: List[RawEntry] = []
    cursor = after
    while True:
        page = await mirror.query_messages(box_id, after=cursor, order="asc", limit=PAGE_LIMIT)
        collected.extend(page)
        if len(page) < PAGE_LIMIT:
            break
        cursor = page[-1].sequence_number
    return reassemble_chunks(collected)


async def poll(mirror: MirrorClient, state: PollState) -> List[BoxMessage]:
    async with state.lock:
        if state.first_call:
            latest = await mirror.get_latest_sequence(state.box_id)
            state.advance(latest or 0)
            state.first_call = False
            logger.info(
                "Listening on box %s from sequence %d", state.box_id, state.last_sequence_number
            )
            return []

        entries = await fetch_after(mirror, state.box_id, state.last_sequence_number)
        messages = []
        for entry in entries:
            messages.append(decode_entry(entry, state.keypair))
            state.advance(entry.last_sequence)
        if messages:
            logger.debug("Box %s: %d new message(s), cursor at %d",
                         state.box_id, len(messages), state.last_sequence_number)
        return messages


async def range_query(
    mirror: MirrorClient, box_id: str, start: int, end: Optional[int] = None
) -> List[RawEntry]:
    """
    Entries with start <= sequence <= end (end=None: up to the head), fetched in
    pages of PAGE_LIMIT. A multi-part entry is returned only if all its parts
    fall inside the range.
    """
    collected: List[RawEntry] = []
    cursor = max(start - 1, 0)
    while True:
        page = await mirror.query_messages(box_id, after=cursor, order="asc", limit=PAGE_LIMIT)
        done = len(page) < PAGE_LIMIT
        for entry in page:
            if end is not None and entry.sequence_number > end:
                done = True
                break
            if entry.sequence_number >= start:
                collected.append(entry)
        if done:
            break
        cursor = page[-1].sequence_number
    return reassemble_chunks(collected)
