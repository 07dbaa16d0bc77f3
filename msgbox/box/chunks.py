# msgbox/box/chunks.py
"""
Reassembly of multi-part log entries.

The ledger splits oversized submissions into physical entries that share an
initial transaction id and carry (number, total). A group is delivered only when
chunk #1 is present and every slot is filled; otherwise the whole group is
dropped with a warning. The reassembled entry takes the group's lowest sequence
number and remembers the highest in `max_sequence` so poll cursors skip every part.
"""

import base64
import binascii
import logging
from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, List, Optional

from msgbox.core.errors import ChunkIncomplete
from msgbox.core.types import RawEntry

logger = logging.getLogger(__name__)


@dataclass
class ChunkGroup:
    key: str
    total: int
    slots: List[Optional[str]] = field(default_factory=list)
    first: Optional[RawEntry] = None
    min_sequence: int = 0
    max_sequence: int = 0

    def __post_init__(self):
        if not self.slots:
            self.slots = [None] * self.total

    @property
    def has_first_slot(self) -> bool:
        return bool(self.slots) and bool(self.slots[0])

    def add(self, entry: RawEntry) -> None:
        number = entry.chunk_info.number
        if not 1 <= number <= self.total:
            logger.warning("Ignoring chunk %s/%s of transaction %s", number, self.total, self.key)
            return
        self.slots[number - 1] = entry.message
        if number == 1 or self.first is None:
            self.first = entry          # metadata of chunk #1 wins
        if self.min_sequence == 0 or entry.sequence_number < self.min_sequence:
            self.min_sequence = entry.sequence_number
        if entry.sequence_number > self.max_sequence:
            self.max_sequence = entry.sequence_number

    def assemble(self) -> RawEntry:
        if not self.has_first_slot:
            raise ChunkIncomplete(self.key, "missing first chunk")
        received = sum(1 for slot in self.slots if slot)
        if received != self.total:
            raise ChunkIncomplete(self.key, f"{received}/{self.total} chunks received")
        try:
            binary = b"".join(base64.b64decode(slot, validate=True) for slot in self.slots)
        except binascii.Error as e:
            raise ChunkIncomplete(self.key, f"undecodable chunk: {e}") from e

        return replace(
            self.first,
            message=base64.b64encode(binary).decode("ascii"),
            sequence_number=self.min_sequence,
            max_sequence=self.max_sequence,
            chunk_info=None,
        )


def reassemble_chunks(entries: Iterable[RawEntry]) -> List[RawEntry]:
    """Merge chunk groups into logical entries; output sorted by sequence number."""
    complete: List[RawEntry] = []
    groups: Dict[str, ChunkGroup] = {}

    for entry in entries:
        if not entry.message:
            logger.warning("Skipping entry %s with no message body", entry.sequence_number)
            continue
        info = entry.chunk_info
        if info is None:
            complete.append(entry)
            continue
        if not info.group_key or info.total < 1:
            logger.warning("Skipping chunk %s with invalid transaction reference", entry.sequence_number)
            continue

        group = groups.get(info.group_key)
        if group is None:
            group = groups[info.group_key] = ChunkGroup(info.group_key, info.total)
        group.add(entry)

    for group in groups.values():
        try:
            complete.append(group.assemble())
        except ChunkIncomplete as e:
            logger.warning("%s", e)

    complete.sort(key=lambda e: e.sequence_number)
    return complete
