from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from .constants import (
    DEFAULT_MAX_ITEMS,
    ENTRY_ID_WIDTH,
    ENTRY_SIZE_WIDTH,
    ENTRY_WIDTH,
    ITEM_COUNT_WIDTH,
    MAX_ENTRY_SIZE,
)
from .errors import BundleSizeMismatch, TruncatedHeader, UnreasonableItemCount
from .hashutil import b64url


@dataclass(frozen=True)
class OffsetEntry:
    declared_size: int
    item_id: bytes

    @property
    def id_b64(self) -> str:
        return b64url(self.item_id)


@dataclass
class BundleHeader:
    item_count: int
    entries: List[OffsetEntry]
    offsets: List[int] = field(default_factory=list)

    def __post_init__(self):
        # offsets are relative to the start of the bundle
        if not self.offsets:
            pos = self.header_size
            for e in self.entries:
                self.offsets.append(pos)
                pos += e.declared_size

    @property
    def header_size(self) -> int:
        return ITEM_COUNT_WIDTH + ENTRY_WIDTH * self.item_count

    @property
    def declared_length(self) -> int:
        return self.header_size + sum(e.declared_size for e in self.entries)


def _le_int(b: bytes) -> int:
    return int.from_bytes(b, "little")


def _read_table(stream, n: int, what: str, pos: int) -> bytes:
    b = stream.read(n)
    if len(b) != n:
        raise TruncatedHeader(f"bundle header truncated reading {what}", offset=pos + len(b))
    return b


def decode_header(
    stream,
    *,
    max_items: int = DEFAULT_MAX_ITEMS,
    region_length: Optional[int] = None,
) -> BundleHeader:
    """Read the item count and offset table from the start of a bundle.

    Args:
        stream: Object with ``read(n)`` positioned at the bundle start.
        max_items: Upper bound on the item count; guards the table allocation.
        region_length: Exact bundle length when known (nested bundles, files).

    Raises:
        UnreasonableItemCount: The count cannot be backed by a sane table.
        TruncatedHeader: The stream ended inside the count or the table.
        BundleSizeMismatch: An entry declares a size beyond 64 bits.
    """
    pos = 0
    item_count = _le_int(_read_table(stream, ITEM_COUNT_WIDTH, "item count", pos))
    pos += ITEM_COUNT_WIDTH
    if item_count > max_items:
        raise UnreasonableItemCount(f"item count {item_count} exceeds limit {max_items}", offset=0)
    table_size = ITEM_COUNT_WIDTH + ENTRY_WIDTH * item_count
    if region_length is not None and table_size > region_length:
        raise UnreasonableItemCount(
            f"offset table for {item_count} items needs {table_size} bytes, bundle has {region_length}", offset=0
        )
    entries: List[OffsetEntry] = []
    for i in range(item_count):
        size = _le_int(_read_table(stream, ENTRY_SIZE_WIDTH, f"size of entry {i}", pos))
        pos += ENTRY_SIZE_WIDTH
        item_id = _read_table(stream, ENTRY_ID_WIDTH, f"id of entry {i}", pos)
        pos += ENTRY_ID_WIDTH
        if size > MAX_ENTRY_SIZE:
            raise BundleSizeMismatch(f"entry {i} declares size beyond 64-bit range", offset=pos)
        entries.append(OffsetEntry(declared_size=size, item_id=item_id))
    return BundleHeader(item_count=item_count, entries=entries)


def check_length(header: BundleHeader, total_length: Optional[int], *, exact: bool) -> None:
    """Compare the declared bundle length against the bytes actually available.

    Trailing bytes are always rejected. A short source is only rejected when
    ``exact`` (nested regions); at top level the walker reports each missing
    item as it reaches it.
    """
    if total_length is None:
        return
    declared = header.declared_length
    if total_length > declared or (exact and total_length != declared):
        raise BundleSizeMismatch(
            f"bundle declares {declared} bytes but source has {total_length}", offset=header.header_size
        )


def encode_header(entries: Sequence[OffsetEntry]) -> bytes:
    out = bytearray(len(entries).to_bytes(ITEM_COUNT_WIDTH, "little"))
    for e in entries:
        if len(e.item_id) != ENTRY_ID_WIDTH:
            raise ValueError("item id must be 32 bytes")
        out += e.declared_size.to_bytes(ENTRY_SIZE_WIDTH, "little")
        out += e.item_id
    return bytes(out)
