from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import List, Optional, Tuple, Union

from .bundle import BundleHeader, OffsetEntry, check_length, decode_header
from .classify import Severity, classify
from .constants import DEFAULT_CHUNK_SIZE, DEFAULT_MAX_DEPTH, DEFAULT_MAX_ITEMS
from .errors import (
    Ans104Error,
    BundleSizeMismatch,
    Cancelled,
    DepthLimitExceeded,
    FatalError,
    MalformedNestedBundle,
    SinkWriteError,
    TruncatedBundle,
    TruncatedHeader,
    UnderrunPayload,
    UnreasonableItemCount,
)
from .item import ItemHeader, decode_item_header
from .sinks import ItemSink
from .stream import Region, SourceReader, stream_payload
from .tags import is_bundle


@dataclass
class Leaf:
    entry: OffsetEntry
    header: ItemHeader
    bundled_in: str
    depth: int
    bytes_written: int = 0


@dataclass
class NestedBundle:
    entry: OffsetEntry
    header: ItemHeader
    bundled_in: str
    depth: int
    bundle: BundleHeader


@dataclass
class Skipped:
    entry: OffsetEntry
    reason: str
    error: Ans104Error
    bundled_in: str
    depth: int


ParseResult = Union[Leaf, NestedBundle, Skipped]


@dataclass
class WalkReport:
    results: List[ParseResult] = field(default_factory=list)
    bytes_emitted: int = 0
    complete: bool = False

    @property
    def items_found(self) -> int:
        return len(self.results)

    @property
    def leaves(self) -> List[Leaf]:
        return [r for r in self.results if isinstance(r, Leaf)]

    @property
    def bundles(self) -> List[NestedBundle]:
        return [r for r in self.results if isinstance(r, NestedBundle)]

    @property
    def bundles_found(self) -> int:
        return len(self.bundles)

    @property
    def items_emitted(self) -> int:
        return len(self.leaves)

    @property
    def skipped(self) -> List[Tuple[str, str]]:
        return [(r.entry.id_b64, r.reason) for r in self.results if isinstance(r, Skipped)]


@dataclass
class _Frame:
    header: BundleHeader
    base: int
    end: int
    depth: int
    bundled_in: str
    next_index: int = 0


class BundleWalker:
    """Decode a bundle and every bundle nested inside it.

    Traversal uses an explicit stack of bundle frames, so nesting depth is
    bounded by ``max_depth`` rather than the interpreter's recursion limit.
    Item positions always come from the offset table: a damaged item header
    costs that item only.

    Args:
        sink: Receives leaf payloads and nested bundle metadata. ``None``
            decodes headers only and skips payload bytes.
        max_depth: Deepest nesting level expanded; deeper bundles are skipped.
        chunk_size: Largest single read while streaming a payload.
        max_items: Per-bundle item count bound for the offset table.
        cancel: Event checked between items and payload chunks.
    """

    def __init__(
        self,
        sink: Optional[ItemSink] = None,
        *,
        max_depth: int = DEFAULT_MAX_DEPTH,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        max_items: int = DEFAULT_MAX_ITEMS,
        cancel: Optional[threading.Event] = None,
    ):
        self.sink = sink
        self.max_depth = max_depth
        self.chunk_size = chunk_size
        self.max_items = max_items
        self.cancel = cancel

    def walk(self, source, *, bundled_in: str = "", length: Optional[int] = None) -> WalkReport:
        """Walk the bundle at the current position of ``source``.

        Raises:
            FatalError: The bundle cannot be traversed further. ``offset`` is the
                absolute stream position and ``report`` holds the partial
                (incomplete) results gathered so far.
        """
        if isinstance(source, SourceReader):
            reader = source
        else:
            reader = SourceReader(source, length=length, chunk_size=self.chunk_size)
        report = WalkReport()
        try:
            total = None if reader.length is None else reader.length - reader.position
            stack = [self._open_frame(reader, total, depth=0, bundled_in=bundled_in, exact=False)]
            while stack:
                self._check_cancel(reader)
                frame = stack[-1]
                if frame.next_index >= len(frame.header.entries):
                    stack.pop()
                    if reader.skip_to(frame.end) and frame.depth == 0 and reader.length is None:
                        self._probe_trailing(reader, frame)
                    continue
                idx = frame.next_index
                frame.next_index += 1
                entry = frame.header.entries[idx]
                start = frame.base + frame.header.offsets[idx]
                if not reader.skip_to(start):
                    raise TruncatedBundle(
                        f"stream ended before item {idx} ({entry.id_b64}) at offset {start}", offset=reader.position
                    )
                try:
                    self._visit(reader, frame, entry, stack, report)
                except Ans104Error as exc:
                    if classify(exc) is Severity.FATAL:
                        raise
                    report.results.append(
                        Skipped(entry=entry, reason=str(exc), error=exc, bundled_in=frame.bundled_in, depth=frame.depth)
                    )
                    reader.skip_to(start + entry.declared_size)
        except FatalError as exc:
            if exc.offset is None:
                exc.offset = reader.position
            exc.report = report
            raise
        report.complete = True
        return report

    def _check_cancel(self, reader: SourceReader) -> None:
        if self.cancel is not None and self.cancel.is_set():
            raise Cancelled("bundle walk cancelled", offset=reader.position)

    def _open_frame(
        self, reader: SourceReader, length: Optional[int], *, depth: int, bundled_in: str, exact: bool
    ) -> _Frame:
        base = reader.position
        try:
            if exact:
                header = decode_header(Region(reader, length), max_items=self.max_items, region_length=length)
            else:
                header = decode_header(reader, max_items=self.max_items)
            check_length(header, length, exact=exact)
        except FatalError as exc:
            exc.offset = base + (exc.offset or 0)
            raise
        return _Frame(
            header=header,
            base=base,
            end=base + header.declared_length,
            depth=depth,
            bundled_in=bundled_in,
        )

    def _probe_trailing(self, reader: SourceReader, frame: _Frame) -> None:
        # length unknown up front (plain stream): one extra byte means trailing data
        if reader.read(1):
            raise BundleSizeMismatch(
                f"bytes remain after declared bundle length {frame.header.declared_length}", offset=frame.end
            )

    def _visit(self, reader: SourceReader, frame: _Frame, entry: OffsetEntry, stack: List[_Frame], report: WalkReport):
        region = Region(reader, entry.declared_size)
        try:
            item = decode_item_header(region, entry.declared_size)
        except EOFError:
            raise TruncatedBundle(
                f"stream ended inside header of item {entry.id_b64}", offset=reader.position
            ) from None

        if is_bundle(item.tags):
            depth = frame.depth + 1
            if depth > self.max_depth:
                raise DepthLimitExceeded(f"nested bundle depth {depth} exceeds limit {self.max_depth}")
            try:
                child = self._open_frame(reader, item.payload_length, depth=depth, bundled_in=entry.id_b64, exact=True)
            except (TruncatedHeader, UnreasonableItemCount, BundleSizeMismatch) as exc:
                # the parent table still bounds this item
                raise MalformedNestedBundle(f"nested bundle {entry.id_b64}: {exc}", bytes_read=region.consumed) from exc
            if self.sink is not None:
                try:
                    self.sink.on_bundle(item, entry, frame.bundled_in)
                except OSError as exc:
                    raise SinkWriteError(f"writing bundle metadata for {entry.id_b64} failed: {exc}") from exc
            report.results.append(
                NestedBundle(entry=entry, header=item, bundled_in=frame.bundled_in, depth=frame.depth, bundle=child.header)
            )
            stack.append(child)
            return

        if self.sink is None:
            payload_start = reader.position
            if not reader.skip_to(region.end):
                raise UnderrunPayload(item.payload_length, reader.position - payload_start)
            report.results.append(Leaf(entry=entry, header=item, bundled_in=frame.bundled_in, depth=frame.depth))
            return

        try:
            with self.sink.open_item(item, entry, frame.bundled_in) as out:
                written = stream_payload(region, item.payload_length, out, chunk_size=self.chunk_size, cancel=self.cancel)
        except OSError as exc:
            raise SinkWriteError(f"output for {entry.id_b64} failed: {exc}") from exc
        report.bytes_emitted += written
        report.results.append(
            Leaf(entry=entry, header=item, bundled_in=frame.bundled_in, depth=frame.depth, bytes_written=written)
        )


def walk_bundle(source, sink: Optional[ItemSink] = None, **kwargs) -> WalkReport:
    bundled_in = kwargs.pop("bundled_in", "")
    return BundleWalker(sink, **kwargs).walk(source, bundled_in=bundled_in)
