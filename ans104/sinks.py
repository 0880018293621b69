from __future__ import annotations

import io
import json as _json
import os
from typing import Dict, List, Optional

from .bundle import OffsetEntry
from .errors import SinkWriteError
from .item import ItemHeader


class ItemSink:
    """Destination for decoded items.

    ``open_item`` returns a context manager whose value has ``write(b)``. The
    walker writes the payload inside the ``with`` block; leaving it normally
    means the payload is complete, leaving it with an exception means the
    output must be discarded.
    """

    def open_item(self, item: ItemHeader, entry: OffsetEntry, bundled_in: str):
        raise NotImplementedError

    def on_bundle(self, item: ItemHeader, entry: OffsetEntry, bundled_in: str) -> None:
        return None


class PartialFile:
    """Write to ``<path>.part`` and rename into place only on clean exit.

    If closing or renaming fails, the ``.part`` file is removed and
    ``SinkWriteError`` is raised, so a file at ``path`` is always complete.
    """

    def __init__(self, path: str, on_commit=None):
        self.path = path
        self.part_path = path + ".part"
        self.on_commit = on_commit
        self.fh = None

    def __enter__(self):
        os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
        self.fh = open(self.part_path, "wb")
        return self.fh

    def _discard(self) -> None:
        try:
            os.remove(self.part_path)
        except FileNotFoundError:
            pass

    def __exit__(self, exc_type, exc, tb):
        fh, self.fh = self.fh, None
        try:
            fh.close()
            if exc_type is None:
                os.replace(self.part_path, self.path)
        except OSError as e:
            self._discard()
            if exc_type is None:
                raise SinkWriteError(f"committing {self.path} failed: {e}") from e
            return False
        if exc_type is not None:
            self._discard()
        elif self.on_commit is not None:
            self.on_commit()
        return False


class FileSink(ItemSink):
    """Writes ``<base>-<id>`` payload files and ``<base>-<id>.json`` metadata.

    ``base`` may include a directory (``out/bundle``); the id suffix is the
    base64url offset-table id of the item.
    """

    def __init__(self, base: str = "bundle", *, metadata: bool = True):
        self.base = base
        self.metadata = metadata
        self.written: List[str] = []

    def path_for(self, entry: OffsetEntry) -> str:
        return f"{self.base}-{entry.id_b64}"

    def _write_metadata(self, item: ItemHeader, entry: OffsetEntry, bundled_in: str, is_bundle: bool) -> None:
        if not self.metadata:
            return
        path = self.path_for(entry) + ".json"
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            _json.dump(item.to_json(bundled_in=bundled_in, is_bundle=is_bundle), f, indent=2)
            f.write("\n")

    def open_item(self, item: ItemHeader, entry: OffsetEntry, bundled_in: str) -> PartialFile:
        path = self.path_for(entry)

        def _committed():
            try:
                self._write_metadata(item, entry, bundled_in, False)
            except OSError as e:
                # payload without its metadata is not a finished item
                try:
                    os.remove(path)
                except FileNotFoundError:
                    pass
                raise SinkWriteError(f"writing metadata for {path} failed: {e}") from e
            self.written.append(path)

        return PartialFile(path, on_commit=_committed)

    def on_bundle(self, item: ItemHeader, entry: OffsetEntry, bundled_in: str) -> None:
        self._write_metadata(item, entry, bundled_in, True)


class _MemoryItem:
    def __init__(self, sink: "MemorySink", key: str, record: dict):
        self.sink = sink
        self.key = key
        self.record = record
        self.buf = io.BytesIO()

    def __enter__(self):
        return self.buf

    def __exit__(self, exc_type, exc, tb):
        if exc_type is None:
            self.sink.payloads[self.key] = self.buf.getvalue()
            self.sink.metadata[self.key] = self.record
        else:
            self.sink.discarded.append(self.key)
        return False


class MemorySink(ItemSink):
    def __init__(self):
        self.payloads: Dict[str, bytes] = {}
        self.metadata: Dict[str, dict] = {}
        self.bundles: Dict[str, dict] = {}
        self.discarded: List[str] = []

    def open_item(self, item: ItemHeader, entry: OffsetEntry, bundled_in: str) -> _MemoryItem:
        return _MemoryItem(self, entry.id_b64, item.to_json(bundled_in=bundled_in, is_bundle=False))

    def on_bundle(self, item: ItemHeader, entry: OffsetEntry, bundled_in: str) -> None:
        self.bundles[entry.id_b64] = item.to_json(bundled_in=bundled_in, is_bundle=True)


def payload_complete(path: str, expected_length: Optional[int] = None) -> bool:
    """True when ``path`` is a committed payload (no pending ``.part``)."""
    if not os.path.isfile(path) or os.path.exists(path + ".part"):
        return False
    return expected_length is None or os.path.getsize(path) == expected_length
