from __future__ import annotations

import io
import threading
from typing import BinaryIO, Optional

from .constants import DEFAULT_CHUNK_SIZE
from .errors import Cancelled, SinkWriteError, UnderrunPayload


def read_exact(f, n: int) -> bytes:
    b = f.read(n)
    if len(b) != n:
        raise EOFError("Unexpected EOF")
    return b


class SourceReader:
    """Counting cursor over a binary stream.

    The walker positions items from the offset table, so the only thing it
    needs from the source is forward movement and the absolute position.
    Seekable sources skip with ``seek``; plain streams read and discard.
    """

    def __init__(self, raw: BinaryIO, *, length: Optional[int] = None, chunk_size: int = DEFAULT_CHUNK_SIZE):
        self.raw = raw
        self.chunk_size = chunk_size
        self.position = 0
        self._seekable = False
        try:
            self._seekable = bool(raw.seekable())
        except (AttributeError, OSError, ValueError):
            self._seekable = False
        if self._seekable:
            self.position = raw.tell()
        if length is None:
            length = getattr(raw, "length", None)
        if length is None and self._seekable:
            cur = raw.tell()
            length = raw.seek(0, io.SEEK_END)
            raw.seek(cur)
        self.length = length

    def read(self, n: int) -> bytes:
        if n <= 0:
            return b""
        out = bytearray()
        # file-like sources may return short reads before EOF
        while len(out) < n:
            b = self.raw.read(n - len(out))
            if not b:
                break
            out += b
        self.position += len(out)
        return bytes(out)

    def skip_to(self, target: int) -> bool:
        """Advance to absolute ``target``. Returns False if the stream ends first."""
        if target < self.position:
            raise ValueError(f"cannot move backwards from {self.position} to {target}")
        if target == self.position:
            return True
        if self._seekable:
            if self.length is not None and target > self.length:
                self.raw.seek(self.length)
                self.position = self.length
                return False
            self.raw.seek(target)
            self.position = target
            return True
        while self.position < target:
            got = self.read(min(self.chunk_size, target - self.position))
            if not got:
                return False
        return True

    def at_eof(self) -> bool:
        if self.length is not None:
            return self.position >= self.length
        return False


class Region:
    """Read-only view of ``length`` bytes starting at the reader's cursor."""

    def __init__(self, reader: SourceReader, length: int):
        self.reader = reader
        self.start = reader.position
        self.length = length

    @property
    def end(self) -> int:
        return self.start + self.length

    @property
    def consumed(self) -> int:
        return self.reader.position - self.start

    @property
    def remaining(self) -> int:
        return self.end - self.reader.position

    def read(self, n: int) -> bytes:
        return self.reader.read(min(n, self.remaining))


def stream_payload(
    source,
    length: int,
    sink,
    *,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    cancel: Optional[threading.Event] = None,
) -> int:
    """Copy exactly ``length`` bytes from ``source`` to ``sink`` in bounded chunks.

    Args:
        source: Object with ``read(n)``.
        length: Bytes to deliver.
        sink: Object with ``write(b)``.
        chunk_size: Upper bound on any single read.
        cancel: Checked between chunks; when set the copy stops with ``Cancelled``.

    Returns:
        The number of bytes written, always ``length`` on success.

    Raises:
        UnderrunPayload: The source ended first. Output already written is partial.
        SinkWriteError: The sink raised ``OSError``.
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    written = 0
    while written < length:
        if cancel is not None and cancel.is_set():
            raise Cancelled("payload copy cancelled", offset=getattr(source, "position", None))
        buf = source.read(min(chunk_size, length - written))
        if not buf:
            raise UnderrunPayload(length, written)
        try:
            sink.write(buf)
        except OSError as exc:
            raise SinkWriteError(f"sink write failed: {exc}") from exc
        written += len(buf)
    return written
