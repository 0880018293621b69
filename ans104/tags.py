from __future__ import annotations

"""
Tag block codec for ANS-104 data items.

Tags are stored as the Avro binary encoding of

    {"type": "array", "items": {"type": "record", "name": "Tag",
     "fields": [{"name": "name", "type": "bytes"},
                {"name": "value", "type": "bytes"}]}}

Encoding
- long: zigzag, then unsigned LEB128 varint
- bytes: long(length) || raw bytes
- array: one or more blocks of long(count) || items, ended by long(0).
  A negative count means abs(count) items preceded by long(block_byte_size).

An item with no tags carries an empty block (zero bytes, not a lone
terminator), so tag_count == 0 pairs with byte_length == 0.
"""

from dataclasses import dataclass
from typing import Iterable, List, Sequence, Tuple

from .constants import (
    BUNDLE_FORMAT_TAG,
    BUNDLE_VERSION_TAG,
    MAX_TAGS,
    MAX_TAG_NAME_BYTES,
    MAX_TAG_VALUE_BYTES,
)
from .errors import InvalidTag, MalformedTags, TagCountMismatch, TooManyTags, TruncatedTag
from .hashutil import b64url


@dataclass(frozen=True)
class Tag:
    name: bytes
    value: bytes

    def validate(self) -> None:
        if len(self.name) > MAX_TAG_NAME_BYTES:
            raise InvalidTag(f"Tag name exceeds {MAX_TAG_NAME_BYTES} bytes")
        if len(self.value) > MAX_TAG_VALUE_BYTES:
            raise InvalidTag(f"Tag value exceeds {MAX_TAG_VALUE_BYTES} bytes")
        if not self.name or not self.value:
            raise InvalidTag("Tag name and value must not be empty")

    def to_json(self) -> dict:
        # UTF-8 when both halves decode, base64url for both otherwise
        try:
            return {"name": self.name.decode("utf-8"), "value": self.value.decode("utf-8")}
        except UnicodeDecodeError:
            return {"name": b64url(self.name), "value": b64url(self.value)}


def _zigzag_encode(n: int) -> bytes:
    z = (n << 1) ^ (n >> 63)
    out = bytearray()
    while True:
        b = z & 0x7F
        z >>= 7
        if z:
            out.append(b | 0x80)
        else:
            out.append(b)
            break
    return bytes(out)


def _zigzag_decode(data: bytes, pos: int) -> Tuple[int, int]:
    shift = 0
    result = 0
    while True:
        if pos >= len(data):
            raise TruncatedTag("varint: truncated", bytes_read=pos)
        b = data[pos]
        pos += 1
        result |= (b & 0x7F) << shift
        if not (b & 0x80):
            return (result >> 1) ^ -(result & 1), pos
        shift += 7
        if shift > 63:
            raise MalformedTags("varint: too large", bytes_read=pos)


def _read_bytes(data: bytes, pos: int) -> Tuple[bytes, int]:
    ln, pos = _zigzag_decode(data, pos)
    if ln < 0:
        raise MalformedTags("negative byte-string length", bytes_read=pos)
    if pos + ln > len(data):
        raise TruncatedTag(f"tag length {ln} exceeds remaining {len(data) - pos} bytes", bytes_read=pos)
    return data[pos : pos + ln], pos + ln


def _iter_records(data: bytes) -> Iterable[Tag]:
    pos = 0
    while True:
        count, pos = _zigzag_decode(data, pos)
        if count == 0:
            break
        if count < 0:
            count = -count
            block_size, pos = _zigzag_decode(data, pos)
            if block_size < 0 or pos + block_size > len(data):
                raise TruncatedTag("tag block size out of range", bytes_read=pos)
        for _ in range(count):
            name, pos = _read_bytes(data, pos)
            value, pos = _read_bytes(data, pos)
            yield Tag(name, value)
    if pos != len(data):
        raise MalformedTags(f"{len(data) - pos} trailing bytes after tag array", bytes_read=pos)


def decode_tags(buffer: bytes, tag_count: int, byte_length: int) -> List[Tag]:
    """Decode a tag block of exactly ``byte_length`` bytes holding ``tag_count`` tags."""
    if len(buffer) != byte_length:
        raise TagCountMismatch(f"tag block is {len(buffer)} bytes, header says {byte_length}")
    if tag_count > MAX_TAGS:
        raise TooManyTags(f"Too many tags: {tag_count}")
    if byte_length == 0:
        if tag_count != 0:
            raise TagCountMismatch(f"Tag count mismatch: expected {tag_count}, found 0")
        return []
    tags: List[Tag] = []
    for tag in _iter_records(buffer):
        tags.append(tag)
        if len(tags) > tag_count:
            raise TagCountMismatch(f"Tag count mismatch: expected {tag_count}, found more")
    if len(tags) != tag_count:
        raise TagCountMismatch(f"Tag count mismatch: expected {tag_count}, found {len(tags)}")
    for tag in tags:
        tag.validate()
    return tags


def encode_tags(tags: Sequence[Tag]) -> bytes:
    if not tags:
        return b""
    out = bytearray(_zigzag_encode(len(tags)))
    for tag in tags:
        out += _zigzag_encode(len(tag.name)) + tag.name
        out += _zigzag_encode(len(tag.value)) + tag.value
    out += _zigzag_encode(0)
    return bytes(out)


def is_bundle(tags: Sequence[Tag]) -> bool:
    pairs = {(t.name, t.value) for t in tags}
    return BUNDLE_FORMAT_TAG in pairs and BUNDLE_VERSION_TAG in pairs
