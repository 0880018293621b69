from __future__ import annotations

import struct
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from .constants import (
    ANCHOR_WIDTH,
    PRESENCE_WIDTH,
    SIG_TYPE_WIDTH,
    TAG_BYTES_WIDTH,
    TAG_COUNT_WIDTH,
    TARGET_WIDTH,
    signature_type,
)
from .errors import (
    DecodeError,
    HeaderExceedsDeclaredSize,
    InvalidPresenceByte,
    UnknownSignatureType,
)
from .hashutil import b64url, item_id
from .stream import read_exact
from .tags import Tag, decode_tags, encode_tags


# Data item header, fixed order:
#  - signature_type u16
#  - signature[sig_len], owner[owner_len]   (widths from the signature type)
#  - target presence u8 (+ target[32])
#  - anchor presence u8 (+ anchor[32])
#  - tag_count u64, tag_bytes_len u64, tag block
#  - payload (rest of the declared size)
_SIG_TYPE_STRUCT = struct.Struct("<H")
_TAG_LENS_STRUCT = struct.Struct("<QQ")


@dataclass
class ItemHeader:
    signature_type: int
    signature: bytes
    owner: bytes
    target: Optional[bytes] = None
    anchor: Optional[bytes] = None
    tags: List[Tag] = field(default_factory=list)
    payload_offset: int = 0
    payload_length: int = 0

    @property
    def item_id(self) -> bytes:
        return item_id(self.signature)

    def to_json(self, *, bundled_in: str = "", is_bundle: bool = False) -> dict:
        return {
            "id": b64url(self.item_id),
            "signature": b64url(self.signature),
            "owner": b64url(self.owner),
            "target": b64url(self.target) if self.target is not None else "",
            "anchor": b64url(self.anchor) if self.anchor is not None else "",
            "tags": [t.to_json() for t in self.tags],
            "bundled_in": bundled_in,
            "is_bundle": is_bundle,
        }


class _FieldReader:
    """Reads header fields from a region, tracking bytes consumed.

    Crossing the region's end is a local error (the declared size is too small
    for the header); a short read inside the region means the stream itself
    ended, which surfaces as ``EOFError``.
    """

    def __init__(self, region, declared_size: int):
        self.region = region
        self.declared_size = declared_size
        self.consumed = 0

    def take(self, n: int, what: str) -> bytes:
        if self.consumed + n > self.declared_size:
            raise HeaderExceedsDeclaredSize(
                f"{what} ({n} bytes) exceeds declared item size {self.declared_size}", bytes_read=self.consumed
            )
        b = read_exact(self.region, n)
        self.consumed += n
        return b

    def optional_id(self, width: int, what: str) -> Optional[bytes]:
        flag = self.take(PRESENCE_WIDTH, f"{what} presence byte")[0]
        if flag == 1:
            return self.take(width, what)
        if flag == 0:
            return None
        raise InvalidPresenceByte(f"Invalid {what} presence byte: {flag}", bytes_read=self.consumed)


def decode_item_header(stream, declared_size: int) -> ItemHeader:
    """Decode one data item header from ``stream``, bounded by ``declared_size``.

    On success the stream is positioned at the first payload byte. Local
    failures raise ``DecodeError`` subclasses with ``bytes_read`` set; the
    caller realigns using the offset table, not the header.
    """
    fr = _FieldReader(stream, declared_size)
    (sig_code,) = _SIG_TYPE_STRUCT.unpack(fr.take(SIG_TYPE_WIDTH, "signature type"))
    st = signature_type(sig_code)
    if st is None:
        raise UnknownSignatureType(f"Unknown signature type: {sig_code}", bytes_read=fr.consumed)
    signature = fr.take(st.signature_length, "signature")
    owner = fr.take(st.owner_length, "owner")
    target = fr.optional_id(TARGET_WIDTH, "target")
    anchor = fr.optional_id(ANCHOR_WIDTH, "anchor")
    tag_count, tag_bytes_len = _TAG_LENS_STRUCT.unpack(fr.take(TAG_COUNT_WIDTH + TAG_BYTES_WIDTH, "tag lengths"))
    # length is checked against the declared size before the block is read
    tag_block = fr.take(tag_bytes_len, "tag block")
    try:
        tags = decode_tags(tag_block, tag_count, tag_bytes_len)
    except DecodeError as exc:
        exc.bytes_read = fr.consumed
        raise
    return ItemHeader(
        signature_type=sig_code,
        signature=signature,
        owner=owner,
        target=target,
        anchor=anchor,
        tags=tags,
        payload_offset=fr.consumed,
        payload_length=declared_size - fr.consumed,
    )


def encode_item_header(
    sig_code: int,
    signature: bytes,
    owner: bytes,
    *,
    target: Optional[bytes] = None,
    anchor: Optional[bytes] = None,
    tags: Sequence[Tag] = (),
) -> bytes:
    st = signature_type(sig_code)
    if st is None:
        raise ValueError(f"unsupported signature type: {sig_code}")
    if len(signature) != st.signature_length:
        raise ValueError(f"signature must be {st.signature_length} bytes for {st.name}")
    if len(owner) != st.owner_length:
        raise ValueError(f"owner must be {st.owner_length} bytes for {st.name}")
    out = bytearray(_SIG_TYPE_STRUCT.pack(sig_code))
    out += signature + owner
    for value, width in ((target, TARGET_WIDTH), (anchor, ANCHOR_WIDTH)):
        if value is None:
            out += b"\x00"
        else:
            if len(value) != width:
                raise ValueError(f"target/anchor must be {width} bytes")
            out += b"\x01" + value
    tag_block = encode_tags(tags)
    out += _TAG_LENS_STRUCT.pack(len(tags), len(tag_block))
    out += tag_block
    return bytes(out)
