from __future__ import annotations

import os
from dataclasses import dataclass
from typing import BinaryIO, List, Optional, Sequence, Tuple, Union

from .bundle import OffsetEntry, encode_header
from .constants import BUNDLE_FORMAT_TAG, BUNDLE_VERSION_TAG, SIGNATURE_TYPES
from .hashutil import deep_hash, item_id
from .item import encode_item_header
from .signing import Signer
from .tags import Tag, encode_tags


TagLike = Union[Tag, Tuple[bytes, bytes], Tuple[str, str]]

BUNDLE_TAGS = (Tag(*BUNDLE_FORMAT_TAG), Tag(*BUNDLE_VERSION_TAG))


def _as_tag(t: TagLike) -> Tag:
    if isinstance(t, Tag):
        return t
    name, value = t
    if isinstance(name, str):
        name = name.encode("utf-8")
    if isinstance(value, str):
        value = value.encode("utf-8")
    return Tag(name, value)


def signature_message(
    sig_code: int,
    owner: bytes,
    target: Optional[bytes],
    anchor: Optional[bytes],
    tags: Sequence[Tag],
    data: bytes,
) -> bytes:
    return deep_hash(
        [
            b"dataitem",
            b"1",
            str(sig_code).encode("ascii"),
            owner,
            target or b"",
            anchor or b"",
            encode_tags(tags),
            data,
        ]
    )


@dataclass
class DataItem:
    """An encoded data item ready to be placed in a bundle."""

    raw: bytes
    signature: bytes

    @property
    def id(self) -> bytes:
        return item_id(self.signature)

    def __len__(self) -> int:
        return len(self.raw)


def encode_data_item(
    signer: Signer,
    data: bytes,
    *,
    target: Optional[bytes] = None,
    anchor: Optional[bytes] = None,
    tags: Sequence[TagLike] = (),
) -> DataItem:
    tag_list = [_as_tag(t) for t in tags]
    msg = signature_message(signer.signature_type, signer.owner, target, anchor, tag_list, data)
    signature = signer.sign(msg)
    header = encode_item_header(signer.signature_type, signature, signer.owner, target=target, anchor=anchor, tags=tag_list)
    return DataItem(raw=header + data, signature=signature)


def encode_unsigned_item(
    sig_code: int,
    data: bytes,
    *,
    signature: Optional[bytes] = None,
    owner: Optional[bytes] = None,
    target: Optional[bytes] = None,
    anchor: Optional[bytes] = None,
    tags: Sequence[TagLike] = (),
) -> DataItem:
    """Encode an item with caller-supplied (or random) signature/owner bytes.

    The decoder does not verify signatures, so this is enough to produce
    structurally valid items for any signature type.
    """
    st = SIGNATURE_TYPES[sig_code]
    if signature is None:
        signature = os.urandom(st.signature_length)
    if owner is None:
        owner = os.urandom(st.owner_length)
    tag_list = [_as_tag(t) for t in tags]
    header = encode_item_header(sig_code, signature, owner, target=target, anchor=anchor, tags=tag_list)
    return DataItem(raw=header + data, signature=signature)


def encode_bundle(items: Sequence[DataItem]) -> bytes:
    entries = [OffsetEntry(declared_size=len(it.raw), item_id=it.id) for it in items]
    return encode_header(entries) + b"".join(it.raw for it in items)


def encode_nested_bundle(signer: Signer, items: Sequence[DataItem], *, tags: Sequence[TagLike] = ()) -> DataItem:
    """Wrap ``items`` in a bundle and sign it as a data item tagged as a bundle."""
    return encode_data_item(signer, encode_bundle(items), tags=list(BUNDLE_TAGS) + [_as_tag(t) for t in tags])


class BundleWriter:
    """Collects data items and writes them out as one bundle file.

    The offset table precedes the items, so nothing is written until
    ``finalize`` when all sizes are known.
    """

    def __init__(self, path: str, signer: Optional[Signer] = None):
        self.path = path
        self.signer = signer
        self.items: List[DataItem] = []
        self.f: Optional[BinaryIO] = None
        self._finalized = False

    def __enter__(self):
        self.f = open(self.path, "wb")
        return self

    def __exit__(self, exc_type, exc, tb):
        if self.f is not None:
            self.f.close()
            self.f = None
        if exc_type is not None and not self._finalized:
            try:
                os.remove(self.path)
            except FileNotFoundError:
                pass

    def add_item(self, data: bytes, *, target=None, anchor=None, tags: Sequence[TagLike] = ()) -> DataItem:
        if self.signer is None:
            raise RuntimeError("BundleWriter needs a signer to add items")
        item = encode_data_item(self.signer, data, target=target, anchor=anchor, tags=tags)
        self.items.append(item)
        return item

    def add_raw(self, item: DataItem) -> DataItem:
        self.items.append(item)
        return item

    def add_bundle(self, items: Sequence[DataItem], *, tags: Sequence[TagLike] = ()) -> DataItem:
        if self.signer is None:
            raise RuntimeError("BundleWriter needs a signer to add items")
        item = encode_nested_bundle(self.signer, items, tags=tags)
        self.items.append(item)
        return item

    def finalize(self) -> int:
        if self.f is None:
            raise RuntimeError("BundleWriter not open")
        entries = [OffsetEntry(declared_size=len(it.raw), item_id=it.id) for it in self.items]
        self.f.write(encode_header(entries))
        for it in self.items:
            self.f.write(it.raw)
        self.f.flush()
        self._finalized = True
        return self.f.tell()
