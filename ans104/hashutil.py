from __future__ import annotations

import base64
import hashlib
from typing import Sequence, Union


def sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def item_id(signature: bytes) -> bytes:
    """Data item id: SHA-256 over the raw signature bytes."""
    return sha256(signature)


def b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(text: str) -> bytes:
    return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))


def _sha384(data: bytes) -> bytes:
    return hashlib.sha384(data).digest()


DeepHashChunk = Union[bytes, Sequence["DeepHashChunk"]]


def deep_hash(chunk: DeepHashChunk) -> bytes:
    """Arweave deep hash (SHA-384), the message signed for a data item.

    Blobs hash as H(H("blob" + len) || H(data)); lists fold their elements into
    an accumulator seeded with H("list" + len).
    """
    if isinstance(chunk, (bytes, bytearray)):
        tag = b"blob" + str(len(chunk)).encode("ascii")
        return _sha384(_sha384(tag) + _sha384(bytes(chunk)))
    acc = _sha384(b"list" + str(len(chunk)).encode("ascii"))
    for sub in chunk:
        acc = _sha384(acc + deep_hash(sub))
    return acc
