from __future__ import annotations

import hashlib
import io
import struct
import unittest

from ans104.bundle import BundleHeader, OffsetEntry, check_length, decode_header, encode_header
from ans104.constants import SIG_ED25519, SIGNATURE_TYPES
from ans104.errors import (
    BundleSizeMismatch,
    HeaderExceedsDeclaredSize,
    InvalidPresenceByte,
    TagCountMismatch,
    TruncatedHeader,
    UnknownSignatureType,
    UnreasonableItemCount,
)
from ans104.hashutil import b64url
from ans104.item import decode_item_header, encode_item_header
from ans104.stream import Region, SourceReader
from ans104.tags import Tag
from ans104.writer import encode_unsigned_item


# signature type + ed25519 signature + owner
_ED_TARGET_FLAG_AT = 2 + 64 + 32


def _decode(raw: bytes, declared_size=None):
    declared = len(raw) if declared_size is None else declared_size
    reader = SourceReader(io.BytesIO(raw))
    return decode_item_header(Region(reader, declared), declared)


class ItemHeaderTests(unittest.TestCase):
    def test_decode_ed25519_fields(self):
        target = b"\x11" * 32
        item = encode_unsigned_item(
            SIG_ED25519, b"payload", target=target, tags=[("Content-Type", "text/plain"), ("A", "1")]
        )
        hdr = _decode(item.raw)
        self.assertEqual(hdr.signature_type, SIG_ED25519)
        self.assertEqual(hdr.signature, item.signature)
        self.assertEqual(len(hdr.owner), 32)
        self.assertEqual(hdr.target, target)
        self.assertIsNone(hdr.anchor)
        self.assertEqual(hdr.tags, [Tag(b"Content-Type", b"text/plain"), Tag(b"A", b"1")])
        self.assertEqual(hdr.payload_length, 7)
        self.assertEqual(hdr.payload_offset, len(item.raw) - 7)
        self.assertEqual(item.raw[hdr.payload_offset :], b"payload")

    def test_every_signature_type_width(self):
        for code, st in SIGNATURE_TYPES.items():
            item = encode_unsigned_item(code, b"x", anchor=b"\x22" * 32)
            hdr = _decode(item.raw)
            self.assertEqual(len(hdr.signature), st.signature_length, st.name)
            self.assertEqual(len(hdr.owner), st.owner_length, st.name)
            self.assertEqual(hdr.anchor, b"\x22" * 32)
            self.assertEqual(hdr.payload_length, 1)

    def test_header_fields_reencode_identically(self):
        item = encode_unsigned_item(SIG_ED25519, b"data", anchor=b"\x05" * 32, tags=[("k", "v"), ("k", "v")])
        hdr = _decode(item.raw)
        again = encode_item_header(
            hdr.signature_type, hdr.signature, hdr.owner, target=hdr.target, anchor=hdr.anchor, tags=hdr.tags
        )
        self.assertEqual(again, item.raw[: hdr.payload_offset])
        self.assertEqual(_decode(again + b"data"), hdr)

    def test_unknown_signature_type(self):
        raw = struct.pack("<H", 99) + b"\x00" * 200
        with self.assertRaises(UnknownSignatureType) as cm:
            _decode(raw)
        self.assertEqual(cm.exception.bytes_read, 2)

    def test_invalid_presence_byte(self):
        raw = bytearray(encode_unsigned_item(SIG_ED25519, b"abc").raw)
        raw[_ED_TARGET_FLAG_AT] = 2
        with self.assertRaises(InvalidPresenceByte):
            _decode(bytes(raw))

    def test_header_exceeds_declared_size(self):
        raw = encode_unsigned_item(SIG_ED25519, b"abc").raw
        with self.assertRaises(HeaderExceedsDeclaredSize):
            _decode(raw, declared_size=50)

    def test_tag_block_length_checked_before_read(self):
        raw = bytearray(encode_unsigned_item(SIG_ED25519, b"abc").raw)
        lens_at = _ED_TARGET_FLAG_AT + 2
        raw[lens_at : lens_at + 16] = struct.pack("<QQ", 1, 1 << 40)
        with self.assertRaises(HeaderExceedsDeclaredSize):
            _decode(bytes(raw))

    def test_tag_count_field_mismatch(self):
        raw = bytearray(encode_unsigned_item(SIG_ED25519, b"abc", tags=[("a", "b")]).raw)
        lens_at = _ED_TARGET_FLAG_AT + 2
        raw[lens_at : lens_at + 8] = struct.pack("<Q", 4)
        with self.assertRaises(TagCountMismatch) as cm:
            _decode(bytes(raw))
        self.assertGreater(cm.exception.bytes_read, lens_at)

    def test_stream_end_inside_header_is_eof(self):
        raw = encode_unsigned_item(SIG_ED25519, b"abc").raw
        reader = SourceReader(io.BytesIO(raw[:50]))
        with self.assertRaises(EOFError):
            decode_item_header(Region(reader, len(raw)), len(raw))

    def test_item_id_and_json(self):
        item = encode_unsigned_item(SIG_ED25519, b"abc", tags=[("Content-Type", "text/plain")])
        hdr = _decode(item.raw)
        self.assertEqual(hdr.item_id, hashlib.sha256(hdr.signature).digest())
        doc = hdr.to_json(bundled_in="tx", is_bundle=False)
        self.assertEqual(doc["id"], b64url(item.id))
        self.assertEqual(doc["target"], "")
        self.assertEqual(doc["anchor"], "")
        self.assertEqual(doc["tags"], [{"name": "Content-Type", "value": "text/plain"}])
        self.assertEqual(doc["bundled_in"], "tx")
        self.assertFalse(doc["is_bundle"])


class BundleHeaderTests(unittest.TestCase):
    def _entries(self):
        return [OffsetEntry(10, b"a" * 32), OffsetEntry(20, b"b" * 32)]

    def test_decode_table_and_offsets(self):
        raw = encode_header(self._entries())
        hdr = decode_header(io.BytesIO(raw))
        self.assertEqual(hdr.item_count, 2)
        self.assertEqual(hdr.entries, self._entries())
        self.assertEqual(hdr.header_size, 32 + 2 * 64)
        self.assertEqual(hdr.offsets, [160, 170])
        self.assertEqual(hdr.declared_length, 190)

    def test_zero_items(self):
        raw = encode_header([])
        self.assertEqual(raw, b"\x00" * 32)
        hdr = decode_header(io.BytesIO(raw))
        self.assertEqual(hdr.item_count, 0)
        self.assertEqual(hdr.entries, [])
        self.assertEqual(hdr.declared_length, 32)

    def test_truncated_table(self):
        raw = encode_header(self._entries())
        for cut in (10, 40, 100, len(raw) - 1):
            with self.assertRaises(TruncatedHeader):
                decode_header(io.BytesIO(raw[:cut]))

    def test_unreasonable_item_count(self):
        raw = (1 << 200).to_bytes(32, "little")
        with self.assertRaises(UnreasonableItemCount):
            decode_header(io.BytesIO(raw))
        with self.assertRaises(UnreasonableItemCount):
            decode_header(io.BytesIO(encode_header(self._entries())), max_items=1)

    def test_table_larger_than_region(self):
        raw = encode_header(self._entries())
        with self.assertRaises(UnreasonableItemCount):
            decode_header(io.BytesIO(raw), region_length=100)

    def test_entry_size_beyond_64_bits(self):
        raw = (1).to_bytes(32, "little") + (1 << 64).to_bytes(32, "little") + b"c" * 32
        with self.assertRaises(BundleSizeMismatch):
            decode_header(io.BytesIO(raw))

    def test_check_length(self):
        hdr = BundleHeader(item_count=2, entries=self._entries())
        check_length(hdr, 190, exact=True)
        check_length(hdr, None, exact=True)
        # short top-level sources are reported item by item, not here
        check_length(hdr, 180, exact=False)
        with self.assertRaises(BundleSizeMismatch):
            check_length(hdr, 191, exact=False)
        with self.assertRaises(BundleSizeMismatch):
            check_length(hdr, 180, exact=True)


if __name__ == "__main__":
    unittest.main()
