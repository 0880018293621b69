from __future__ import annotations

"""Data item signers backed by PyCryptodomex.

Only signing lives here: the decoder never verifies signatures, it only needs
well-formed items to decode. Signers sign the ANS-104 deep hash of the item
fields (see ``ans104.hashutil.deep_hash``).
"""

from typing import Optional

try:  # pragma: no cover - availability depends on environment
    from Cryptodome.Hash import SHA256  # type: ignore
    from Cryptodome.PublicKey import ECC, RSA  # type: ignore
    from Cryptodome.Signature import eddsa, pss  # type: ignore
    _HAS_CRYPTODOME = True
except ImportError:  # pragma: no cover
    SHA256 = ECC = RSA = eddsa = pss = None  # type: ignore
    _HAS_CRYPTODOME = False

from .constants import SIG_ARWEAVE, SIG_ED25519, SIGNATURE_TYPES


def _require_crypto() -> None:
    if not _HAS_CRYPTODOME:
        raise RuntimeError("PyCryptodomex is required for signing data items")


class Signer:
    signature_type: int = 0

    @property
    def owner(self) -> bytes:
        raise NotImplementedError

    def sign(self, message: bytes) -> bytes:
        raise NotImplementedError

    @property
    def signature_length(self) -> int:
        return SIGNATURE_TYPES[self.signature_type].signature_length


class Ed25519Signer(Signer):
    signature_type = SIG_ED25519

    def __init__(self, key):
        _require_crypto()
        self.key = key
        self._owner = key.public_key().export_key(format="raw")

    @classmethod
    def generate(cls) -> "Ed25519Signer":
        _require_crypto()
        return cls(ECC.generate(curve="Ed25519"))

    @classmethod
    def from_seed(cls, seed: bytes) -> "Ed25519Signer":
        _require_crypto()
        if len(seed) != 32:
            raise ValueError("Ed25519 seed must be 32 bytes")
        return cls(eddsa.import_private_key(seed))

    @property
    def owner(self) -> bytes:
        return self._owner

    def sign(self, message: bytes) -> bytes:
        return eddsa.new(self.key, "rfc8032").sign(message)


class ArweaveSigner(Signer):
    """RSA-PSS (SHA-256, 32-byte salt) with a 4096-bit key; owner is the modulus."""

    signature_type = SIG_ARWEAVE

    def __init__(self, key):
        _require_crypto()
        if key.size_in_bits() != 4096:
            raise ValueError("Arweave signer requires a 4096-bit RSA key")
        self.key = key
        self._owner = key.n.to_bytes(512, "big")

    @classmethod
    def generate(cls, *, randfunc: Optional[object] = None) -> "ArweaveSigner":
        _require_crypto()
        return cls(RSA.generate(4096, randfunc=randfunc))

    @property
    def owner(self) -> bytes:
        return self._owner

    def sign(self, message: bytes) -> bytes:
        return pss.new(self.key, salt_bytes=32).sign(SHA256.new(message))
