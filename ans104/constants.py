from dataclasses import dataclass
from typing import Dict, Optional


# Bundle header (ANS-104): u256 item count, then (u256 size, id[32]) per item
ITEM_COUNT_WIDTH = 32
ENTRY_SIZE_WIDTH = 32
ENTRY_ID_WIDTH = 32
ENTRY_WIDTH = ENTRY_SIZE_WIDTH + ENTRY_ID_WIDTH

# Data item header
SIG_TYPE_WIDTH = 2
PRESENCE_WIDTH = 1
TARGET_WIDTH = 32
ANCHOR_WIDTH = 32
TAG_COUNT_WIDTH = 8
TAG_BYTES_WIDTH = 8

MAX_ENTRY_SIZE = (1 << 64) - 1


@dataclass(frozen=True)
class SignatureType:
    code: int
    name: str
    signature_length: int
    owner_length: int


SIG_ARWEAVE = 1
SIG_ED25519 = 2
SIG_ETHEREUM = 3
SIG_SOLANA = 4
SIG_INJECTED_APTOS = 5
SIG_MULTI_APTOS = 6
SIG_TYPED_ETHEREUM = 7

SIGNATURE_TYPES: Dict[int, SignatureType] = {
    SIG_ARWEAVE: SignatureType(SIG_ARWEAVE, "arweave", 512, 512),
    SIG_ED25519: SignatureType(SIG_ED25519, "ed25519", 64, 32),
    SIG_ETHEREUM: SignatureType(SIG_ETHEREUM, "ethereum", 65, 65),
    SIG_SOLANA: SignatureType(SIG_SOLANA, "solana", 64, 32),
    SIG_INJECTED_APTOS: SignatureType(SIG_INJECTED_APTOS, "injectedAptos", 64, 32),
    SIG_MULTI_APTOS: SignatureType(SIG_MULTI_APTOS, "multiAptos", 64 * 32 + 4, 32 * 32 + 1),
    SIG_TYPED_ETHEREUM: SignatureType(SIG_TYPED_ETHEREUM, "typedEthereum", 65, 42),
}


def signature_type(code: int) -> Optional[SignatureType]:
    return SIGNATURE_TYPES.get(code)


# Tag limits
MAX_TAGS = 128
MAX_TAG_NAME_BYTES = 1024
MAX_TAG_VALUE_BYTES = 3072

# Nested bundle marker (both pairs must be present)
BUNDLE_FORMAT_TAG = (b"Bundle-Format", b"binary")
BUNDLE_VERSION_TAG = (b"Bundle-Version", b"2.0.0")


DEFAULT_CHUNK_SIZE = 1_048_576  # 1 MiB
DEFAULT_MAX_TABLE_BYTES = 64 * 1024 * 1024  # offset table safety bound
DEFAULT_MAX_ITEMS = (DEFAULT_MAX_TABLE_BYTES - ITEM_COUNT_WIDTH) // ENTRY_WIDTH
DEFAULT_MAX_DEPTH = 16

DEFAULT_GATEWAY = "https://arweave.net"
DEFAULT_OUTPUT_BASE = "bundle"
DEFAULT_HTTP_TIMEOUT = 60.0
