from __future__ import annotations

import enum

from .errors import DecodeError, FatalError, PayloadIoError


class Severity(enum.Enum):
    FATAL = "fatal"
    SKIP = "skip"


def classify(exc: BaseException) -> Severity:
    """Decide whether a decode-time failure aborts the bundle or skips one item.

    Only failures that leave the walker unable to locate further items are
    fatal: a damaged offset table, a stream that ends before an item starts,
    or cancellation. Everything confined to one item's header or payload is a
    skip, since the offset table already tells us where the next item is.
    """
    if isinstance(exc, FatalError):
        return Severity.FATAL
    if isinstance(exc, (DecodeError, PayloadIoError)):
        return Severity.SKIP
    raise TypeError(f"not a decode-time failure: {type(exc).__name__}")
