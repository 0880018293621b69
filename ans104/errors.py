from typing import Optional


class Ans104Error(Exception):
    """Base class for bundle decoding errors."""


# Fatal: the offset table or the stream itself can no longer be trusted to
# locate further items. The whole walk stops.
class FatalError(Ans104Error):
    def __init__(self, message: str, *, offset: Optional[int] = None):
        super().__init__(message)
        self.offset = offset
        self.report = None


class TruncatedHeader(FatalError):
    pass


class UnreasonableItemCount(FatalError):
    pass


class BundleSizeMismatch(FatalError):
    pass


class TruncatedBundle(FatalError):
    pass


class Cancelled(FatalError):
    pass


# Transport failure of the remote source; mid-stream it is a truncation.
class FetchError(FatalError):
    pass


# Local: confined to one item whose boundaries are already known from the
# offset table. The item is skipped and the walk continues.
class DecodeError(Ans104Error):
    def __init__(self, message: str, *, bytes_read: int = 0):
        super().__init__(message)
        self.bytes_read = bytes_read


class UnknownSignatureType(DecodeError):
    pass


class InvalidPresenceByte(DecodeError):
    pass


class HeaderExceedsDeclaredSize(DecodeError):
    pass


class TagCountMismatch(DecodeError):
    pass


class TruncatedTag(DecodeError):
    pass


class MalformedTags(DecodeError):
    pass


class TooManyTags(DecodeError):
    pass


class InvalidTag(DecodeError):
    pass


class DepthLimitExceeded(DecodeError):
    pass


class MalformedNestedBundle(DecodeError):
    """An item tagged as a bundle whose payload is not a well-formed bundle.

    The parent offset table still bounds the item, so only this entry is lost.
    """


class PayloadIoError(Ans104Error):
    pass


class UnderrunPayload(PayloadIoError):
    def __init__(self, expected: int, delivered: int):
        super().__init__(f"payload ended after {delivered} of {expected} bytes")
        self.expected = expected
        self.delivered = delivered


class SinkWriteError(PayloadIoError):
    pass
