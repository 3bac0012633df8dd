"""Custom exceptions for the docker-save archive writer."""


class ArchiveError(Exception):
    """Base exception for all archive-writing errors."""

    pass


class InvalidDigestError(ArchiveError, ValueError):
    """Raised when a digest is malformed or uses an unsupported algorithm."""

    pass


class MissingDigestError(InvalidDigestError):
    """Raised when a blob is looked up without a digest."""

    pass


class SerializationError(ArchiveError):
    """Raised when JSON data cannot be decoded or encoded."""

    pass


class SizeMismatchError(ArchiveError):
    """Raised when a streamed body does not match its declared size.

    The archive is unusable once this has been raised.
    """

    pass


class InternalInconsistencyError(ArchiveError):
    """Raised when two images with the same config disagree on their contents."""

    pass


class AlreadyClosedError(ArchiveError):
    """Raised when the writer is used after it has been closed."""

    pass
