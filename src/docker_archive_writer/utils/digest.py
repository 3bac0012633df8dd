"""Digest calculation and validation utilities."""

import hashlib
import re
from typing import Union

from ..exceptions import InvalidDigestError

CANONICAL_ALGORITHM = "sha256"

# Regex pattern for valid digest format (algorithm:hex)
DIGEST_PATTERN = re.compile(r"^[a-z0-9]+(?:[.+_-][a-z0-9]+)*:[a-zA-Z0-9=_-]+$")

# Supported algorithms and the length of their hex encoding
ENCODED_LENGTHS = {
    "sha256": 64,
    "sha384": 96,
    "sha512": 128,
}

_HEX_PATTERN = re.compile(r"^[a-f0-9]+$")


def calculate_digest(
    data: Union[bytes, bytearray], algorithm: str = CANONICAL_ALGORITHM
) -> str:
    """Calculate digest of data.

    Args:
        data: Data to hash
        algorithm: Hash algorithm (default: sha256)

    Returns:
        Digest string in format "algorithm:hex"

    Raises:
        ValueError: If algorithm is not supported
        ValueError: If data is not bytes-like
    """
    if not isinstance(data, (bytes, bytearray)):
        raise ValueError("Data must be bytes or bytearray")

    if algorithm not in ENCODED_LENGTHS:
        raise ValueError(f"Unsupported algorithm: {algorithm}")

    hasher = hashlib.new(algorithm)
    hasher.update(data)
    return f"{algorithm}:{hasher.hexdigest()}"


def digest_from_string(text: str) -> str:
    """Canonical digest of the UTF-8 encoding of text."""
    return calculate_digest(text.encode("utf-8"))


def check_digest(digest: str) -> None:
    """Validate digest format, raising on failure.

    A digest is valid when it has the form "algorithm:hex", the algorithm is
    one of the supported ones and the hex part is lowercase and has the
    length the algorithm produces.

    Args:
        digest: Digest string to validate

    Raises:
        InvalidDigestError: If the digest is empty or malformed
    """
    if not isinstance(digest, str) or not digest:
        raise InvalidDigestError("invalid checksum digest format: empty digest")

    if not DIGEST_PATTERN.match(digest):
        raise InvalidDigestError(f"invalid checksum digest format: {digest!r}")

    algorithm, encoded = digest.split(":", 1)
    expected_length = ENCODED_LENGTHS.get(algorithm)
    if expected_length is None:
        raise InvalidDigestError(
            f"unsupported digest algorithm {algorithm!r} in {digest!r}"
        )

    if len(encoded) != expected_length or not _HEX_PATTERN.match(encoded):
        raise InvalidDigestError(
            f"invalid checksum digest length or characters: {digest!r}"
        )


def validate_digest(digest: str) -> bool:
    """Validate digest format.

    Args:
        digest: Digest string to validate

    Returns:
        True if valid digest format
    """
    try:
        check_digest(digest)
    except InvalidDigestError:
        return False
    return True


def encoded_digest(digest: str) -> str:
    """Return the hex part of a validated digest.

    Raises:
        InvalidDigestError: If the digest is empty or malformed
    """
    check_digest(digest)
    return digest.split(":", 1)[1]
