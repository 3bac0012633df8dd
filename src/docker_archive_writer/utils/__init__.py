"""Utility functions for the docker-save archive writer."""

from .digest import calculate_digest, check_digest, encoded_digest, validate_digest
from .jsonenc import RawJSON, marshal

__all__ = [
    "calculate_digest",
    "check_digest",
    "encoded_digest",
    "validate_digest",
    "RawJSON",
    "marshal",
]
