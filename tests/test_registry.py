"""Tests for blob and legacy layer bookkeeping."""

import pytest

from docker_archive_writer import BlobInfo
from docker_archive_writer.exceptions import MissingDigestError
from docker_archive_writer.tar.registry import BlobRegistry, LegacyLayerTracker

DIGEST = "sha256:" + "1" * 64


def test_try_reuse_unknown_blob():
    """Test unknown blobs are not reused."""
    assert BlobRegistry().try_reuse(DIGEST) is None


def test_record_then_reuse():
    """Test recorded blobs report their size."""
    blobs = BlobRegistry()
    blobs.record(BlobInfo(DIGEST, 42))

    assert blobs.try_reuse(DIGEST) == BlobInfo(DIGEST, 42)
    assert len(blobs) == 1


def test_record_overwrites():
    """Test recording a digest again replaces its entry."""
    blobs = BlobRegistry()
    blobs.record(BlobInfo(DIGEST, 1))
    blobs.record(BlobInfo(DIGEST, 2))

    assert blobs.try_reuse(DIGEST).size == 2
    assert len(blobs) == 1


def test_try_reuse_requires_digest():
    """Test lookups without a digest."""
    with pytest.raises(MissingDigestError):
        BlobRegistry().try_reuse("")


def test_legacy_layer_tracker():
    """Test legacy layer membership."""
    tracker = LegacyLayerTracker()
    assert not tracker.contains("abc")
    tracker.add("abc")
    tracker.add("abc")
    assert tracker.contains("abc")
    assert len(tracker) == 1
