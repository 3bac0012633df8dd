"""Test configuration and fixtures."""

import io

import pytest

from docker_archive_writer import ArchiveWriter, WriterConfig


@pytest.fixture
def sink():
    """In-memory archive destination."""
    return io.BytesIO()


@pytest.fixture
def writer(sink):
    """Archive writer writing into the sink fixture."""
    return ArchiveWriter(sink, WriterConfig(chunk_size=4096))


# Pytest configuration
def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: mark test as unit test (default)")
