"""End-to-end tests for ArchiveWriter."""

import io
import re
import tarfile
import threading

import pytest

from docker_archive_writer import (
    AlreadyClosedError,
    ArchiveError,
    ArchiveWriter,
    BlobInfo,
    InternalInconsistencyError,
    InvalidDigestError,
    MissingDigestError,
    RepoTag,
    SizeMismatchError,
    WriterConfig,
)
from tests.helpers import (
    CONFIG_BYTES,
    make_config,
    make_layer,
    read_files,
    read_json,
    read_members,
    sha256_digest,
)


def write_image(writer, layer_contents, config_bytes, tags):
    """Write a complete image the way a destination would."""
    layers = []
    for content in layer_contents:
        layers.append(make_layer(content))
        writer.put_bytes(content)
    config_digest = writer.put_bytes(config_bytes, is_config=True).digest
    top = writer.ensure_legacy_metadata(layers, config_bytes, tags)
    writer.ensure_manifest_entry(layers, config_digest, tags)
    return top


def hex_of(data: bytes) -> str:
    return sha256_digest(data).split(":", 1)[1]


def test_single_image_archive(sink, writer):
    """Test the layout of a one-image archive."""
    top = write_image(writer, [b"base", b"app"], CONFIG_BYTES, [RepoTag("app", "v1")])
    writer.close()

    data = sink.getvalue()
    files = read_files(data)
    assert files[f"{hex_of(b'base')}.tar"] == b"base"
    assert files[f"{hex_of(b'app')}.tar"] == b"app"
    assert files[f"{hex_of(CONFIG_BYTES)}.json"] == CONFIG_BYTES

    manifest = read_json(data, "manifest.json")
    assert manifest == [
        {
            "Config": f"{hex_of(CONFIG_BYTES)}.json",
            "RepoTags": ["app:v1"],
            "Layers": [f"{hex_of(b'base')}.tar", f"{hex_of(b'app')}.tar"],
            "Parent": "",
            "LayerSources": None,
        }
    ]
    assert read_json(data, "repositories") == {"app": {"v1": top}}

    names = [m.name for m in read_members(data)]
    assert names[-2:] == ["manifest.json", "repositories"]
    assert f"{top}/layer.tar" in names
    assert f"{top}/VERSION" in names
    assert f"{top}/json" in names
    assert not any(m.isdir() for m in read_members(data))


def test_legacy_symlinks_resolve_to_layers(sink, writer):
    """Test every legacy layer link points at a layer file in the archive."""
    write_image(writer, [b"base", b"app"], CONFIG_BYTES, [RepoTag("app", "v1")])
    writer.close()

    members = read_members(sink.getvalue())
    names = {m.name for m in members}
    links = [m for m in members if m.issym()]
    assert len(links) == 2
    for link in links:
        assert link.linkname.startswith("../")
        assert link.linkname[3:] in names


def test_shared_blobs_written_once(sink, writer):
    """Test layers shared by two images are stored once."""
    write_image(writer, [b"base", b"app1"], make_config(created="1"), [RepoTag("a", "1")])
    write_image(writer, [b"base", b"app2"], make_config(created="2"), [RepoTag("b", "1")])
    writer.put_bytes(b"base")
    writer.close()

    data = sink.getvalue()
    names = [m.name for m in read_members(data)]
    assert names.count(f"{hex_of(b'base')}.tar") == 1
    assert len(read_json(data, "manifest.json")) == 2


def test_shared_layer_chain_legacy_files_written_once(sink, writer):
    """Test converging legacy layers are written once."""
    write_image(writer, [b"l0", b"l1", b"a"], make_config(os="a"), [RepoTag("a", "1")])
    write_image(writer, [b"l0", b"l1", b"b"], make_config(os="b"), [RepoTag("b", "1")])
    writer.close()

    names = [m.name for m in read_members(sink.getvalue())]
    json_files = [n for n in names if n.endswith("/json")]
    # l0 and l1 are shared; each image has its own top layer.
    assert len(json_files) == 4
    assert len(set(json_files)) == 4


def test_same_image_two_tags(sink, writer):
    """Test one manifest entry for an image added under two tags."""
    first = write_image(writer, [b"base"], CONFIG_BYTES, [RepoTag("app", "v1")])
    second = write_image(writer, [b"base"], CONFIG_BYTES, [RepoTag("app", "latest")])
    writer.close()

    data = sink.getvalue()
    assert first == second
    (entry,) = read_json(data, "manifest.json")
    assert entry["RepoTags"] == ["app:v1", "app:latest"]
    assert entry["Layers"] == [f"{hex_of(b'base')}.tar"]
    assert read_json(data, "repositories") == {"app": {"v1": first, "latest": first}}


def test_same_config_different_layers_fails(writer):
    """Test reusing a config digest with another layer chain."""
    config_digest = sha256_digest(CONFIG_BYTES)
    writer.ensure_manifest_entry([make_layer(b"a")], config_digest, [RepoTag("x", "1")])

    with pytest.raises(InternalInconsistencyError):
        writer.ensure_manifest_entry(
            [make_layer(b"b")], config_digest, [RepoTag("x", "2")]
        )


def test_image_without_layers(sink, writer):
    """Test images with only a config."""
    config_digest = writer.put_bytes(CONFIG_BYTES, is_config=True).digest
    top = writer.add_image([], config_digest, CONFIG_BYTES, [RepoTag("empty", "1")])
    writer.close()

    data = sink.getvalue()
    assert top == ""
    assert read_json(data, "repositories") == {}
    assert read_json(data, "manifest.json")[0]["Layers"] == []


def test_add_image(sink, writer):
    """Test the combined metadata step matches the separate ones."""
    layers = [make_layer(b"base")]
    writer.put_bytes(b"base")
    config_digest = writer.put_bytes(CONFIG_BYTES, is_config=True).digest
    top = writer.add_image(layers, config_digest, CONFIG_BYTES, [RepoTag("app", "1")])
    writer.close()

    data = sink.getvalue()
    assert read_json(data, "repositories") == {"app": {"1": top}}
    assert read_json(data, "manifest.json")[0]["RepoTags"] == ["app:1"]


def test_empty_archive(sink, writer):
    """Test closing without images."""
    writer.close()

    files = read_files(sink.getvalue())
    assert files == {"manifest.json": b"[]", "repositories": b"{}"}


def test_try_reuse_and_record_blob(writer):
    """Test the reuse bookkeeping used around external transfers."""
    info = BlobInfo(sha256_digest(b"x"), 1)
    assert writer.try_reuse_blob(info) is None

    writer.record_blob(info)
    assert writer.try_reuse_blob(BlobInfo(info.digest)) == info


def test_try_reuse_blob_without_digest(writer):
    """Test reuse checks need a digest."""
    with pytest.raises(MissingDigestError):
        writer.try_reuse_blob(BlobInfo(""))


def test_put_blob_reuses(sink, writer):
    """Test a recorded blob is not read or written again."""
    info = BlobInfo(sha256_digest(b"data"), 4)
    writer.put_blob(info, io.BytesIO(b"data"))

    untouched = io.BytesIO(b"data")
    assert writer.put_blob(info, untouched) == info
    assert untouched.tell() == 0


def test_put_blob_requires_size(writer):
    """Test blobs of unknown size are refused."""
    with pytest.raises(ValueError):
        writer.put_blob(BlobInfo(sha256_digest(b"x")), io.BytesIO(b"x"))


def test_put_blob_invalid_digest(sink, writer):
    """Test malformed digests are rejected before writing."""
    with pytest.raises(InvalidDigestError):
        writer.put_blob(BlobInfo("sha256:../../x", 1), io.BytesIO(b"x"))
    writer.close()

    assert [m.name for m in read_members(sink.getvalue())] == [
        "manifest.json",
        "repositories",
    ]


def test_size_mismatch_breaks_writer(writer):
    """Test a failed copy leaves the writer unusable."""
    info = BlobInfo(sha256_digest(b"data"), 10)
    with pytest.raises(SizeMismatchError):
        writer.put_blob(info, io.BytesIO(b"data"))

    with pytest.raises(ArchiveError, match="unusable"):
        writer.put_bytes(b"other")
    with pytest.raises(ArchiveError, match="unusable"):
        writer.close()


class FailingSink(io.BytesIO):
    """Destination whose writes fail once broken is set."""

    def __init__(self, broken=True):
        super().__init__()
        self.broken = broken

    def write(self, b):
        if self.broken:
            raise OSError("disk full")
        return super().write(b)


def test_sink_errors_pass_through():
    """Test destination errors reach the caller as OSError naming the blob."""
    writer = ArchiveWriter(FailingSink())
    data = b"x" * 64 * 1024
    with pytest.raises(OSError, match=f"{hex_of(data)}.tar: disk full") as exc_info:
        writer.put_bytes(data)
    assert str(exc_info.value.__cause__) == "disk full"

    with pytest.raises(ArchiveError):
        writer.put_bytes(b"y")


def test_sink_errors_in_legacy_metadata_name_the_step():
    """Test legacy layer write failures say which file was being written."""
    writer = ArchiveWriter(FailingSink())
    layers = [make_layer(f"layer-{i}".encode()) for i in range(40)]

    with pytest.raises(OSError) as exc_info:
        writer.ensure_legacy_metadata(layers, CONFIG_BYTES)

    assert re.match(
        r"(creating layer symbolic link|writing VERSION file|writing config json file): "
        r"Error (writing|copying) [0-9a-f]{64}/(layer\.tar|VERSION|json): disk full$",
        str(exc_info.value),
    )
    assert isinstance(exc_info.value.__cause__, OSError)
    with pytest.raises(ArchiveError, match="unusable"):
        writer.ensure_legacy_metadata(layers, CONFIG_BYTES)


def test_sink_errors_on_close_name_the_step():
    """Test close failures say what the writer was finishing."""
    sink = FailingSink(broken=False)
    writer = ArchiveWriter(sink)
    writer.put_bytes(b"base")
    sink.broken = True

    with pytest.raises(OSError) as exc_info:
        writer.close()

    assert re.match(
        r"(writing manifest file|writing repositories file|finishing the archive): ",
        str(exc_info.value),
    )
    assert str(exc_info.value).endswith("disk full")
    assert not writer.closed


def test_returned_manifest_entry_is_a_copy(sink, writer):
    """Test changing a returned entry does not change the archive."""
    write_image(writer, [b"base"], CONFIG_BYTES, [RepoTag("app", "v1")])
    item = writer.ensure_manifest_entry(
        [make_layer(b"base")], sha256_digest(CONFIG_BYTES), [RepoTag("app", "v2")]
    )
    item.repo_tags.append("evil:tag")
    item.layers.clear()
    writer.close()

    (entry,) = read_json(sink.getvalue(), "manifest.json")
    assert entry["RepoTags"] == ["app:v1", "app:v2"]
    assert entry["Layers"] == [f"{hex_of(b'base')}.tar"]


def test_operations_after_close(sink, writer):
    """Test every operation fails once the writer is closed."""
    writer.close()
    size = len(sink.getvalue())
    layers = [make_layer(b"a")]
    info = BlobInfo(sha256_digest(b"a"), 1)

    with pytest.raises(AlreadyClosedError):
        writer.try_reuse_blob(info)
    with pytest.raises(AlreadyClosedError):
        writer.record_blob(info)
    with pytest.raises(AlreadyClosedError):
        writer.put_bytes(b"a")
    with pytest.raises(AlreadyClosedError):
        writer.put_blob(BlobInfo(info.digest), io.BytesIO(b"a"))
    with pytest.raises(AlreadyClosedError):
        writer.ensure_legacy_metadata(layers, CONFIG_BYTES)
    with pytest.raises(AlreadyClosedError):
        writer.ensure_manifest_entry(layers, info.digest)
    with pytest.raises(AlreadyClosedError):
        writer.set_repo_tag("a", "1", "id")
    with pytest.raises(AlreadyClosedError):
        writer.close()

    assert writer.closed
    assert len(sink.getvalue()) == size


def test_context_manager_closes(sink):
    """Test leaving the with block finishes the archive."""
    with ArchiveWriter(sink) as writer:
        write_image(writer, [b"base"], CONFIG_BYTES, [RepoTag("app", "v1")])

    assert writer.closed
    assert len(read_json(sink.getvalue(), "manifest.json")) == 1


def test_context_manager_leaves_failed_archive_open(sink):
    """Test an exception inside the with block does not finalize."""
    with pytest.raises(RuntimeError):
        with ArchiveWriter(sink) as writer:
            raise RuntimeError("boom")

    assert not writer.closed


def test_set_repo_tag(sink, writer):
    """Test explicit repositories entries."""
    top = write_image(writer, [b"base"], CONFIG_BYTES, [])
    writer.set_repo_tag("manual", "tag", top)
    writer.set_repo_tag("ignored", "tag", "")
    writer.close()

    assert read_json(sink.getvalue(), "repositories") == {"manual": {"tag": top}}


def test_concurrent_writers_share_archive(sink):
    """Test blobs written from several threads produce a valid archive."""
    writer = ArchiveWriter(sink, WriterConfig(chunk_size=512))
    shared = b"s" * 5000
    errors = []

    def worker(n):
        try:
            for i in range(5):
                writer.put_bytes(f"blob-{n}-{i}".encode() * 300)
                writer.put_bytes(shared)
        except Exception as e:  # reported below
            errors.append(e)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    writer.close()

    assert errors == []
    files = read_files(sink.getvalue())
    names = [m.name for m in read_members(sink.getvalue())]
    assert names.count(f"{hex_of(shared)}.tar") == 1
    assert files[f"{hex_of(shared)}.tar"] == shared
    assert len(names) == 8 * 5 + 1 + 2


def test_tar_format_config(sink):
    """Test the configured header format is used."""
    writer = ArchiveWriter(sink, WriterConfig(tar_format=tarfile.GNU_FORMAT))
    writer.put_bytes(b"x")
    writer.close()

    assert sink.getvalue()[257:265] == b"ustar  \0"


def test_writer_config_validation():
    """Test invalid configuration values."""
    with pytest.raises(ValueError):
        WriterConfig(chunk_size=0)
    with pytest.raises(ValueError):
        WriterConfig(tar_format=99)
