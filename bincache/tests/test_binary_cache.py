"""
Integration Tests: S3BinaryCacheStore over an in-memory S3

Tests:
    - Existence checks and benign negatives
    - Per-category compression on upload, transparent decoding on read
    - Single vs multipart uploads, configuration conflicts
    - Enumeration of store paths across listing pages
    - Cache info bootstrap through the local metadata cache
"""

import io
import logging
import os

import pytest

from bincache.core import constants as C
from bincache.core.errors import (
    ConfigurationError,
    NoSuchCacheFileError,
    ObjectNotFoundError,
    PermissionDeniedError,
    TransferFailedError,
    TransportError,
)
from bincache.core.types import StorePath
from bincache.storage import compression
from bincache.storage.binary_cache import parse_cache_info, parse_narinfo_key
from bincache.storage.s3_helper import S3Helper
from bincache.tests.fakes import client_error, throttled
from bincache.transfer.fetch import PipelinedFetcher

HASH = "0123456789abcdfghijklmnpqrsvwxyz"
NARINFO = f"StorePath: /nix/store/{HASH}-hello\nURL: nar/{HASH}.nar\n".encode()


class TestFileExists:
    """Tests for the existence check."""

    def test_present(self, store, fake_s3):
        fake_s3.put("nix-cache-info", b"StoreDir: /nix/store\n")
        assert store.file_exists("nix-cache-info")

    def test_missing_is_false(self, store):
        assert not store.file_exists("missing.narinfo")

    def test_forbidden_is_false(self, store, fake_s3):
        fake_s3.put("secret.narinfo", b"x")
        fake_s3.forbidden.add("secret.narinfo")
        assert not store.file_exists("secret.narinfo")

    def test_missing_bucket_raises(self, make_store, fake_s3):
        other = make_store(bucket_name="no-such-bucket")
        with pytest.raises(TransportError) as exc_info:
            other.file_exists("nix-cache-info")
        assert exc_info.value.remote_code == "NoSuchBucket"

    def test_counts_head_requests(self, store):
        store.file_exists("a")
        store.file_exists("b")
        assert store.stats.head == 2


class TestSize:
    """Size queries report absence as an error, unlike the existence check."""

    @pytest.fixture
    def helper(self, config, fake_s3, pool, fast_policy):
        fetcher = PipelinedFetcher(fake_s3, pool, policy=fast_policy)
        return S3Helper(config, fake_s3, fetcher)

    def test_present(self, helper, fake_s3):
        fake_s3.put("nar/abc.nar", b"12345")
        assert helper.size(helper.handle("nar/abc.nar")).unwrap() == 5

    def test_missing_is_error(self, helper):
        result = helper.size(helper.handle("nar/missing.nar"))
        assert result.is_err()
        assert isinstance(result.error, ObjectNotFoundError)

    def test_forbidden_is_error(self, helper, fake_s3):
        fake_s3.put("nar/secret.nar", b"x")
        fake_s3.forbidden.add("nar/secret.nar")

        result = helper.size(helper.handle("nar/secret.nar"))
        assert result.is_err()
        assert isinstance(result.error, PermissionDeniedError)
        assert helper.exists(helper.handle("nar/secret.nar")).unwrap() is False

    def test_throttled_head_is_retried(self, helper, fake_s3):
        fake_s3.put("nar/abc.nar", b"12345")
        fake_s3.fail("head_object", throttled())

        assert helper.size(helper.handle("nar/abc.nar")).unwrap() == 5
        assert fake_s3.call_count("head_object") == 2


class TestUpsertFile:
    """Tests for uploads."""

    def test_plain_upload(self, store, fake_s3):
        stats = store.upsert_file("nar/abc.nar", b"nar bytes", "application/x-nix-nar")

        stored = fake_s3.objects["nar/abc.nar"]
        assert stored.data == b"nar bytes"
        assert stored.content_type == "application/x-nix-nar"
        assert stored.content_encoding == ""
        assert stats.bytes == len(b"nar bytes")
        assert store.stats.put == 1
        assert store.stats.put_bytes == len(b"nar bytes")

    def test_narinfo_compressed(self, make_store, fake_s3):
        store = make_store(narinfo_compression="xz")

        stats = store.upsert_file(f"{HASH}.narinfo", NARINFO, C.NARINFO_MIME_TYPE)

        stored = fake_s3.objects[f"{HASH}.narinfo"]
        assert stored.content_encoding == "xz"
        assert compression.decompress("xz", stored.data) == NARINFO
        assert stats.bytes == len(stored.data)

    @pytest.mark.parametrize(
        "path,setting,codec",
        [
            ("abc.ls", "ls_compression", "gzip"),
            ("log/abc-hello.drv", "log_compression", "bzip2"),
            ("abc.narinfo", "narinfo_compression", "zstd"),
            ("def.ls", "ls_compression", "br"),
        ],
    )
    def test_category_codecs(self, make_store, fake_s3, path, setting, codec):
        store = make_store(**{setting: codec})
        store.upsert_file(path, b"listing " * 100, "text/plain")
        assert fake_s3.objects[path].content_encoding == codec

    def test_other_files_not_compressed(self, make_store, fake_s3):
        store = make_store(narinfo_compression="xz", ls_compression="xz", log_compression="xz")
        store.upsert_file("nar/abc.nar.xz", b"already packed", "application/x-nix-nar")
        assert fake_s3.objects["nar/abc.nar.xz"].content_encoding == ""

    def test_stream_input(self, store, fake_s3):
        stream = io.BytesIO(b"skip:payload")
        stream.seek(5)
        stats = store.upsert_file("f", stream, "text/plain")
        assert fake_s3.objects["f"].data == b"payload"
        assert stats.bytes == len(b"payload")

    def test_put_is_retried(self, store, fake_s3):
        fake_s3.fail("put_object", throttled("PutObject"))
        store.upsert_file("f", io.BytesIO(b"data"), "text/plain")

        assert fake_s3.objects["f"].data == b"data"
        assert [c["size"] for c in fake_s3.calls_of("put_object")] == [4, 4]
        assert store.stats.retries == 1

    def test_forbidden_put(self, store, fake_s3):
        fake_s3.forbidden.add("f")
        with pytest.raises(PermissionDeniedError):
            store.upsert_file("f", b"data", "text/plain")

    def test_logs_upload(self, store, caplog):
        with caplog.at_level(logging.INFO, logger="bincache.storage.binary_cache"):
            store.upsert_file("f", b"12345", "text/plain")
        assert "uploaded 's3://cache/f' (5 bytes) in" in caplog.text


class TestMultipartUpload:
    """Tests for the multipart strategy."""

    def test_multipart_with_compression_fails_before_network(self, make_store, fake_s3):
        store = make_store(multipart_upload=True, narinfo_compression="xz")

        with pytest.raises(ConfigurationError, match="content encoding"):
            store.upsert_file(f"{HASH}.narinfo", NARINFO, C.NARINFO_MIME_TYPE)

        assert fake_s3.calls == []

    def test_multipart_upload(self, make_store, fake_s3):
        store = make_store(multipart_upload=True)
        data = os.urandom(C.MULTIPART_MIN_PART_SIZE + 100)

        stats = store.upsert_file("nar/big.nar", io.BytesIO(data), "application/x-nix-nar")

        assert fake_s3.objects["nar/big.nar"].data == data
        assert fake_s3.call_count("upload_part") == 2
        assert fake_s3.call_count("put_object") == 0
        assert stats.bytes == len(data)

    def test_uncompressed_category_allowed(self, make_store, fake_s3):
        store = make_store(multipart_upload=True, narinfo_compression="none")
        store.upsert_file(f"{HASH}.narinfo", NARINFO, C.NARINFO_MIME_TYPE)
        assert fake_s3.objects[f"{HASH}.narinfo"].data == NARINFO

    def test_failed_transfer(self, make_store, fake_s3):
        store = make_store(multipart_upload=True)
        fake_s3.fail("upload_part", client_error("InvalidArgument", "bad part"))

        with pytest.raises(TransferFailedError):
            store.upsert_file("nar/big.nar", b"x" * 100, "application/x-nix-nar")

        assert fake_s3.call_count("abort_multipart_upload") == 1

    def test_forbidden_transfer(self, make_store, fake_s3):
        store = make_store(multipart_upload=True)
        fake_s3.forbidden.add("nar/big.nar")

        with pytest.raises(PermissionDeniedError):
            store.upsert_file("nar/big.nar", b"x" * 100, "application/x-nix-nar")


class TestGetFile:
    """Tests for streamed reads."""

    def test_round_trip_through_codec(self, make_store):
        store = make_store(narinfo_compression="xz", chunk_size=64)
        store.upsert_file(f"{HASH}.narinfo", NARINFO, C.NARINFO_MIME_TYPE)

        assert store.get_file_bytes(f"{HASH}.narinfo") == NARINFO

    @pytest.mark.parametrize("codec", ["zstd", "br"])
    def test_reads_zstd_and_brotli(self, make_store, fake_s3, codec):
        fake_s3.put(f"{HASH}.narinfo", compression.compress(codec, NARINFO), content_encoding=codec)
        store = make_store(chunk_size=64)

        assert store.get_file_bytes(f"{HASH}.narinfo") == NARINFO
        assert store.get_narinfo(StorePath(HASH, "hello")) == NARINFO
        assert store.is_valid_path(StorePath(HASH, "hello"))

    def test_large_file_in_chunks(self, make_store, fake_s3):
        store = make_store(chunk_size=1000)
        data = os.urandom(10_500)
        fake_s3.put("nar/x.nar", data)

        pieces = []
        store.get_file("nar/x.nar", pieces.append)

        assert b"".join(pieces) == data
        assert len(pieces) == 11
        assert store.stats.get == 1
        assert store.stats.get_bytes == len(data)

    def test_missing_file(self, store):
        with pytest.raises(NoSuchCacheFileError, match="does not exist in binary cache 's3://cache'"):
            store.get_file_bytes("nar/missing.nar")

    def test_forbidden_file(self, store, fake_s3):
        fake_s3.put("nar/x.nar", b"x")
        fake_s3.forbidden.add("nar/x.nar")
        with pytest.raises(NoSuchCacheFileError):
            store.get_file_bytes("nar/x.nar")

    def test_chunk_failure_raises(self, make_store, fake_s3):
        store = make_store(chunk_size=100)
        fake_s3.put("nar/x.nar", os.urandom(1000))
        fake_s3.range_failures[300] = client_error("InternalError", "boom", 500)

        with pytest.raises(TransportError) as exc_info:
            store.get_file_bytes("nar/x.nar")
        assert exc_info.value.context["chunk_index"] == 3


class TestValidPaths:
    """Tests for .narinfo probing and enumeration."""

    def test_is_valid_path(self, store, fake_s3):
        fake_s3.put(f"{HASH}.narinfo", NARINFO)
        assert store.is_valid_path(StorePath(HASH, "hello"))
        assert not store.is_valid_path(StorePath("z" * 32, "gone"))
        # A single GET per lookup, no HEAD
        assert fake_s3.call_count("head_object") == 0
        assert fake_s3.call_count("get_object") == 2

    def test_get_narinfo_decodes(self, fake_s3, store):
        fake_s3.put(f"{HASH}.narinfo", compression.compress("xz", NARINFO), content_encoding="xz")
        assert store.get_narinfo(StorePath(HASH, "hello")) == NARINFO

    def test_query_all_valid_paths(self, store, fake_s3):
        fake_s3.put(f"{HASH}.narinfo", NARINFO)
        fake_s3.put("junk/file", b"")
        fake_s3.put("nix-cache-info", b"")
        fake_s3.put("short.narinfo", b"")
        fake_s3.put(f"{HASH}.ls", b"")

        assert store.query_all_valid_paths() == {StorePath(HASH, C.MISSING_NAME)}

    @pytest.mark.parametrize("omit_next_marker", [False, True])
    def test_pagination(self, fake_s3, store, omit_next_marker):
        hashes = [f"{i:032d}" for i in range(25)]
        for h in hashes:
            fake_s3.put(f"{h}.narinfo", b"")
        fake_s3.put("log/abc", b"")
        fake_s3.page_size = 7
        fake_s3.omit_next_marker = omit_next_marker

        paths = store.query_all_valid_paths()

        assert {p.hash_part for p in paths} == set(hashes)
        assert all(p.name == "x" for p in paths)
        assert fake_s3.call_count("list_objects") == 4
        assert store.stats.lists == 4

    def test_parse_narinfo_key(self):
        assert parse_narinfo_key(f"{HASH}.narinfo") == StorePath(HASH, "x")
        assert parse_narinfo_key("junk/file") is None
        assert parse_narinfo_key(f"{HASH}.narinfo.xz") is None


class TestInit:
    """Tests for cache settings bootstrap."""

    def test_creates_cache_info(self, store, fake_s3, disk_cache):
        store.init()

        assert fake_s3.objects["nix-cache-info"].data == b"StoreDir: /nix/store\n"
        assert fake_s3.objects["nix-cache-info"].content_type == C.CACHE_INFO_MIME_TYPE
        assert disk_cache.cache_exists("s3://cache") is not None

    def test_reads_remote_settings(self, store, fake_s3, disk_cache):
        fake_s3.put("nix-cache-info", b"StoreDir: /nix/store\nWantMassQuery: 1\nPriority: 30\n")

        store.init()

        assert store.want_mass_query
        assert store.priority == 30
        info = disk_cache.cache_exists("s3://cache")
        assert info.want_mass_query and info.priority == 30

    def test_uses_local_cache(self, store, fake_s3, disk_cache):
        disk_cache.create_cache("s3://cache", "/nix/store", True, 10)

        store.init()

        assert store.priority == 10
        assert store.want_mass_query
        assert fake_s3.calls == []

    def test_store_dir_mismatch(self, store, fake_s3):
        fake_s3.put("nix-cache-info", b"StoreDir: /gnu/store\n")
        with pytest.raises(ConfigurationError, match="/gnu/store"):
            store.init()

    def test_parse_cache_info(self):
        assert parse_cache_info("StoreDir: /nix/store\nbogus\nPriority: 40") == {
            "StoreDir": "/nix/store",
            "Priority": "40",
        }


class TestLifecycle:
    def test_uri(self, store):
        assert store.uri == "s3://cache"

    def test_closed_store_rejects_calls(self, store):
        store.close()
        store.close()
        with pytest.raises(RuntimeError):
            store.file_exists("x")

    def test_context_manager(self, config, fake_s3):
        from bincache.storage.binary_cache import S3BinaryCacheStore

        with S3BinaryCacheStore(config, client=fake_s3) as store:
            store.upsert_file("f", b"x", "text/plain")
        with pytest.raises(RuntimeError):
            store.get_file_bytes("f")
