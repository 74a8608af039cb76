"""
Unit Tests: Store Configuration

Tests:
    - Defaults and validation
    - Store URI and environment parsing
    - boto3 client arguments
"""

import pytest

from bincache.core import constants as C
from bincache.core.config import S3StoreConfig
from bincache.storage.s3_helper import make_boto_config


class TestDefaults:
    """Tests for defaults and validation."""

    def test_defaults(self):
        config = S3StoreConfig(bucket_name="cache")
        assert config.region == "us-east-1"
        assert config.chunk_size == 32 * C.MB
        assert config.max_transfers == 3
        assert config.max_buffered_chunks == 5
        assert config.buffer_size == 5 * C.MB
        assert config.store_dir == "/nix/store"
        assert not config.multipart_upload
        assert config.uri == "s3://cache"

    @pytest.mark.parametrize(
        "overrides",
        [
            {"bucket_name": ""},
            {"scheme": "ftp"},
            {"buffer_size": C.MB},
            {"chunk_size": 0},
            {"max_transfers": 1},
            {"max_buffered_chunks": 0},
            {"connect_timeout_ms": 0},
            {"retry_max_attempts": -1},
        ],
    )
    def test_invalid(self, overrides):
        kwargs = {"bucket_name": "cache", **overrides}
        with pytest.raises(ValueError):
            S3StoreConfig(**kwargs)

    def test_with_overrides_revalidates(self):
        config = S3StoreConfig(bucket_name="cache")
        assert config.with_overrides(max_transfers=4).max_transfers == 4
        with pytest.raises(ValueError):
            config.with_overrides(max_transfers=0)


class TestFromUri:
    """Tests for store URI parsing."""

    def test_settings(self):
        config = S3StoreConfig.from_uri(
            "s3://my-cache?region=eu-west-1&endpoint=minio.local:9000&scheme=http"
            "&narinfo-compression=xz&multipart-upload=true&buffer-size=8388608"
        )
        assert config.bucket_name == "my-cache"
        assert config.region == "eu-west-1"
        assert config.endpoint == "minio.local:9000"
        assert config.scheme == "http"
        assert config.narinfo_compression == "xz"
        assert config.multipart_upload is True
        assert config.buffer_size == 8 * C.MB

    def test_aws_region_alias(self):
        assert S3StoreConfig.from_uri("s3://c?aws-region=ap-south-1").region == "ap-south-1"

    def test_overrides_win(self):
        config = S3StoreConfig.from_uri("s3://c?priority=10", priority=40)
        assert config.priority == 40

    @pytest.mark.parametrize(
        "uri",
        ["http://cache", "s3://", "s3://c?no-such-setting=1", "s3://c?multipart-upload=maybe"],
    )
    def test_rejected(self, uri):
        with pytest.raises(ValueError):
            S3StoreConfig.from_uri(uri)


class TestFromEnv:
    """Tests for environment parsing."""

    def test_reads_prefixed_variables(self, monkeypatch):
        monkeypatch.setenv("BINCACHE_BUCKET", "env-cache")
        monkeypatch.setenv("BINCACHE_REGION", "eu-central-1")
        monkeypatch.setenv("BINCACHE_LOG_COMPRESSION", "bzip2")
        monkeypatch.setenv("BINCACHE_MULTIPART_UPLOAD", "yes")
        monkeypatch.setenv("BINCACHE_BUFFER_SIZE", str(6 * C.MB))

        config = S3StoreConfig.from_env()

        assert config.bucket_name == "env-cache"
        assert config.region == "eu-central-1"
        assert config.log_compression == "bzip2"
        assert config.multipart_upload
        assert config.buffer_size == 6 * C.MB

    def test_bucket_required(self, monkeypatch):
        monkeypatch.delenv("BINCACHE_BUCKET", raising=False)
        with pytest.raises(ValueError, match="BINCACHE_BUCKET"):
            S3StoreConfig.from_env()


class TestClientArguments:
    """Tests for boto3 client configuration."""

    def test_default_endpoint(self):
        kwargs = S3StoreConfig(bucket_name="c", region="eu-west-1").get_client_kwargs()
        assert kwargs == {"region_name": "eu-west-1", "use_ssl": True}

    def test_endpoint_gets_scheme(self):
        config = S3StoreConfig(bucket_name="c", endpoint="minio:9000", scheme="http", ca_file="/ca.pem")
        kwargs = config.get_client_kwargs()
        assert kwargs["endpoint_url"] == "http://minio:9000"
        assert kwargs["use_ssl"] is False
        assert kwargs["verify"] == "/ca.pem"

    def test_boto_config_disables_builtin_retries(self):
        boto_config = make_boto_config(S3StoreConfig(bucket_name="c"))
        assert boto_config.retries == {"total_max_attempts": 1, "mode": "standard"}
        assert boto_config.connect_timeout == 5
        assert boto_config.read_timeout == 600

    def test_path_style_with_endpoint(self):
        boto_config = make_boto_config(S3StoreConfig(bucket_name="c", endpoint="minio:9000"))
        assert boto_config.s3 == {"addressing_style": "path"}
