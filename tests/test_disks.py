"""Tests for storage disks."""

from unittest.mock import patch

import pytest

from filevault.config import VaultConfig
from filevault.crypto.base import DiskError, SourceOpenFailed
from filevault.disks import (
    Disk,
    LocalDisk,
    S3Disk,
    get_disk,
    list_disks,
    register_disk,
)
from filevault.streams import FileSink, FileSource, S3Sink, S3Source
from tests.mocks import create_mock_s3_client, s3_error


class TestLocalDisk:
    """Tests for LocalDisk."""

    def test_path(self, tmp_path):
        """Test path resolution under the root."""
        disk = LocalDisk(tmp_path)
        assert disk.path("a/b.txt") == str(tmp_path / "a" / "b.txt")

    def test_sink_and_source(self, tmp_path):
        """Test writing then reading a file."""
        disk = LocalDisk(tmp_path)
        with disk.open_sink("nested/file.bin") as sink:
            assert isinstance(sink, FileSink)
            sink.write(b"payload")

        assert disk.exists("nested/file.bin")
        with disk.open_source("nested/file.bin") as source:
            assert isinstance(source, FileSource)
            assert source.read(100) == b"payload"

    def test_delete(self, tmp_path):
        """Test deleting a file."""
        (tmp_path / "f.txt").write_text("x")
        disk = LocalDisk(tmp_path)
        disk.delete("f.txt")
        assert not disk.exists("f.txt")

    def test_delete_missing(self, tmp_path):
        """Test deleting a file that does not exist."""
        with pytest.raises(DiskError):
            LocalDisk(tmp_path).delete("missing.txt")

    def test_directory_is_not_a_file(self, tmp_path):
        """Test that directories do not count as files."""
        (tmp_path / "dir").mkdir()
        assert not LocalDisk(tmp_path).exists("dir")


class TestS3Disk:
    """Tests for S3Disk."""

    @pytest.fixture
    def s3(self):
        return create_mock_s3_client(with_bucket="vault")

    def test_requires_bucket(self):
        """Test that a bucket is required."""
        with pytest.raises(DiskError):
            S3Disk(bucket="")

    @pytest.mark.parametrize(
        "prefix,expected",
        [("", "f.bin"), ("uploads", "uploads/f.bin"), ("uploads/", "uploads/f.bin")],
    )
    def test_key(self, prefix, expected):
        """Test object key construction."""
        disk = S3Disk(bucket="vault", prefix=prefix, client=object())
        assert disk.key("f.bin") == expected
        assert disk.path("f.bin") == f"s3://vault/{expected}"

    def test_open(self, s3):
        """Test opening sources and sinks."""
        disk = S3Disk(bucket="vault", prefix="p", client=s3)
        with disk.open_sink("f.bin") as sink:
            assert isinstance(sink, S3Sink)
            sink.write(b"data")

        assert s3.objects("vault") == {"p/f.bin": b"data"}
        source = disk.open_source("f.bin")
        assert isinstance(source, S3Source)
        assert source.read(10) == b"data"

    def test_exists_and_delete(self, s3):
        """Test existence checks and deletion."""
        s3.put_object(Bucket="vault", Key="f.bin", Body=b"x")
        disk = S3Disk(bucket="vault", client=s3)

        assert disk.exists("f.bin")
        disk.delete("f.bin")
        assert not disk.exists("f.bin")

    def test_exists_error(self, s3):
        """Test that errors other than not-found propagate."""
        disk = S3Disk(bucket="vault", client=s3)
        with patch.object(s3, "head_object", side_effect=s3_error("403", "HeadObject")):
            with pytest.raises(DiskError):
                disk.exists("f.bin")

    def test_missing_source(self, s3):
        """Test opening an object that does not exist."""
        with pytest.raises(SourceOpenFailed):
            S3Disk(bucket="vault", client=s3).open_source("missing")

    def test_client_created_lazily(self):
        """Test that boto3 is only used on first access."""
        disk = S3Disk(bucket="vault", region="eu-west-1", endpoint_url="http://localhost:9000")
        with patch("filevault.disks.boto3.client") as mock_client:
            client = disk.client
            assert disk.client is client
        mock_client.assert_called_once_with(
            "s3", region_name="eu-west-1", endpoint_url="http://localhost:9000"
        )


class TestRegistry:
    """Tests for the disk registry."""

    def test_builtin_disks(self):
        """Test the built-in disk names."""
        assert {"local", "s3"} <= set(list_disks())

    def test_get_local(self, tmp_path):
        """Test creating the local disk from config."""
        disk = get_disk(VaultConfig(root=str(tmp_path)))
        assert isinstance(disk, LocalDisk)
        assert disk.root == tmp_path

    def test_get_s3(self):
        """Test creating the s3 disk from config."""
        disk = get_disk(VaultConfig(bucket="vault", prefix="x"), "S3")
        assert isinstance(disk, S3Disk)
        assert disk.bucket == "vault"

    def test_unknown(self):
        """Test an unregistered disk name."""
        with pytest.raises(DiskError, match="Unknown disk"):
            get_disk(VaultConfig(), "ftp")

    def test_register(self, tmp_path):
        """Test registering a custom disk."""

        @register_disk("scratch")
        def _scratch(config):
            return LocalDisk(tmp_path / "scratch")

        disk = get_disk(VaultConfig(), "scratch")
        assert isinstance(disk, Disk)
        assert disk.root == tmp_path / "scratch"
