"""Tests for the filevault command-line interface."""

import base64
import os
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from filevault.cli import ExitCode, app, exit_code_for
from filevault.config import VaultConfig
from filevault.crypto.base import (
    ConfigurationError,
    DecryptionFailed,
    StalledSource,
    format_key,
    generate_key,
)
from filevault.disks import S3Disk
from filevault.vault import FileVault
from tests.mocks import create_mock_s3_client

# Keys configured on the host must not leak into the tests
CLEAN_ENV = {"FILE_VAULT_KEY": None, "APP_KEY": None, "FILE_VAULT_DISK": None}


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def key():
    return format_key(generate_key("AES-256-CBC"))


@pytest.fixture
def workdir(tmp_path):
    (tmp_path / "notes.txt").write_bytes(b"meeting at noon\n" * 500)
    return tmp_path


def invoke(runner, *args):
    return runner.invoke(app, list(args), env=CLEAN_ENV)


class TestGenerateKey:
    """Tests for the generate-key command."""

    def test_default(self, runner):
        """Test generating an AES-256-CBC key."""
        result = invoke(runner, "generate-key")

        assert result.exit_code == 0
        line = result.output.strip()
        assert line.startswith("base64:")
        assert len(base64.b64decode(line[len("base64:"):])) == 32

    def test_aes_128_hex(self, runner):
        """Test generating a hex AES-128-CBC key."""
        result = invoke(runner, "generate-key", "--cipher", "AES-128-CBC", "--hex")

        assert result.exit_code == 0
        assert len(bytes.fromhex(result.output.strip())) == 16

    def test_unsupported_cipher(self, runner):
        """Test an unknown cipher name."""
        result = invoke(runner, "generate-key", "--cipher", "DES")

        assert result.exit_code == ExitCode.UNSUPPORTED_CIPHER.value
        assert "Error" in result.output


class TestEncryptDecrypt:
    """Tests for the encrypt and decrypt commands."""

    def test_round_trip(self, runner, workdir, key):
        """Test encrypting and decrypting a file in place."""
        original = (workdir / "notes.txt").read_bytes()

        result = invoke(runner, "encrypt", "notes.txt", "--root", str(workdir), "--key", key)
        assert result.exit_code == 0, result.output
        assert "notes.txt.enc" in result.output
        assert not (workdir / "notes.txt").exists()

        result = invoke(runner, "decrypt", "notes.txt.enc", "--root", str(workdir), "--key", key)
        assert result.exit_code == 0, result.output
        assert (workdir / "notes.txt").read_bytes() == original
        assert not (workdir / "notes.txt.enc").exists()

    def test_keep_source_and_dest(self, runner, workdir, key):
        """Test --keep-source with an explicit destination."""
        result = invoke(
            runner,
            "encrypt", "notes.txt",
            "--dest", "secret.bin",
            "--keep-source",
            "--root", str(workdir),
            "--key", key,
        )

        assert result.exit_code == 0, result.output
        assert (workdir / "notes.txt").exists()
        assert (workdir / "secret.bin").exists()

    def test_config_file(self, runner, workdir, key):
        """Test reading the key and root from a config file."""
        config = workdir / "vault.yaml"
        config.write_text(f"file_vault:\n  key: '{key}'\n  root: '{workdir}'\n")

        result = invoke(runner, "encrypt", "notes.txt", "--keep-source", "--config", str(config))

        assert result.exit_code == 0, result.output
        assert (workdir / "notes.txt.enc").exists()

    def test_missing_key(self, runner, workdir):
        """Test running without any key configured."""
        result = invoke(runner, "encrypt", "notes.txt", "--root", str(workdir))

        assert result.exit_code == ExitCode.CONFIG_INVALID.value
        assert "No encryption key" in result.output
        assert (workdir / "notes.txt").exists()

    def test_missing_file(self, runner, workdir, key):
        """Test encrypting a file that does not exist."""
        result = invoke(runner, "encrypt", "nope.txt", "--root", str(workdir), "--key", key)
        assert result.exit_code == ExitCode.SOURCE_NOT_READABLE.value

    def test_wrong_key(self, runner, workdir, key):
        """Test decrypting with a different key."""
        (workdir / "big.bin").write_bytes(os.urandom(40000))
        invoke(runner, "encrypt", "big.bin", "--root", str(workdir), "--key", key)

        other = format_key(generate_key())
        result = invoke(runner, "decrypt", "big.bin.enc", "--root", str(workdir), "--key", other)

        assert result.exit_code == ExitCode.DECRYPTION_FAILED.value
        assert "Hint" in result.output
        assert (workdir / "big.bin.enc").exists()
        assert not (workdir / "big.bin").exists()

    def test_truncated_file(self, runner, workdir, key):
        """Test decrypting a file shorter than the header."""
        (workdir / "short.enc").write_bytes(b"tiny")
        result = invoke(runner, "decrypt", "short.enc", "--root", str(workdir), "--key", key)
        assert result.exit_code == ExitCode.TRUNCATED_HEADER.value

    def test_unknown_disk(self, runner, workdir, key):
        """Test selecting a disk that is not registered."""
        result = invoke(runner, "encrypt", "notes.txt", "--disk", "ftp", "--key", key)
        assert result.exit_code == ExitCode.DISK_ERROR.value


class TestCat:
    """Tests for the cat command."""

    def test_prints_plaintext(self, runner, workdir, key):
        """Test decrypting to standard output."""
        original = (workdir / "notes.txt").read_bytes()
        invoke(runner, "encrypt", "notes.txt", "--root", str(workdir), "--key", key)

        result = invoke(runner, "cat", "notes.txt.enc", "--root", str(workdir), "--key", key)

        assert result.exit_code == 0
        assert result.stdout_bytes == original
        assert (workdir / "notes.txt.enc").exists()


class TestInfo:
    """Tests for the info command."""

    def test_framing(self, runner, workdir, key):
        """Test showing the layout of an encrypted file."""
        invoke(runner, "encrypt", "notes.txt", "--root", str(workdir), "--key", key)

        result = invoke(runner, "info", "notes.txt.enc", "--root", str(workdir))

        assert result.exit_code == 0, result.output
        assert "Chunks" in result.output
        assert "8,048 bytes" in result.output

    def test_header_over_short_reads(self, runner, key):
        """Test that the IV is shown when the backend under-delivers."""
        s3 = create_mock_s3_client(with_bucket="vault", short_reads=2)
        s3.put_object(Bucket="vault", Key="notes.txt", Body=b"meeting at noon\n" * 500)
        disk = S3Disk(bucket="vault", client=s3)
        FileVault(VaultConfig(key=key)).disk(disk).encrypt_copy("notes.txt")
        iv = s3.objects("vault")["notes.txt.enc"][:16]

        with patch("filevault.cli.get_disk", return_value=disk):
            result = invoke(runner, "info", "notes.txt.enc")

        assert result.exit_code == 0, result.output
        assert iv.hex() in result.output
        assert "(truncated)" not in result.output

    def test_missing(self, runner, workdir):
        """Test inspecting a missing file."""
        result = invoke(runner, "info", "nope.enc", "--root", str(workdir))
        assert result.exit_code == ExitCode.SOURCE_NOT_READABLE.value


class TestExitCodes:
    """Tests for exception to exit code mapping."""

    def test_mapping(self):
        """Test known and unknown errors."""
        assert exit_code_for(DecryptionFailed("x")) is ExitCode.DECRYPTION_FAILED
        assert exit_code_for(StalledSource(0, 1, 16)) is ExitCode.STALLED_SOURCE
        assert exit_code_for(ConfigurationError("x")) is ExitCode.CONFIG_INVALID
        assert exit_code_for(RuntimeError("x")) is ExitCode.GENERAL_ERROR
