"""File vault facade.

``FileVault`` ties the codec to a storage disk: it resolves file names on
the selected disk, streams them through ``StreamCodec`` and optionally
removes the source once the transformation succeeded.

Example:
    >>> vault = FileVault(VaultConfig.load())
    >>> vault.encrypt("contracts/2024.pdf")          # -> contracts/2024.pdf.enc
    >>> vault.decrypt_copy("contracts/2024.pdf.enc")  # keeps the .enc file
    >>> vault.disk("s3").encrypt_copy("exports/users.csv")
"""

from __future__ import annotations

import logging
import sys
from contextlib import closing
from typing import Any

from filevault.config import VaultConfig
from filevault.crypto.base import (
    ByteSink,
    CipherAlgorithm,
    DiskError,
    VaultError,
    generate_key,
)
from filevault.crypto.streaming import StreamCodec, StreamingMetrics
from filevault.disks import Disk, get_disk
from filevault.streams import FileSink

logger = logging.getLogger(__name__)

ENCRYPTED_SUFFIX = ".enc"
DECRYPTED_SUFFIX = ".dec"


class FileVault:
    """Encrypt and decrypt files stored on a disk.

    Setters return the vault itself so calls can be chained:

        >>> FileVault().disk("s3").key(key).encrypt("report.pdf")
    """

    def __init__(self, config: VaultConfig | None = None) -> None:
        """Initialize the vault.

        Args:
            config: Vault configuration. Read from the environment if omitted.
        """
        self._config = config if config is not None else VaultConfig.from_env()
        self._key = self._config.key
        self._cipher = self._config.cipher
        self._disk: Disk | None = None

    @property
    def config(self) -> VaultConfig:
        return self._config

    # -------------------------------------------------------------------------
    # Fluent setters
    # -------------------------------------------------------------------------

    def disk(self, disk: str | Disk) -> "FileVault":
        """Set the disk where the files are located."""
        self._disk = disk if isinstance(disk, Disk) else get_disk(self._config, disk)
        return self

    def key(self, key: bytes | str) -> "FileVault":
        """Set the encryption key."""
        self._key = key
        return self

    def cipher(self, cipher: CipherAlgorithm | str) -> "FileVault":
        """Set the cipher algorithm."""
        self._cipher = CipherAlgorithm.parse(cipher).value
        return self

    @classmethod
    def generate_key(cls, cipher: CipherAlgorithm | str | None = None) -> bytes:
        """Create a new random key for the given (or configured) cipher."""
        if cipher is None:
            cipher = VaultConfig.from_env().cipher
        return generate_key(cipher)

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def encrypt(
        self,
        source_file: str,
        dest_file: str | None = None,
        delete_source: bool = True,
    ) -> "FileVault":
        """Encrypt a file, writing the result to ``dest_file``.

        Args:
            source_file: File to encrypt, relative to the disk.
            dest_file: Destination file; defaults to ``<source_file>.enc``.
            delete_source: Remove the source after a successful encryption.

        Returns:
            The vault, for chaining.
        """
        if dest_file is None:
            dest_file = f"{source_file}{ENCRYPTED_SUFFIX}"

        codec = self._codec()
        disk = self._current_disk()
        metrics = self._transform(codec.encode, disk, source_file, dest_file)
        logger.info(
            "Encrypted %s -> %s (%d bytes)",
            disk.path(source_file),
            disk.path(dest_file),
            metrics.total_plaintext_bytes,
        )

        if delete_source:
            disk.delete(source_file)
        return self

    def encrypt_copy(self, source_file: str, dest_file: str | None = None) -> "FileVault":
        """Encrypt a file and keep the original."""
        return self.encrypt(source_file, dest_file, delete_source=False)

    def decrypt(
        self,
        source_file: str,
        dest_file: str | None = None,
        delete_source: bool = True,
    ) -> "FileVault":
        """Decrypt a file, writing the result to ``dest_file``.

        The default destination drops a trailing ``.enc`` from the source
        name, or appends ``.dec`` when there is none.
        """
        if dest_file is None:
            dest_file = decrypted_name(source_file)

        codec = self._codec()
        disk = self._current_disk()
        metrics = self._transform(codec.decode, disk, source_file, dest_file)
        logger.info(
            "Decrypted %s -> %s (%d bytes)",
            disk.path(source_file),
            disk.path(dest_file),
            metrics.total_plaintext_bytes,
        )

        if delete_source:
            disk.delete(source_file)
        return self

    def decrypt_copy(self, source_file: str, dest_file: str | None = None) -> "FileVault":
        """Decrypt a file and keep the encrypted original."""
        return self.decrypt(source_file, dest_file, delete_source=False)

    def stream_decrypt(
        self,
        source_file: str,
        sink: ByteSink | None = None,
    ) -> StreamingMetrics:
        """Decrypt a file straight into a sink (standard output by default).

        Nothing is written to the disk. Plaintext already written to the sink
        stays there if decryption fails part-way.
        """
        codec = self._codec()
        disk = self._current_disk()
        if sink is None:
            sink = FileSink(sys.stdout.buffer)

        with closing(disk.open_source(source_file)) as source:
            metrics = codec.decode(source, sink)

        flush = getattr(sink, "flush", None)
        if flush is not None:
            flush()
        return metrics

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _codec(self) -> StreamCodec:
        spec = VaultConfig(key=self._key, cipher=self._cipher).cipher_spec()
        return StreamCodec(spec, max_short_reads=self._config.max_short_reads)

    def _current_disk(self) -> Disk:
        if self._disk is None:
            self._disk = get_disk(self._config)
        return self._disk

    def _transform(
        self,
        operation: Any,
        disk: Disk,
        source_file: str,
        dest_file: str,
    ) -> StreamingMetrics:
        """Run an encode/decode from one disk file into another.

        A destination left behind by a failed run is removed, since its
        content is a partial prefix that cannot be resumed.

        Raises:
            DiskError: If source and destination are the same file.
        """
        if disk.path(source_file) == disk.path(dest_file):
            raise DiskError(
                f"Source and destination are the same file: {disk.path(source_file)}"
            )

        with closing(disk.open_source(source_file)) as source:
            sink = disk.open_sink(dest_file)
            try:
                metrics = operation(source, sink)
                sink.close()
            except BaseException:
                _discard(sink, disk, dest_file)
                raise
        return metrics


def decrypted_name(source_file: str) -> str:
    """Get the default destination name for decrypting ``source_file``."""
    if source_file.endswith(ENCRYPTED_SUFFIX):
        return source_file[: -len(ENCRYPTED_SUFFIX)]
    return f"{source_file}{DECRYPTED_SUFFIX}"


def _discard(sink: Any, disk: Disk, dest_file: str) -> None:
    abort = getattr(sink, "abort", None)
    if abort is not None:
        abort()
        return

    try:
        sink.close()
    except VaultError as e:
        logger.debug("Closing discarded output %s failed: %s", disk.path(dest_file), e)
    if disk.exists(dest_file):
        logger.debug("Removing partial output %s", disk.path(dest_file))
        disk.delete(dest_file)


__all__ = [
    "FileVault",
    "decrypted_name",
    "ENCRYPTED_SUFFIX",
    "DECRYPTED_SUFFIX",
]
