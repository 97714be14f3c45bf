"""Streaming AES-CBC codec for large files.

This module encrypts and decrypts byte streams chunk by chunk so that
memory usage never depends on the stream size. The IV is re-derived from
the ciphertext of every processed chunk rather than kept constant for the
whole stream.

Wire format:
    [16-byte random IV][chunk 1][chunk 2]...[chunk n]

    Each chunk is one independent CBC run with PKCS#7 padding. A full
    plaintext chunk of 4080 bytes (255 blocks) therefore encrypts to 4096
    bytes (256 blocks), which is also the decode read size. The IV for
    chunk ``i + 1`` is the first block of chunk ``i``'s ciphertext.

Security Considerations:
    - The format is not authenticated; tampering is not detected unless it
      breaks the final padding
    - Decrypt failures are fatal and never retried
    - Output written before a failure must be discarded by the caller

Example:
    >>> from filevault.crypto.streaming import StreamCodec
    >>> from filevault.streams import FileSink, FileSource
    >>>
    >>> codec = StreamCodec(spec)
    >>> with FileSource("report.pdf") as src, FileSink("report.pdf.enc") as dst:
    ...     metrics = codec.encode(src, dst)
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Any

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from filevault.crypto.base import (
    BLOCK_SIZE,
    ByteSink,
    ByteSource,
    CipherAlgorithm,
    CipherSpec,
    DecryptionFailed,
    StalledSource,
    StreamIOError,
    TruncatedHeader,
    VaultError,
    generate_iv,
)

logger = logging.getLogger(__name__)


#: Number of cipher blocks read per plaintext chunk. 255 blocks plus the
#: padding block make a 4096-byte ciphertext chunk.
FILE_ENCRYPTION_BLOCKS = 255

PLAIN_CHUNK = BLOCK_SIZE * FILE_ENCRYPTION_BLOCKS
CIPHER_CHUNK = BLOCK_SIZE * (FILE_ENCRYPTION_BLOCKS + 1)
HEADER_SIZE = BLOCK_SIZE

DEFAULT_MAX_SHORT_READS = 16


# =============================================================================
# Chunk Plan
# =============================================================================


def plain_chunk_count(plaintext_length: int) -> int:
    """Get the number of chunks ``encode`` produces for a plaintext length.

    An empty stream still yields one (padding-only) chunk.
    """
    return max(1, math.ceil(plaintext_length / PLAIN_CHUNK))


def cipher_chunk_count(ciphertext_length: int) -> int:
    """Get the number of chunks ``decode`` reads for a ciphertext length."""
    return math.ceil(max(0, ciphertext_length - HEADER_SIZE) / CIPHER_CHUNK)


def padded_size(length: int) -> int:
    """Get the ciphertext size of one chunk of ``length`` plaintext bytes."""
    return BLOCK_SIZE * (length // BLOCK_SIZE + 1)


def encrypted_length(plaintext_length: int) -> int:
    """Get the exact encoded size for a plaintext length.

    Args:
        plaintext_length: Size of the plaintext in bytes.

    Returns:
        Header plus every padded chunk, in bytes.
    """
    full_chunks, remainder = divmod(plaintext_length, PLAIN_CHUNK)
    size = HEADER_SIZE + full_chunks * CIPHER_CHUNK
    if remainder or full_chunks == 0:
        size += padded_size(remainder)
    return size


# =============================================================================
# Metrics
# =============================================================================


@dataclass
class StreamingMetrics:
    """Metrics for one encode/decode run.

    Attributes:
        total_chunks: Number of chunks processed.
        total_plaintext_bytes: Plaintext bytes read or written.
        total_ciphertext_bytes: Ciphertext bytes including the IV header.
        short_reads: Short reads that were retried.
        total_time_ms: Total processing time.
        algorithm: Cipher algorithm used.
    """

    total_chunks: int = 0
    total_plaintext_bytes: int = 0
    total_ciphertext_bytes: int = 0
    short_reads: int = 0
    total_time_ms: float = 0.0
    algorithm: CipherAlgorithm = CipherAlgorithm.AES_256_CBC

    @property
    def overhead_bytes(self) -> int:
        """Total encryption overhead."""
        return self.total_ciphertext_bytes - self.total_plaintext_bytes

    @property
    def throughput_mbps(self) -> float:
        """Processing throughput in MB/s."""
        if self.total_time_ms == 0:
            return 0.0
        return (self.total_plaintext_bytes / 1024 / 1024) / (self.total_time_ms / 1000)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "total_chunks": self.total_chunks,
            "total_plaintext_bytes": self.total_plaintext_bytes,
            "total_ciphertext_bytes": self.total_ciphertext_bytes,
            "overhead_bytes": self.overhead_bytes,
            "short_reads": self.short_reads,
            "throughput_mbps": round(self.throughput_mbps, 2),
            "total_time_ms": round(self.total_time_ms, 2),
            "algorithm": self.algorithm.value,
        }


# =============================================================================
# Stream Codec
# =============================================================================


class StreamCodec:
    """Chunked AES-CBC encoder/decoder with IV chaining.

    The codec holds only the validated cipher spec and the retry bound, so
    one instance may serve any number of sequential or concurrent calls.
    Each call keeps its running IV in a local variable.

    Example:
        >>> codec = StreamCodec(CipherSpec(key, "AES-256-CBC"))
        >>> codec.encode(source, sink)
        >>> codec.decode(encrypted_source, plain_sink)
    """

    def __init__(
        self,
        spec: CipherSpec,
        max_short_reads: int = DEFAULT_MAX_SHORT_READS,
    ) -> None:
        """Initialize the codec.

        Args:
            spec: Validated key and algorithm.
            max_short_reads: Consecutive short reads tolerated for one chunk
                before giving up with ``StalledSource``.
        """
        if max_short_reads < 0:
            raise ValueError("max_short_reads must not be negative")
        self._spec = spec
        self._max_short_reads = max_short_reads

    @property
    def spec(self) -> CipherSpec:
        """Get the cipher spec."""
        return self._spec

    @property
    def max_short_reads(self) -> int:
        """Get the short-read retry bound."""
        return self._max_short_reads

    def _cipher(self, iv: bytes) -> Cipher:
        return Cipher(algorithms.AES(self._spec.key), modes.CBC(iv))

    def _encrypt_chunk(self, plaintext: bytes, iv: bytes) -> bytes:
        """Encrypt one chunk as an independent padded CBC run."""
        padder = padding.PKCS7(BLOCK_SIZE * 8).padder()
        padded = padder.update(plaintext) + padder.finalize()

        encryptor = self._cipher(iv).encryptor()
        return encryptor.update(padded) + encryptor.finalize()

    def _decrypt_chunk(self, ciphertext: bytes, iv: bytes, chunk_index: int) -> bytes:
        """Decrypt one chunk and strip its padding."""
        try:
            decryptor = self._cipher(iv).decryptor()
            padded = decryptor.update(ciphertext) + decryptor.finalize()

            unpadder = padding.PKCS7(BLOCK_SIZE * 8).unpadder()
            return unpadder.update(padded) + unpadder.finalize()
        except ValueError as e:
            # Raised for bad padding or a length that is not block-aligned
            raise DecryptionFailed(
                f"Chunk {chunk_index} could not be decrypted. "
                "The key may be wrong or the data corrupted",
                self._spec.algorithm.value,
                chunk_index=chunk_index,
            ) from e

    def _read_exact(
        self,
        source: ByteSource,
        offset: int,
        expected: int,
        metrics: StreamingMetrics,
    ) -> bytes:
        """Read ``expected`` bytes starting at ``offset``.

        A short read is treated as an under-delivering backend, not as end of
        stream: the source is rewound to ``offset`` and the read repeated, at
        most ``max_short_reads`` times in a row.
        """
        attempts = 0
        while True:
            try:
                data = source.read(expected)
            except VaultError:
                raise
            except OSError as e:
                raise StreamIOError(f"Read failed at offset {offset}: {e}") from e

            if len(data) >= expected:
                return data[:expected]

            attempts += 1
            metrics.short_reads += 1
            if attempts > self._max_short_reads:
                logger.warning(
                    "Giving up on source at offset %d after %d short reads",
                    offset,
                    attempts,
                )
                raise StalledSource(offset, attempts, expected)

            logger.debug(
                "Short read at offset %d (%d of %d bytes), retrying",
                offset,
                len(data),
                expected,
            )
            try:
                source.seek(offset)
            except VaultError:
                raise
            except OSError as e:
                raise StreamIOError(f"Seek to offset {offset} failed: {e}") from e

    @staticmethod
    def _write(sink: ByteSink, data: bytes) -> None:
        try:
            sink.write(data)
        except VaultError:
            raise
        except OSError as e:
            raise StreamIOError(f"Write failed: {e}") from e

    @staticmethod
    def _length(source: ByteSource) -> int:
        try:
            return source.length()
        except VaultError:
            raise
        except OSError as e:
            raise StreamIOError(f"Could not determine source length: {e}") from e

    def encode(self, source: ByteSource, sink: ByteSink) -> StreamingMetrics:
        """Encrypt a plaintext stream into the framed wire format.

        Args:
            source: Plaintext source positioned at offset 0.
            sink: Destination for the IV header and ciphertext chunks.

        Returns:
            Metrics for this run.

        Raises:
            StalledSource: If a chunk cannot be read in full.
            StreamIOError: If reading or writing fails.
        """
        metrics = StreamingMetrics(algorithm=self._spec.algorithm)
        start_time = time.perf_counter()

        length = self._length(source)
        total_chunks = plain_chunk_count(length)

        iv = generate_iv()
        self._write(sink, iv)
        metrics.total_ciphertext_bytes += len(iv)

        for chunk_index in range(total_chunks):
            offset = chunk_index * PLAIN_CHUNK
            expected = min(PLAIN_CHUNK, length - offset)
            plaintext = self._read_exact(source, offset, expected, metrics) if expected else b""

            ciphertext = self._encrypt_chunk(plaintext, iv)
            # Next chunk chains from this chunk's first ciphertext block
            iv = ciphertext[:BLOCK_SIZE]
            self._write(sink, ciphertext)

            metrics.total_chunks += 1
            metrics.total_plaintext_bytes += len(plaintext)
            metrics.total_ciphertext_bytes += len(ciphertext)

        metrics.total_time_ms = (time.perf_counter() - start_time) * 1000
        logger.info(
            "Encoded %d bytes in %d chunks (%s, %.2f ms)",
            metrics.total_plaintext_bytes,
            metrics.total_chunks,
            self._spec.algorithm.value,
            metrics.total_time_ms,
        )
        return metrics

    def decode(self, source: ByteSource, sink: ByteSink) -> StreamingMetrics:
        """Decrypt a framed ciphertext stream.

        Args:
            source: Ciphertext source positioned at offset 0.
            sink: Destination for the recovered plaintext.

        Returns:
            Metrics for this run.

        Raises:
            TruncatedHeader: If the source is shorter than the IV header.
            DecryptionFailed: If a chunk fails to decrypt.
            StalledSource: If a chunk cannot be read in full.
            StreamIOError: If reading or writing fails.
        """
        metrics = StreamingMetrics(algorithm=self._spec.algorithm)
        start_time = time.perf_counter()

        length = self._length(source)
        if length < HEADER_SIZE:
            raise TruncatedHeader(
                f"Encrypted stream has {length} bytes, at least {HEADER_SIZE} required",
                self._spec.algorithm.value,
            )

        iv = self._read_exact(source, 0, HEADER_SIZE, metrics)
        metrics.total_ciphertext_bytes += HEADER_SIZE
        total_chunks = cipher_chunk_count(length)

        for chunk_index in range(total_chunks):
            offset = HEADER_SIZE + chunk_index * CIPHER_CHUNK
            expected = min(CIPHER_CHUNK, length - offset)
            ciphertext = self._read_exact(source, offset, expected, metrics)

            plaintext = self._decrypt_chunk(ciphertext, iv, chunk_index)
            iv = ciphertext[:BLOCK_SIZE]
            self._write(sink, plaintext)

            metrics.total_chunks += 1
            metrics.total_plaintext_bytes += len(plaintext)
            metrics.total_ciphertext_bytes += len(ciphertext)

        metrics.total_time_ms = (time.perf_counter() - start_time) * 1000
        logger.info(
            "Decoded %d bytes in %d chunks (%s, %.2f ms)",
            metrics.total_plaintext_bytes,
            metrics.total_chunks,
            self._spec.algorithm.value,
            metrics.total_time_ms,
        )
        return metrics
