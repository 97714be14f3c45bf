"""Streaming AES-CBC codec for file encryption.

This module provides the cipher spec validation and the chunked stream codec
that encrypts and decrypts arbitrarily large streams in bounded memory.

Features:
    - AES-128-CBC and AES-256-CBC with per-chunk PKCS#7 padding
    - IV chaining from the ciphertext of each chunk
    - Bounded short-read recovery for networked sources
    - Protocol-based source/sink interfaces

Security Notes:
    - The wire format is NOT authenticated; it offers confidentiality only
    - Never reuse a key across unrelated systems that expect AEAD formats

Quick Start:
    >>> from filevault.crypto import CipherSpec, StreamCodec, generate_key
    >>>
    >>> spec = CipherSpec(generate_key("AES-256-CBC"), "AES-256-CBC")
    >>> codec = StreamCodec(spec)
    >>> metrics = codec.encode(source, sink)
"""

# Base types and protocols
from filevault.crypto.base import (
    # Protocols
    ByteSink,
    ByteSource,
    # Enums
    CipherAlgorithm,
    # Data classes
    CipherSpec,
    # Exceptions
    VaultError,
    UnsupportedCipherOrKeyLength,
    SourceOpenFailed,
    SinkOpenFailed,
    TruncatedHeader,
    DecryptionFailed,
    StalledSource,
    StreamIOError,
    ConfigurationError,
    DiskError,
    # Constants
    BLOCK_SIZE,
    BASE64_KEY_PREFIX,
    # Utility functions
    format_key,
    generate_iv,
    generate_key,
    parse_key,
)

# Streaming codec
from filevault.crypto.streaming import (
    CIPHER_CHUNK,
    DEFAULT_MAX_SHORT_READS,
    FILE_ENCRYPTION_BLOCKS,
    HEADER_SIZE,
    PLAIN_CHUNK,
    StreamCodec,
    StreamingMetrics,
    cipher_chunk_count,
    encrypted_length,
    padded_size,
    plain_chunk_count,
)


__all__ = [
    # === Base Types ===
    "ByteSink",
    "ByteSource",
    "CipherAlgorithm",
    "CipherSpec",
    # Exceptions
    "VaultError",
    "UnsupportedCipherOrKeyLength",
    "SourceOpenFailed",
    "SinkOpenFailed",
    "TruncatedHeader",
    "DecryptionFailed",
    "StalledSource",
    "StreamIOError",
    "ConfigurationError",
    "DiskError",
    # Constants
    "BLOCK_SIZE",
    "BASE64_KEY_PREFIX",
    # Utility functions
    "format_key",
    "generate_iv",
    "generate_key",
    "parse_key",
    # === Streaming ===
    "CIPHER_CHUNK",
    "DEFAULT_MAX_SHORT_READS",
    "FILE_ENCRYPTION_BLOCKS",
    "HEADER_SIZE",
    "PLAIN_CHUNK",
    "StreamCodec",
    "StreamingMetrics",
    "cipher_chunk_count",
    "encrypted_length",
    "padded_size",
    "plain_chunk_count",
]
