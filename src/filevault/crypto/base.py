"""Base classes, protocols, and types for the file vault codec.

This module defines the cipher selection, the key validation rules and the
minimal stream capabilities the codec consumes. It uses Protocol-based
structural typing so that any storage backend can be adapted without the
codec depending on it.

Security Considerations:
    - Only AES-CBC is supported; the wire format is NOT authenticated
    - Ciphertext can be modified undetected (no MAC, no AEAD tag)
    - IVs are generated with ``os.urandom`` and chained per chunk
    - Key material is never included in exception messages or logs

Example:
    >>> from filevault.crypto.base import CipherAlgorithm, CipherSpec
    >>>
    >>> spec = CipherSpec(generate_key(CipherAlgorithm.AES_256_CBC),
    ...                   CipherAlgorithm.AES_256_CBC)
    >>> spec.block_size
    16
"""

from __future__ import annotations

import base64
import binascii
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol, runtime_checkable


# =============================================================================
# Exceptions
# =============================================================================


class VaultError(Exception):
    """Base exception for file vault errors."""

    def __init__(self, message: str, algorithm: str | None = None) -> None:
        self.algorithm = algorithm
        super().__init__(f"[{algorithm}] {message}" if algorithm else message)


class UnsupportedCipherOrKeyLength(VaultError):
    """Cipher is unknown or the key length does not match it."""

    def __init__(self, algorithm: str, key_length: int | None = None) -> None:
        self.key_length = key_length
        msg = (
            "The only supported ciphers are AES-128-CBC and AES-256-CBC "
            "with the correct key lengths"
        )
        if key_length is not None:
            msg += f" (got a {key_length}-byte key)"
        super().__init__(msg, algorithm)


class SourceOpenFailed(VaultError):
    """A source could not be opened for reading."""

    pass


class SinkOpenFailed(VaultError):
    """A sink could not be opened for writing."""

    pass


class TruncatedHeader(VaultError):
    """Encrypted stream is shorter than the IV header."""

    pass


class DecryptionFailed(VaultError):
    """Ciphertext could not be decrypted (wrong key or corrupted data)."""

    def __init__(
        self,
        message: str,
        algorithm: str | None = None,
        chunk_index: int | None = None,
    ) -> None:
        self.chunk_index = chunk_index
        super().__init__(message, algorithm)


class StalledSource(VaultError):
    """Source kept returning short reads for the same chunk."""

    def __init__(self, offset: int, attempts: int, expected: int) -> None:
        self.offset = offset
        self.attempts = attempts
        self.expected = expected
        super().__init__(
            f"Source stalled at offset {offset}: {attempts} consecutive short "
            f"reads while expecting {expected} bytes"
        )


class StreamIOError(VaultError):
    """Read or write failure other than a short read."""

    pass


class ConfigurationError(VaultError):
    """Invalid or missing vault configuration."""

    pass


class DiskError(VaultError):
    """Unknown storage disk or failed disk operation."""

    pass


# =============================================================================
# Enums
# =============================================================================


class CipherAlgorithm(str, Enum):
    """Supported cipher algorithms.

    Both use cipher-block-chaining with PKCS#7 padding. Neither provides
    integrity protection.
    """

    AES_128_CBC = "AES-128-CBC"
    AES_256_CBC = "AES-256-CBC"

    @property
    def key_size(self) -> int:
        """Get key size in bytes."""
        key_sizes = {
            CipherAlgorithm.AES_128_CBC: 16,
            CipherAlgorithm.AES_256_CBC: 32,
        }
        return key_sizes[self]

    @property
    def block_size(self) -> int:
        """Get cipher block size in bytes."""
        return BLOCK_SIZE

    @classmethod
    def parse(cls, value: "CipherAlgorithm | str") -> "CipherAlgorithm":
        """Resolve an algorithm from an enum member or its name.

        Names are matched case-insensitively, with ``_`` accepted in place
        of ``-`` (``"aes_256_cbc"`` and ``"AES-256-CBC"`` are equivalent).

        Raises:
            UnsupportedCipherOrKeyLength: If the name is unknown.
        """
        if isinstance(value, cls):
            return value
        normalized = str(value).strip().upper().replace("_", "-")
        for member in cls:
            if member.value == normalized:
                return member
        raise UnsupportedCipherOrKeyLength(str(value))


BLOCK_SIZE = 16

#: Presentation prefix for keys stored as base64 text.
BASE64_KEY_PREFIX = "base64:"


# =============================================================================
# Cipher Spec
# =============================================================================


@dataclass(frozen=True)
class CipherSpec:
    """A validated (key, algorithm) pair.

    Attributes:
        key: Raw key bytes.
        algorithm: Cipher algorithm the key belongs to.
        block_size: Cipher block size in bytes (always 16).
    """

    key: bytes = field(repr=False)
    algorithm: CipherAlgorithm = CipherAlgorithm.AES_256_CBC
    block_size: int = field(default=BLOCK_SIZE, init=False)

    def __post_init__(self) -> None:
        """Validate the key against the algorithm."""
        algorithm = CipherAlgorithm.parse(self.algorithm)
        object.__setattr__(self, "algorithm", algorithm)

        if not isinstance(self.key, (bytes, bytearray)):
            raise UnsupportedCipherOrKeyLength(algorithm.value)
        if len(self.key) != algorithm.key_size:
            raise UnsupportedCipherOrKeyLength(algorithm.value, len(self.key))
        object.__setattr__(self, "key", bytes(self.key))

    @property
    def key_size(self) -> int:
        """Get required key size in bytes."""
        return self.algorithm.key_size

    @staticmethod
    def supported(key: bytes, algorithm: CipherAlgorithm | str) -> bool:
        """Check whether the given key and cipher combination is valid."""
        try:
            parsed = CipherAlgorithm.parse(algorithm)
        except UnsupportedCipherOrKeyLength:
            return False
        return isinstance(key, (bytes, bytearray)) and len(key) == parsed.key_size

    @classmethod
    def from_config(cls, key: bytes | str, algorithm: CipherAlgorithm | str) -> "CipherSpec":
        """Build a spec from a presentation-encoded key.

        Args:
            key: Raw bytes, or a string optionally prefixed with ``base64:``.
            algorithm: Algorithm enum member or name.

        Returns:
            Validated cipher spec.
        """
        return cls(parse_key(key), CipherAlgorithm.parse(algorithm))


# =============================================================================
# Protocols
# =============================================================================


@runtime_checkable
class ByteSource(Protocol):
    """Readable, seekable byte stream of known length."""

    def read(self, max_bytes: int) -> bytes:
        """Read up to ``max_bytes`` bytes.

        Returning fewer bytes than requested is legal; returning no bytes
        signals end of stream.
        """
        ...

    def seek(self, offset: int) -> Any:
        """Move to an absolute byte offset."""
        ...

    def length(self) -> int:
        """Get the total stream length in bytes."""
        ...


@runtime_checkable
class ByteSink(Protocol):
    """Sequential, write-only byte stream."""

    def write(self, data: bytes) -> Any:
        """Persist all of ``data`` or raise."""
        ...


# =============================================================================
# Utility Functions
# =============================================================================


def parse_key(value: bytes | bytearray | str) -> bytes:
    """Decode a key from its presentation form.

    Strings starting with ``base64:`` are base64-decoded; other strings are
    taken as their UTF-8 bytes. Bytes are returned unchanged.

    Raises:
        ConfigurationError: If the base64 payload is malformed.
    """
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if value.startswith(BASE64_KEY_PREFIX):
        try:
            return base64.b64decode(value[len(BASE64_KEY_PREFIX):], validate=True)
        except (binascii.Error, ValueError) as e:
            raise ConfigurationError("Key has an invalid base64 payload") from e
    return value.encode("utf-8")


def format_key(key: bytes) -> str:
    """Encode raw key bytes in the ``base64:`` presentation form."""
    return BASE64_KEY_PREFIX + base64.b64encode(key).decode("ascii")


def generate_key(algorithm: CipherAlgorithm | str = CipherAlgorithm.AES_256_CBC) -> bytes:
    """Generate a cryptographically secure random key.

    Args:
        algorithm: Algorithm to generate key for.

    Returns:
        Random key bytes.
    """
    return os.urandom(CipherAlgorithm.parse(algorithm).key_size)


def generate_iv() -> bytes:
    """Generate a cryptographically secure random IV."""
    return os.urandom(BLOCK_SIZE)
