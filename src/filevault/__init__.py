"""filevault - Streaming AES-CBC encryption for files of any size."""

from filevault.config import VaultConfig
from filevault.crypto import (
    CipherAlgorithm,
    CipherSpec,
    StreamCodec,
    StreamingMetrics,
    generate_key,
)
from filevault.crypto.base import (
    ConfigurationError,
    DecryptionFailed,
    DiskError,
    SinkOpenFailed,
    SourceOpenFailed,
    StalledSource,
    StreamIOError,
    TruncatedHeader,
    UnsupportedCipherOrKeyLength,
    VaultError,
)
from filevault.disks import Disk, LocalDisk, S3Disk, get_disk, register_disk
from filevault.streams import FileSink, FileSource, S3Sink, S3Source
from filevault.vault import FileVault

# Version: Single source of truth from pyproject.toml
try:
    from importlib.metadata import version, PackageNotFoundError

    __version__ = version("filevault")
except PackageNotFoundError:
    # Package not installed (development mode)
    __version__ = "0.0.0.dev"

__all__ = [
    # Facade
    "FileVault",
    "VaultConfig",
    # Codec
    "CipherAlgorithm",
    "CipherSpec",
    "StreamCodec",
    "StreamingMetrics",
    "generate_key",
    # Streams
    "FileSource",
    "FileSink",
    "S3Source",
    "S3Sink",
    # Disks
    "Disk",
    "LocalDisk",
    "S3Disk",
    "get_disk",
    "register_disk",
    # Errors
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
    "__version__",
]
