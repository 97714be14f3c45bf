"""Storage disks for the file vault.

A disk is a named storage location that opens sources and sinks by relative
file name. Two disks are built in:

    - ``local``: a directory on the local filesystem
    - ``s3``: a bucket (and optional key prefix) in S3 or an S3-compatible
      service

New disks can be registered at runtime with ``register_disk``.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from filevault.crypto.base import ByteSink, ByteSource, DiskError
from filevault.streams import (
    DEFAULT_PART_SIZE,
    FileSink,
    FileSource,
    S3Sink,
    S3Source,
)

if TYPE_CHECKING:
    from filevault.config import VaultConfig

logger = logging.getLogger(__name__)


# =============================================================================
# Base Disk
# =============================================================================


class Disk(ABC):
    """Base class for storage disks."""

    name: str = "disk"

    @abstractmethod
    def path(self, file: str) -> str:
        """Get the backend location (path or URL) of a file."""
        ...

    @abstractmethod
    def open_source(self, file: str) -> ByteSource:
        """Open a file for reading."""
        ...

    @abstractmethod
    def open_sink(self, file: str) -> ByteSink:
        """Open a file for writing, replacing any existing content."""
        ...

    @abstractmethod
    def exists(self, file: str) -> bool:
        """Check whether a file exists."""
        ...

    @abstractmethod
    def delete(self, file: str) -> None:
        """Delete a file."""
        ...


# =============================================================================
# Local Disk
# =============================================================================


class LocalDisk(Disk):
    """Disk rooted at a local directory.

    Example:
        >>> disk = LocalDisk("storage/app")
        >>> disk.path("invoices/2024.pdf")
        'storage/app/invoices/2024.pdf'
    """

    name = "local"

    def __init__(self, root: str | Path = ".") -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def _resolve(self, file: str) -> Path:
        return self._root / file

    def path(self, file: str) -> str:
        return str(self._resolve(file))

    def open_source(self, file: str) -> FileSource:
        return FileSource(self._resolve(file))

    def open_sink(self, file: str) -> FileSink:
        return FileSink(self._resolve(file))

    def exists(self, file: str) -> bool:
        return self._resolve(file).is_file()

    def delete(self, file: str) -> None:
        try:
            self._resolve(file).unlink()
        except OSError as e:
            raise DiskError(f"Could not delete {self.path(file)}: {e}") from e
        logger.debug("Deleted %s", self.path(file))


# =============================================================================
# S3 Disk
# =============================================================================


class S3Disk(Disk):
    """Disk backed by an S3 bucket.

    Example:
        >>> disk = S3Disk(bucket="vault", prefix="uploads/", region="eu-west-1")
        >>> disk.path("report.pdf")
        's3://vault/uploads/report.pdf'
    """

    name = "s3"

    def __init__(
        self,
        bucket: str,
        prefix: str = "",
        client: Any = None,
        region: str | None = None,
        endpoint_url: str | None = None,
        part_size: int = DEFAULT_PART_SIZE,
    ) -> None:
        """Initialize the disk.

        Args:
            bucket: S3 bucket name.
            prefix: Key prefix prepended to every file name.
            client: Existing boto3 S3 client (created lazily if omitted).
            region: AWS region name.
            endpoint_url: Custom endpoint URL (for MinIO, LocalStack, etc.).
            part_size: Multipart upload part size for sinks.
        """
        if not bucket:
            raise DiskError("S3 bucket name is required")
        self._bucket = bucket
        self._prefix = prefix
        self._client = client
        self._region = region
        self._endpoint_url = endpoint_url
        self._part_size = part_size

    @property
    def bucket(self) -> str:
        return self._bucket

    @property
    def client(self) -> Any:
        """Get the S3 client, creating it on first use."""
        if self._client is None:
            session_kwargs: dict[str, Any] = {}
            if self._region:
                session_kwargs["region_name"] = self._region

            client_kwargs: dict[str, Any] = {}
            if self._endpoint_url:
                client_kwargs["endpoint_url"] = self._endpoint_url

            self._client = boto3.client("s3", **session_kwargs, **client_kwargs)
        return self._client

    def key(self, file: str) -> str:
        """Get the object key for a file name."""
        if not self._prefix:
            return file
        return f"{self._prefix.rstrip('/')}/{file.lstrip('/')}"

    def path(self, file: str) -> str:
        return f"s3://{self._bucket}/{self.key(file)}"

    def open_source(self, file: str) -> S3Source:
        return S3Source(self.client, self._bucket, self.key(file))

    def open_sink(self, file: str) -> S3Sink:
        return S3Sink(self.client, self._bucket, self.key(file), part_size=self._part_size)

    def exists(self, file: str) -> bool:
        try:
            self.client.head_object(Bucket=self._bucket, Key=self.key(file))
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            if code in ("404", "NoSuchKey", "NotFound"):
                return False
            raise DiskError(f"Could not stat {self.path(file)}: {e}") from e
        return True

    def delete(self, file: str) -> None:
        try:
            self.client.delete_object(Bucket=self._bucket, Key=self.key(file))
        except (ClientError, BotoCoreError) as e:
            raise DiskError(f"Could not delete {self.path(file)}: {e}") from e
        logger.debug("Deleted %s", self.path(file))


# =============================================================================
# Factory
# =============================================================================

# Type for disk constructor functions
DiskConstructor = Callable[["VaultConfig"], Disk]

# Registry of disk constructors
_disk_registry: dict[str, DiskConstructor] = {}


def register_disk(name: str) -> Callable[[DiskConstructor], DiskConstructor]:
    """Decorator to register a disk constructor.

    Args:
        name: Name to register the disk under.

    Returns:
        Decorator function.

    Example:
        >>> @register_disk("memory")
        ... def _memory_disk(config):
        ...     return MemoryDisk()
    """

    def decorator(factory: DiskConstructor) -> DiskConstructor:
        _disk_registry[name.lower()] = factory
        return factory

    return decorator


@register_disk("local")
def _local_disk(config: "VaultConfig") -> Disk:
    return LocalDisk(config.root)


@register_disk("s3")
def _s3_disk(config: "VaultConfig") -> Disk:
    return S3Disk(
        bucket=config.bucket or "",
        prefix=config.prefix,
        region=config.region,
        endpoint_url=config.endpoint_url,
        part_size=config.part_size,
    )


def list_disks() -> list[str]:
    """List registered disk names."""
    return sorted(_disk_registry)


def get_disk(config: "VaultConfig", name: str | None = None) -> Disk:
    """Create the disk selected by a configuration.

    Args:
        config: Vault configuration with the disk settings.
        name: Disk name overriding ``config.disk``.

    Returns:
        Configured disk.

    Raises:
        DiskError: If no disk is registered under the name.
    """
    disk_name = (name or config.disk).lower().strip()
    factory = _disk_registry.get(disk_name)
    if factory is None:
        raise DiskError(
            f"Unknown disk '{disk_name}'. Available: {', '.join(list_disks())}"
        )
    return factory(config)
