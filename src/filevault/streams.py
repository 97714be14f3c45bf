"""Source and sink adapters for the stream codec.

This module adapts concrete storage handles to the minimal ``ByteSource``
and ``ByteSink`` capabilities the codec consumes:

    - ``FileSource`` / ``FileSink`` for local paths and binary file objects
    - ``S3Source`` for ranged reads of an S3 object
    - ``S3Sink`` for multipart uploads to S3

Backend failures are translated into the vault exception hierarchy at this
boundary, so the codec only ever sees ``VaultError`` subclasses.
"""

from __future__ import annotations

import io
import logging
import os
from pathlib import Path
from typing import Any, BinaryIO

from botocore.exceptions import BotoCoreError, ClientError

from filevault.crypto.base import (
    SinkOpenFailed,
    SourceOpenFailed,
    StreamIOError,
)

logger = logging.getLogger(__name__)

#: Smallest part size S3 accepts for all but the last multipart part.
MIN_PART_SIZE = 5 * 1024 * 1024
DEFAULT_PART_SIZE = 8 * 1024 * 1024


def _error_code(error: ClientError) -> str:
    """Extract the S3 error code from a client error."""
    return error.response.get("Error", {}).get("Code", "Unknown")


# =============================================================================
# Local Files
# =============================================================================


class FileSource:
    """Seekable source over a local path or binary file object.

    Example:
        >>> with FileSource("archive.tar") as src:
        ...     src.length()
        10240
    """

    def __init__(self, source: str | Path | BinaryIO) -> None:
        """Initialize the source.

        Args:
            source: Path to open, or an already open binary file object.
                Handles passed in are not closed by this adapter.

        Raises:
            SourceOpenFailed: If the path cannot be opened for reading.
        """
        if isinstance(source, (str, Path)):
            try:
                self._file: BinaryIO = open(source, "rb")
            except OSError as e:
                raise SourceOpenFailed(f"Cannot open file for reading: {source}") from e
            self._owns_file = True
            self.name = str(source)
        else:
            self._file = source
            self._owns_file = False
            self.name = getattr(source, "name", "<stream>")
        self._length: int | None = None

    def length(self) -> int:
        """Get the total length of the underlying file."""
        if self._length is None:
            try:
                self._length = os.fstat(self._file.fileno()).st_size
            except (OSError, AttributeError, ValueError, io.UnsupportedOperation):
                position = self._file.tell()
                self._length = self._file.seek(0, os.SEEK_END)
                self._file.seek(position)
        return self._length

    def read(self, max_bytes: int) -> bytes:
        """Read up to ``max_bytes`` bytes."""
        try:
            return self._file.read(max_bytes) or b""
        except OSError as e:
            raise StreamIOError(f"Read from {self.name} failed: {e}") from e

    def seek(self, offset: int) -> int:
        """Move to an absolute offset."""
        try:
            return self._file.seek(offset)
        except OSError as e:
            raise StreamIOError(f"Seek in {self.name} failed: {e}") from e

    def close(self) -> None:
        """Close the file if this adapter opened it."""
        if self._owns_file:
            self._file.close()

    def __enter__(self) -> "FileSource":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


class FileSink:
    """Sequential sink over a local path or binary file object.

    Paths are truncated on open. Every ``write`` persists all bytes it is
    given, looping over partial writes of unbuffered handles.
    """

    def __init__(self, sink: str | Path | BinaryIO, create_dirs: bool = True) -> None:
        """Initialize the sink.

        Args:
            sink: Path to create/truncate, or an open binary file object.
            create_dirs: Create missing parent directories for paths.

        Raises:
            SinkOpenFailed: If the path cannot be opened for writing.
        """
        if isinstance(sink, (str, Path)):
            path = Path(sink)
            try:
                if create_dirs:
                    path.parent.mkdir(parents=True, exist_ok=True)
                self._file: BinaryIO = open(path, "wb")
            except OSError as e:
                raise SinkOpenFailed(f"Cannot open file for writing: {sink}") from e
            self._owns_file = True
            self.name = str(sink)
        else:
            self._file = sink
            self._owns_file = False
            self.name = getattr(sink, "name", "<stream>")
        self.bytes_written = 0

    def write(self, data: bytes) -> int:
        """Write all of ``data``."""
        view = memoryview(data)
        try:
            while view:
                written = self._file.write(view)
                if written is None:
                    raise StreamIOError(
                        f"Write to {self.name} would block with {len(view)} bytes pending"
                    )
                view = view[written:]
        except OSError as e:
            raise StreamIOError(f"Write to {self.name} failed: {e}") from e
        self.bytes_written += len(data)
        return len(data)

    def flush(self) -> None:
        """Flush the underlying file."""
        try:
            self._file.flush()
        except OSError as e:
            raise StreamIOError(f"Flush of {self.name} failed: {e}") from e

    def close(self) -> None:
        """Flush, and close the file if this adapter opened it."""
        if self._file.closed:
            return
        try:
            self.flush()
        finally:
            if self._owns_file:
                try:
                    self._file.close()
                except OSError as e:
                    raise StreamIOError(f"Close of {self.name} failed: {e}") from e

    def __enter__(self) -> "FileSink":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


# =============================================================================
# S3 Objects
# =============================================================================


class S3Source:
    """Seekable source over an S3 object using ranged GET requests.

    Each ``read`` issues one ``get_object`` call for the requested byte
    range. S3 may return fewer bytes than asked for; those short reads are
    passed through unchanged for the codec to retry.

    Example:
        >>> client = boto3.client("s3")
        >>> src = S3Source(client, "my-bucket", "uploads/report.pdf.enc")
        >>> src.length()
        20496
    """

    def __init__(self, client: Any, bucket: str, key: str) -> None:
        """Initialize the source and fetch the object size.

        Args:
            client: Boto3 S3 client.
            bucket: Bucket name.
            key: Object key.

        Raises:
            SourceOpenFailed: If the object does not exist or is not accessible.
        """
        self._s3 = client
        self._bucket = bucket
        self._key = key
        self._position = 0
        self.name = f"s3://{bucket}/{key}"

        try:
            response = self._s3.head_object(Bucket=bucket, Key=key)
        except ClientError as e:
            code = _error_code(e)
            if code in ("404", "NoSuchKey", "NotFound"):
                raise SourceOpenFailed(f"Object not found: {self.name}") from e
            if code in ("403", "AccessDenied"):
                raise SourceOpenFailed(f"Access denied to object: {self.name}") from e
            raise SourceOpenFailed(f"Cannot open {self.name}: {e}") from e
        except BotoCoreError as e:
            raise SourceOpenFailed(f"Cannot open {self.name}: {e}") from e
        self._length = int(response["ContentLength"])

    def length(self) -> int:
        """Get the object size in bytes."""
        return self._length

    def read(self, max_bytes: int) -> bytes:
        """Read up to ``max_bytes`` bytes from the current position."""
        if max_bytes <= 0 or self._position >= self._length:
            return b""

        last = min(self._position + max_bytes, self._length) - 1
        try:
            response = self._s3.get_object(
                Bucket=self._bucket,
                Key=self._key,
                Range=f"bytes={self._position}-{last}",
            )
            body = response["Body"]
            try:
                data = body.read()
            finally:
                close = getattr(body, "close", None)
                if close is not None:
                    close()
        except ClientError as e:
            if _error_code(e) == "InvalidRange":
                return b""
            raise StreamIOError(f"Read from {self.name} failed: {e}") from e
        except BotoCoreError as e:
            raise StreamIOError(f"Read from {self.name} failed: {e}") from e

        self._position += len(data)
        return data

    def seek(self, offset: int) -> int:
        """Move to an absolute offset."""
        if offset < 0:
            raise StreamIOError(f"Negative seek offset {offset} in {self.name}")
        self._position = offset
        return offset

    def close(self) -> None:
        """Nothing to release; ranged reads hold no open connection."""

    def __enter__(self) -> "S3Source":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


class S3Sink:
    """Sequential sink that streams into an S3 object via multipart upload.

    At most one part is buffered in memory. If the stream ends before a full
    part was collected, the object is written with a single ``put_object``.
    The object only becomes visible once ``close()`` completes the upload.
    """

    def __init__(
        self,
        client: Any,
        bucket: str,
        key: str,
        part_size: int = DEFAULT_PART_SIZE,
        content_type: str = "application/octet-stream",
    ) -> None:
        """Initialize the sink.

        Args:
            client: Boto3 S3 client.
            bucket: Bucket name.
            key: Object key to create or replace.
            part_size: Multipart part size in bytes (at least 5 MiB).
            content_type: Content type stored with the object.
        """
        if part_size < MIN_PART_SIZE:
            raise ValueError("part_size must be at least 5MB")
        self._s3 = client
        self._bucket = bucket
        self._key = key
        self._part_size = part_size
        self._content_type = content_type
        self._buffer = bytearray()
        self._upload_id: str | None = None
        self._parts: list[dict[str, Any]] = []
        self._closed = False
        self.bytes_written = 0
        self.name = f"s3://{bucket}/{key}"

    def _start_upload(self) -> None:
        try:
            response = self._s3.create_multipart_upload(
                Bucket=self._bucket,
                Key=self._key,
                ContentType=self._content_type,
            )
        except (ClientError, BotoCoreError) as e:
            raise SinkOpenFailed(f"Cannot start upload to {self.name}: {e}") from e
        self._upload_id = response["UploadId"]

    def _upload_part(self, data: bytes) -> None:
        if self._upload_id is None:
            self._start_upload()

        part_number = len(self._parts) + 1
        try:
            response = self._s3.upload_part(
                Bucket=self._bucket,
                Key=self._key,
                UploadId=self._upload_id,
                PartNumber=part_number,
                Body=data,
            )
        except (ClientError, BotoCoreError) as e:
            raise StreamIOError(
                f"Upload of part {part_number} to {self.name} failed: {e}"
            ) from e
        self._parts.append({"PartNumber": part_number, "ETag": response["ETag"]})

    def write(self, data: bytes) -> int:
        """Buffer ``data`` and upload every completed part."""
        if self._closed:
            raise StreamIOError(f"Cannot write to closed sink {self.name}")

        self._buffer.extend(data)
        while len(self._buffer) >= self._part_size:
            part = bytes(self._buffer[: self._part_size])
            del self._buffer[: self._part_size]
            self._upload_part(part)

        self.bytes_written += len(data)
        return len(data)

    def close(self) -> None:
        """Flush the last part and complete the upload."""
        if self._closed:
            return

        try:
            if self._upload_id is None:
                self._s3.put_object(
                    Bucket=self._bucket,
                    Key=self._key,
                    Body=bytes(self._buffer),
                    ContentType=self._content_type,
                )
            else:
                if self._buffer:
                    self._upload_part(bytes(self._buffer))
                self._s3.complete_multipart_upload(
                    Bucket=self._bucket,
                    Key=self._key,
                    UploadId=self._upload_id,
                    MultipartUpload={"Parts": self._parts},
                )
        except (ClientError, BotoCoreError) as e:
            self.abort()
            raise StreamIOError(f"Could not finish upload to {self.name}: {e}") from e
        except StreamIOError:
            self.abort()
            raise

        self._buffer.clear()
        self._closed = True
        logger.debug("Uploaded %d bytes to %s", self.bytes_written, self.name)

    def abort(self) -> None:
        """Discard buffered data and abort any started multipart upload."""
        self._buffer.clear()
        self._closed = True
        if self._upload_id is None:
            return
        try:
            self._s3.abort_multipart_upload(
                Bucket=self._bucket,
                Key=self._key,
                UploadId=self._upload_id,
            )
        except (ClientError, BotoCoreError) as e:
            logger.warning("Failed to abort upload to %s: %s", self.name, e)
        self._upload_id = None

    def __enter__(self) -> "S3Sink":
        return self

    def __exit__(self, exc_type: Any, *args: Any) -> None:
        if exc_type is not None:
            self.abort()
        else:
            self.close()
