"""Mock implementations for storage backend testing.

This module provides in-memory stand-ins for the cloud clients, allowing
tests to run without network access or credentials.
"""

from tests.mocks.cloud_mocks import (
    MockS3Client,
    MockS3ResponseBody,
    create_mock_s3_client,
    s3_error,
)

__all__ = [
    "MockS3Client",
    "MockS3ResponseBody",
    "create_mock_s3_client",
    "s3_error",
]
