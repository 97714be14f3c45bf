"""Configuration for the file vault.

Settings are resolved from, in order of precedence:

    1. Explicit keyword arguments
    2. A YAML file (top level, or under a ``file_vault`` section)
    3. Environment variables

Environment Variables:
    FILE_VAULT_KEY: Encryption key (falls back to ``APP_KEY``). Prefix with
        ``base64:`` for base64-encoded keys.
    FILE_VAULT_CIPHER: ``AES-128-CBC`` or ``AES-256-CBC`` (default).
    FILE_VAULT_DISK: Default disk name (default ``local``).
    FILE_VAULT_ROOT: Root directory of the local disk.
    FILE_VAULT_S3_BUCKET / FILE_VAULT_S3_PREFIX / FILE_VAULT_S3_REGION /
    FILE_VAULT_S3_ENDPOINT_URL: S3 disk settings.
    FILE_VAULT_MAX_SHORT_READS: Consecutive short reads tolerated per chunk.

Example:
    >>> config = VaultConfig.load("vault.yaml", disk="s3")
    >>> spec = config.cipher_spec()
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Mapping

import yaml

from filevault.crypto.base import (
    CipherAlgorithm,
    CipherSpec,
    ConfigurationError,
    UnsupportedCipherOrKeyLength,
)
from filevault.crypto.streaming import DEFAULT_MAX_SHORT_READS
from filevault.streams import DEFAULT_PART_SIZE, MIN_PART_SIZE

ENV_PREFIX = "FILE_VAULT_"

# Environment variable -> config field
_ENV_FIELDS = {
    "KEY": "key",
    "CIPHER": "cipher",
    "DISK": "disk",
    "ROOT": "root",
    "S3_BUCKET": "bucket",
    "S3_PREFIX": "prefix",
    "S3_REGION": "region",
    "S3_ENDPOINT_URL": "endpoint_url",
    "MAX_SHORT_READS": "max_short_reads",
    "PART_SIZE": "part_size",
}

_INT_FIELDS = ("max_short_reads", "part_size")


@dataclass
class VaultConfig:
    """File vault configuration.

    Attributes:
        key: Encryption key as raw bytes or presentation string.
        cipher: Cipher algorithm name.
        disk: Default disk name.
        root: Root directory for the local disk.
        bucket: S3 bucket name for the s3 disk.
        prefix: S3 key prefix.
        region: AWS region name.
        endpoint_url: Custom S3 endpoint URL.
        max_short_reads: Consecutive short reads tolerated for one chunk.
        part_size: S3 multipart part size in bytes.
    """

    key: bytes | str | None = field(default=None, repr=False)
    cipher: str = CipherAlgorithm.AES_256_CBC.value
    disk: str = "local"
    root: str = "."
    bucket: str | None = None
    prefix: str = ""
    region: str | None = None
    endpoint_url: str | None = None
    max_short_reads: int = DEFAULT_MAX_SHORT_READS
    part_size: int = DEFAULT_PART_SIZE

    def validate(self) -> None:
        """Validate configuration values (the key is checked separately)."""
        try:
            CipherAlgorithm.parse(self.cipher)
        except UnsupportedCipherOrKeyLength as e:
            raise ConfigurationError(f"Unsupported cipher '{self.cipher}'") from e
        if self.max_short_reads < 0:
            raise ConfigurationError("max_short_reads must not be negative")
        if self.part_size < MIN_PART_SIZE:
            raise ConfigurationError("part_size must be at least 5MB")
        if self.disk.lower() == "s3" and not self.bucket:
            raise ConfigurationError("S3 bucket name is required for the s3 disk")

    @property
    def algorithm(self) -> CipherAlgorithm:
        """Get the configured cipher algorithm."""
        return CipherAlgorithm.parse(self.cipher)

    def cipher_spec(self) -> CipherSpec:
        """Build the validated cipher spec for the configured key.

        Raises:
            ConfigurationError: If no key is configured.
            UnsupportedCipherOrKeyLength: If the key does not fit the cipher.
        """
        if self.key is None or self.key in ("", b""):
            raise ConfigurationError(
                "No encryption key configured. Set FILE_VAULT_KEY or APP_KEY"
            )
        return CipherSpec.from_config(self.key, self.cipher)

    def with_overrides(self, **overrides: Any) -> "VaultConfig":
        """Return a copy with the non-None overrides applied."""
        known = {f.name for f in fields(self)}
        unknown = set(overrides) - known
        if unknown:
            raise ConfigurationError(f"Unknown config options: {', '.join(sorted(unknown))}")
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "VaultConfig":
        """Create configuration from a mapping, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        for name in _INT_FIELDS:
            if name in values and values[name] is not None:
                values[name] = _to_int(name, values[name])
        return cls(**values)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "VaultConfig":
        """Create configuration from environment variables."""
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}
        for suffix, name in _ENV_FIELDS.items():
            value = env.get(ENV_PREFIX + suffix)
            if value:
                values[name] = value
        if "key" not in values and env.get("APP_KEY"):
            values["key"] = env["APP_KEY"]
        return cls.from_dict(values)

    @classmethod
    def from_file(cls, path: str | Path) -> "VaultConfig":
        """Create configuration from a YAML file.

        Raises:
            ConfigurationError: If the file is missing or malformed.
        """
        return cls.from_dict(_read_yaml(path))

    @classmethod
    def load(
        cls,
        path: str | Path | None = None,
        environ: Mapping[str, str] | None = None,
        **overrides: Any,
    ) -> "VaultConfig":
        """Resolve configuration from overrides, file and environment.

        Args:
            path: Optional YAML config file.
            environ: Environment mapping (defaults to ``os.environ``).
            **overrides: Explicit values; ``None`` values are ignored.

        Returns:
            Validated configuration.
        """
        config = cls.from_env(environ)
        if path is not None:
            file_values = _read_yaml(path)
            parsed = cls.from_dict(file_values)
            known = {f.name for f in fields(cls)}
            config = config.with_overrides(
                **{name: getattr(parsed, name) for name in file_values if name in known}
            )
        config = config.with_overrides(**overrides)
        config.validate()
        return config


def _to_int(name: str, value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}") from e


def _read_yaml(path: str | Path) -> dict[str, Any]:
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigurationError(f"Cannot read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in config file {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")
    section = data.get("file_vault", data)
    if not isinstance(section, dict):
        raise ConfigurationError(f"'file_vault' section in {path} must be a mapping")
    return section
