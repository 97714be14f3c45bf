"""Command-line interface for filevault."""

from __future__ import annotations

import functools
import logging
import traceback
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Callable, Optional, TypeVar

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from filevault.config import VaultConfig
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
    format_key,
)
from filevault.crypto.streaming import (
    CIPHER_CHUNK,
    HEADER_SIZE,
    cipher_chunk_count,
)
from filevault.disks import get_disk
from filevault.vault import FileVault, decrypted_name

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

app = typer.Typer(
    name="filevault",
    help="Streaming AES-CBC file encryption for local and S3 storage",
    add_completion=False,
)


# =============================================================================
# Error Handling
# =============================================================================


class ExitCode(Enum):
    """CLI exit codes."""

    GENERAL_ERROR = 1
    USAGE_ERROR = 2

    # File errors (10-19)
    SOURCE_NOT_READABLE = 10
    SINK_NOT_WRITABLE = 11
    IO_ERROR = 12
    STALLED_SOURCE = 13

    # Crypto errors (20-29)
    UNSUPPORTED_CIPHER = 20
    TRUNCATED_HEADER = 21
    DECRYPTION_FAILED = 22

    # Configuration errors (30-39)
    CONFIG_INVALID = 30
    DISK_ERROR = 31


_EXIT_CODES: list[tuple[type[VaultError], ExitCode, str | None]] = [
    (SourceOpenFailed, ExitCode.SOURCE_NOT_READABLE, "Check that the file exists."),
    (SinkOpenFailed, ExitCode.SINK_NOT_WRITABLE, None),
    (StalledSource, ExitCode.STALLED_SOURCE, "Increase FILE_VAULT_MAX_SHORT_READS."),
    (StreamIOError, ExitCode.IO_ERROR, None),
    (UnsupportedCipherOrKeyLength, ExitCode.UNSUPPORTED_CIPHER, "Generate a key with 'filevault generate-key'."),
    (TruncatedHeader, ExitCode.TRUNCATED_HEADER, "The file is not an encrypted vault file."),
    (DecryptionFailed, ExitCode.DECRYPTION_FAILED, "The key may be wrong or the file corrupted."),
    (ConfigurationError, ExitCode.CONFIG_INVALID, "Set FILE_VAULT_KEY or pass --key."),
    (DiskError, ExitCode.DISK_ERROR, None),
]


def exit_code_for(error: Exception) -> ExitCode:
    """Map an exception to its CLI exit code."""
    for error_type, code, _ in _EXIT_CODES:
        if isinstance(error, error_type):
            return code
    return ExitCode.GENERAL_ERROR


def handle_vault_error(func: F) -> F:
    """Turn vault errors raised by a command into a message and exit code."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except typer.Exit:
            raise
        except VaultError as e:
            typer.echo(typer.style(f"Error: {e}", fg="red"), err=True)
            for error_type, _, hint in _EXIT_CODES:
                if isinstance(e, error_type) and hint:
                    typer.echo(typer.style(f"Hint: {hint}", fg="yellow"), err=True)
                    break
            if logger.isEnabledFor(logging.DEBUG):
                typer.echo(traceback.format_exc(), err=True)
            raise typer.Exit(exit_code_for(e).value)

    return wrapper  # type: ignore[return-value]


# =============================================================================
# Shared Options
# =============================================================================

KeyOpt = Annotated[
    Optional[str],
    typer.Option("--key", "-k", help="Encryption key (prefix with 'base64:' for base64)"),
]
CipherOpt = Annotated[
    Optional[str],
    typer.Option("--cipher", "-c", help="Cipher: AES-128-CBC or AES-256-CBC"),
]
DiskOpt = Annotated[
    Optional[str],
    typer.Option("--disk", "-d", help="Storage disk (local, s3)"),
]
RootOpt = Annotated[
    Optional[str],
    typer.Option("--root", help="Root directory of the local disk"),
]
ConfigOpt = Annotated[
    Optional[Path],
    typer.Option("--config", help="YAML configuration file"),
]
VerboseOpt = Annotated[
    bool,
    typer.Option("--verbose", "-v", help="Show debug logging"),
]


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _build_vault(
    key: str | None,
    cipher: str | None,
    disk: str | None,
    root: str | None,
    config_file: Path | None,
) -> FileVault:
    config = VaultConfig.load(config_file, key=key, cipher=cipher, disk=disk, root=root)
    return FileVault(config)


# =============================================================================
# Commands
# =============================================================================


@app.command(name="generate-key")
@handle_vault_error
def generate_key_cmd(
    cipher: Annotated[
        str,
        typer.Option("--cipher", "-c", help="Cipher the key is for"),
    ] = "AES-256-CBC",
    raw_hex: Annotated[
        bool,
        typer.Option("--hex", help="Print the key as hex instead of base64"),
    ] = False,
) -> None:
    """Generate a random key for the given cipher."""
    key = FileVault.generate_key(cipher)
    typer.echo(key.hex() if raw_hex else format_key(key))


@app.command(name="encrypt")
@handle_vault_error
def encrypt_cmd(
    source: Annotated[str, typer.Argument(help="File to encrypt, relative to the disk")],
    dest: Annotated[
        Optional[str],
        typer.Option("--dest", "-o", help="Destination file (default: SOURCE.enc)"),
    ] = None,
    keep_source: Annotated[
        bool,
        typer.Option("--keep-source", help="Keep the plaintext file"),
    ] = False,
    key: KeyOpt = None,
    cipher: CipherOpt = None,
    disk: DiskOpt = None,
    root: RootOpt = None,
    config_file: ConfigOpt = None,
    verbose: VerboseOpt = False,
) -> None:
    """Encrypt a file."""
    _setup_logging(verbose)
    vault = _build_vault(key, cipher, disk, root, config_file)
    vault.encrypt(source, dest, delete_source=not keep_source)
    typer.echo(f"Encrypted {source} -> {dest or source + '.enc'}")


@app.command(name="decrypt")
@handle_vault_error
def decrypt_cmd(
    source: Annotated[str, typer.Argument(help="File to decrypt, relative to the disk")],
    dest: Annotated[
        Optional[str],
        typer.Option("--dest", "-o", help="Destination file (default: SOURCE without .enc)"),
    ] = None,
    keep_source: Annotated[
        bool,
        typer.Option("--keep-source", help="Keep the encrypted file"),
    ] = False,
    key: KeyOpt = None,
    cipher: CipherOpt = None,
    disk: DiskOpt = None,
    root: RootOpt = None,
    config_file: ConfigOpt = None,
    verbose: VerboseOpt = False,
) -> None:
    """Decrypt a file."""
    _setup_logging(verbose)
    vault = _build_vault(key, cipher, disk, root, config_file)
    vault.decrypt(source, dest, delete_source=not keep_source)
    typer.echo(f"Decrypted {source} -> {dest or decrypted_name(source)}")


@app.command(name="cat")
@handle_vault_error
def cat_cmd(
    source: Annotated[str, typer.Argument(help="Encrypted file to print")],
    key: KeyOpt = None,
    cipher: CipherOpt = None,
    disk: DiskOpt = None,
    root: RootOpt = None,
    config_file: ConfigOpt = None,
    verbose: VerboseOpt = False,
) -> None:
    """Decrypt a file to standard output."""
    _setup_logging(verbose)
    vault = _build_vault(key, cipher, disk, root, config_file)
    vault.stream_decrypt(source)


@app.command(name="info")
@handle_vault_error
def info_cmd(
    source: Annotated[str, typer.Argument(help="Encrypted file to inspect")],
    disk: DiskOpt = None,
    root: RootOpt = None,
    config_file: ConfigOpt = None,
) -> None:
    """Show the framing of an encrypted file without decrypting it."""
    config = VaultConfig.load(config_file, disk=disk, root=root)
    storage = get_disk(config)

    source_handle = storage.open_source(source)
    try:
        length = source_handle.length()
        iv = b""
        # Sources may return short reads
        while length >= HEADER_SIZE and len(iv) < HEADER_SIZE:
            data = source_handle.read(HEADER_SIZE - len(iv))
            if not data:
                break
            iv += data
    finally:
        source_handle.close()

    chunks = cipher_chunk_count(length)
    final_chunk = length - HEADER_SIZE - (chunks - 1) * CIPHER_CHUNK if chunks else 0

    table = Table(title=storage.path(source), show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Size", f"{length:,} bytes")
    table.add_row("IV", iv.hex() if len(iv) == HEADER_SIZE else "(truncated)")
    table.add_row("Chunks", str(chunks))
    table.add_row("Final chunk", f"{final_chunk:,} bytes")
    table.add_row("Block aligned", "yes" if (length - HEADER_SIZE) % 16 == 0 else "no")
    Console().print(table)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
