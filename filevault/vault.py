"""
FileVault — Encrypt and decrypt files on any configured disk.

Provides the public API:
- ``encrypt(source, destination)`` / ``encrypt_copy(...)``
- ``decrypt(source, destination)`` / ``decrypt_copy(...)``
- ``stream_decrypt(source, output)`` — plaintext straight into a live stream
- ``iter_decrypt(source)`` — plaintext as an iterator of chunks
- ``with_options(disk=..., key=..., cipher=...)`` — derived vault

Each call works on an immutable configuration; nothing set on one call leaks
into another.

Security Note:
    Never log keys or plaintext. Only log logical ids, disks and byte counts.
"""
import sys
import enum
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import BinaryIO, Iterator, Optional

from .backends import AccessDescriptor, Backend, BackendResolver, LocalPath
from .config import VaultConfig
from .crypto import (
    CipherSpec,
    TransformStats,
    decrypt_stream,
    encrypt_stream,
    generate_key,
    get_cipher,
    iter_decrypt,
)
from .exceptions import ConfigurationError, PostConditionError, TransformIOError

logger = logging.getLogger("filevault")

ENCRYPTED_SUFFIX = ".enc"
DECRYPTED_SUFFIX = ".dec"


def encrypted_name(source: str) -> str:
    """Default destination for encrypting ``source``."""
    return f"{source}{ENCRYPTED_SUFFIX}"


def decrypted_name(source: str) -> str:
    """Default destination for decrypting ``source``.

    Strips a trailing ``.enc``; otherwise appends ``.dec``.
    """
    if source.endswith(ENCRYPTED_SUFFIX) and len(source) > len(ENCRYPTED_SUFFIX):
        return source[:-len(ENCRYPTED_SUFFIX)]
    return f"{source}{DECRYPTED_SUFFIX}"


class TransformMode(str, enum.Enum):
    ENCRYPT = "encrypt"
    DECRYPT = "decrypt"


@dataclass(frozen=True)
class Operation:
    """One encrypt/decrypt request."""

    mode: TransformMode
    source: str
    destination: str
    key: bytes
    cipher: CipherSpec
    disk: str
    delete_source: bool = True
    chunk_size: Optional[int] = None

    def __repr__(self) -> str:
        return (
            f"Operation(mode={self.mode.value}, source={self.source!r}, "
            f"destination={self.destination!r}, cipher={self.cipher.name}, "
            f"disk={self.disk!r}, delete_source={self.delete_source})"
        )


@dataclass(frozen=True)
class TransformResult:
    """Outcome of a completed transform."""

    operation: Operation
    source: AccessDescriptor
    destination: AccessDescriptor
    stats: TransformStats
    source_deleted: bool = False
    cleanup_error: Optional[PostConditionError] = None

    @property
    def ok(self) -> bool:
        """True when the transform and any requested cleanup both succeeded."""
        return self.cleanup_error is None


class FileVault:
    """Keyed file encryption on top of pluggable storage disks.

    The transform itself only sees binary streams; disks are resolved to
    access descriptors and prepared (once per backend) before any stream is
    opened, so configuration and credential problems never leave a partial
    destination behind.
    """

    def __init__(
        self,
        config: Optional[VaultConfig] = None,
        resolver: Optional[BackendResolver] = None,
    ):
        self.config = config or VaultConfig()
        self.resolver = resolver or BackendResolver(self.config)

    def __repr__(self) -> str:
        return f"<FileVault disk={self.config.disk!r} cipher={self.config.cipher}>"

    @classmethod
    def from_env(cls) -> "FileVault":
        return cls(VaultConfig.from_env())

    def with_options(
        self,
        disk: Optional[str] = None,
        key: Optional[bytes] = None,
        cipher: Optional[str] = None,
    ) -> "FileVault":
        """Return a vault using another disk, key or cipher.

        The resolver, and therefore prepared backends, is shared.

        Raises:
            ConfigurationError: If the combination is invalid.
        """
        config = self.config.replace(disk=disk, key=key, cipher=cipher)
        return type(self)(config, self.resolver)

    def generate_key(self, cipher: Optional[str] = None) -> bytes:
        """Create a random key sized for ``cipher`` (default: configured cipher)."""
        return generate_key(cipher or self.config.cipher)

    # ------------------------------------------------------------------
    # Operation plumbing
    # ------------------------------------------------------------------

    def _operation(
        self,
        mode: TransformMode,
        source: str,
        destination: Optional[str],
        delete_source: bool,
        disk: Optional[str],
        key: Optional[bytes],
    ) -> Operation:
        if destination is None:
            destination = (
                encrypted_name(source) if mode is TransformMode.ENCRYPT
                else decrypted_name(source)
            )
        cipher = self.config.cipher_spec
        return Operation(
            mode=mode,
            source=source,
            destination=destination,
            key=cipher.check_key(key if key is not None else self.config.key),
            cipher=cipher,
            disk=disk or self.config.disk,
            delete_source=delete_source,
            chunk_size=cipher.check_chunk_size(self.config.effective_chunk_size),
        )

    def _backend(self, disk: str) -> Backend:
        backend = self.resolver.get(disk)
        backend.prepare()
        return backend

    def transform(self, operation: Operation) -> TransformResult:
        """Run ``operation`` and apply its delete-on-success policy.

        Raises:
            ConfigurationError: Unknown disk, bad key, or a destination that is
                the source itself; raised before any I/O.
            ResolutionError: Backend could not be prepared, before any I/O.
            TransformIOError: A stream failed; the destination is incomplete.
            CryptoError: Decryption failed; the destination is incomplete.
        """
        cipher = get_cipher(operation.cipher)
        cipher.check_key(operation.key)
        backend = self._backend(operation.disk)
        source = backend.resolve(operation.source)
        destination = backend.resolve(operation.destination)
        if _same_target(source, destination):
            raise ConfigurationError(
                f"Source and destination are the same file: {source.uri}"
            )
        logger.debug(
            "%s %s -> %s", operation.mode.value, source.uri, destination.uri,
        )
        run = encrypt_stream if operation.mode is TransformMode.ENCRYPT else decrypt_stream
        with _stream_errors():
            with source.open("rb") as fin, destination.open("wb") as fout:
                stats = run(fin, fout, operation.key, cipher, operation.chunk_size)

        logger.info(
            "%sed %s on disk %s (%d bytes in, %d bytes out)",
            operation.mode.value.capitalize(), operation.source, operation.disk,
            stats.bytes_read, stats.bytes_written,
        )
        deleted, cleanup_error = False, None
        if operation.delete_source:
            deleted, cleanup_error = self._delete_source(backend, operation.source)
        return TransformResult(
            operation=operation,
            source=source,
            destination=destination,
            stats=stats,
            source_deleted=deleted,
            cleanup_error=cleanup_error,
        )

    def _delete_source(
        self, backend: Backend, source: str,
    ) -> tuple[bool, Optional[PostConditionError]]:
        try:
            backend.delete(source)
        except OSError as err:
            logger.warning(
                "Transform succeeded but deleting source %s on disk %s failed: %s",
                source, backend.name, err,
            )
            error = PostConditionError(
                f"Could not delete source {source!r}: {err}", source,
            )
            error.__cause__ = err
            return False, error
        return True, None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def encrypt(
        self,
        source: str,
        destination: Optional[str] = None,
        delete_source: bool = True,
        *,
        disk: Optional[str] = None,
        key: Optional[bytes] = None,
    ) -> TransformResult:
        """Encrypt ``source`` into ``destination`` (default ``<source>.enc``).

        Args:
            source: Logical id of the plaintext file on the disk.
            destination: Logical id to write the envelope to.
            delete_source: Remove ``source`` after a successful transform.
            disk: Disk name; defaults to the configured disk.
            key: Key override for this call.

        Returns:
            TransformResult; check ``cleanup_error`` for deletion failures.
        """
        return self.transform(self._operation(
            TransformMode.ENCRYPT, source, destination, delete_source, disk, key,
        ))

    def encrypt_copy(
        self,
        source: str,
        destination: Optional[str] = None,
        *,
        disk: Optional[str] = None,
        key: Optional[bytes] = None,
    ) -> TransformResult:
        """Encrypt ``source`` and keep it."""
        return self.encrypt(source, destination, False, disk=disk, key=key)

    def decrypt(
        self,
        source: str,
        destination: Optional[str] = None,
        delete_source: bool = True,
        *,
        disk: Optional[str] = None,
        key: Optional[bytes] = None,
    ) -> TransformResult:
        """Decrypt ``source`` into ``destination``.

        The default destination drops a trailing ``.enc`` or, failing that,
        appends ``.dec``.
        """
        return self.transform(self._operation(
            TransformMode.DECRYPT, source, destination, delete_source, disk, key,
        ))

    def decrypt_copy(
        self,
        source: str,
        destination: Optional[str] = None,
        *,
        disk: Optional[str] = None,
        key: Optional[bytes] = None,
    ) -> TransformResult:
        """Decrypt ``source`` and keep it."""
        return self.decrypt(source, destination, False, disk=disk, key=key)

    def stream_decrypt(
        self,
        source: str,
        output: Optional[BinaryIO] = None,
        *,
        disk: Optional[str] = None,
        key: Optional[bytes] = None,
    ) -> TransformStats:
        """Decrypt ``source`` into ``output`` (default: standard output).

        Returns:
            Bytes read from the envelope and plaintext bytes written.
        """
        if output is None:
            output = sys.stdout.buffer
        operation = self._operation(
            TransformMode.DECRYPT, source, "", False, disk, key,
        )
        descriptor = self._backend(operation.disk).resolve(source)
        with _stream_errors():
            with descriptor.open("rb") as fin:
                stats = decrypt_stream(
                    fin, output, operation.key, operation.cipher, operation.chunk_size,
                )
            output.flush()
        return stats

    def iter_decrypt(
        self,
        source: str,
        *,
        disk: Optional[str] = None,
        key: Optional[bytes] = None,
    ) -> Iterator[bytes]:
        """Return an iterator over the plaintext of ``source``.

        Validation, backend preparation and resolution happen immediately;
        the stream is opened on first iteration and closed when the iterator
        is exhausted or closed.
        """
        operation = self._operation(
            TransformMode.DECRYPT, source, "", False, disk, key,
        )
        descriptor = self._backend(operation.disk).resolve(source)
        return _iter_plaintext(descriptor, operation)


@contextmanager
def _stream_errors() -> Iterator[None]:
    """Report stream open/close failures as TransformIOError."""
    try:
        yield
    except TransformIOError:
        raise
    except OSError as err:
        raise TransformIOError(str(err)) from err


def _iter_plaintext(descriptor: AccessDescriptor, operation: Operation) -> Iterator[bytes]:
    with _stream_errors():
        with descriptor.open("rb") as fin:
            yield from iter_decrypt(
                fin, operation.key, operation.cipher, operation.chunk_size,
            )


def _same_target(first: AccessDescriptor, second: AccessDescriptor) -> bool:
    if isinstance(first, LocalPath) and isinstance(second, LocalPath):
        return first.path.resolve() == second.path.resolve()
    return first == second
