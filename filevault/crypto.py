"""
FileVault Crypto Core — Cipher selection, key generation, and the streaming
block-cipher transform engine.

Envelope format produced by encryption:
    [IV (iv_length bytes, plain)][CBC ciphertext, PKCS7-padded at the end]

There is no header, magic or length field; the reader must know the cipher
out of band.

Security Note:
    CBC without a MAC gives confidentiality only. A wrong key or tampered
    ciphertext is detected indirectly, through padding validation, and not
    reliably. Never log key material or plaintext.
"""
import os
import secrets
import logging
from dataclasses import dataclass
from typing import BinaryIO, Iterator

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from .exceptions import (
    ConfigurationError,
    CryptoError,
    MalformedInputError,
    TransformIOError,
)

logger = logging.getLogger("filevault")

FILE_ENCRYPTION_BLOCKS = 10000
DEFAULT_CIPHER = "AES-128-CBC"


@dataclass(frozen=True)
class CipherSpec:
    """Parameters of a CBC block cipher."""

    name: str
    key_length: int
    iv_length: int
    block_size: int
    algorithm: type = algorithms.AES

    @property
    def default_chunk_size(self) -> int:
        return self.block_size * FILE_ENCRYPTION_BLOCKS

    def check_key(self, key: bytes) -> bytes:
        """Ensure ``key`` fits this cipher.

        Raises:
            ConfigurationError: If the key is missing or has the wrong length.
        """
        if not key:
            raise ConfigurationError(f"No encryption key set for {self.name}")
        if len(key) != self.key_length:
            raise ConfigurationError(
                f"{self.name} requires a {self.key_length}-byte key, "
                f"got {len(key)} bytes"
            )
        return key

    def check_chunk_size(self, chunk_size: int) -> int:
        """Ensure chunk boundaries never split a cipher block."""
        if chunk_size <= 0 or chunk_size % self.block_size:
            raise ConfigurationError(
                f"chunk_size must be a positive multiple of {self.block_size}, "
                f"got {chunk_size}"
            )
        return chunk_size

    def _context(self, key: bytes, iv: bytes) -> Cipher:
        return Cipher(self.algorithm(key), modes.CBC(iv))

    def _padding(self) -> padding.PKCS7:
        return padding.PKCS7(self.block_size * 8)


CIPHERS: dict[str, CipherSpec] = {
    "AES-128-CBC": CipherSpec("AES-128-CBC", key_length=16, iv_length=16, block_size=16),
    "AES-192-CBC": CipherSpec("AES-192-CBC", key_length=24, iv_length=16, block_size=16),
    "AES-256-CBC": CipherSpec("AES-256-CBC", key_length=32, iv_length=16, block_size=16),
}


def get_cipher(cipher: "str | CipherSpec") -> CipherSpec:
    """Look up a cipher by name (case-insensitive).

    Raises:
        ConfigurationError: If the cipher is not supported.
    """
    if isinstance(cipher, CipherSpec):
        return cipher
    try:
        return CIPHERS[cipher.upper()]
    except (KeyError, AttributeError):
        raise ConfigurationError(
            f"Unsupported cipher: {cipher!r} (supported: {sorted(CIPHERS)})"
        ) from None


# ---------------------------------------------------------------------------
# Key generation
# ---------------------------------------------------------------------------

def generate_key(cipher: "str | CipherSpec" = DEFAULT_CIPHER) -> bytes:
    """Generate a random key sized for ``cipher``.

    Args:
        cipher: Cipher name or spec; decides the key length.

    Returns:
        ``key_length`` random bytes.
    """
    return secrets.token_bytes(get_cipher(cipher).key_length)


# ---------------------------------------------------------------------------
# Stream helpers
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TransformStats:
    bytes_read: int
    bytes_written: int


def _read(stream: BinaryIO, size: int) -> bytes:
    try:
        return stream.read(size) or b""
    except OSError as err:
        raise TransformIOError(f"Failed to read source stream: {err}") from err


def _read_exact(stream: BinaryIO, size: int) -> bytes:
    """Read ``size`` bytes, tolerating short reads from remote streams."""
    data = b""
    while len(data) < size:
        piece = _read(stream, size - len(data))
        if not piece:
            break
        data += piece
    return data


def _write(stream: BinaryIO, data: bytes) -> int:
    if not data:
        return 0
    try:
        stream.write(data)
    except OSError as err:
        raise TransformIOError(f"Failed to write destination stream: {err}") from err
    return len(data)


def _prepare(key: bytes, cipher, chunk_size) -> tuple[CipherSpec, int]:
    spec = get_cipher(cipher)
    spec.check_key(key)
    if chunk_size is None:
        chunk_size = spec.default_chunk_size
    return spec, spec.check_chunk_size(chunk_size)


# ---------------------------------------------------------------------------
# Encryption
# ---------------------------------------------------------------------------

def iter_encrypt(
    source: BinaryIO,
    key: bytes,
    cipher: "str | CipherSpec" = DEFAULT_CIPHER,
    chunk_size: "int | None" = None,
) -> Iterator[bytes]:
    """Encrypt ``source`` chunk by chunk.

    The first item is the raw IV. Every following item is the ciphertext
    for one plaintext chunk; the last item carries the PKCS7 padding, so the
    total ciphertext length is always a multiple of the block size.

    Args:
        source: Readable binary stream of plaintext.
        key: Raw key of ``cipher.key_length`` bytes.
        cipher: Cipher name or spec.
        chunk_size: Plaintext bytes read per step (multiple of block size).

    Raises:
        ConfigurationError: On key or chunk size mismatch.
        TransformIOError: If reading ``source`` fails.
    """
    spec, chunk_size = _prepare(key, cipher, chunk_size)
    iv = os.urandom(spec.iv_length)
    encryptor = spec._context(key, iv).encryptor()
    padder = spec._padding().padder()
    yield iv
    while True:
        chunk = _read(source, chunk_size)
        if not chunk:
            break
        yield encryptor.update(padder.update(chunk))
    yield encryptor.update(padder.finalize()) + encryptor.finalize()


def encrypt_stream(
    source: BinaryIO,
    dest: BinaryIO,
    key: bytes,
    cipher: "str | CipherSpec" = DEFAULT_CIPHER,
    chunk_size: "int | None" = None,
) -> TransformStats:
    """Encrypt ``source`` into ``dest``, writing each chunk as produced.

    Returns:
        Plaintext bytes read and envelope bytes written.

    Raises:
        ConfigurationError: On key or chunk size mismatch.
        TransformIOError: If reading or writing fails; ``dest`` is then
            incomplete.
    """
    counter = _CountingReader(source)
    written = 0
    for piece in iter_encrypt(counter, key, cipher, chunk_size):
        written += _write(dest, piece)
    return TransformStats(bytes_read=counter.count, bytes_written=written)


# ---------------------------------------------------------------------------
# Decryption
# ---------------------------------------------------------------------------

def iter_decrypt(
    source: BinaryIO,
    key: bytes,
    cipher: "str | CipherSpec" = DEFAULT_CIPHER,
    chunk_size: "int | None" = None,
) -> Iterator[bytes]:
    """Decrypt an envelope chunk by chunk, yielding plaintext.

    The padding block is held back until the end of input, validated and
    stripped. Items may be empty.

    Raises:
        ConfigurationError: On key or chunk size mismatch.
        MalformedInputError: If the input is shorter than the IV.
        CryptoError: On invalid padding or misaligned ciphertext.
        TransformIOError: If reading ``source`` fails.
    """
    spec, chunk_size = _prepare(key, cipher, chunk_size)
    iv = _read_exact(source, spec.iv_length)
    if len(iv) < spec.iv_length:
        raise MalformedInputError(
            f"Input too short: expected a {spec.iv_length}-byte IV, "
            f"got {len(iv)} bytes"
        )
    decryptor = spec._context(key, iv).decryptor()
    unpadder = spec._padding().unpadder()
    while True:
        chunk = _read(source, chunk_size)
        if not chunk:
            break
        yield unpadder.update(decryptor.update(chunk))
    try:
        tail = unpadder.update(decryptor.finalize()) + unpadder.finalize()
    except ValueError as err:
        raise CryptoError(
            f"Decryption failed ({err}); wrong key or cipher, or corrupted input"
        ) from err
    yield tail


def decrypt_stream(
    source: BinaryIO,
    dest: BinaryIO,
    key: bytes,
    cipher: "str | CipherSpec" = DEFAULT_CIPHER,
    chunk_size: "int | None" = None,
) -> TransformStats:
    """Decrypt ``source`` into ``dest``, writing plaintext as produced.

    ``dest`` may be any writable binary stream, a file or a live output.

    Returns:
        Envelope bytes read and plaintext bytes written.
    """
    counter = _CountingReader(source)
    written = 0
    for piece in iter_decrypt(counter, key, cipher, chunk_size):
        written += _write(dest, piece)
    return TransformStats(bytes_read=counter.count, bytes_written=written)


class _CountingReader:
    """Minimal read() proxy that tallies bytes consumed."""

    def __init__(self, stream: BinaryIO):
        self._stream = stream
        self.count = 0

    def read(self, size: int = -1) -> bytes:
        data = self._stream.read(size)
        if data:
            self.count += len(data)
        return data
