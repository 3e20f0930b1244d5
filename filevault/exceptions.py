"""
FileVault Exceptions — typed outcomes for every failure path.

Configuration and resolution errors are raised before any stream is opened.
I/O and crypto errors abort a transform mid-stream; the destination is then
incomplete and must not be used. Post-condition errors are attached to an
otherwise successful result instead of being raised.
"""


class FileVaultError(Exception):
    """Base class for all filevault errors."""


class ConfigurationError(FileVaultError):
    """Unknown disk or cipher, bad key length, or invalid settings."""


class ResolutionError(FileVaultError):
    """A backend could not be prepared for stream access."""


class TransformIOError(FileVaultError, OSError):
    """Opening, reading or writing a stream failed."""


class CryptoError(FileVaultError):
    """Ciphertext could not be decrypted.

    Raised on invalid padding or misaligned ciphertext, which almost always
    means a wrong key, a wrong cipher or corrupted input.
    """


class MalformedInputError(CryptoError):
    """Ciphertext is too short to contain an initialization vector."""


class PostConditionError(FileVaultError):
    """The transform succeeded but the source file could not be deleted."""

    def __init__(self, message: str, source: str):
        super().__init__(message)
        self.source = source
