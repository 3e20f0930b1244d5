"""FileVault — Streaming file encryption over pluggable storage disks.

Security Note (Threat Model):
    Files are encrypted with a plain block cipher mode (AES-CBC, PKCS7).
    There is no authentication tag: corrupted or tampered ciphertext is only
    detected when it happens to break the padding. Layer a MAC or signature
    on top when integrity matters. Keys are never stored by this package.
"""

from .version import __version__
from .exceptions import (
    FileVaultError,
    ConfigurationError,
    ResolutionError,
    TransformIOError,
    CryptoError,
    MalformedInputError,
    PostConditionError,
)
from .crypto import (
    CipherSpec,
    TransformStats,
    get_cipher,
    generate_key,
    encrypt_stream,
    decrypt_stream,
    iter_encrypt,
    iter_decrypt,
)
from .config import VaultConfig, DiskConfig, load_key, encode_key
from .backends import (
    LocalPath,
    RemoteObject,
    Backend,
    LocalBackend,
    S3Backend,
    BackendResolver,
)
from .protocols import open_object, open_uri, register_protocol
from .vault import (
    FileVault,
    Operation,
    TransformMode,
    TransformResult,
    encrypted_name,
    decrypted_name,
)

__all__ = [
    "__version__",
    "FileVaultError",
    "ConfigurationError",
    "ResolutionError",
    "TransformIOError",
    "CryptoError",
    "MalformedInputError",
    "PostConditionError",
    "CipherSpec",
    "TransformStats",
    "get_cipher",
    "generate_key",
    "encrypt_stream",
    "decrypt_stream",
    "iter_encrypt",
    "iter_decrypt",
    "VaultConfig",
    "DiskConfig",
    "load_key",
    "encode_key",
    "LocalPath",
    "RemoteObject",
    "Backend",
    "LocalBackend",
    "S3Backend",
    "BackendResolver",
    "open_object",
    "open_uri",
    "register_protocol",
    "FileVault",
    "Operation",
    "TransformMode",
    "TransformResult",
    "encrypted_name",
    "decrypted_name",
]
