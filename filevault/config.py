"""
FileVault Configuration — Immutable, validated settings and env loading.

Reads settings from environment variables:
    FILEVAULT_DISK = <disk name, default "local">
    FILEVAULT_KEY = <base64-encoded key, optional "base64:" prefix>
    FILEVAULT_CIPHER = <cipher name, default "AES-128-CBC">
    FILEVAULT_CHUNK_SIZE = <bytes per chunk, multiple of the block size>
    FILEVAULT_LOCAL_ROOT = <root directory of the "local" disk>
    FILEVAULT_S3_BUCKET = <bucket of the "s3" disk; disk omitted if unset>
    FILEVAULT_S3_PREFIX, AWS_DEFAULT_REGION, AWS_ENDPOINT_URL,
    AWS_ACCESS_KEY_ID, AWS_SECRET_ACCESS_KEY

Security Note:
    Never log key material. Only log disk and cipher names.
"""
import os
import base64
import binascii
import logging
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .crypto import CIPHERS, DEFAULT_CIPHER, CipherSpec, get_cipher
from .exceptions import ConfigurationError

logger = logging.getLogger("filevault")

_KEY_PREFIX = "base64:"


def load_key(value: str) -> bytes:
    """Decode a base64 key string, with or without the ``base64:`` prefix.

    Raises:
        ValueError: If the value is not valid base64.
    """
    value = value.strip()
    if value.startswith(_KEY_PREFIX):
        value = value[len(_KEY_PREFIX):]
    try:
        return base64.b64decode(value, validate=True)
    except binascii.Error as err:
        raise ValueError(f"Encryption key is not valid base64: {err}") from None


def _describe(err: ValidationError) -> str:
    """Summarize validation errors without echoing input values."""
    return "; ".join(
        f"{'.'.join(str(part) for part in e['loc']) or 'config'}: {e['msg']}"
        for e in err.errors()
    )


def encode_key(key: bytes) -> str:
    """Return ``key`` in the ``base64:`` form accepted by :func:`load_key`."""
    return _KEY_PREFIX + base64.b64encode(key).decode("ascii")


class DiskConfig(BaseModel):
    """Settings for one named storage disk."""

    driver: Literal["local", "s3"] = "local"
    root: str = "storage"
    bucket: Optional[str] = None
    prefix: str = ""
    region: Optional[str] = None
    endpoint_url: Optional[str] = None
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def validate_bucket(self) -> "DiskConfig":
        """An s3 disk must name its bucket."""
        if self.driver == "s3" and not self.bucket:
            raise ValueError("s3 disks require a bucket")
        return self


class VaultConfig(BaseModel):
    """Validated, immutable filevault configuration."""

    disk: str = "local"
    key: bytes = b""
    cipher: str = DEFAULT_CIPHER
    chunk_size: Optional[int] = Field(default=None, gt=0)
    disks: dict[str, DiskConfig] = Field(
        default_factory=lambda: {"local": DiskConfig()}
    )

    model_config = {"frozen": True}

    @field_validator("key", mode="before")
    @classmethod
    def decode_key(cls, v: Any) -> Any:
        """Accept keys as raw bytes or base64 strings."""
        if isinstance(v, str):
            return load_key(v) if v else b""
        return v

    @field_validator("cipher")
    @classmethod
    def validate_cipher(cls, v: str) -> str:
        """Validate cipher is supported and normalize its name."""
        if v.upper() not in CIPHERS:
            raise ValueError(
                f"Unsupported cipher: {v} (supported: {sorted(CIPHERS)})"
            )
        return v.upper()

    @model_validator(mode="after")
    def validate_consistency(self) -> "VaultConfig":
        """Check key length, chunk size and the default disk against each other."""
        spec = self.cipher_spec
        if self.key and len(self.key) != spec.key_length:
            raise ValueError(
                f"{spec.name} requires a {spec.key_length}-byte key, "
                f"got {len(self.key)} bytes"
            )
        if self.chunk_size is not None and self.chunk_size % spec.block_size:
            raise ValueError(
                f"chunk_size must be a multiple of {spec.block_size}"
            )
        if self.disk not in self.disks:
            raise ValueError(
                f"Disk {self.disk!r} is not configured "
                f"(available: {sorted(self.disks)})"
            )
        return self

    def __repr__(self) -> str:
        return (
            f"VaultConfig(disk={self.disk!r}, cipher={self.cipher!r}, "
            f"key_set={bool(self.key)}, disks={sorted(self.disks)})"
        )

    __str__ = __repr__

    @property
    def cipher_spec(self) -> CipherSpec:
        return get_cipher(self.cipher)

    @property
    def effective_chunk_size(self) -> int:
        return self.chunk_size or self.cipher_spec.default_chunk_size

    def replace(self, **changes: Any) -> "VaultConfig":
        """Return a validated copy with ``changes`` applied.

        ``None`` values are ignored.

        Raises:
            ConfigurationError: If the resulting configuration is invalid.
        """
        data = self.model_dump()
        data.update({k: v for k, v in changes.items() if v is not None})
        try:
            return type(self).model_validate(data)
        except ValidationError as err:
            raise ConfigurationError(_describe(err)) from None

    @classmethod
    def from_env(cls) -> "VaultConfig":
        """Create VaultConfig by loading values from environment.

        Raises:
            ConfigurationError: If any value is missing or invalid.
        """
        disks = {
            "local": {
                "driver": "local",
                "root": os.environ.get("FILEVAULT_LOCAL_ROOT", "storage"),
            }
        }
        bucket = os.environ.get("FILEVAULT_S3_BUCKET")
        if bucket:
            disks["s3"] = {
                "driver": "s3",
                "bucket": bucket,
                "prefix": os.environ.get("FILEVAULT_S3_PREFIX", ""),
                "region": os.environ.get("AWS_DEFAULT_REGION"),
                "endpoint_url": os.environ.get("AWS_ENDPOINT_URL"),
                "access_key_id": os.environ.get("AWS_ACCESS_KEY_ID"),
                "secret_access_key": os.environ.get("AWS_SECRET_ACCESS_KEY"),
            }
        data: dict[str, Any] = {
            "disk": os.environ.get("FILEVAULT_DISK", "local"),
            "key": os.environ.get("FILEVAULT_KEY", ""),
            "cipher": os.environ.get("FILEVAULT_CIPHER", DEFAULT_CIPHER),
            "disks": disks,
        }
        chunk_size = os.environ.get("FILEVAULT_CHUNK_SIZE")
        if chunk_size:
            data["chunk_size"] = chunk_size
        try:
            config = cls.model_validate(data)
        except ValidationError as err:
            raise ConfigurationError(
                f"Invalid filevault environment configuration: {_describe(err)}"
            ) from None
        logger.debug(
            "Loaded filevault config: disk=%s cipher=%s disks=%s",
            config.disk, config.cipher, sorted(config.disks),
        )
        return config
