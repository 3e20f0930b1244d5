"""
FileVault Backends — Resolve logical file ids to openable access descriptors.

Every backend implements the same contract:
- ``resolve(logical_id)`` — map a backend-relative id to an AccessDescriptor
- ``prepare()`` — one-time, thread-safe capability setup (idempotent)
- ``open(logical_id, mode)`` — open a binary stream at the id
- ``delete(logical_id)`` / ``exists(logical_id)``

Logical ids are passed through as given: validating them against the backend
root is the storage layer's concern, not the resolver's.
"""
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, BinaryIO, Optional, Union

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .config import DiskConfig, VaultConfig
from .exceptions import ConfigurationError, ResolutionError
from .protocols import DEFAULT_PART_SIZE, S3StreamHandler, open_object, register_protocol

logger = logging.getLogger("filevault")


# ---------------------------------------------------------------------------
# Access descriptors
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LocalPath:
    """A file on the local filesystem."""

    path: Path

    @property
    def uri(self) -> str:
        return str(self.path)

    def open(self, mode: str = "rb") -> BinaryIO:
        if "w" in mode:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        return open(self.path, mode)


@dataclass(frozen=True)
class RemoteObject:
    """An object in a remote container, addressed as ``scheme://container/key``."""

    scheme: str
    container: str
    key: str

    @property
    def uri(self) -> str:
        return f"{self.scheme}://{self.container}/{self.key}"

    def open(self, mode: str = "rb") -> BinaryIO:
        return open_object(self.scheme, self.container, self.key, mode)


AccessDescriptor = Union[LocalPath, RemoteObject]


@dataclass(frozen=True)
class BackendCapability:
    """What a prepared backend offers to stream-level code."""

    backend: str
    scheme: Optional[str] = None
    container: Optional[str] = None


# ---------------------------------------------------------------------------
# Backend contract
# ---------------------------------------------------------------------------

class Backend(ABC):
    """Storage backend reachable through plain binary streams."""

    def __init__(self, name: str):
        self.name = name
        self._capability: Optional[BackendCapability] = None
        self._prepare_lock = threading.Lock()

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name!r}>"

    @property
    def prepared(self) -> bool:
        return self._capability is not None

    def prepare(self) -> BackendCapability:
        """Run the backend's one-time setup, at most once per instance.

        Concurrent first calls are serialized; later calls return the cached
        capability. A failure propagates and leaves the backend unprepared.

        Raises:
            ResolutionError: If the backend cannot be made ready.
        """
        if self._capability is not None:
            return self._capability
        with self._prepare_lock:
            if self._capability is None:
                self._capability = self._prepare()
                logger.info("Prepared backend %s: %s", self.name, self._capability)
        return self._capability

    @abstractmethod
    def _prepare(self) -> BackendCapability:
        ...

    @abstractmethod
    def resolve(self, logical_id: str) -> AccessDescriptor:
        ...

    def open(self, logical_id: str, mode: str = "rb") -> BinaryIO:
        self.prepare()
        return self.resolve(logical_id).open(mode)

    @abstractmethod
    def delete(self, logical_id: str) -> None:
        ...

    @abstractmethod
    def exists(self, logical_id: str) -> bool:
        ...


class LocalBackend(Backend):
    """Files below a root directory."""

    def __init__(self, name: str, root: Union[str, Path]):
        super().__init__(name)
        self.root = Path(root).absolute()

    def _prepare(self) -> BackendCapability:
        return BackendCapability(backend=self.name)

    def resolve(self, logical_id: str) -> LocalPath:
        return LocalPath(Path(f"{self.root}/{logical_id}"))

    def delete(self, logical_id: str) -> None:
        self.resolve(logical_id).path.unlink()

    def exists(self, logical_id: str) -> bool:
        return self.resolve(logical_id).path.is_file()


class S3Backend(Backend):
    """Objects in one S3 (or S3-compatible) bucket."""

    scheme = "s3"

    def __init__(
        self,
        name: str,
        bucket: str,
        prefix: str = "",
        region: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
        part_size: int = DEFAULT_PART_SIZE,
        client: Any = None,
    ):
        super().__init__(name)
        self.bucket = bucket
        self.prefix = prefix
        self.part_size = part_size
        self._client = client
        self._client_lock = threading.Lock()
        self._client_kwargs = {
            "region_name": region,
            "endpoint_url": endpoint_url,
            "aws_access_key_id": access_key_id,
            "aws_secret_access_key": secret_access_key,
        }

    @property
    def client(self) -> Any:
        """S3 client from this backend's own boto3 session, built once."""
        if self._client is None:
            with self._client_lock:
                if self._client is None:
                    session = boto3.Session()
                    self._client = session.client("s3", **self._client_kwargs)
        return self._client

    def _prepare(self) -> BackendCapability:
        try:
            self.client.head_bucket(Bucket=self.bucket)
        except (BotoCoreError, ClientError) as err:
            logger.error("Cannot access S3 bucket %s for disk %s: %s", self.bucket, self.name, err)
            raise ResolutionError(
                f"S3 bucket {self.bucket!r} is not accessible: {err}"
            ) from err
        register_protocol(
            self.scheme, S3StreamHandler(self.client, self.part_size), self.bucket,
        )
        return BackendCapability(
            backend=self.name, scheme=self.scheme, container=self.bucket,
        )

    def object_key(self, logical_id: str) -> str:
        return f"{self.prefix}{logical_id}"

    def resolve(self, logical_id: str) -> RemoteObject:
        return RemoteObject(self.scheme, self.bucket, self.object_key(logical_id))

    def delete(self, logical_id: str) -> None:
        try:
            self.client.delete_object(Bucket=self.bucket, Key=self.object_key(logical_id))
        except (BotoCoreError, ClientError) as err:
            raise OSError(f"Cannot delete {self.resolve(logical_id).uri}: {err}") from err

    def exists(self, logical_id: str) -> bool:
        try:
            self.client.head_object(Bucket=self.bucket, Key=self.object_key(logical_id))
            return True
        except ClientError as err:
            if err.response.get("Error", {}).get("Code") in ("404", "NoSuchKey", "NotFound"):
                return False
            raise


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------

def create_backend(name: str, disk: DiskConfig) -> Backend:
    """Build the backend a disk configuration describes."""
    if disk.driver == "s3":
        return S3Backend(
            name,
            bucket=disk.bucket,
            prefix=disk.prefix,
            region=disk.region,
            endpoint_url=disk.endpoint_url,
            access_key_id=disk.access_key_id,
            secret_access_key=disk.secret_access_key,
        )
    return LocalBackend(name, disk.root)


class BackendResolver:
    """Hands out one backend instance per configured disk name."""

    def __init__(self, config: VaultConfig):
        self._disks = dict(config.disks)
        self._backends: dict[str, Backend] = {}
        self._lock = threading.Lock()

    def register(self, backend: Backend) -> None:
        """Use ``backend`` for its name instead of building one from config."""
        with self._lock:
            self._backends[backend.name] = backend

    def get(self, name: str) -> Backend:
        """Return the backend for disk ``name``.

        Raises:
            ConfigurationError: If no such disk is configured.
        """
        with self._lock:
            backend = self._backends.get(name)
            if backend is None:
                disk = self._disks.get(name)
                if disk is None:
                    raise ConfigurationError(
                        f"Unknown disk {name!r} (configured: {sorted(self._disks)})"
                    )
                backend = self._backends[name] = create_backend(name, disk)
        return backend

    def resolve(self, name: str, logical_id: str) -> AccessDescriptor:
        return self.get(name).resolve(logical_id)

    def prepare(self, name: str) -> BackendCapability:
        return self.get(name).prepare()
