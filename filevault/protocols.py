"""
Stream Protocols — "open by URI" for remote backends.

A backend that stores objects remotely registers a protocol handler for its
scheme (optionally scoped to one container) once, at preparation time. After
that, ``open_uri("s3://bucket/key", "rb")`` returns an ordinary binary stream,
so the transform engine never touches backend-specific APIs.

The registry is process-wide and guarded by a lock.
"""
import io
import logging
import threading
from typing import Any, BinaryIO, Optional, Protocol

from botocore.exceptions import BotoCoreError, ClientError

from .exceptions import ResolutionError

logger = logging.getLogger("filevault")

_HANDLERS: dict[tuple[str, Optional[str]], "ProtocolHandler"] = {}
_LOCK = threading.Lock()


class ProtocolHandler(Protocol):
    def open(self, container: str, key: str, mode: str) -> BinaryIO:
        ...


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

def register_protocol(
    scheme: str,
    handler: ProtocolHandler,
    container: Optional[str] = None,
) -> bool:
    """Register ``handler`` for ``scheme://`` (or ``scheme://container/``).

    Returns:
        True if the registry changed, False if ``handler`` was already there.
    """
    slot = (scheme.lower(), container)
    with _LOCK:
        if _HANDLERS.get(slot) is handler:
            return False
        _HANDLERS[slot] = handler
    logger.debug("Registered %s:// stream handler for container=%s", scheme, container)
    return True


def unregister_protocol(scheme: str, container: Optional[str] = None) -> None:
    with _LOCK:
        _HANDLERS.pop((scheme.lower(), container), None)


def registered_protocols() -> list[tuple[str, Optional[str]]]:
    with _LOCK:
        return list(_HANDLERS)


def _lookup(scheme: str, container: str) -> ProtocolHandler:
    with _LOCK:
        handler = _HANDLERS.get((scheme, container)) or _HANDLERS.get((scheme, None))
    if handler is None:
        raise ResolutionError(
            f"No stream handler registered for {scheme}://{container}; "
            "prepare the backend first"
        )
    return handler


def open_object(scheme: str, container: str, key: str, mode: str = "rb") -> BinaryIO:
    """Open ``key`` in ``container`` through the handler registered for ``scheme``.

    The key is handed to the handler verbatim.

    Raises:
        ResolutionError: If no handler is registered for the scheme.
        OSError: If the stream cannot be opened.
    """
    handler = _lookup(scheme.lower(), container)
    return handler.open(container, key, mode)


def open_uri(uri: str, mode: str = "rb") -> BinaryIO:
    """Open a binary stream for a local path or a registered remote URI.

    Remote URIs are split as ``scheme://container/key``; everything after the
    first slash is the key, so ``?``, ``#`` and repeated slashes are kept.

    Raises:
        ResolutionError: If the URI scheme has no registered handler.
        OSError: If the stream cannot be opened.
    """
    scheme, sep, rest = uri.partition("://")
    if not sep or len(scheme) == 1 or "/" in scheme or "\\" in scheme:
        return open(uri, mode)
    if scheme.lower() == "file":
        return open(rest, mode)
    container, _, key = rest.partition("/")
    return open_object(scheme, container, key, mode)


# ---------------------------------------------------------------------------
# S3 streams
# ---------------------------------------------------------------------------

MIN_PART_SIZE = 5 * 1024 * 1024
DEFAULT_PART_SIZE = 8 * 1024 * 1024


def _error_code(err: ClientError) -> str:
    return err.response.get("Error", {}).get("Code", "")


class S3ObjectReader(io.RawIOBase):
    """Readable stream over the body of an S3 object."""

    def __init__(self, client: Any, bucket: str, key: str):
        super().__init__()
        self.name = f"s3://{bucket}/{key}"
        try:
            response = client.get_object(Bucket=bucket, Key=key)
        except ClientError as err:
            if _error_code(err) in ("NoSuchKey", "404", "NotFound"):
                raise FileNotFoundError(f"No such object: {self.name}") from err
            raise OSError(f"Cannot open {self.name}: {err}") from err
        except BotoCoreError as err:
            raise OSError(f"Cannot open {self.name}: {err}") from err
        self._body = response["Body"]

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        try:
            data = self._body.read(len(buffer))
        except (BotoCoreError, ClientError) as err:
            raise OSError(f"Error reading {self.name}: {err}") from err
        size = len(data)
        buffer[:size] = data
        return size

    def close(self) -> None:
        if not self.closed:
            self._body.close()
        super().close()


class S3ObjectWriter(io.RawIOBase):
    """Writable stream that uploads an S3 object in parts.

    At most one part is buffered in memory. Closing normally publishes the
    object; leaving a ``with`` block through an exception aborts the upload
    so no partial object becomes visible.
    """

    def __init__(
        self,
        client: Any,
        bucket: str,
        key: str,
        part_size: int = DEFAULT_PART_SIZE,
    ):
        super().__init__()
        if part_size < MIN_PART_SIZE:
            raise ValueError(f"part_size must be at least {MIN_PART_SIZE} bytes")
        self.name = f"s3://{bucket}/{key}"
        self._client = client
        self._bucket = bucket
        self._key = key
        self._part_size = part_size
        self._buffer = bytearray()
        self._upload_id: Optional[str] = None
        self._parts: list[dict] = []

    def writable(self) -> bool:
        return True

    def write(self, data) -> int:
        if self.closed:
            raise ValueError("write to closed stream")
        self._buffer += data
        while len(self._buffer) >= self._part_size:
            self._upload_part(bytes(self._buffer[:self._part_size]))
            del self._buffer[:self._part_size]
        return len(data)

    def _call(self, method: str, **kwargs) -> dict:
        try:
            return getattr(self._client, method)(
                Bucket=self._bucket, Key=self._key, **kwargs
            )
        except (BotoCoreError, ClientError) as err:
            raise OSError(f"Error writing {self.name}: {err}") from err

    def _upload_part(self, body: bytes) -> None:
        if self._upload_id is None:
            self._upload_id = self._call("create_multipart_upload")["UploadId"]
        number = len(self._parts) + 1
        response = self._call(
            "upload_part", PartNumber=number, UploadId=self._upload_id, Body=body,
        )
        self._parts.append({"ETag": response["ETag"], "PartNumber": number})

    def close(self) -> None:
        if self.closed:
            return
        try:
            if self._upload_id is None:
                self._call("put_object", Body=bytes(self._buffer))
            else:
                self._complete()
            logger.debug("Uploaded %s in %d part(s)", self.name, max(len(self._parts), 1))
        finally:
            self._buffer.clear()
            super().close()

    def _complete(self) -> None:
        """Send the last part and publish the object, or abort the upload."""
        try:
            if self._buffer:
                self._upload_part(bytes(self._buffer))
            self._call(
                "complete_multipart_upload",
                UploadId=self._upload_id,
                MultipartUpload={"Parts": self._parts},
            )
        except OSError:
            try:
                self._call("abort_multipart_upload", UploadId=self._upload_id)
            except OSError as err:
                logger.error("Could not abort upload of %s: %s", self.name, err)
            raise

    def abort(self) -> None:
        """Discard everything written so far."""
        if self.closed:
            return
        try:
            if self._upload_id is not None:
                self._call("abort_multipart_upload", UploadId=self._upload_id)
        finally:
            self._buffer.clear()
            super().close()
        logger.debug("Aborted upload of %s", self.name)

    def __exit__(self, exc_type, exc, tb):
        if exc_type is None:
            self.close()
            return
        try:
            self.abort()
        except OSError as err:
            logger.error("Could not abort upload of %s: %s", self.name, err)


class S3StreamHandler:
    """Protocol handler opening ``s3://`` URIs through a boto3 client."""

    def __init__(self, client: Any, part_size: int = DEFAULT_PART_SIZE):
        self.client = client
        self.part_size = part_size

    def open(self, container: str, key: str, mode: str = "rb") -> BinaryIO:
        if mode == "rb":
            return io.BufferedReader(S3ObjectReader(self.client, container, key))
        if mode == "wb":
            return S3ObjectWriter(self.client, container, key, self.part_size)
        raise ValueError(f"Unsupported mode for S3 streams: {mode!r}")
