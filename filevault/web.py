"""
aiohttp integration: decrypt a stored file straight into a response body.
"""
import asyncio
import logging
from typing import Optional

from aiohttp import web

from .vault import FileVault

logger = logging.getLogger("filevault")


async def stream_decrypt_response(
    request: web.Request,
    vault: FileVault,
    source: str,
    *,
    disk: Optional[str] = None,
    filename: Optional[str] = None,
    content_type: str = "application/octet-stream",
) -> web.StreamResponse:
    """Stream the plaintext of ``source`` to the client.

    The disk is resolved and prepared before any header is sent, so
    configuration or credential errors can still become a regular error
    response. Blocking reads and decryption run in a worker thread, one
    chunk at a time. If the handler is cancelled, the in-flight read is
    awaited before the source stream is closed.

    Args:
        request: Incoming request.
        vault: Vault holding the key and disk configuration.
        source: Logical id of the encrypted file.
        disk: Disk name; defaults to the vault's disk.
        filename: If given, sent as an attachment with this name.
        content_type: Content-Type of the plaintext.

    Returns:
        The prepared and completed StreamResponse.
    """
    chunks = vault.iter_decrypt(source, disk=disk)
    response = web.StreamResponse(headers={"Content-Type": content_type})
    if filename:
        response.headers["Content-Disposition"] = f'attachment; filename="{filename}"'
    pending: Optional[asyncio.Future] = None

    async def pull() -> Optional[bytes]:
        nonlocal pending
        pending = asyncio.ensure_future(asyncio.to_thread(next, chunks, None))
        # shielded: cancelling the handler must not abandon a running read
        return await asyncio.shield(pending)

    sent = 0
    try:
        chunk = await pull()
        await response.prepare(request)
        while chunk is not None:
            if chunk:
                await response.write(chunk)
                sent += len(chunk)
            chunk = await pull()
        await response.write_eof()
    finally:
        if pending is not None and not pending.done():
            try:
                await asyncio.shield(pending)
            except Exception as err:
                logger.debug("Dropped in-flight chunk of %s: %s", source, err)
        chunks.close()
    logger.debug("Streamed %d plaintext bytes of %s", sent, source)
    return response
