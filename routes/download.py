import asyncio
import urllib.parse
from typing import AsyncIterator, Sequence

from aiohttp import web

import manifest
from log import logger
from sniff import detect_content_type
from tgclient import Backend, BackendError, StreamReadError

# bytes read up front to tell manifests from raw content
SNIFF_WINDOW = 10 * 1024 * 1024
GENERIC_BINARY = "application/octet-stream"


class RelayAborted(Exception):
    """Raised once response bytes are out; aiohttp then drops the connection."""


def not_found() -> web.Response:
    return web.Response(status=404, text="404 Not Found")


def attachment_disposition(filename: str) -> str:
    quoted = filename.replace("\\", "\\\\").replace('"', '\\"')
    value = f'attachment; filename="{quoted}"'
    if not filename.isascii():
        value += "; filename*=UTF-8''" + urllib.parse.quote(filename)
    return value


async def relay_chunks(backend: Backend, refs: Sequence[str]) -> AsyncIterator[bytes]:
    """Yield the bytes of each chunk in manifest order.

    Chunks are fetched one after another, never ahead of the consumer, so only
    one chunk is in flight. A failed chunk raises :class:`BackendError` and ends
    the sequence; whatever was yielded before stays yielded.
    """
    for index, ref in enumerate(refs, 1):
        url = await backend.get_object_url(ref)
        async with backend.fetch(url) as stream:
            if stream.status != 200:
                raise BackendError(f"Chunk {index}/{len(refs)} ({ref}): HTTP {stream.status}")
            async for piece in stream.iter_chunks():
                yield piece


async def _relay_manifest(request: web.Request, reference: str, window: bytes) -> web.StreamResponse:
    config = request.app["config"]
    backend = request.app["backend"]
    try:
        filename, refs = manifest.decode(window)
    except manifest.ManifestError as e:
        logger.error(f"Manifest {reference} unreadable: {e}")
        return web.Response(status=502, text="Malformed manifest")

    logger.info(f"Relaying {filename} from {len(refs)} chunks")
    response = web.StreamResponse(headers={
        "Content-Type": GENERIC_BINARY,
        "Content-Disposition": attachment_disposition(filename),
    })
    await response.prepare(request)
    sent = 0
    try:
        async for piece in relay_chunks(backend, refs):
            await response.write(piece)
            sent += len(piece)
    except BackendError as e:
        # headers and earlier chunks are already out, the connection is dropped
        logger.error(f"Relay of {filename} aborted after {sent} bytes: {e}")
        raise RelayAborted(str(e)) from e
    # pacing between manifest downloads, Telegram rate limits rapid getFile calls
    await asyncio.sleep(config.manifest_hold)
    await response.write_eof()
    return response


async def _relay_raw(request: web.Request, reference: str, stream, window: bytes) -> web.StreamResponse:
    response = web.StreamResponse(headers={
        "Content-Type": detect_content_type(window),
        "Content-Disposition": "inline",
    })
    if stream.content_length is not None:
        response.content_length = stream.content_length
    await response.prepare(request)
    await response.write(window)
    try:
        async for piece in stream.iter_chunks():
            await response.write(piece)
    except StreamReadError as e:
        logger.error(f"Relay of {reference} aborted: {e}")
        raise RelayAborted(str(e)) from e
    await response.write_eof()
    return response


async def _sniff(reference: str, stream):
    """Read the window and classify it; returns (window, early_response)."""
    try:
        window = await stream.read(SNIFF_WINDOW)
    except StreamReadError as e:
        logger.error(f"Reading {reference} failed: {e}")
        return b"", web.Response(status=500, text="Failed to read content")

    # Telegram answers bad file paths with an error page of another type
    if stream.status != 200 or not stream.content_type.startswith(GENERIC_BINARY):
        logger.warning(f"{reference}: unexpected reply {stream.status} {stream.content_type!r}")
        return b"", not_found()
    return window, None


async def download(request: web.Request) -> web.StreamResponse:
    reference = request.match_info.get("reference", "")
    if not reference:
        return not_found()

    backend = request.app["backend"]
    try:
        url = await backend.get_object_url(reference)
        async with backend.fetch(url) as stream:
            window, early = await _sniff(reference, stream)
            if early is not None:
                return early
            if not manifest.is_manifest(window):
                return await _relay_raw(request, reference, stream, window)
    except BackendError as e:
        logger.error(f"Fetching {reference} failed: {e}")
        return web.Response(status=502, text="Failed to fetch content")
    # the manifest's own reply is released before any chunk is fetched
    return await _relay_manifest(request, reference, window)


def setup(app: web.Application):
    route = app["config"].file_route
    app.router.add_get(route + "{reference:.*}", download)
