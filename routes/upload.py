from typing import AsyncIterator, List

from aiohttp import web

import manifest
from config import MAX_OBJECT_SIZE
from log import logger
from tgclient import UPLOAD_KINDS, Backend, BackendError, media_reference

UPLOAD_ROUTE = "/api"
FILE_FIELD = "image"
ALLOWED_EXTENSIONS = (".jpg", ".jpeg", ".png")
READ_SIZE = 256 * 1024


class UploadRejected(Exception):
    pass


def error_response(message: str) -> web.Response:
    # failures are reported in the body; the status stays 200
    return web.json_response({"code": 0, "message": message}, headers={"Access-Control-Allow-Origin": "*"})


def file_extension(filename: str) -> str:
    base = filename.replace("\\", "/").rsplit("/", 1)[-1]
    dot = base.rfind(".")
    return base[dot:] if dot >= 0 else ""


def validate_upload(filename: str, content_length, pass_through: bool):
    if pass_through:
        return
    if content_length is not None and content_length > MAX_OBJECT_SIZE:
        raise UploadRejected("File size exceeds 20MB limit")
    if file_extension(filename) not in ALLOWED_EXTENSIONS:
        raise UploadRejected("Invalid file type. Only .jpg, .jpeg, and .png are allowed.")


class FieldChunker:
    """Cuts a multipart file field into fixed-size chunks."""

    def __init__(self, field, size: int):
        self._field = field
        self._size = size
        self._buf = bytearray()
        self._eof = False

    async def next_chunk(self) -> bytes:
        # the reader needs reads of at least the boundary length, so read
        # fixed pieces and keep the overflow for the next chunk
        while len(self._buf) < self._size and not self._eof:
            piece = await self._field.read_chunk(READ_SIZE)
            if piece:
                self._buf += piece
            else:
                self._eof = True
        chunk = bytes(self._buf[:self._size])
        del self._buf[:self._size]
        return chunk


async def _store_chunked(backend: Backend, filename: str, chunks: AsyncIterator[bytes]) -> str:
    refs: List[str] = []
    part = 0
    async for chunk in chunks:
        part += 1
        message = await backend.put_object(f"{filename}.part{part}", chunk)
        ref = media_reference(message, UPLOAD_KINDS)
        if not ref:
            raise BackendError(f"Chunk {part} of {filename} stored without a reference")
        refs.append(ref)
        logger.debug(f"Stored chunk {part} of {filename}")
    payload = manifest.encode(filename, refs)
    message = await backend.put_object(filename + manifest.MANIFEST_SUFFIX, payload)
    logger.info(f"Stored {filename} as {len(refs)} chunks")
    return media_reference(message, UPLOAD_KINDS)


async def store_upload(backend: Backend, filename: str, field, chunk_size: int) -> str:
    """Store an uploaded file field and return its reference ("" if none came back).

    A file that fits in one chunk becomes a single object. Anything larger is
    split into ``chunk_size`` objects plus a manifest listing them; at most two
    chunks are held in memory.
    """
    chunker = FieldChunker(field, chunk_size)
    first = await chunker.next_chunk()
    second = await chunker.next_chunk()
    if not second:
        message = await backend.put_object(filename, first)
        return media_reference(message, UPLOAD_KINDS)

    if manifest.has_whitespace(filename):
        raise UploadRejected("Filename must not contain whitespace for chunked upload")

    async def chunks():
        yield first
        yield second
        while True:
            chunk = await chunker.next_chunk()
            if not chunk:
                return
            yield chunk

    return await _store_chunked(backend, filename, chunks())


async def upload(request: web.Request) -> web.Response:
    config = request.app["config"]
    backend = request.app["backend"]

    field = None
    if request.content_type.startswith("multipart/"):
        try:
            reader = await request.multipart()
            async for part in reader:
                if getattr(part, "name", None) == FILE_FIELD and getattr(part, "filename", None):
                    field = part
                    break
        except ValueError as e:
            logger.warning(f"Malformed multipart upload: {e}")
            field = None
    if field is None:
        return error_response("Unable to get file")

    filename = field.filename
    try:
        validate_upload(filename, request.content_length, config.pass_through)
        reference = await store_upload(backend, filename, field, config.chunk_size)
    except UploadRejected as e:
        logger.info(f"Upload of {filename!r} rejected: {e}")
        return error_response(str(e))
    except BackendError as e:
        logger.error(f"Upload of {filename!r} failed: {e}")
        reference = ""

    if not reference:
        return error_response("error")
    url = config.public_url(reference)
    logger.info(f"Uploaded {filename!r} -> {url}")
    return web.json_response({"code": 1, "message": url}, headers={"Access-Control-Allow-Origin": "*"})


def setup(app: web.Application):
    app.router.add_post(UPLOAD_ROUTE, upload)
