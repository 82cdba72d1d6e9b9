"""Telegram Bot API client used as an opaque blob store.

Objects are uploaded as documents into the configured chat; each one is then
addressed only by the ``file_id`` Telegram hands back.
"""
import abc
import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict, Optional, Sequence

import aiohttp

from log import logger

API_ROOT = "https://api.telegram.org"
POLL_TIMEOUT = 60
READ_CHUNK_SIZE = 64 * 1024

# Telegram may reclassify a "document" upload after sniffing it, so every kind
# that can come back is checked, in this order.
UPLOAD_KINDS = ("document", "audio", "video", "sticker")
# The "get" command never looked at audio; kept that way.
COMMAND_KINDS = ("document", "video", "sticker")
MEDIA_KINDS = UPLOAD_KINDS


class BackendError(Exception):
    pass


class TokenRejectedError(BackendError):
    pass


class StreamReadError(BackendError):
    pass


@dataclass
class Message:
    message_id: int
    chat_id: int
    text: str = ""
    media: Dict[str, str] = field(default_factory=dict)
    reply_to: Optional["Message"] = None

    @classmethod
    def from_dict(cls, data: dict) -> "Message":
        media = {}
        for kind in MEDIA_KINDS:
            obj = data.get(kind)
            if isinstance(obj, dict) and obj.get("file_id"):
                media[kind] = obj["file_id"]
        reply = data.get("reply_to_message")
        return cls(
            message_id=data.get("message_id", 0),
            chat_id=(data.get("chat") or {}).get("id", 0),
            text=data.get("text") or "",
            media=media,
            reply_to=cls.from_dict(reply) if isinstance(reply, dict) else None,
        )


def message_from_update(update: dict) -> Optional[Message]:
    data = update.get("message")
    if update.get("channel_post") is not None:
        data = update["channel_post"]
    if data is None:
        return None
    return Message.from_dict(data)


def media_reference(message: Optional[Message], kinds: Sequence[str] = UPLOAD_KINDS) -> str:
    """Return the first non-empty media reference of ``message`` in ``kinds`` order."""
    if message is None:
        return ""
    for kind in kinds:
        ref = message.media.get(kind)
        if ref:
            return ref
    return ""


class BlobStream:
    """Forward-only byte stream of one fetched object."""

    def __init__(self, reader, content_type: str = "", content_length: Optional[int] = None, status: int = 200):
        self._reader = reader
        self.content_type = content_type
        self.content_length = content_length
        self.status = status

    async def _read_piece(self, n: int) -> bytes:
        try:
            return await self._reader.read(n)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise StreamReadError(f"Stream read failed: {e}") from e

    async def read(self, n: int) -> bytes:
        """Read until ``n`` bytes are buffered or the stream ends."""
        buf = bytearray()
        while len(buf) < n:
            piece = await self._read_piece(n - len(buf))
            if not piece:
                break
            buf += piece
        return bytes(buf)

    async def iter_chunks(self, size: int = READ_CHUNK_SIZE) -> AsyncIterator[bytes]:
        while True:
            piece = await self._read_piece(size)
            if not piece:
                return
            yield piece


class Backend(abc.ABC):
    """Narrow blob-store interface the routes and the command loop depend on."""

    @abc.abstractmethod
    async def put_object(self, filename: str, data: bytes, field: str = "document") -> Message:
        ...

    @abc.abstractmethod
    async def get_object_url(self, reference: str) -> str:
        ...

    @abc.abstractmethod
    def fetch(self, url: str):
        """Async context manager yielding a :class:`BlobStream`."""

    @abc.abstractmethod
    def poll_events(self, timeout: int = POLL_TIMEOUT) -> AsyncIterator[Message]:
        ...

    @abc.abstractmethod
    async def send_message(self, chat_id: int, text: str, reply_to: Optional[int] = None) -> Message:
        ...

    @abc.abstractmethod
    async def get_me(self) -> dict:
        ...

    async def close(self):
        pass


class TelegramBackend(Backend):
    def __init__(self, token: str, chat_id: str, api_root: str = API_ROOT, session: Optional[aiohttp.ClientSession] = None):
        self.token = token
        self.chat_id = chat_id
        self.api_root = api_root.rstrip("/")
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self):
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    def _method_url(self, method: str) -> str:
        return f"{self.api_root}/bot{self.token}/{method}"

    async def _call(self, method: str, *, data=None, json=None, timeout: Optional[aiohttp.ClientTimeout] = None):
        session = self._get_session()
        kwargs = {"data": data, "json": json}
        if timeout is not None:
            kwargs["timeout"] = timeout
        try:
            async with session.post(self._method_url(method), **kwargs) as resp:
                try:
                    body = await resp.json(content_type=None)
                except ValueError:
                    raise BackendError(f"{method}: undecodable reply (HTTP {resp.status})") from None
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            # the URL carries the token, keep it out of the message
            raise BackendError(f"{method} failed: {type(e).__name__}") from e

        if not isinstance(body, dict) or not body.get("ok"):
            code = body.get("error_code") if isinstance(body, dict) else None
            desc = body.get("description", "") if isinstance(body, dict) else ""
            if code == 401:
                raise TokenRejectedError(f"{method}: bot token rejected ({desc})")
            raise BackendError(f"{method}: error {code} {desc}".rstrip())
        return body.get("result")

    async def get_me(self) -> dict:
        return await self._call("getMe")

    async def put_object(self, filename: str, data: bytes, field: str = "document") -> Message:
        form = aiohttp.FormData()
        form.add_field("chat_id", str(self.chat_id))
        form.add_field(field, data, filename=filename, content_type="application/octet-stream")
        result = await self._call("sendDocument", data=form)
        logger.debug(f"Stored {filename} ({len(data)} bytes)")
        return Message.from_dict(result or {})

    async def get_object_url(self, reference: str) -> str:
        result = await self._call("getFile", json={"file_id": reference})
        file_path = (result or {}).get("file_path")
        if not file_path:
            raise BackendError("getFile: reply carries no file_path")
        return f"{self.api_root}/file/bot{self.token}/{file_path}"

    @asynccontextmanager
    async def fetch(self, url: str):
        session = self._get_session()
        timeout = aiohttp.ClientTimeout(total=None, sock_connect=30, sock_read=60)
        try:
            resp = await session.get(url, timeout=timeout)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise BackendError(f"File fetch failed: {type(e).__name__}") from e
        try:
            yield BlobStream(
                resp.content,
                content_type=resp.headers.get("Content-Type", ""),
                content_length=resp.content_length,
                status=resp.status,
            )
        finally:
            resp.release()

    async def poll_events(self, timeout: int = POLL_TIMEOUT) -> AsyncIterator[Message]:
        offset = 0
        client_timeout = aiohttp.ClientTimeout(total=timeout + 15)
        while True:
            updates = await self._call(
                "getUpdates",
                json={"offset": offset, "timeout": timeout, "allowed_updates": ["message", "channel_post"]},
                timeout=client_timeout,
            )
            for update in updates or []:
                offset = max(offset, update.get("update_id", 0) + 1)
                msg = message_from_update(update)
                if msg is not None:
                    yield msg

    async def send_message(self, chat_id: int, text: str, reply_to: Optional[int] = None) -> Message:
        payload = {"chat_id": chat_id, "text": text}
        if reply_to is not None:
            payload["reply_parameters"] = {"message_id": reply_to}
        result = await self._call("sendMessage", json=payload)
        return Message.from_dict(result or {})
