import dataclasses
from contextlib import asynccontextmanager

import aiohttp
import pytest

from config import Config
from server import create_app
from tgclient import Backend, BackendError, BlobStream, Message


class MemoryReader:
    """Async reader over bytes; optionally fails after ``fail_after`` bytes."""

    def __init__(self, data: bytes, fail_after=None):
        self._data = data
        self._pos = 0
        self._fail_after = fail_after

    async def read(self, n: int) -> bytes:
        if self._fail_after is not None and self._pos >= self._fail_after:
            raise aiohttp.ClientPayloadError("Response payload is not completed")
        end = self._pos + n
        if self._fail_after is not None:
            end = min(end, self._fail_after)
        piece = self._data[self._pos:end]
        self._pos += len(piece)
        return piece


class FakeBackend(Backend):
    def __init__(self):
        self.blobs = {}
        self.puts = []
        self.url_calls = []
        self.sent = []
        self.events = []
        self.reply_kind = "document"
        self.fail_puts = False
        self.broken = {}
        self.closed = False
        self.open_fetches = 0
        self.max_open_fetches = 0

    def add(self, ref, data: bytes, content_type="application/octet-stream", status=200):
        self.blobs[ref] = (data, content_type, status)

    async def put_object(self, filename, data, field="document"):
        if self.fail_puts:
            raise BackendError("sendDocument: error 500")
        ref = f"ref{len(self.puts) + 1}"
        self.puts.append((filename, bytes(data), field))
        self.add(ref, bytes(data))
        media = {self.reply_kind: ref} if self.reply_kind else {}
        return Message(message_id=len(self.puts), chat_id=-100, media=media)

    async def get_object_url(self, reference):
        self.url_calls.append(reference)
        if reference not in self.blobs:
            raise BackendError("getFile: error 400 Bad Request: invalid file_id")
        return f"mem://{reference}"

    @asynccontextmanager
    async def fetch(self, url):
        ref = url[len("mem://"):]
        data, content_type, status = self.blobs[ref]
        self.open_fetches += 1
        self.max_open_fetches = max(self.max_open_fetches, self.open_fetches)
        try:
            yield BlobStream(
                MemoryReader(data, self.broken.get(ref)),
                content_type=content_type,
                content_length=len(data),
                status=status,
            )
        finally:
            self.open_fetches -= 1

    async def poll_events(self, timeout=60):
        for event in self.events:
            if isinstance(event, Exception):
                raise event
            yield event

    async def send_message(self, chat_id, text, reply_to=None):
        self.sent.append((chat_id, text, reply_to))
        return Message(message_id=1000 + len(self.sent), chat_id=chat_id, text=text)

    async def get_me(self):
        return {"username": "fakebot"}

    async def close(self):
        self.closed = True


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def config():
    return Config(
        token="123:abc",
        channel="@files",
        base_url="https://files.example.com/",
        manifest_hold=0,
    )


@pytest.fixture
def make_client(aiohttp_client, backend, config):
    async def _make(**overrides):
        app = create_app(dataclasses.replace(config, **overrides), backend)
        return await aiohttp_client(app)
    return _make
