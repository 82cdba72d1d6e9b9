import dataclasses

import pytest

from listener import CommandListener, channel_chat_id
from tgclient import BackendError, Message, TokenRejectedError


def get_reply(chat_id=-100123, media=None, text="get", message_id=7):
    original = Message(message_id=6, chat_id=chat_id, media=media if media is not None else {"document": "DOC1"})
    return Message(message_id=message_id, chat_id=chat_id, text=text, reply_to=original)


@pytest.fixture
def listener(backend, config):
    return CommandListener(backend, config)


async def test_get_reply_sends_direct_link(listener, backend):
    assert await listener.handle(get_reply())
    assert backend.sent == [(-100123, "https://files.example.com/d/DOC1", 7)]


async def test_non_get_text_is_ignored(listener, backend):
    assert not await listener.handle(get_reply(text="Get"))
    assert not await listener.handle(get_reply(text="get "))
    assert backend.sent == []


async def test_get_without_reply_is_ignored(listener, backend):
    assert not await listener.handle(Message(message_id=1, chat_id=5, text="get"))
    assert backend.sent == []


async def test_reply_to_non_media_is_ignored(listener, backend):
    assert not await listener.handle(get_reply(media={}))
    assert backend.sent == []


async def test_audio_is_not_resolved(listener, backend):
    assert not await listener.handle(get_reply(media={"audio": "AUD1"}))
    assert backend.sent == []


@pytest.mark.parametrize("media, expected", [
    ({"video": "VID", "document": "DOC"}, "DOC"),
    ({"video": "VID", "sticker": "STK"}, "VID"),
    ({"sticker": "STK", "audio": "AUD"}, "STK"),
])
async def test_priority_order(listener, backend, media, expected):
    await listener.handle(get_reply(media=media))
    assert backend.sent[0][1].endswith("/d/" + expected)


async def test_numeric_channel_only_answers_own_chat(backend, config):
    listener = CommandListener(backend, dataclasses.replace(config, channel="-100123"))
    assert not await listener.handle(get_reply(chat_id=-100999))
    assert await listener.handle(get_reply(chat_id=-100123))
    assert len(backend.sent) == 1


async def test_unparsable_channel_drops_reply(backend, config):
    listener = CommandListener(backend, dataclasses.replace(config, channel="files"))
    assert not await listener.handle(get_reply())
    assert backend.sent == []


async def test_repeated_get_is_answered_each_time(listener, backend):
    await listener.handle(get_reply())
    await listener.handle(get_reply())
    assert len(backend.sent) == 2


async def test_send_failure_does_not_raise(listener, backend):
    async def failing_send(chat_id, text, reply_to=None):
        raise BackendError("sendMessage: error 400")
    backend.send_message = failing_send
    assert not await listener.handle(get_reply())


async def test_run_consumes_events_in_order(listener, backend):
    backend.events = [
        get_reply(message_id=1, media={"document": "A"}),
        Message(message_id=2, chat_id=-100123, text="hello"),
        get_reply(message_id=3, media={"video": "B"}),
    ]
    await listener.run()
    assert [(text, reply_to) for _, text, reply_to in backend.sent] == [
        ("https://files.example.com/d/A", 1),
        ("https://files.example.com/d/B", 3),
    ]


async def test_run_forever_retries_backend_errors(listener, backend):
    backend.events = [BackendError("getUpdates failed")]
    calls = []
    original = backend.get_me

    async def counting():
        calls.append(1)
        return await original()
    backend.get_me = counting
    await listener.run_forever(max_retries=3, backoff_time=0)
    assert len(calls) == 3


async def test_run_forever_stops_on_rejected_token(listener, backend):
    calls = []

    async def rejected():
        calls.append(1)
        raise TokenRejectedError("getMe: bot token rejected")
    backend.get_me = rejected
    await listener.run_forever(max_retries=3, backoff_time=0)
    assert calls == [1]


def test_channel_chat_id():
    assert channel_chat_id("-1001234") == -1001234
    assert channel_chat_id("+123") == 123
    assert channel_chat_id("@name") is None
    assert channel_chat_id("abc") is None


async def test_retry_budget_resets_after_successful_poll(listener, backend):
    backend.events = [get_reply(message_id=1), BackendError("getUpdates: error 502")]
    runs = []
    original = backend.get_me

    async def counting():
        runs.append(1)
        if len(runs) > 8:
            raise TokenRejectedError("getMe: bot token rejected")
        return await original()
    backend.get_me = counting
    await listener.run_forever(max_retries=5, backoff_time=0)
    assert len(runs) == 9
    assert len(backend.sent) == 8
