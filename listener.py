import asyncio
import re
from typing import Optional

from config import Config
from log import logger
from tgclient import (
    COMMAND_KINDS,
    POLL_TIMEOUT,
    Backend,
    BackendError,
    Message,
    TokenRejectedError,
    media_reference,
)

GET_COMMAND = "get"
CHAT_ID_RE = re.compile(r"[-+]?\d+")


def channel_chat_id(channel: str) -> Optional[int]:
    """Numeric chat id of a non-handle channel identity, or None if unparsable."""
    if not CHAT_ID_RE.fullmatch(channel):
        return None
    return int(channel)


class CommandListener:
    """Answers "get" replies inside Telegram with a direct download link.

    Updates are handled one at a time; the reply is sent inline, so a slow
    send holds up the next update.
    """

    def __init__(self, backend: Backend, config: Config, poll_timeout: int = POLL_TIMEOUT):
        self.backend = backend
        self.config = config
        self.poll_timeout = poll_timeout
        self.events_seen = 0

    def reply_allowed(self, chat_id: int) -> bool:
        channel = self.config.channel
        if channel.startswith("@"):
            return True
        expected = channel_chat_id(channel)
        return expected is not None and expected == chat_id

    def build_reply(self, message: Message) -> Optional[str]:
        if message.text != GET_COMMAND or message.reply_to is None:
            return None
        reference = media_reference(message.reply_to, COMMAND_KINDS)
        if not reference:
            return None
        return self.config.public_url(reference)

    async def handle(self, message: Message) -> bool:
        link = self.build_reply(message)
        if link is None:
            return False
        if not self.reply_allowed(message.chat_id):
            logger.debug(f"Ignoring get from chat {message.chat_id}")
            return False
        try:
            await self.backend.send_message(message.chat_id, link, reply_to=message.message_id)
        except BackendError as e:
            logger.error(f"Reply to message {message.message_id} failed: {e}")
            return False
        logger.info(f"Sent link {link} to chat {message.chat_id}")
        return True

    async def run(self):
        me = await self.backend.get_me()
        logger.info(f"Command listener running as @{(me or {}).get('username', '?')}")
        async for message in self.backend.poll_events(timeout=self.poll_timeout):
            self.events_seen += 1
            await self.handle(message)

    async def run_forever(self, max_retries: int = 5, backoff_time: float = 5):
        initial_backoff = backoff_time
        retry_count = 0
        while retry_count < max_retries:
            seen_before = self.events_seen
            try:
                await self.run()
                break
            except TokenRejectedError as e:
                logger.critical(f"Command listener stopped: {e}")
                break
            except BackendError as e:
                if self.events_seen > seen_before:
                    # polling worked since the last failure, start the budget over
                    retry_count = 0
                    backoff_time = initial_backoff
                retry_count += 1
                logger.error(f"Polling failed. Retrying ({retry_count}/{max_retries}) in {backoff_time}s: {e}")
                if retry_count < max_retries:
                    await asyncio.sleep(backoff_time)
                    backoff_time *= 2
                else:
                    logger.critical("Maximum retries reached. Command listener stopped.")
