import argparse
import asyncio
import signal

from aiohttp import web
from dotenv import load_dotenv

# Load .env before the logger reads LOG_FILE
load_dotenv()

from config import ConfigError, load_config  # noqa: E402
from listener import CommandListener  # noqa: E402
from log import logger  # noqa: E402
from server import create_app  # noqa: E402
from tgclient import TelegramBackend  # noqa: E402


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Serve files stored in a Telegram chat over HTTP")
    parser.add_argument("--host", type=str, default="0.0.0.0", help="Address to listen on")
    parser.add_argument("--port", type=int, help="Port to listen on (overrides PORT)")
    parser.add_argument("--loglevel", type=str, choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], help="Set the logging level")
    return parser.parse_args(argv)


async def main(args) -> int:
    try:
        config = load_config()
    except ConfigError as e:
        logger.critical(f"Invalid configuration: {e}")
        return 1

    backend = TelegramBackend(config.token, config.channel)
    app = create_app(config, backend)
    runner = web.AppRunner(app)
    await runner.setup()
    port = args.port or config.port
    site = web.TCPSite(runner, args.host, port)
    await site.start()
    logger.info(f"Listening on http://{args.host}:{port} ({'pass-through' if config.pass_through else 'strict'} mode)")

    listener_task = asyncio.create_task(CommandListener(backend, config).run_forever())

    stop = asyncio.Event()

    def handle_exit(sig):
        logger.info(f"Received signal {sig.name}, shutting down gracefully...")
        stop.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, handle_exit, sig)

    try:
        await stop.wait()
    finally:
        listener_task.cancel()
        try:
            await listener_task
        except asyncio.CancelledError:
            pass
        logger.info("Closing HTTP server and backend session...")
        await runner.cleanup()
    return 0


if __name__ == "__main__":
    args = parse_args()
    if args.loglevel:
        logger.setLevel(args.loglevel)
    raise SystemExit(asyncio.run(main(args)))
