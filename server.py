import importlib
import os

from aiohttp import web

from config import Config
from log import logger
from tgclient import Backend

ROUTES_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "routes")


def load_routes(app: web.Application, directory: str = ROUTES_DIR, package: str = "routes"):
    for filename in sorted(os.listdir(directory)):
        if filename.endswith(".py") and not filename.startswith("_"):
            ext = f"{package}.{filename[:-3]}"
            try:
                module = importlib.import_module(ext)
                setup = getattr(module, "setup", None)
                if setup is None:
                    continue
                setup(app)
                logger.info(f"Successfully loaded {ext}")
            except Exception as e:
                logger.error(f"Failed to load {ext}", exc_info=e)
                raise


async def _close_backend(app: web.Application):
    await app["backend"].close()


def create_app(config: Config, backend: Backend) -> web.Application:
    # multipart uploads are streamed, so the body size limit only covers forms
    app = web.Application()
    app["config"] = config
    app["backend"] = backend
    load_routes(app)
    app.on_cleanup.append(_close_backend)
    return app
