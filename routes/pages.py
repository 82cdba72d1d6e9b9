from pathlib import Path
from string import Template

import aiofiles
from aiohttp import web

TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"


async def render_template(name: str, **context) -> str:
    async with aiofiles.open(TEMPLATE_DIR / name, "r", encoding="utf-8") as f:
        page = await f.read()
    return Template(page).safe_substitute(context)


async def index(request: web.Request) -> web.Response:
    config = request.app["config"]
    name = "files.html" if config.pass_through else "images.html"
    html = await render_template(name, upload_route="/api")
    return web.Response(text=html, content_type="text/html")


def setup(app: web.Application):
    app.router.add_get("/", index)
