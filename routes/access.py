import abc

from aiohttp import web

from log import logger
from routes.pages import render_template

COOKIE_NAME = "p"
DISABLED_SECRETS = ("", "none")


class AccessPolicy(abc.ABC):
    """Decides whether a request's credentials grant access."""

    enabled = True

    @abc.abstractmethod
    def check(self, credentials) -> bool:
        ...


class SecretCookiePolicy(AccessPolicy):
    # Plain equality against the configured secret. No hashing, no expiry.
    def __init__(self, secret: str):
        self.secret = secret
        self.enabled = secret not in DISABLED_SECRETS

    def check(self, credentials) -> bool:
        if not self.enabled:
            return True
        return credentials is not None and credentials == self.secret


def access_middleware(policy: AccessPolicy, login_route: str):
    @web.middleware
    async def middleware(request: web.Request, handler):
        if request.path == login_route or not policy.enabled:
            return await handler(request)
        if not policy.check(request.cookies.get(COOKIE_NAME)):
            logger.debug(f"Access denied for {request.method} {request.path}, redirecting to {login_route}")
            raise web.HTTPSeeOther(location=login_route)
        return await handler(request)
    return middleware


async def login_page(request: web.Request) -> web.Response:
    html = await render_template("login.html")
    return web.Response(text=html, content_type="text/html")


async def login_submit(request: web.Request) -> web.Response:
    form = await request.post()
    # stored verbatim, checked on the next request
    exc = web.HTTPSeeOther(location="/")
    exc.set_cookie(COOKIE_NAME, form.get(COOKIE_NAME, ""))
    raise exc


def setup(app: web.Application):
    config = app["config"]
    policy = SecretCookiePolicy(config.password)
    app["access_policy"] = policy
    app.middlewares.append(access_middleware(policy, config.login_route))
    app.router.add_get(config.login_route, login_page)
    app.router.add_post(config.login_route, login_submit)
    if policy.enabled:
        logger.info("Access gate enabled")
