import os
from dataclasses import dataclass
from typing import Mapping, Optional

MB = 1024 * 1024
# Bot API ceiling for files fetched through getFile
MAX_OBJECT_SIZE = 20 * MB
FILE_ROUTE = "/d/"
LOGIN_ROUTE = "/pwd"
PASS_THROUGH_MODE = "p"


class ConfigError(Exception):
    pass


@dataclass(frozen=True)
class Config:
    """Process-wide settings, built once at startup and read-only afterwards."""

    token: str
    channel: str
    base_url: str = ""
    mode: str = ""
    password: str = ""
    port: int = 8088
    chunk_size: int = 10 * MB
    manifest_hold: float = 10.0
    file_route: str = FILE_ROUTE
    login_route: str = LOGIN_ROUTE

    @property
    def pass_through(self) -> bool:
        return self.mode == PASS_THROUGH_MODE

    def public_url(self, reference: str) -> str:
        return self.base_url.rstrip("/") + self.file_route + reference


def _int_setting(environ: Mapping[str, str], key: str, default: int) -> int:
    raw = environ.get(key, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{key} must be an integer, got {raw!r}") from None


def load_config(environ: Optional[Mapping[str, str]] = None) -> Config:
    if environ is None:
        environ = os.environ

    token = environ.get("TOKEN", "").strip()
    if not token:
        raise ConfigError("TOKEN not found in environment or .env file")
    channel = environ.get("TARGET", "").strip()
    if not channel:
        raise ConfigError("TARGET not found in environment or .env file")

    chunk_size_mb = _int_setting(environ, "CHUNK_SIZE_MB", 10)
    if not 0 < chunk_size_mb * MB < MAX_OBJECT_SIZE:
        raise ConfigError(f"CHUNK_SIZE_MB must be between 1 and {MAX_OBJECT_SIZE // MB - 1}")

    hold_raw = environ.get("MANIFEST_HOLD_SECONDS", "").strip()
    try:
        manifest_hold = float(hold_raw) if hold_raw else 10.0
    except ValueError:
        raise ConfigError(f"MANIFEST_HOLD_SECONDS must be a number, got {hold_raw!r}") from None

    return Config(
        token=token,
        channel=channel,
        base_url=environ.get("URL", "").strip(),
        mode=environ.get("MODE", "").strip(),
        password=environ.get("PASS", ""),
        port=_int_setting(environ, "PORT", 8088),
        chunk_size=chunk_size_mb * MB,
        manifest_hold=manifest_hold,
    )
