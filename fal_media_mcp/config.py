"""Process-wide settings and per-request configuration.

``ServerSettings`` is read once from the environment at startup.
``RequestConfig`` holds credentials for a single call and is passed
explicitly down to the upstream gateway; it is never stored on shared state.
"""

import logging
import os
import sys
import tempfile
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from .errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_PORT = 3000
DEFAULT_MAX_DATA_URL_SIZE = 2 * 1024 * 1024

# Accepted query/config names for the fal.ai credential, in priority order.
FAL_KEY_NAMES = ("FAL_KEY", "falKey")

CONFIG_SCHEMA = {
    "type": "object",
    "properties": {
        "FAL_KEY": {
            "type": "string",
            "title": "fal.ai API key",
            "description": "Your fal.ai API key (also accepted as 'falKey')",
        },
    },
    "required": ["FAL_KEY"],
}


# ============================================================================
# Environment helpers
# ============================================================================

def _env_flag(env: Mapping[str, str], name: str, default: bool) -> bool:
    value = env.get(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    value = env.get(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning("Ignoring %s=%r: not an integer, using %d", name, value, default)
        return default


def is_headless(env: Mapping[str, str]) -> bool:
    """True when no desktop session can show an opened file."""
    if env.get("PORT") or env.get("KUBERNETES_SERVICE_HOST") or env.get("CI"):
        return True
    if Path("/.dockerenv").exists():
        return True
    if sys.platform.startswith("linux"):
        return not (env.get("DISPLAY") or env.get("WAYLAND_DISPLAY"))
    return False


def _usable_directory(path: Path) -> bool:
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.warning("Download directory %s unavailable: %s", path, e)
        return False
    return os.access(path, os.W_OK)


def resolve_download_path(requested: Optional[str]) -> Optional[Path]:
    """Pick the download directory, falling back to a temp path in restricted sandboxes."""
    primary = Path(requested).expanduser() if requested else Path.home() / "Downloads"
    if _usable_directory(primary):
        return primary

    fallback = Path(tempfile.gettempdir()) / "fal-downloads"
    if _usable_directory(fallback):
        logger.warning("Falling back to download directory %s", fallback)
        return fallback

    logger.warning("No writable download directory; media will not be saved locally")
    return None


# ============================================================================
# Settings
# ============================================================================

class ServerSettings(BaseModel):
    """Startup configuration for the server process."""
    model_config = ConfigDict(frozen=True)

    download_path: Optional[Path] = None
    enable_data_urls: bool = False
    max_data_url_size: int = DEFAULT_MAX_DATA_URL_SIZE
    autoopen: bool = False
    use_http: bool = False
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    port_is_exact: bool = False
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None, force_http: bool = False) -> "ServerSettings":
        env = os.environ if env is None else env

        headless = is_headless(env)
        autoopen = _env_flag(env, "AUTOOPEN", True) and not headless
        if headless and _env_flag(env, "AUTOOPEN", True):
            logger.info("Headless environment detected; auto-open disabled")

        explicit_port = env.get("PORT")
        use_http = bool(explicit_port) or env.get("MCP_TRANSPORT") == "http" or force_http

        return cls(
            download_path=resolve_download_path(env.get("DOWNLOAD_PATH")),
            enable_data_urls=env.get("ENABLE_DATA_URLS") == "true",
            max_data_url_size=_env_int(env, "MAX_DATA_URL_SIZE", DEFAULT_MAX_DATA_URL_SIZE),
            autoopen=autoopen,
            use_http=use_http,
            host=env.get("HOST") or "0.0.0.0",
            port=int(explicit_port) if explicit_port else DEFAULT_PORT,
            port_is_exact=bool(explicit_port),
            log_level=(env.get("LOG_LEVEL") or "INFO").upper(),
        )

    @property
    def max_data_url_size_mb(self) -> int:
        return round(self.max_data_url_size / 1024 / 1024)


class RequestConfig(BaseModel):
    """Credentials governing one call's upstream invocation."""
    model_config = ConfigDict(frozen=True)

    fal_key: Optional[str] = None

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "RequestConfig":
        env = os.environ if env is None else env
        return cls(fal_key=env.get("FAL_KEY") or None)

    def merged(self, overrides: Mapping[str, Any]) -> "RequestConfig":
        """Return a copy with credentials taken from ``overrides`` where present.

        Keys are looked up at the top level, then under a nested ``config``
        object (``?config.falKey=...``).
        """
        for source in (overrides, overrides.get("config")):
            if not isinstance(source, Mapping):
                continue
            for name in FAL_KEY_NAMES:
                value = source.get(name)
                if isinstance(value, str) and value:
                    return RequestConfig(fal_key=value)
        return self

    def require_fal_key(self) -> str:
        if not self.fal_key:
            raise ConfigError(
                "FAL_KEY is required. Please configure your fal.ai API key.",
                field="FAL_KEY",
            )
        return self.fal_key


# ============================================================================
# Query parsing
# ============================================================================

def parse_dotted_params(items: Iterable[Tuple[str, str]]) -> Dict[str, Any]:
    """Unflatten dotted query keys: ``a.b=1&a.c=2`` -> ``{"a": {"b": "1", "c": "2"}}``.

    Later keys win; a scalar is replaced when a nested key needs its slot.
    """
    result: Dict[str, Any] = {}
    for key, value in items:
        parts = [part for part in key.split(".") if part]
        if not parts:
            continue
        node = result
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            node = child
        node[parts[-1]] = value
    return result
