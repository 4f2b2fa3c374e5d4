"""Configuration management for dstui."""

import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit

# Use tomllib on Python 3.11+, fall back to tomli for 3.10
if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

import tomli_w
from filelock import FileLock

from .models import Credentials
from .transport import DEFAULT_TIMEOUT

logger = logging.getLogger(__name__)

DEFAULT_SCHEME = "https"
DEFAULT_POLL_INTERVAL = 5.0
MIN_POLL_INTERVAL = 1.0

# Config file path
CONFIG_DIR = Path.home() / ".config" / "dstui"
CONFIG_FILE = CONFIG_DIR / "config.toml"

ENV_PREFIX = "DSTUI_"


def parse_server_address(address: str) -> tuple[str, str]:
    """Split an operator-typed server address into (scheme, host[:port]).

    The scheme defaults to https. A trailing slash is ignored.

    Example: "nas.local:5001" -> ("https", "nas.local:5001")

    Raises:
        ValueError: If the address is empty or not an http(s) host[:port].
    """
    address = address.strip().rstrip("/")
    if not address:
        raise ValueError("server address is empty")
    if "://" not in address:
        address = f"{DEFAULT_SCHEME}://{address}"

    parts = urlsplit(address)
    if parts.scheme not in ("http", "https"):
        raise ValueError(f"unsupported scheme {parts.scheme!r} (use http or https)")
    if not parts.hostname:
        raise ValueError(f"no host in {address!r}")
    if parts.path or parts.query or parts.fragment:
        raise ValueError(f"unexpected path in {address!r}")
    try:
        parts.port
    except ValueError as exc:
        raise ValueError(f"invalid port in {address!r}") from exc
    return parts.scheme, parts.netloc


@dataclass
class Config:
    """dstui configuration."""

    address: str = ""  # as typed: [scheme://]host[:port]
    username: str = ""
    secret: str = field(default="", repr=False)
    poll_interval: float = DEFAULT_POLL_INTERVAL
    verify_certificates: bool = True
    timeout: float = DEFAULT_TIMEOUT
    debug_logging: bool = False

    @property
    def scheme(self) -> str:
        return parse_server_address(self.address)[0]

    @property
    def host(self) -> str:
        return parse_server_address(self.address)[1]

    @property
    def base_url(self) -> str:
        """scheme://host[:port]. Raises ValueError for a malformed address."""
        scheme, host = parse_server_address(self.address)
        return f"{scheme}://{host}"

    @property
    def has_credentials(self) -> bool:
        return bool(self.address and self.username and self.secret)

    def credentials(self) -> Credentials:
        scheme, host = parse_server_address(self.address)
        return Credentials(host=host, scheme=scheme, username=self.username, secret=self.secret)


def _env_bool(name: str, current: bool) -> bool:
    value = os.getenv(ENV_PREFIX + name)
    if value is None:
        return current
    return value.lower() in ("true", "1", "yes")


def _env_float(name: str, current: float) -> float:
    value = os.getenv(ENV_PREFIX + name)
    if value is None:
        return current
    try:
        return float(value)
    except ValueError:
        logger.warning("Ignoring %s%s=%r: not a number", ENV_PREFIX, name, value)
        return current


def _read_file() -> dict[str, Any]:
    if not CONFIG_FILE.exists():
        return {}
    try:
        with open(CONFIG_FILE, "rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        logger.warning(f"Failed to read config file {CONFIG_FILE}: {e}")
        return {}


def load_config() -> Config:
    """Load configuration from environment, file, or defaults.

    Priority (highest to lowest):
    1. Environment variables (DSTUI_*)
    2. Config file (~/.config/dstui/config.toml)
    3. Hardcoded defaults
    """
    config = Config()

    data = _read_file()
    server = data.get("server", {})
    ui = data.get("ui", {})
    if isinstance(server, dict):
        config.address = str(server.get("address", config.address))
        config.username = str(server.get("username", config.username))
        config.secret = str(server.get("password", config.secret))
        config.verify_certificates = bool(server.get("verify_certificates", config.verify_certificates))
        timeout = server.get("timeout", config.timeout)
        if isinstance(timeout, (int, float)) and not isinstance(timeout, bool):
            config.timeout = float(timeout)
    if isinstance(ui, dict):
        interval = ui.get("poll_interval", config.poll_interval)
        if isinstance(interval, (int, float)) and not isinstance(interval, bool):
            config.poll_interval = float(interval)
    config.debug_logging = bool(data.get("debug_logging", config.debug_logging))

    # Environment variables override everything
    config.address = os.getenv(ENV_PREFIX + "ADDRESS", config.address)
    config.username = os.getenv(ENV_PREFIX + "USERNAME", config.username)
    config.secret = os.getenv(ENV_PREFIX + "PASSWORD", config.secret)
    config.poll_interval = _env_float("POLL_INTERVAL", config.poll_interval)
    config.timeout = _env_float("TIMEOUT", config.timeout)
    config.verify_certificates = _env_bool("VERIFY_CERTIFICATES", config.verify_certificates)
    config.debug_logging = _env_bool("DEBUG_LOGGING", config.debug_logging)

    config.poll_interval = max(MIN_POLL_INTERVAL, config.poll_interval)
    return config


def save_config(config: Config) -> None:
    """Save configuration to file.

    The password is stored in cleartext, so the file is created readable by
    the owner only.
    """
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)

    data: dict[str, Any] = {
        "server": {
            "address": config.address,
            "username": config.username,
            "password": config.secret,
            "verify_certificates": config.verify_certificates,
            "timeout": config.timeout,
        },
        "ui": {
            "poll_interval": config.poll_interval,
        },
        "debug_logging": config.debug_logging,
    }

    with FileLock(CONFIG_DIR / "config.toml.lock"):
        fd = os.open(CONFIG_FILE, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as f:
            tomli_w.dump(data, f)
        # O_CREAT's mode only applies to new files
        os.chmod(CONFIG_FILE, 0o600)
    logger.info("Saved configuration to %s", CONFIG_FILE)
