"""
Configuration schema and loader for screepsapi.

Uses Pydantic for validation. Server entries can come from keyword
arguments, environment variables (``SCREEPS_*``, optionally from a .env
file) or the unified ``.screeps.yaml`` config file.
"""

from __future__ import annotations

import logging
import os
import re
import sys
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import urlsplit

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, SecretStr

from screepsapi.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

OFFICIAL_HOST_PATTERN = re.compile(r"screeps\.com")
SOCKET_PATH_SUFFIX = "socket/websocket"


class Compression(str, Enum):
    """Decompression applied to ``gz:`` tagged payloads."""

    DEFLATE = "deflate"  # zlib-wrapped deflate
    RAW_DEFLATE = "raw_deflate"
    GZIP = "gzip"


class ServerConfig(BaseModel):
    """Connection settings for one game server."""

    host: str = Field(default="screeps.com", description="Server hostname")
    port: int = Field(default=443, description="Server port")
    secure: bool = Field(default=True, description="Use https/wss")
    path: str = Field(default="/", description="Path prefix, e.g. '/ptr'")
    token: Optional[str] = Field(
        default=None, repr=False, description="Auth token (persistent or from sign-in)"
    )
    username: Optional[str] = Field(default=None, description="Username or email")
    password: Optional[SecretStr] = Field(
        default=None, repr=False, exclude=True, description="Account password"
    )
    shard: str = Field(default="shard0", description="Default shard for shard-aware endpoints")
    compression: Compression = Field(
        default=Compression.DEFLATE,
        description="Decompression used for gz: socket frames",
    )
    # Deprecated in the config file format, kept for old files
    ptr: bool = Field(default=False, description="Use the public test realm path")
    season: bool = Field(default=False, description="Use the seasonal server path")

    @classmethod
    def from_url(cls, url: str, **overrides: Any) -> "ServerConfig":
        """Build a config from a base URL such as ``http://localhost:21025/``."""
        parts = urlsplit(url)
        secure = parts.scheme in ("https", "wss")
        data: Dict[str, Any] = {
            "host": parts.hostname or "localhost",
            "port": parts.port or (443 if secure else 80),
            "secure": secure,
            "path": parts.path or "/",
        }
        data.update(overrides)
        return cls(**data)

    @classmethod
    def from_env(cls, *, load_env_file: bool = True, **overrides: Any) -> "ServerConfig":
        """
        Build a config from ``SCREEPS_*`` environment variables.

        Args:
            load_env_file: Load a .env file from the working directory first
            **overrides: Explicit values, highest priority
        """
        if load_env_file:
            load_dotenv()

        env_map = {
            "host": "SCREEPS_HOST",
            "port": "SCREEPS_PORT",
            "token": "SCREEPS_TOKEN",
            "username": "SCREEPS_USERNAME",
            "password": "SCREEPS_PASSWORD",
            "shard": "SCREEPS_SHARD",
        }
        data: Dict[str, Any] = {}
        for field_name, env_name in env_map.items():
            value = os.getenv(env_name)
            if value:
                data[field_name] = value
        if os.getenv("SCREEPS_SECURE"):
            data["secure"] = os.getenv("SCREEPS_SECURE", "").lower() in ("1", "true", "yes")
        data.update(overrides)
        return cls(**data)

    @property
    def effective_path(self) -> str:
        """Path prefix with legacy flags applied, always slash-terminated."""
        path = self.path
        if self.ptr:
            path = "/ptr"
        if self.season:
            path = "/season"
        if not path.startswith("/"):
            path = "/" + path
        if not path.endswith("/"):
            path += "/"
        return path

    @property
    def base_url(self) -> str:
        scheme = "https" if self.secure else "http"
        return f"{scheme}://{self.host}:{self.port}{self.effective_path}"

    @property
    def socket_url(self) -> str:
        """Base URL rewritten to the websocket scheme plus the socket suffix."""
        return socket_url_for(self.base_url)

    @property
    def is_official(self) -> bool:
        return OFFICIAL_HOST_PATTERN.search(self.host) is not None

    @property
    def password_value(self) -> Optional[str]:
        return self.password.get_secret_value() if self.password else None

    def __str__(self) -> str:
        return (
            f"ServerConfig(url={self.base_url}, shard={self.shard}, "
            f"username={self.username}, credentials=<MASKED>)"
        )


def socket_url_for(base_url: str) -> str:
    """Rewrite ``http[s]://...`` to ``ws[s]://...`` and append the socket path."""
    if base_url.startswith("https://"):
        url = "wss://" + base_url[len("https://"):]
    elif base_url.startswith("http://"):
        url = "ws://" + base_url[len("http://"):]
    else:
        url = base_url
    if not url.endswith("/"):
        url += "/"
    return url + SOCKET_PATH_SUFFIX


class SocketConfig(BaseModel):
    """Socket session behaviour."""

    model_config = ConfigDict(extra="forbid")

    reconnect: bool = Field(default=True, description="Reconnect after an unexpected close")
    resubscribe: bool = Field(default=True, description="Replay subscriptions after auth")
    max_retries: int = Field(default=10, ge=1, description="Reconnect attempts before giving up")
    base_retry_delay: float = Field(default=0.1, gt=0, description="First backoff delay (seconds)")
    max_retry_delay: float = Field(default=60.0, gt=0, description="Backoff cap (seconds)")
    ping_interval: float = Field(default=10.0, gt=0, description="Keep-alive ping interval (seconds)")
    auth_timeout: float = Field(default=10.0, gt=0, description="Socket auth handshake timeout (seconds)")

    def retry_delay(self, attempt: int) -> float:
        """Backoff before reconnect attempt ``attempt`` (0-based)."""
        return min(self.max_retry_delay, self.base_retry_delay * (2 ** attempt))


class ConfigManager:
    """
    Finds and caches the unified YAML config file.

    File format::

        servers:
          main:
            host: screeps.com
            secure: true
            token: ...
        configs:
          my-tool:
            key: value
    """

    FILE_NAMES = ("config.yaml", "config.yml")
    DOT_FILE_NAMES = (".screeps.yaml", ".screeps.yml")

    def __init__(self, extra_paths: Optional[List[Path]] = None):
        self._config: Optional[Dict[str, Any]] = None
        self._extra_paths = [Path(p) for p in (extra_paths or [])]
        self.path: Optional[Path] = None

    def search_paths(self) -> List[Path]:
        """Candidate config files, in priority order."""
        paths: List[Path] = list(self._extra_paths)
        if os.getenv("SCREEPS_CONFIG"):
            paths.append(Path(os.environ["SCREEPS_CONFIG"]))

        paths.extend(Path.cwd() / name for name in self.DOT_FILE_NAMES)

        if sys.platform == "win32":
            appdata = os.getenv("APPDATA")
            if appdata:
                paths.extend(Path(appdata) / "screeps" / name for name in self.FILE_NAMES)
        else:
            xdg = os.getenv("XDG_CONFIG_HOME")
            if xdg:
                paths.extend(Path(xdg) / "screeps" / name for name in self.FILE_NAMES)
            home = os.getenv("HOME")
            if home:
                paths.extend(
                    Path(home) / ".config" / "screeps" / name for name in self.FILE_NAMES
                )
                paths.extend(Path(home) / name for name in self.DOT_FILE_NAMES)
        return paths

    def refresh(self) -> Optional[Dict[str, Any]]:
        self._config = None
        self.path = None
        return self.get_config()

    def get_config(self) -> Optional[Dict[str, Any]]:
        """Return the first config file found, or None."""
        if self._config is not None:
            return self._config

        for path in self.search_paths():
            data = self.load_config(path)
            if data is None:
                continue
            if not isinstance(data, dict) or not isinstance(data.get("servers"), dict):
                raise ConfigurationError(
                    f"Invalid config: 'servers' object does not exist in '{path}'",
                    details={"path": str(path)},
                )
            logger.debug("[Config] Loaded %s", path)
            self._config = data
            self.path = path
            return data
        return None

    @staticmethod
    def load_config(path: Path) -> Optional[Dict[str, Any]]:
        """Parse one YAML file; None if it does not exist."""
        try:
            with open(path, "r", encoding="utf-8") as f:
                return yaml.safe_load(f)
        except FileNotFoundError:
            return None

    def servers(self) -> List[str]:
        config = self.get_config()
        return list(config["servers"]) if config else []

    def server_config(self, server: str = "main") -> ServerConfig:
        config = self.get_config()
        if config is None:
            raise ConfigurationError("No valid config found")
        entry = config["servers"].get(server)
        if entry is None:
            raise ConfigurationError(
                f"Server '{server}' does not exist in '{self.path}'",
                details={"server": server},
            )
        return ServerConfig(**entry)

    def app_config(self, name: str) -> Dict[str, Any]:
        config = self.get_config() or {}
        return dict((config.get("configs") or {}).get(name) or {})
