"""
Configuration module for the development server.

Process-level tunables are loaded from environment variables with sensible
defaults. The per-run server configuration is built once from the command
line and never mutated afterwards.
"""

import re
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Dict, Optional, Tuple, Union

import httpx
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings


# Always excluded from the live-reload watcher
DEFAULT_IGNORE = ("node_modules", ".git", ".idea", ".vscode")

# RFC 7230 token
HEADER_NAME_RE = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")


class Settings(BaseSettings):
    """Process settings loaded from environment variables."""

    # Network
    host: str = Field(default="0.0.0.0", alias="DEVSERVER_HOST")
    port_attempts: int = Field(default=20, alias="DEVSERVER_PORT_ATTEMPTS")

    # Live reload
    reload_debounce_ms: int = Field(default=100, alias="DEVSERVER_RELOAD_DEBOUNCE_MS")

    # Shutdown
    shutdown_timeout: int = Field(default=1, alias="DEVSERVER_SHUTDOWN_TIMEOUT")  # seconds

    # Logging
    log_level: str = Field(default="info", alias="DEVSERVER_LOG_LEVEL")

    class Config:
        env_file = ".env"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


class TLSFiles(BaseModel):
    """User supplied key/certificate file locations."""

    model_config = ConfigDict(frozen=True)

    key_path: str
    cert_path: str


class ServerConfig(BaseModel):
    """Immutable configuration shared by every server component."""

    model_config = ConfigDict(frozen=True)

    requested_port: int = Field(default=8080, ge=1, le=65535)
    proxy_target: Optional[str] = None
    extra_headers: Dict[str, str] = Field(default_factory=dict)
    live_reload_disabled: bool = False
    ignore_patterns: Tuple[str, ...] = ()
    tls: Union[bool, TLSFiles] = False
    debug: bool = False
    root: Path = Field(default_factory=Path.cwd)
    host: str = "0.0.0.0"

    @field_validator("proxy_target")
    @classmethod
    def _check_proxy_target(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        try:
            url = httpx.URL(value)
        except httpx.InvalidURL as e:
            raise ValueError(f"invalid proxy URL {value!r}: {e}") from e
        if url.scheme not in ("http", "https") or not url.host:
            raise ValueError(f"proxy URL must be an absolute http(s) URL, got {value!r}")
        return value

    @field_validator("extra_headers")
    @classmethod
    def _check_header_names(cls, value: Dict[str, str]) -> Dict[str, str]:
        for name in value:
            if not HEADER_NAME_RE.match(name):
                raise ValueError(f"invalid HTTP header name {name!r}")
        return value

    @property
    def live_reload(self) -> bool:
        return not self.live_reload_disabled

    @property
    def tls_enabled(self) -> bool:
        return bool(self.tls)

    @property
    def tls_files(self) -> Optional[TLSFiles]:
        return self.tls if isinstance(self.tls, TLSFiles) else None

    @property
    def ignore_set(self) -> Tuple[str, ...]:
        """Default exclusions followed by user patterns, duplicates dropped."""
        return tuple(dict.fromkeys(DEFAULT_IGNORE + tuple(self.ignore_patterns)))


@dataclass(frozen=True)
class BoundPorts:
    """Result of port negotiation."""
    public_port: int
    internal_port: Optional[int] = None

    @property
    def content_port(self) -> int:
        """Port the static/proxy server binds."""
        return self.internal_port if self.internal_port is not None else self.public_port
