"""Configuration management for termbridge.

Loads settings from a YAML configuration file with environment variable
overrides (``TERMBRIDGE_`` prefix, ``__`` for nesting). Supports .env files.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, SecretStr
from pydantic_settings import BaseSettings

from termbridge.domain.models import MAX_DIMENSION

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config/termbridge.yaml")


def _default_shell() -> str:
    return os.environ.get("SHELL") or "/bin/bash"


class BridgeConfig(BaseModel):
    shell_command: str = Field(default_factory=_default_shell)
    working_directory: str | None = Field(default=None, description="Defaults to the home directory")
    environment: dict[str, str] = Field(default_factory=dict, description="Extra env vars for the shell")
    term: str = Field(default="xterm-256color")
    default_cols: int = Field(default=80, gt=0, le=MAX_DIMENSION)
    default_rows: int = Field(default=24, gt=0, le=MAX_DIMENSION)
    termination_grace_period: float = Field(default=2.0, ge=0)
    drain_timeout: float = Field(default=1.0, ge=0)
    read_chunk_size: int = Field(default=4096, gt=0)
    send_timeout: float | None = Field(default=None, gt=0)
    max_sessions: int = Field(default=0, ge=0, description="0 means unlimited")


class ServerConfig(BaseModel):
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3000, ge=1, le=65535)
    auth_token: SecretStr = Field(default=SecretStr(""), description="Empty disables token checks")


class LoggingConfig(BaseModel):
    level: str = Field(default="INFO")
    format: str = Field(
        default="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    file: str | None = Field(default=None)


class Settings(BaseSettings):
    """Root configuration for the termbridge server.

    Loads from YAML file and supports environment variable overrides.
    Reads .env files automatically.
    """

    model_config = {
        "env_prefix": "TERMBRIDGE_",
        "env_nested_delimiter": "__",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    bridge: BridgeConfig = Field(default_factory=BridgeConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # YAML values arrive as init kwargs and must lose to the environment.
        return env_settings, dotenv_settings, init_settings, file_secret_settings


def load_settings(config_path: Path | str | None = None) -> Settings:
    """Build Settings for the server.

    Sources, strongest first: process environment (``TERMBRIDGE_*`` and a
    plain ``PORT``), ``.env`` in the working directory, the YAML file,
    built-in defaults.
    """
    _export_dotenv(Path(".env"))
    overrides = _read_yaml(Path(config_path) if config_path else DEFAULT_CONFIG_PATH)
    _apply_port_env(overrides)
    return Settings(**overrides)


def _read_yaml(path: Path) -> dict:
    if not path.exists():
        logger.warning("No config file at %s; using defaults and environment", path)
        return {}
    data = yaml.safe_load(path.read_text()) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping, got {type(data).__name__}")
    logger.info("Read configuration from %s", path)
    return data


def _export_dotenv(env_path: Path) -> None:
    """Copy KEY=value pairs from ``env_path`` into os.environ.

    Variables that already hold a non-empty value are left alone. Values
    may be wrapped in single or double quotes.
    """
    if not env_path.is_file():
        return
    for raw in env_path.read_text().splitlines():
        entry = raw.strip()
        if entry.startswith("export "):
            entry = entry[len("export "):].lstrip()
        if not entry or entry.startswith("#") or "=" not in entry:
            continue
        name, _, value = (part.strip() for part in entry.partition("="))
        if len(value) >= 2 and value[0] == value[-1] and value[0] in "'\"":
            value = value[1:-1]
        if name and not os.environ.get(name):
            os.environ[name] = value


def _apply_port_env(overrides: dict) -> None:
    """Honour the conventional ``PORT`` variable used by hosting platforms.

    Only applies when neither the YAML file nor ``TERMBRIDGE_SERVER__PORT``
    chose a port.
    """
    port = os.environ.get("PORT", "")
    if not port or os.environ.get("TERMBRIDGE_SERVER__PORT"):
        return
    server = overrides.setdefault("server", {})
    if not server.get("port"):
        server["port"] = port
