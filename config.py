"""Configuration settings for the Upload Server."""
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

# Default config file location
CONFIG_PATH = "./config.yaml"

# Storage limits
MAX_LENGTH = 10 * 1024 * 1024  # 10MB
CHUNK_SIZE = 8192  # 8KB
MAX_FORM_OVERHEAD = 64 * 1024  # multipart boundaries and part headers

# Idle keep-alive connections are closed after this many seconds
KEEP_ALIVE_TIMEOUT = 5

# Stored files never change, so they are cacheable forever
CACHE_CONTROL = "public, max-age=315360000"

# Staging directory created under upload_dir when temp_dir is not set
TEMP_DIR_NAME = ".tmp"


class ConfigError(Exception):
    """Raised when the configuration file cannot be loaded or is invalid."""


class ServerConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    host: str
    port: int
    upload_dir: Path
    access_prefix: str = Field(min_length=1)
    username: str
    password: str
    max_upload_size: int = Field(default=MAX_LENGTH, gt=0)
    temp_dir: Optional[Path] = None

    @property
    def route_prefix(self) -> str:
        return self.access_prefix.strip("/")

    @property
    def staging_dir(self) -> Path:
        return self.temp_dir if self.temp_dir is not None else self.upload_dir / TEMP_DIR_NAME


def load_config(path: str = CONFIG_PATH) -> ServerConfig:
    """Load and validate the YAML configuration file at ``path``."""
    try:
        with open(path, "r") as f:
            raw = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"fail to open config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"fail to decode config file {path}: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigError(f"config file {path} must contain a mapping")

    try:
        return ServerConfig(**raw)
    except ValidationError as e:
        raise ConfigError(f"invalid config file {path}: {e}") from e
