"""Service configuration."""

import json
import logging
import os
from pathlib import Path
from typing import Optional, Union

from pydantic import BaseModel, Field, ValidationError, field_validator

from deployer.errors import ConfigError
from deployer.models.device import DeviceRole

DEFAULT_CONFIG_PATH = Path("./config/deployer.json")
CONFIG_ENV_VAR = "DEPLOYER_CONFIG"


class DeployerConfig(BaseModel):
    """Deployer settings, loaded from JSON with defaults for every field."""

    backend_url: str = Field(
        default="http://localhost:9080",
        pattern=r"^https?://.+",
        description="Base URL of the device agent executing remote operations",
    )
    backend_timeout: float = Field(
        default=30.0, gt=0, description="HTTP timeout for device agent requests (s)"
    )
    report_url: Optional[str] = Field(
        default=None,
        pattern=r"^https?://.+",
        description="Optional URL that receives every relayed stage event",
    )
    host: str = Field(default="0.0.0.0", description="HTTP bind address")
    port: int = Field(default=12320, gt=0, lt=65536, description="HTTP bind port")
    log_file: str = Field(default="./logs/deployer.log", description="Rotating log path")
    log_level: str = Field(default="INFO", description="DEBUG/INFO/WARNING/ERROR")

    throttle_min_interval_ms: int = Field(default=100, ge=0)
    throttle_min_change_percent: float = Field(default=1, ge=0)
    copy_weight: float = Field(
        default=80,
        gt=0,
        lt=100,
        description="Share of a device's 0-100 scale reserved for copying",
    )
    download_weight: float = Field(
        default=20,
        ge=0,
        lt=100,
        description="Share of the overall bar reserved for the download phase",
    )

    rename_volumes: bool = Field(
        default=True, description="Rename device volumes after configuration"
    )
    volume_labels: dict[DeviceRole, str] = Field(
        default_factory=lambda: {
            DeviceRole.PRIMARY: "PRIMARY",
            DeviceRole.SECONDARY: "SECONDARY",
        },
        description="Target volume name per role",
    )

    @field_validator("log_level")
    @classmethod
    def known_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR"):
            raise ValueError(f"Unknown log level: {v}")
        return level

    @property
    def logging_level(self) -> int:
        return getattr(logging, self.log_level)


def load_config(path: Optional[Union[str, Path]] = None) -> DeployerConfig:
    """Load configuration from JSON.

    Args:
        path: Explicit config path; falls back to $DEPLOYER_CONFIG, then
            ./config/deployer.json

    Returns:
        DeployerConfig (defaults when no file exists)

    Raises:
        ConfigError: If the file exists but cannot be parsed or validated
    """
    logger = logging.getLogger("deployer.config")

    if path is None:
        path = os.environ.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_PATH
    config_path = Path(path)

    if not config_path.exists():
        logger.debug(f"No config file at {config_path}, using defaults")
        return DeployerConfig()

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f)
        config = DeployerConfig(**data)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid config JSON in {config_path}: {e}")
    except (ValidationError, TypeError) as e:
        raise ConfigError(f"Invalid config in {config_path}: {e}")

    logger.info(f"Loaded config from {config_path}")
    return config
