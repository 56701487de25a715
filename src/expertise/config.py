"""Configuration loading and writing."""

from pathlib import Path

import structlog
import yaml
from pydantic import ValidationError as PydanticValidationError

from .config_models import MulchConfig
from .errors import ConfigError

logger = structlog.get_logger()

CONFIG_FILE = "mulch.config.yaml"


def load_config(config_path: Path) -> MulchConfig:
    """Read and validate a config file. A missing file is a ConfigError."""
    try:
        with open(config_path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        raise ConfigError(f"Config file not found: {config_path}")
    except OSError as e:
        raise ConfigError(f"Cannot read config file {config_path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Config file {config_path} must contain a mapping")

    try:
        return MulchConfig.from_dict(data)
    except PydanticValidationError as e:
        raise ConfigError(f"Config validation failed: {e}") from e


def dump_config(config: MulchConfig) -> str:
    return yaml.safe_dump(config.to_dict(), sort_keys=False, default_flow_style=False)


def write_config(config: MulchConfig, config_path: Path) -> None:
    config_path = Path(config_path)
    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        config_path.write_text(dump_config(config), encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot write config file {config_path}: {e}") from e
    logger.debug("config_written", path=str(config_path), domains=len(config.domains))
