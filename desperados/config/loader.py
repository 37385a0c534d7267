"""Load and save the desperados JSON configuration file."""

import json
from pathlib import Path

from loguru import logger
from pydantic import ValidationError

from desperados.config.schema import DespConfig


def get_config_path() -> Path:
    """Default configuration file location."""
    return Path.home() / ".desperados" / "config.json"


def load_config(config_path: Path | None = None) -> DespConfig:
    """Load configuration from *config_path*, falling back to defaults.

    A missing file is not an error.  A file that cannot be parsed or fails
    validation is reported and ignored.
    """
    path = config_path or get_config_path()

    if path.exists():
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
            return DespConfig.model_validate(data)
        except (json.JSONDecodeError, ValidationError, OSError) as e:
            logger.warning("[Desp/Config] failed to load {}: {}", path, e)
            logger.warning("[Desp/Config] using default configuration")

    return DespConfig()


def save_config(config: DespConfig, config_path: Path | None = None) -> None:
    """Write *config* as camelCase JSON."""
    path = config_path or get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)

    data = config.model_dump(by_alias=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)
