"""Configuration module for desperados."""

from desperados.config.loader import get_config_path, load_config, save_config
from desperados.config.schema import DespConfig, MulticastConfig, RangerConfig

__all__ = [
    "DespConfig",
    "MulticastConfig",
    "RangerConfig",
    "get_config_path",
    "load_config",
    "save_config",
]
