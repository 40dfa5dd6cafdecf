"""Configuration manager for loading and merging configs."""

import logging
from pathlib import Path
from typing import Any

import toml
from pydantic import ValidationError as PydanticValidationError

from convene.config.schema import ConveneConfig, get_config_file
from convene.errors import ValidationError

logger = logging.getLogger(__name__)

PROJECT_CONFIG_NAME = ".convene.toml"


class ConfigManager:
    """Manages configuration loading, merging, and access.

    This is the only place in convene that reads configuration storage;
    components receive plain arguments or a pydantic section.
    """

    _config: ConveneConfig | None = None

    @classmethod
    def get_config(cls) -> ConveneConfig:
        """Get the current configuration, loading if necessary."""
        if cls._config is None:
            cls._config = cls.load_config()
        return cls._config

    @classmethod
    def load_config(cls) -> ConveneConfig:
        """Load configuration from all sources.

        Priority (highest to lowest):
        1. Project-level config (.convene.toml in cwd or parents)
        2. User config (~/.config/convene/config.toml)
        3. Default config
        """
        config_dict: dict[str, Any] = ConveneConfig.default().model_dump(
            mode="json", by_alias=True, exclude_none=True
        )
        loaded_files = 0

        for config_file in (get_config_file(), cls._find_project_config()):
            if config_file is None or not config_file.exists():
                continue
            try:
                loaded = toml.load(config_file)
            except (toml.TomlDecodeError, OSError) as e:
                raise ValidationError(f"Could not read {config_file}: {e}") from e
            logger.debug("Loaded configuration from %s", config_file)
            config_dict = cls._deep_merge(config_dict, loaded)
            loaded_files += 1

        if not loaded_files:
            return ConveneConfig.default()
        try:
            return ConveneConfig.model_validate(config_dict)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid configuration: {e}") from e

    @classmethod
    def reload(cls) -> ConveneConfig:
        """Force reload configuration from disk."""
        cls._config = cls.load_config()
        return cls._config

    @classmethod
    def _find_project_config(cls) -> Path | None:
        """Find project-level config file by searching up from cwd."""
        cwd = Path.cwd()
        for parent in [cwd, *cwd.parents]:
            config_file = parent / PROJECT_CONFIG_NAME
            if config_file.exists():
                return config_file
            # Stop at home directory
            if parent == Path.home():
                break
        return None

    @classmethod
    def _deep_merge(
        cls, base: dict[str, Any], override: dict[str, Any]
    ) -> dict[str, Any]:
        """Deep merge two dictionaries, with override taking precedence."""
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = cls._deep_merge(result[key], value)
            else:
                result[key] = value
        return result

    @classmethod
    def as_dict(cls) -> dict[str, Any]:
        """Current configuration as plain TOML-compatible data."""
        return cls.get_config().model_dump(mode="json", by_alias=True, exclude_none=True)

    @classmethod
    def get_value(cls, key_path: str, default: Any = None) -> Any:
        """Get a configuration value by dot-separated path.

        Example: get_value("debate.max_rounds")
        """
        current: Any = cls.as_dict()
        for key in key_path.split("."):
            if isinstance(current, dict) and key in current:
                current = current[key]
            else:
                return default
        return current
