"""Loading and writing route_mocker configuration files.

A configuration file is YAML mirroring ``MockingConfig``::

    interception:
      base_url: https://app.test
      scope_precedence: page
    fetch:
      timeout: 10

``ROUTEMOCK_`` environment variables override file values, with ``__``
separating nested keys (``ROUTEMOCK_FETCH__TIMEOUT=5``).
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import ValidationError

from .settings import MockingConfig
from ...utils.logging import get_logger

logger = get_logger(__name__)

ENV_PREFIX = "ROUTEMOCK_"
DEFAULT_CONFIG_PATH = Path("config/default.yaml")


class ConfigManager:
    """Reads, validates and writes the configuration of one file."""

    def __init__(self, config_path: Optional[Path] = None):
        """Initialize the configuration manager.

        Args:
            config_path: YAML file to manage, defaults to config/default.yaml
        """
        self.config_path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
        self._config: Optional[MockingConfig] = None

    def load_config(self) -> MockingConfig:
        """Parse the file, apply environment overrides and validate.

        The result is cached; use ``reload_config`` to read the file again.

        Raises:
            FileNotFoundError: If the file does not exist
            yaml.YAMLError: If the file is not a YAML mapping
            ValidationError: If a value is out of range or unknown
        """
        if self._config is not None:
            return self._config

        data = _merge(self._read_file(), self._env_overrides())
        try:
            self._config = MockingConfig(**data)
        except ValidationError as e:
            logger.error(f"Invalid configuration in {self.config_path}: {e.error_count()} error(s)")
            raise

        logger.info(f"Configuration loaded from {self.config_path}")
        return self._config

    def _read_file(self) -> Dict[str, Any]:
        if not self.config_path.exists():
            logger.error(f"Configuration file not found: {self.config_path}")
            raise FileNotFoundError(self.config_path)

        with open(self.config_path, 'r', encoding='utf-8') as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                logger.error(f"Cannot parse {self.config_path}: {e}")
                raise

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise yaml.YAMLError(f"Top level of {self.config_path} must be a mapping")
        return data

    def _env_overrides(self) -> Dict[str, Any]:
        """Nested mapping built from ``ROUTEMOCK_*`` variables.

        Values stay strings; the settings models coerce each one to the
        type of its field.
        """
        overrides: Dict[str, Any] = {}
        for name, raw in os.environ.items():
            if not name.upper().startswith(ENV_PREFIX):
                continue
            *sections, field = name[len(ENV_PREFIX):].lower().split("__")
            target = overrides
            for section in sections:
                target = target.setdefault(section, {})
            target[field] = raw
        return overrides

    def validate_config(self) -> bool:
        """True if the file loads and validates."""
        return not self.check_config()

    def check_config(self) -> List[str]:
        """Describe every problem with the file, empty when it is valid."""
        self._config = None
        try:
            self.load_config()
        except FileNotFoundError:
            return [f"file not found: {self.config_path}"]
        except yaml.YAMLError as e:
            return [f"invalid YAML: {e}"]
        except ValidationError as e:
            return [
                f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
                for error in e.errors()
            ]
        return []

    def save_config(self, config: MockingConfig, output_path: Optional[Path] = None) -> Path:
        """Write ``config`` as YAML, sections in schema order.

        Returns:
            Path of the written file
        """
        output_path = Path(output_path) if output_path else self.config_path
        output_path.parent.mkdir(parents=True, exist_ok=True)

        with open(output_path, 'w', encoding='utf-8') as f:
            yaml.safe_dump(config.model_dump(mode="json"), f,
                           default_flow_style=False, indent=2, sort_keys=False)

        logger.info(f"Configuration written to {output_path}")
        return output_path

    def create_default_config(self, output_path: Optional[Path] = None) -> Path:
        """Write the default configuration, ignoring the environment."""
        return self.save_config(MockingConfig.model_construct(), output_path)

    def get_config(self) -> MockingConfig:
        return self._config if self._config is not None else self.load_config()

    def reload_config(self) -> MockingConfig:
        """Discard the cached configuration and load the file again."""
        self._config = None
        return self.load_config()


def _merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged
