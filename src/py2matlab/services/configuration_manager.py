"""
Configuration management for engine options.

Engine options can be kept in JSON or YAML files. A file holds a single
mapping of option names to values; unknown names are rejected so typos do
not silently fall back to defaults.
"""
from pathlib import Path
from typing import Any, Dict, Optional, Union
import logging
import json

import yaml

from ..core.errors import ConfigurationError, ErrorCodes
from ..models.engine import EngineOptions


logger = logging.getLogger(__name__)


class ConfigurationManager:
    """Loads and saves EngineOptions as JSON or YAML files."""

    SUPPORTED_FORMATS = {'.json', '.yaml', '.yml'}

    def load(self, config_file: Union[str, Path],
             overrides: Optional[Dict[str, Any]] = None) -> EngineOptions:
        """Load engine options from a file.

        Args:
            config_file: Path to a .json, .yaml or .yml file
            overrides: Values that take precedence over the file

        Returns:
            Validated EngineOptions

        Raises:
            ConfigurationError: If the file is missing, unreadable, has an
                unknown format or holds invalid options
        """
        path = Path(config_file)
        suffix = path.suffix.lower()
        if suffix not in self.SUPPORTED_FORMATS:
            raise ConfigurationError(
                f"Unsupported configuration format: {suffix or path.name}",
                error_code=ErrorCodes.CONFIG_INVALID,
                suggestions=[f"Use one of: {', '.join(sorted(self.SUPPORTED_FORMATS))}"]
            )
        if not path.exists():
            raise ConfigurationError(
                f"Configuration file not found: {path}",
                error_code=ErrorCodes.CONFIG_NOT_FOUND
            )

        try:
            with open(path, 'r', encoding='utf-8') as f:
                if suffix == '.json':
                    data = json.load(f)
                else:
                    data = yaml.safe_load(f)
        except (OSError, json.JSONDecodeError, yaml.YAMLError) as e:
            logger.error(f"Failed to read configuration from {path}: {e}")
            raise ConfigurationError(
                f"Failed to parse configuration: {e}",
                error_code=ErrorCodes.CONFIG_INVALID,
                cause=e
            )

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Configuration must be a mapping, got {type(data).__name__}",
                error_code=ErrorCodes.CONFIG_INVALID
            )

        data.update(overrides or {})
        options = self.from_dict(data)
        logger.info(f"Loaded engine options from {path}")
        return options

    def from_dict(self, data: Dict[str, Any]) -> EngineOptions:
        """Build validated options from a mapping.

        Raises:
            ConfigurationError: On unknown settings or invalid values
        """
        try:
            options = EngineOptions.from_dict(data)
        except KeyError as e:
            raise ConfigurationError(
                str(e.args[0]),
                error_code=ErrorCodes.UNKNOWN_SETTING,
                suggestions=[f"Known settings: {', '.join(EngineOptions.field_names())}"]
            )
        except TypeError as e:
            raise ConfigurationError(
                f"Invalid configuration: {e}",
                error_code=ErrorCodes.CONFIG_INVALID,
                cause=e
            )

        valid, errors = options.validate()
        if not valid:
            raise ConfigurationError(
                f"Invalid engine options: {'; '.join(errors)}",
                error_code=ErrorCodes.CONFIG_INVALID,
                context={'errors': errors}
            )
        return options

    def save(self, options: EngineOptions, config_file: Union[str, Path]) -> Path:
        """Save engine options to a file; the format follows the extension.

        Raises:
            ConfigurationError: If the format is unsupported or writing fails
        """
        path = Path(config_file)
        suffix = path.suffix.lower()
        if suffix not in self.SUPPORTED_FORMATS:
            raise ConfigurationError(
                f"Unsupported configuration format: {suffix or path.name}",
                error_code=ErrorCodes.CONFIG_SAVE_ERROR
            )

        data = options.to_dict()
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, 'w', encoding='utf-8') as f:
                if suffix == '.json':
                    json.dump(data, f, indent=2)
                else:
                    yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
        except OSError as e:
            logger.error(f"Failed to save configuration to {path}: {e}")
            raise ConfigurationError(
                f"Failed to save configuration: {e}",
                error_code=ErrorCodes.CONFIG_SAVE_ERROR,
                cause=e
            )

        logger.info(f"Saved engine options to {path}")
        return path
