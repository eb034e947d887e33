"""Layered configuration: defaults file, system file, user file, environment."""

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Type, TypeVar, get_args

import platformdirs
import toml
from pydantic import BaseModel

logger = logging.getLogger(__name__)

T = TypeVar('T', bound=BaseModel)

CONFIG_FILENAME = "config.toml"
DEFAULTS_FILENAME = "defaults.toml"


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Merge override into a copy of base, recursing into nested tables."""
    result = dict(base)
    for key, value in override.items():
        if isinstance(result.get(key), dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


class ConfigLoader:
    """Builds one validated config object from every configuration source.

    Later layers override earlier ones key by key:

    1. defaults file: the explicit path, else ./config/defaults.toml, else
       defaults.toml in the user config directory
    2. system file: /etc/<app>/config.toml (%PROGRAMDATA%\\<app> on Windows)
    3. user file: config.toml in the platformdirs user config directory
    4. environment: <APP>_<SECTION>_<KEY>, e.g. DOCDIVE_SCAN_ASSUME_UTF8=true

    Files that contributed are listed in `sources` after load().
    """

    def __init__(self, app_name: str = "docdive", config_class: Type[T] = None) -> None:
        self.app_name = app_name
        self.config_class = config_class
        self.sources: List[Path] = []

    @property
    def env_prefix(self) -> str:
        return f"{self.app_name.upper().replace('-', '_')}_"

    def load(self, defaults_path: Optional[Path] = None) -> T:
        """Merge all layers and validate the result.

        Args:
            defaults_path: Defaults file to use instead of the search path

        Returns:
            config_class instance, or the merged dict if no class was given

        Raises:
            pydantic.ValidationError: If the merged settings are invalid
            toml.TomlDecodeError: If a config file is not valid TOML
        """
        self.sources = []
        layers = (
            ("defaults", self._load_defaults(defaults_path)),
            ("system", self._load_system_config()),
            ("user", self._load_user_config()),
            ("environment", self._env_overrides()),
        )

        merged: Dict[str, Any] = {}
        for name, layer in layers:
            if layer:
                logger.debug(f"Applying {name} configuration: {sorted(layer)}")
                merged = deep_merge(merged, layer)

        if self.config_class is None:
            return merged
        return self.config_class(**merged)

    def _read(self, path: Path) -> Dict[str, Any]:
        data = toml.load(path)
        self.sources.append(path)
        logger.debug(f"Read configuration file {path}")
        return data

    def _load_defaults(self, defaults_path: Optional[Path] = None) -> Dict[str, Any]:
        if defaults_path is not None:
            if defaults_path.exists():
                return self._read(defaults_path)
            logger.warning(f"Defaults file {defaults_path} not found, searching the usual locations")

        candidates = (
            Path.cwd() / "config" / DEFAULTS_FILENAME,
            self._user_config_dir() / DEFAULTS_FILENAME,
        )
        for path in candidates:
            if path.exists():
                return self._read(path)
        return {}

    def _load_system_config(self) -> Optional[Dict[str, Any]]:
        if os.name == "nt":
            system_dir = Path(os.environ.get("PROGRAMDATA", "C:\\ProgramData")) / self.app_name
        else:
            system_dir = Path("/etc") / self.app_name

        path = system_dir / CONFIG_FILENAME
        return self._read(path) if path.exists() else None

    def _user_config_dir(self) -> Path:
        return Path(platformdirs.user_config_dir(appname=self.app_name, appauthor=False))

    def _load_user_config(self) -> Optional[Dict[str, Any]]:
        path = self._user_config_dir() / CONFIG_FILENAME
        if not path.exists():
            logger.debug(f"No user config at {path}")
            return None
        return self._read(path)

    def _env_overrides(self) -> Dict[str, Any]:
        """Settings from <APP>_<SECTION>_<KEY> variables.

        Section names contain no underscore, so everything after the
        first one is the key: DOCDIVE_SCAN_DELETE_TEMP_FILES sets
        scan.delete_temp_files.
        """
        overrides: Dict[str, Dict[str, Any]] = {}
        for env_key, env_value in os.environ.items():
            if not env_key.startswith(self.env_prefix):
                continue
            section, _, key = env_key[len(self.env_prefix):].lower().partition("_")
            if section and key:
                if not self._is_string_setting(section, key):
                    env_value = self._convert_env_value(env_value)
                overrides.setdefault(section, {})[key] = env_value
        return overrides

    def _is_string_setting(self, section: str, key: str) -> bool:
        """Whether config_class declares section.key as text, e.g. a password of digits."""
        if self.config_class is None:
            return False
        section_field = self.config_class.model_fields.get(section)
        if section_field is None:
            return False
        section_model = section_field.annotation
        if not (isinstance(section_model, type) and issubclass(section_model, BaseModel)):
            return False
        key_field = section_model.model_fields.get(key)
        if key_field is None:
            return False
        return key_field.annotation is str or str in get_args(key_field.annotation)

    def _convert_env_value(self, value: str) -> Any:
        """Convert an environment string to bool, int or float where it reads as one."""
        lowered = value.lower()
        if lowered in ("true", "yes"):
            return True
        if lowered in ("false", "no"):
            return False

        try:
            return float(value) if "." in value else int(value)
        except ValueError:
            return value
