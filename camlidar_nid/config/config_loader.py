"""
Configuration Loader

Layered YAML configuration for the calibration tools, lowest priority first:

1. camlidar_nid/config/default.yaml (packaged, defines every key)
2. User files merged at runtime (load_file)
3. The session file's `settings` section
4. CAMLIDAR_NID_* environment variables
5. Command line overrides

Layers 3 and 5 belong to one run: Config.effective applies them to a copy,
so loading a session never changes the shared instance.

Usage:
    from camlidar_nid.config import get_config
    config = get_config()

    max_range = config.get('projection.max_range')
    config.load_file('site.yaml')
"""

import copy
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

DEFAULT_CONFIG_PATH = Path(__file__).parent / 'default.yaml'


def _coerce(value: str) -> Any:
    """Environment values arrive as strings; map them to bool/int/float when they parse."""
    lowered = value.strip().lower()
    if lowered in ('true', 'false'):
        return lowered == 'true'
    for cast in (int, float):
        try:
            return cast(value)
        except ValueError:
            continue
    return value


class Config:
    """
    Process-wide configuration store.

    A single instance exists per process; `Config()` and `get_config()` both
    return it. Values are addressed with dot paths such as 'optimizer.mode'.
    """

    _instance: Optional['Config'] = None

    ENV_MAPPINGS = {
        'CAMLIDAR_NID_LOG_LEVEL': 'logging.level',
        'CAMLIDAR_NID_LOG_FILE': 'logging.file.path',
        'CAMLIDAR_NID_MAX_RANGE': 'projection.max_range',
        'CAMLIDAR_NID_MAX_ITERATIONS': 'optimizer.max_iterations',
        'CAMLIDAR_NID_OPTIMIZER_MODE': 'optimizer.mode',
        'CAMLIDAR_NID_NUM_WORKERS': 'cost.num_workers',
    }

    def __new__(cls):
        if cls._instance is None:
            instance = super().__new__(cls)
            instance._data = {}
            instance.reload()
            cls._instance = instance
        return cls._instance

    @staticmethod
    def _deep_merge(base: Dict, override: Dict) -> None:
        for key, value in override.items():
            if isinstance(base.get(key), dict) and isinstance(value, dict):
                Config._deep_merge(base[key], value)
            else:
                base[key] = value

    @staticmethod
    def _set_path(node: Dict, path: str, value: Any) -> None:
        *parents, leaf = path.split('.')
        for key in parents:
            if not isinstance(node.get(key), dict):
                node[key] = {}
            node = node[key]
        node[leaf] = value

    def _apply_env_overrides(self, data: Optional[Dict] = None) -> None:
        target = self._data if data is None else data
        for env_var, path in self.ENV_MAPPINGS.items():
            raw = os.environ.get(env_var)
            if raw is not None:
                self._set_path(target, path, _coerce(raw))

    def reload(self) -> None:
        """Drop runtime overrides: re-read default.yaml and the environment."""
        self._data = {}
        if DEFAULT_CONFIG_PATH.exists():
            with open(DEFAULT_CONFIG_PATH, 'r') as f:
                self._data = yaml.safe_load(f) or {}
        self._apply_env_overrides()

    def merge(self, overrides: Dict[str, Any]) -> None:
        """Deep-merge a nested dict; environment variables still win afterwards."""
        if overrides:
            self._deep_merge(self._data, overrides)
            self._apply_env_overrides()

    def load_file(self, path: Union[str, Path]) -> None:
        """Merge a user YAML file on top of the current configuration."""
        with open(path, 'r') as f:
            self.merge(yaml.safe_load(f) or {})

    def get(self, path: str, default: Any = None) -> Any:
        """
        Look up a value by dot path, e.g. get('logging.file.path').

        Returns `default` when any segment of the path is missing.
        """
        node: Any = self._data
        for key in path.split('.'):
            if not isinstance(node, dict) or key not in node:
                return default
            node = node[key]
        return node

    def get_all(self) -> Dict[str, Any]:
        return dict(self._data)

    def effective(self, session: Optional[Dict[str, Any]] = None,
                  overrides: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Configuration for one run, leaving this instance untouched.

        Layers, lowest first: the current configuration, the session's
        `settings` section, environment variables, then `overrides` (the
        command line).
        """
        data = copy.deepcopy(self._data)
        if session:
            self._deep_merge(data, copy.deepcopy(session))
            self._apply_env_overrides(data)
        if overrides:
            self._deep_merge(data, copy.deepcopy(overrides))
        return data


def get_config() -> Config:
    """Return the process-wide configuration."""
    return Config()
