# FlightQuery Config Manager
"""
flightquery.api.config - 設定マネージャー
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml

from flightquery.api.base import FlightQueryConfig
from flightquery.errors import ConfigurationError

# 設定ファイルの探索順
CONFIG_ENV_VAR = "FLIGHTQUERY_CONFIG"
CONFIG_SEARCH_PATHS: tuple[str, ...] = (
    "flightquery.yaml",
    "flightquery.yml",
    "config/flightquery.yaml",
)

_LOG_LEVELS = ("debug", "info", "warning", "error", "critical")


def find_config_path(start: str | Path | None = None) -> Path | None:
    """設定ファイルを探索

    環境変数 FLIGHTQUERY_CONFIG が最優先。
    """
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path)

    base = Path(start) if start else Path.cwd()
    for candidate in CONFIG_SEARCH_PATHS:
        path = base / candidate
        if path.exists():
            return path
    return None


class ConfigManager:
    """設定マネージャー"""

    def __init__(self, config_path: str | Path | None = None):
        self.config_path = Path(config_path) if config_path else None
        self._config: FlightQueryConfig | None = None

    @classmethod
    def from_yaml(cls, path: str | Path) -> ConfigManager:
        """YAMLファイルから読み込み"""
        manager = cls(path)
        manager.load()
        return manager

    @classmethod
    def from_dict(cls, config_dict: dict[str, Any]) -> ConfigManager:
        """辞書から作成"""
        manager = cls()
        manager._config = cls._parse_config(config_dict)
        return manager

    @classmethod
    def from_config(cls, config: FlightQueryConfig) -> ConfigManager:
        """FlightQueryConfigから作成"""
        manager = cls()
        manager._config = config
        return manager

    def load(self) -> FlightQueryConfig:
        """設定を読み込み"""
        if not self.config_path or not self.config_path.exists():
            self._config = FlightQueryConfig()
            return self._config

        try:
            with open(self.config_path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(
                f"Failed to read config: {e}",
                path=str(self.config_path),
                cause=e,
            ) from e

        if not isinstance(data, dict):
            raise ConfigurationError(
                "Config file must contain a mapping",
                path=str(self.config_path),
            )

        self._config = self._parse_config(data)
        return self._config

    def save(self, path: str | Path | None = None) -> None:
        """設定を保存"""
        if self._config is None:
            return

        save_path = Path(path) if path else self.config_path
        if save_path is None:
            raise ValueError("No path specified for saving config")

        save_path.parent.mkdir(parents=True, exist_ok=True)

        data = self._config_to_dict(self._config)
        with open(save_path, "w", encoding="utf-8") as f:
            yaml.dump(data, f, default_flow_style=False, allow_unicode=True, sort_keys=False)

    @staticmethod
    def _parse_config(data: dict[str, Any]) -> FlightQueryConfig:
        """設定をパース"""
        defaults = FlightQueryConfig()

        # server / sql / segments のネストにも対応
        flat: dict[str, Any] = {}
        for key, value in data.items():
            if key in ("server", "sql", "segments") and isinstance(value, dict):
                for sub_key, sub_value in value.items():
                    flat[f"sql_{sub_key}" if key == "sql" else sub_key] = sub_value
            else:
                flat[key] = value

        known = set(defaults.to_dict())
        unknown = sorted(set(flat) - known)
        if unknown:
            raise ConfigurationError(f"Unknown config keys: {', '.join(unknown)}")

        def optional_float(key: str) -> float | None:
            value = flat.get(key, getattr(defaults, key))
            if value is None:
                return None
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
                raise ConfigurationError(f"'{key}' must be a positive number", value=value)
            return float(value)

        def text(key: str) -> str:
            value = flat.get(key, getattr(defaults, key))
            if not isinstance(value, str) or not value.strip():
                raise ConfigurationError(f"'{key}' must be a non-empty string", value=value)
            return value

        sql_indent = flat.get("sql_indent", defaults.sql_indent)
        if isinstance(sql_indent, bool) or not isinstance(sql_indent, int) or sql_indent < 0:
            raise ConfigurationError("'sql_indent' must be a non-negative integer", value=sql_indent)

        sql_dialect = flat.get("sql_dialect", defaults.sql_dialect)
        if sql_dialect is not None and not isinstance(sql_dialect, str):
            raise ConfigurationError("'sql_dialect' must be a string", value=sql_dialect)

        log_level = text("log_level").lower()
        if log_level not in _LOG_LEVELS:
            raise ConfigurationError(
                f"'log_level' must be one of: {', '.join(_LOG_LEVELS)}",
                value=log_level,
            )

        return FlightQueryConfig(
            base_url=text("base_url"),
            endpoint=text("endpoint"),
            query_param=text("query_param"),
            timeout_seconds=optional_float("timeout_seconds"),
            read_timeout_seconds=optional_float("read_timeout_seconds"),
            sql_dialect=sql_dialect or None,
            sql_indent=sql_indent,
            separator=text("separator"),
            item_marker=text("item_marker"),
            summary_marker=text("summary_marker"),
            log_level=log_level,
        )

    @staticmethod
    def _config_to_dict(config: FlightQueryConfig) -> dict[str, Any]:
        """FlightQueryConfigを辞書に変換"""
        return {
            "server": {
                "base_url": config.base_url,
                "endpoint": config.endpoint,
                "query_param": config.query_param,
                "timeout_seconds": config.timeout_seconds,
                "read_timeout_seconds": config.read_timeout_seconds,
            },
            "sql": {
                "dialect": config.sql_dialect,
                "indent": config.sql_indent,
            },
            "segments": {
                "separator": config.separator,
                "item_marker": config.item_marker,
                "summary_marker": config.summary_marker,
            },
            "log_level": config.log_level,
        }

    @property
    def config(self) -> FlightQueryConfig:
        """設定を取得"""
        if self._config is None:
            self._config = self.load()
        return self._config


def load_config(path: str | Path | None = None) -> FlightQueryConfig:
    """設定を読み込むヘルパー関数

    パス省略時は find_config_path で探索する。
    """
    manager = ConfigManager(path or find_config_path())
    return manager.load()
