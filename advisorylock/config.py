import logging
import os
from copy import deepcopy
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import yaml


logger = logging.getLogger(__name__)


_BASE_DIR = Path(__file__).resolve().parent.parent
_DEFAULT_CONFIG_DIR = _BASE_DIR / "config"
_DEFAULT_SETTINGS_PATH = _DEFAULT_CONFIG_DIR / "settings.yaml"

SUPPORTED_DB_BACKENDS = ("asyncpg", "sqlalchemy")

_DEFAULT_SETTINGS_DATA: Dict[str, Any] = {
    "database": {
        "backend": "asyncpg",
        "pool_min_size": 1,
        "pool_max_size": 10,
        "command_timeout_seconds": 30.0,
        "echo": False,
    },
    "jobs": {
        "heartbeat_key": "advisorylock-heartbeat",
        "heartbeat_interval_seconds": 60.0,
    },
}

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _resolve_config_path(candidate: Optional[str], default: Path) -> Path:
    if not candidate:
        return default
    path = Path(candidate)
    if not path.is_absolute():
        path = _BASE_DIR / path
    return path


def _deep_merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in overrides.items():
        if (
            isinstance(value, dict)
            and isinstance(base.get(key), dict)
        ):
            base[key] = _deep_merge(dict(base[key]), value)
        else:
            base[key] = value
    return base


def load_settings(path: Optional[str] = None) -> Dict[str, Any]:
    """Return built-in defaults deep merged with the YAML settings file."""

    resolved_path = _resolve_config_path(
        path or os.getenv("ADVISORYLOCK_SETTINGS_PATH"),
        _DEFAULT_SETTINGS_PATH,
    )
    raw_data: Dict[str, Any] = {}
    try:
        with resolved_path.open("r", encoding="utf-8") as handle:
            loaded = yaml.safe_load(handle) or {}
            if not isinstance(loaded, dict):
                logger.warning(
                    "Settings file did not contain a mapping; using defaults.",
                    extra={
                        "category": "config",
                        "config_path": str(resolved_path),
                        "stage": "settings_load",
                        "error_type": "InvalidMapping",
                    },
                )
            else:
                raw_data = loaded
    except FileNotFoundError:
        logger.debug(
            "Settings file not found; using default values.",
            extra={
                "category": "config",
                "config_path": str(resolved_path),
                "stage": "settings_load",
            },
        )
    except yaml.YAMLError as exc:
        logger.warning(
            "Failed to parse settings file; using defaults.",
            extra={
                "category": "config",
                "config_path": str(resolved_path),
                "stage": "settings_load",
                "error_type": type(exc).__name__,
            },
            exc_info=True,
        )
    return _deep_merge(deepcopy(_DEFAULT_SETTINGS_DATA), raw_data)


class Config:
    def __init__(self, settings_path: Optional[str] = None):
        self.settings: Dict[str, Any] = load_settings(settings_path)
        database = self.settings.get("database") or {}
        jobs = self.settings.get("jobs") or {}

        self.DATABASE_URL: str = os.getenv("ADVISORYLOCK_DATABASE_URL", "").strip()

        backend_raw = (
            os.getenv("ADVISORYLOCK_DB_BACKEND")
            or str(database.get("backend", "asyncpg"))
        ).strip().lower()
        if backend_raw not in SUPPORTED_DB_BACKENDS:
            logger.warning(
                "Unsupported database backend '%s'; falling back to asyncpg.",
                backend_raw,
                extra={"category": "config", "stage": "database_backend"},
            )
            backend_raw = "asyncpg"
        self.DB_BACKEND: str = backend_raw

        self.DB_POOL_MIN_SIZE: int = self._setting(
            self._parse_positive_int, "ADVISORYLOCK_DB_POOL_MIN_SIZE", database, "database", "pool_min_size", 1
        )
        self.DB_POOL_MAX_SIZE: int = self._setting(
            self._parse_positive_int, "ADVISORYLOCK_DB_POOL_MAX_SIZE", database, "database", "pool_max_size", 10
        )
        if self.DB_POOL_MAX_SIZE < self.DB_POOL_MIN_SIZE:
            logger.warning(
                "Pool max size %s is below min size %s; raising it to match.",
                self.DB_POOL_MAX_SIZE,
                self.DB_POOL_MIN_SIZE,
                extra={"category": "config", "stage": "database_pool"},
            )
            self.DB_POOL_MAX_SIZE = self.DB_POOL_MIN_SIZE

        self.DB_COMMAND_TIMEOUT: float = self._setting(
            self._parse_positive_float,
            "ADVISORYLOCK_DB_COMMAND_TIMEOUT",
            database,
            "database",
            "command_timeout_seconds",
            30.0,
        )

        echo_raw = os.getenv("ADVISORYLOCK_DATABASE_ECHO")
        if echo_raw is None:
            echo_raw = database.get("echo", False)
        self.DATABASE_ECHO: bool = (
            echo_raw if isinstance(echo_raw, bool) else str(echo_raw).strip().lower() in _TRUE_VALUES
        )

        self.DEBUG: bool = bool(
            os.getenv("ADVISORYLOCK_DEBUG", default="0").strip().lower() in _TRUE_VALUES
        )

        self.HEARTBEAT_LOCK_KEY: str = (
            os.getenv("ADVISORYLOCK_HEARTBEAT_KEY", "").strip()
            or str(jobs.get("heartbeat_key", "advisorylock-heartbeat"))
        )
        self.HEARTBEAT_INTERVAL: float = self._setting(
            self._parse_positive_float,
            "ADVISORYLOCK_HEARTBEAT_INTERVAL",
            jobs,
            "jobs",
            "heartbeat_interval_seconds",
            60.0,
        )

    @staticmethod
    def _setting(
        parse: Callable[..., Any],
        env_var: str,
        section: Dict[str, Any],
        section_name: str,
        key: str,
        default: Any,
    ) -> Any:
        """Environment value, else the settings file value, else ``default``."""

        value = parse(os.getenv(env_var), source=env_var)
        if value is None:
            value = parse(section.get(key), source=f"{section_name}.{key}")
        return default if value is None else value

    @property
    def ASYNCPG_DSN(self) -> str:  # noqa: N802 - mirrors the settings attributes
        """``DATABASE_URL`` without an SQLAlchemy driver suffix."""

        url = self.DATABASE_URL
        for prefix in ("postgresql+asyncpg://", "postgres+asyncpg://"):
            if url.startswith(prefix):
                return "postgresql://" + url[len(prefix):]
        return url

    @property
    def SQLALCHEMY_URL(self) -> str:  # noqa: N802 - mirrors the settings attributes
        """``DATABASE_URL`` with the asyncpg driver selected for SQLAlchemy."""

        url = self.DATABASE_URL
        for prefix in ("postgresql://", "postgres://"):
            if url.startswith(prefix):
                return "postgresql+asyncpg://" + url[len(prefix):]
        return url

    @staticmethod
    def _parse_positive_int(
        raw_value: Any, *, source: str
    ) -> Optional[int]:
        if raw_value is None or raw_value == "":
            return None
        try:
            value = int(raw_value)
        except (TypeError, ValueError):
            logger.warning(
                "Invalid integer value '%s' for %s; ignoring it.",
                raw_value,
                source,
            )
            return None
        if value <= 0:
            logger.warning(
                "%s must be greater than zero; ignoring %s.",
                source,
                raw_value,
            )
            return None
        return value

    @staticmethod
    def _parse_positive_float(
        raw_value: Any, *, source: str
    ) -> Optional[float]:
        if raw_value is None or raw_value == "":
            return None
        try:
            value = float(raw_value)
        except (TypeError, ValueError):
            logger.warning(
                "Invalid float value '%s' for %s; ignoring it.",
                raw_value,
                source,
            )
            return None
        if value <= 0:
            logger.warning(
                "%s must be greater than zero; ignoring %s.",
                source,
                raw_value,
            )
            return None
        return value
