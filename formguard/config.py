"""Config loading for FormGuard.

Reads `.formguard/config.yaml` (or `~/.formguard/config.yaml`).
Raises SystemExit on parse errors, missing `version` field or invalid values.
If no config file is found, returns default values (safe to run without config).

Config search order:
  1. `config_path` argument (if provided, for testing or explicit override)
  2. FORMGUARD_CONFIG environment variable (if set)
  3. `.formguard/config.yaml` (working directory, for development)
  4. `~/.formguard/config.yaml` (home directory, for deployments)

Environment variable overrides:
  FORMGUARD_PORT       : overrides dashboard.port
  FORMGUARD_SOURCE_URL : overrides source.base_url
  FORMGUARD_CONFIG     : sets an explicit config file path to try first

The record-source API key is never read from the file. `source.api_key_env`
names the environment variable that holds it (default FORMGUARD_API_KEY).
"""

from __future__ import annotations

import math
import os
import sys
from dataclasses import dataclass, field
from typing import Any, Optional

import yaml

from formguard.constants import (
    DEFAULT_DETECTION_LIMIT,
    DEFAULT_EXPORT_LIMIT,
    DEFAULT_PAGE_SIZE,
    DEFAULT_REFRESH_INTERVAL_S,
    DEFAULT_SOURCE_TIMEOUT_S,
    DEFAULT_WINDOW_DAYS,
    MAX_DETECTION_LIMIT,
    MAX_EXPORT_LIMIT,
    MAX_PAGE_SIZE,
    MIN_REFRESH_INTERVAL_S,
)
from formguard.utils.logger import get_logger

logger = get_logger(__name__)

# ─── Version constants ────────────────────────────────────────────────────────

SUPPORTED_CONFIG_VERSION = 1

SUPPORTED_VERSIONS: frozenset[int] = frozenset({1})

DEFAULT_CONFIG_PATHS = [
    ".formguard/config.yaml",
    os.path.expanduser("~/.formguard/config.yaml"),
]


# ─── Dataclasses ─────────────────────────────────────────────────────────────


@dataclass
class SourceConfig:
    """Record source (analytics API) configuration.

    base_url:        Origin serving /api/analytics/blacklist and
                     /api/analytics/blocked-validations.
    api_key_env:     Name of the env var holding the X-API-KEY value.
    detection_limit: `limit` sent to the blocked-validations endpoint.
    timeout_s:       Total timeout per source request.
    """

    base_url: str = "http://127.0.0.1:8787"
    api_key_env: str = "FORMGUARD_API_KEY"
    detection_limit: int = DEFAULT_DETECTION_LIMIT
    timeout_s: float = DEFAULT_SOURCE_TIMEOUT_S

    @property
    def api_key(self) -> Optional[str]:
        """Resolve the API key from the environment at call time."""
        return os.environ.get(self.api_key_env) or None


@dataclass
class EngineConfig:
    """Timeline view defaults."""

    page_size: int = DEFAULT_PAGE_SIZE
    default_window_days: int = DEFAULT_WINDOW_DAYS  # 0 disables the default window
    export_limit: int = DEFAULT_EXPORT_LIMIT


@dataclass
class RefreshConfig:
    """Periodic snapshot refresh."""

    enabled: bool = True
    interval_s: float = DEFAULT_REFRESH_INTERVAL_S


@dataclass
class DashboardConfig:
    """Dashboard API binding configuration."""

    host: str = "127.0.0.1"
    port: int = 8788


@dataclass
class Config:
    """Root configuration object populated from .formguard/config.yaml.

    All fields have safe defaults; FormGuard can start without any config file.
    """

    version: int = SUPPORTED_CONFIG_VERSION
    source: SourceConfig = field(default_factory=SourceConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)
    refresh: RefreshConfig = field(default_factory=RefreshConfig)
    dashboard: DashboardConfig = field(default_factory=DashboardConfig)
    path: Optional[str] = None  # Path to the loaded config file

    @classmethod
    def defaults(cls) -> "Config":
        """Return a fully-default Config (no file required)."""
        return cls()

    @classmethod
    def from_dict(cls, raw: dict, path: Optional[str] = None) -> "Config":
        """Construct Config from a parsed YAML dict.

        Merges user-supplied values onto defaults; unknown keys are silently ignored.

        Args:
            raw:  Parsed YAML dict (must already be validated for version field).
            path: Path to the config file (stored in Config.path).

        Returns:
            Config with all fields populated from raw + defaults for missing fields.

        Raises:
            SystemExit(1): On a value outside its allowed range.
        """
        # ── Source ────────────────────────────────────────────────────────────
        source_raw = _section(raw, "source")
        source = SourceConfig(
            base_url=str(source_raw.get("base_url", SourceConfig.base_url)).rstrip("/"),
            api_key_env=str(source_raw.get("api_key_env", SourceConfig.api_key_env)),
            detection_limit=_int_in_range(
                "source.detection_limit",
                source_raw.get("detection_limit", DEFAULT_DETECTION_LIMIT),
                1, MAX_DETECTION_LIMIT,
            ),
            timeout_s=_positive_float(
                "source.timeout_s", source_raw.get("timeout_s", DEFAULT_SOURCE_TIMEOUT_S)
            ),
        )

        # ── Engine ────────────────────────────────────────────────────────────
        engine_raw = _section(raw, "engine")
        engine = EngineConfig(
            page_size=_int_in_range(
                "engine.page_size",
                engine_raw.get("page_size", DEFAULT_PAGE_SIZE), 1, MAX_PAGE_SIZE,
            ),
            default_window_days=_int_in_range(
                "engine.default_window_days",
                engine_raw.get("default_window_days", DEFAULT_WINDOW_DAYS), 0, 365,
            ),
            export_limit=_int_in_range(
                "engine.export_limit",
                engine_raw.get("export_limit", DEFAULT_EXPORT_LIMIT), 1, MAX_EXPORT_LIMIT,
            ),
        )

        # ── Refresh ───────────────────────────────────────────────────────────
        refresh_raw = _section(raw, "refresh")
        interval_s = _positive_float(
            "refresh.interval_s", refresh_raw.get("interval_s", DEFAULT_REFRESH_INTERVAL_S)
        )
        if interval_s < MIN_REFRESH_INTERVAL_S:
            _fail(
                f"CONFIG ERROR: refresh.interval_s must be at least "
                f"{MIN_REFRESH_INTERVAL_S} seconds, got {interval_s}."
            )
        refresh = RefreshConfig(
            enabled=_bool("refresh.enabled", refresh_raw.get("enabled", True)),
            interval_s=interval_s,
        )

        # ── Dashboard ─────────────────────────────────────────────────────────
        dashboard_raw = _section(raw, "dashboard")
        dashboard = DashboardConfig(
            host=str(dashboard_raw.get("host", "127.0.0.1")),
            port=_int_in_range(
                "dashboard.port", dashboard_raw.get("port", 8788), 1, 65535
            ),
        )

        return cls(
            version=raw.get("version", SUPPORTED_CONFIG_VERSION),
            source=source,
            engine=engine,
            refresh=refresh,
            dashboard=dashboard,
            path=path,
        )


# ─── Validation helpers ──────────────────────────────────────────────────────


def _fail(msg: str) -> None:
    print(msg, file=sys.stderr)
    raise SystemExit(1)


def _section(raw: dict, name: str) -> dict:
    value = raw.get(name) or {}
    if not isinstance(value, dict):
        _fail(f"CONFIG ERROR: '{name}' must be a mapping, got {type(value).__name__}.")
    return value


def _int_in_range(key: str, value: Any, low: int, high: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        _fail(f"CONFIG ERROR: {key} must be an integer, got '{value}'.")
    if not low <= value <= high:
        _fail(f"CONFIG ERROR: {key} must be between {low} and {high}, got {value}.")
    return value


def _bool(key: str, value: Any) -> bool:
    if not isinstance(value, bool):
        _fail(f"CONFIG ERROR: {key} must be true or false, got '{value}'.")
    return value


def _positive_float(key: str, value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        _fail(f"CONFIG ERROR: {key} must be a number, got '{value}'.")
    if not math.isfinite(number):
        _fail(f"CONFIG ERROR: {key} must be a finite number, got {number}.")
    if number <= 0:
        _fail(f"CONFIG ERROR: {key} must be positive, got {number}.")
    return number


# ─── Config loading ───────────────────────────────────────────────────────────


def load_config(config_path: Optional[str] = None) -> Config:
    """Load and validate FormGuard configuration.

    Search order:
      1. ``config_path`` argument
      2. ``FORMGUARD_CONFIG`` environment variable
      3. ``.formguard/config.yaml``
      4. ``~/.formguard/config.yaml``

    If no file is found at any of these paths, returns default Config (not an error).
    If a file is found but invalid, writes error to stderr and raises SystemExit(1).
    Environment overrides are applied in both cases.

    Raises:
        SystemExit(1): On YAML parse error, missing ``version`` field, unsupported
                       version, an out-of-range value, or an invalid ``FORMGUARD_PORT``.
    """
    search_paths: list[str] = []
    if config_path:
        search_paths.append(config_path)
    env_config = os.environ.get("FORMGUARD_CONFIG")
    if env_config:
        search_paths.append(env_config)
    search_paths.extend(DEFAULT_CONFIG_PATHS)

    found_path: Optional[str] = None
    for candidate in search_paths:
        expanded = os.path.expanduser(candidate)
        if os.path.isfile(expanded):
            found_path = expanded
            break

    if found_path is None:
        logger.info("No config file found, using defaults", searched=search_paths)
        config = Config.defaults()
        _apply_env_overrides(config)
        return config

    logger.info("Loading config", path=found_path)

    try:
        with open(found_path) as fh:
            raw = yaml.safe_load(fh)
    except yaml.YAMLError as exc:
        _fail(
            f"CONFIG ERROR: Failed to parse {found_path}: {exc}\n"
            "FormGuard refuses to start with an invalid config. "
            "Check the YAML syntax and try again."
        )
    except OSError as exc:
        _fail(f"CONFIG ERROR: Could not read {found_path}: {exc}")

    if not isinstance(raw, dict):
        if raw is None:
            _fail(
                f"CONFIG ERROR: {found_path} is missing the required 'version' field.\n"
                "Add 'version: 1' to the top of your config file."
            )
        _fail(
            f"CONFIG ERROR: {found_path} is not a valid YAML mapping.\n"
            "The config file must be a YAML dictionary at the top level."
        )

    version = raw.get("version")
    if version is None:
        _fail(
            f"CONFIG ERROR: {found_path} is missing the required 'version' field.\n"
            "Add 'version: 1' to the top of your config file."
        )

    if version not in SUPPORTED_VERSIONS:
        _fail(
            f"CONFIG ERROR: Unsupported config version: {version}. "
            f"Supported versions: {sorted(SUPPORTED_VERSIONS)}."
        )

    config = Config.from_dict(raw, path=found_path)
    _apply_env_overrides(config)

    if config.dashboard.host == "0.0.0.0":
        logger.warning(
            "SECURITY WARNING: the FormGuard dashboard API is configured to bind on "
            "0.0.0.0 (all interfaces). It serves block and detection data without "
            "authentication. Recommended: dashboard.host: '127.0.0.1'."
        )

    logger.info(
        "Config loaded",
        path=found_path,
        version=config.version,
        source_base_url=config.source.base_url,
        page_size=config.engine.page_size,
    )
    return config


def _apply_env_overrides(config: Config) -> None:
    """Apply environment variable overrides to a Config object in-place.

    Handles:
      FORMGUARD_PORT       : overrides config.dashboard.port (raises SystemExit(1) if invalid)
      FORMGUARD_SOURCE_URL : overrides config.source.base_url
    """
    env_port = os.environ.get("FORMGUARD_PORT")
    if env_port is not None:
        try:
            config.dashboard.port = int(env_port)
        except ValueError:
            _fail(
                f"CONFIG ERROR: FORMGUARD_PORT environment variable is not a valid "
                f"integer: '{env_port}'"
            )

    env_source_url = os.environ.get("FORMGUARD_SOURCE_URL")
    if env_source_url:
        config.source.base_url = env_source_url.rstrip("/")
