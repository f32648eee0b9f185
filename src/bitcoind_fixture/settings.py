"""Environment overrides, YAML loading and logging configuration.

Provides ``apply_env_overrides`` to layer ``BITCOIND_FIXTURE_*`` variables
on top of default ``FixtureSettings`` values, ``load_settings`` to read a
YAML settings file, and ``configure_logging`` to attach handlers to the
``bitcoind_fixture`` logger.
"""

from __future__ import annotations

import logging
import math
import os
from pathlib import Path
from typing import Any

import yaml

from bitcoind_fixture.models import FixtureSettings

# ---------------------------------------------------------------------------
# Environment variable support
# ---------------------------------------------------------------------------

_ENV_FIELD_MAP: dict[str, str] = {
    "BITCOIND_FIXTURE_TIMEOUT": "timeout_seconds",
    "BITCOIND_FIXTURE_LOG_LEVEL": "log_level",
    "TEMPDIR_ROOT": "tempdir_root",
}
"""Maps environment variable names to FixtureSettings field names."""


def apply_env_overrides(settings: FixtureSettings) -> FixtureSettings:
    """Layer ``BITCOIND_FIXTURE_*`` and ``TEMPDIR_ROOT`` onto *settings*.

    Only fields still at their ``FixtureSettings`` default are replaced, so
    a value the caller passed explicitly always wins. Values that do not
    parse, or that the validators would reject (a non-positive timeout, a
    ``TEMPDIR_ROOT`` that is not an existing directory), are skipped.

    Args:
        settings: The settings to apply overrides to.

    Returns:
        The updated settings, or *settings* itself when no override applies.
    """
    defaults = FixtureSettings()
    overrides: dict[str, Any] = {}

    for env_var, field_name in _ENV_FIELD_MAP.items():
        env_value = os.environ.get(env_var)
        if env_value is None:
            continue

        if getattr(settings, field_name) != getattr(defaults, field_name):
            continue

        parsed = _parse_env_value(field_name, env_value)
        if parsed is not None:
            overrides[field_name] = parsed

    if not overrides:
        return settings

    return settings.model_copy(update=overrides)


def _parse_env_value(field_name: str, raw: str) -> Any:
    """Parse a raw env var string into the type expected by *field_name*.

    Returns:
        The parsed value, or ``None`` if parsing fails or would violate
        validators.
    """
    if field_name == "log_level":
        return raw if raw.strip() else None

    if field_name == "tempdir_root":
        return raw if Path(raw).is_dir() else None

    if field_name == "timeout_seconds":
        try:
            value = float(raw)
        except ValueError:
            return None
        if not math.isfinite(value) or value <= 0:
            return None
        return value

    return None


def load_settings(path: str) -> FixtureSettings:
    """Load ``FixtureSettings`` from a YAML mapping.

    Args:
        path: Path to the YAML file.

    Returns:
        The validated settings.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the file does not parse to a mapping or fails
            validation.
    """
    file_path = Path(path)
    if not file_path.exists():
        msg = f"settings file not found: {path}"
        raise FileNotFoundError(msg)

    with open(file_path, encoding="utf-8") as f:
        data = yaml.safe_load(f)

    if data is None:
        data = {}
    if not isinstance(data, dict):
        msg = f"settings file must contain a YAML mapping, got {type(data).__name__}"
        raise ValueError(msg)

    return FixtureSettings(**data)


# ---------------------------------------------------------------------------
# Logging configuration
# ---------------------------------------------------------------------------

_LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s — %(message)s"


def configure_logging(settings: FixtureSettings) -> None:
    """Configure Python logging for the fixture.

    Sets up the ``"bitcoind_fixture"`` logger with a console handler and
    an optional file handler. Calling it again for the same file adds no
    further handlers.

    Args:
        settings: Settings providing ``log_level`` and optional ``log_file``.
    """
    pkg_logger = logging.getLogger("bitcoind_fixture")
    pkg_logger.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))

    if not any(
        type(h) is logging.StreamHandler for h in pkg_logger.handlers
    ):
        console = logging.StreamHandler()
        console.setFormatter(logging.Formatter(_LOG_FORMAT))
        pkg_logger.addHandler(console)

    if settings.log_file is not None:
        has_file = any(
            isinstance(h, logging.FileHandler)
            and getattr(h, "baseFilename", None) == str(Path(settings.log_file).resolve())
            for h in pkg_logger.handlers
        )
        if not has_file:
            file_handler = logging.FileHandler(settings.log_file)
            file_handler.setFormatter(logging.Formatter(_LOG_FORMAT))
            pkg_logger.addHandler(file_handler)
