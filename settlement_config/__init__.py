"""
settlement_config -- single entry point for settlement settings.

Responsibility:
    ``get_active_settings()`` is the only way runtime code obtains
    configuration.  It reads ``defaults.yaml`` (or an explicit path),
    applies the ``DATABASE_URL`` environment override and returns frozen
    ``SettlementSettings``.

Architecture position:
    Configuration.  Sits above ``settlement_kernel``; the kernel never
    imports this package.

Failure modes:
    - ``FileNotFoundError`` for a missing settings file.
    - ``ValueError`` for unknown keys or malformed values.

Audit relevance:
    Every call logs ``settings_loaded`` with the content checksum, so a
    run can be tied to the exact settings it used.
"""

from __future__ import annotations

import dataclasses
import os
from pathlib import Path

from settlement_config.loader import load_yaml_file, parse_settings
from settlement_config.schema import (
    DatabaseSettings,
    DocumentNumbering,
    SettlementSettings,
)
from settlement_kernel.logging_config import get_logger

_logger = get_logger("config")

DEFAULT_SETTINGS_PATH = Path(__file__).parent / "defaults.yaml"


def get_active_settings(path: Path | str | None = None) -> SettlementSettings:
    settings_path = Path(path) if path is not None else DEFAULT_SETTINGS_PATH
    settings = parse_settings(load_yaml_file(settings_path))

    database_url = os.environ.get("DATABASE_URL")
    if database_url:
        settings = dataclasses.replace(
            settings,
            database=dataclasses.replace(settings.database, url=database_url),
        )

    _logger.info(
        "settings_loaded",
        extra={
            "path": str(settings_path),
            "checksum": settings.checksum,
            "dialect": settings.database.url.split(":", 1)[0],
        },
    )
    return settings


__all__ = [
    "DEFAULT_SETTINGS_PATH",
    "DatabaseSettings",
    "DocumentNumbering",
    "SettlementSettings",
    "get_active_settings",
]
