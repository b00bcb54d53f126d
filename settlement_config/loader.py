"""
Configuration loader (``settlement_config.loader``).

Responsibility
--------------
Reads the settings YAML and parses it into the frozen types of
``settlement_config.schema``.  Runtime callers go through
``settlement_config.get_active_settings()``.

Invariants enforced
-------------------
* Unknown keys and malformed values raise ``ValueError`` naming the key;
  nothing is silently defaulted once a section is present.
* Money-like values are parsed through ``str`` into ``Decimal``.
* ``compute_checksum`` is deterministic for identical content.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from settlement_config.schema import (
    DatabaseSettings,
    DocumentNumbering,
    SettlementSettings,
)
from settlement_kernel.domain.access import DEFAULT_ROLE_SETS, Role, RolePolicy
from settlement_kernel.domain.control import SystemControl

_TOP_LEVEL_KEYS = frozenset({"database", "control", "numbering", "roles", "logging"})


def load_yaml_file(path: Path) -> dict[str, Any]:
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return data


def compute_checksum(data: dict[str, Any]) -> str:
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def _section(data: dict[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key) or {}
    if not isinstance(value, dict):
        raise ValueError(f"'{key}' must be a mapping")
    return value


def _check_keys(section: str, data: dict[str, Any], allowed: set[str]) -> None:
    unknown = set(data) - allowed
    if unknown:
        raise ValueError(f"Unknown keys in '{section}': {sorted(unknown)}")


def _decimal(section: str, key: str, value: Any) -> Decimal:
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"{section}.{key} is not a number: {value!r}") from None


def parse_database(data: dict[str, Any]) -> DatabaseSettings:
    defaults = DatabaseSettings()
    _check_keys("database", data, set(defaults.__dataclass_fields__))
    return DatabaseSettings(
        url=str(data.get("url", defaults.url)),
        echo=bool(data.get("echo", defaults.echo)),
        pool_size=int(data.get("pool_size", defaults.pool_size)),
        max_overflow=int(data.get("max_overflow", defaults.max_overflow)),
        pool_timeout=int(data.get("pool_timeout", defaults.pool_timeout)),
        pool_recycle=int(data.get("pool_recycle", defaults.pool_recycle)),
    )


_DECIMAL_CONTROL_KEYS = frozenset({
    "payout_epsilon",
    "share_tolerance",
    "planned_monthly_expenses_usd",
    "sold_out_percent",
    "nearly_sold_percent",
    "payout_progress_alert",
})
_INT_CONTROL_KEYS = frozenset({
    "inventory_code_digits",
    "inventory_code_ttl_minutes",
    "inventory_code_attempts",
})


def parse_control(data: dict[str, Any]) -> SystemControl:
    _check_keys("control", data, set(SystemControl.__dataclass_fields__))
    kwargs: dict[str, Any] = {}
    for key, value in data.items():
        if key in _DECIMAL_CONTROL_KEYS:
            kwargs[key] = _decimal("control", key, value)
        elif key in _INT_CONTROL_KEYS:
            kwargs[key] = int(value)
        else:
            kwargs[key] = str(value)
    return SystemControl(**kwargs)


def parse_numbering(data: dict[str, Any]) -> DocumentNumbering:
    defaults = DocumentNumbering()
    _check_keys("numbering", data, set(defaults.__dataclass_fields__))
    numbering = DocumentNumbering(
        invoice_prefix=str(data.get("invoice_prefix", defaults.invoice_prefix)),
        return_prefix=str(data.get("return_prefix", defaults.return_prefix)),
        pad_width=int(data.get("pad_width", defaults.pad_width)),
    )
    if numbering.invoice_prefix == numbering.return_prefix:
        raise ValueError("numbering.invoice_prefix and return_prefix must differ")
    if numbering.pad_width < 1:
        raise ValueError("numbering.pad_width must be positive")
    return numbering


def parse_roles(data: dict[str, Any]) -> RolePolicy:
    """Override role sets per operation; unlisted operations keep their defaults."""
    role_sets = dict(DEFAULT_ROLE_SETS)
    for operation, roles in data.items():
        if operation not in DEFAULT_ROLE_SETS:
            raise ValueError(f"Unknown operation in 'roles': {operation!r}")
        if not isinstance(roles, list) or not roles:
            raise ValueError(f"roles.{operation} must be a non-empty list")
        try:
            role_sets[operation] = frozenset(Role(r) for r in roles)
        except ValueError:
            raise ValueError(f"roles.{operation} names an unknown role: {roles!r}") from None
    return RolePolicy(role_sets=role_sets)


def parse_settings(data: dict[str, Any]) -> SettlementSettings:
    _check_keys("settings", data, set(_TOP_LEVEL_KEYS))
    logging_section = _section(data, "logging")
    _check_keys("logging", logging_section, {"level"})
    return SettlementSettings(
        database=parse_database(_section(data, "database")),
        control=parse_control(_section(data, "control")),
        numbering=parse_numbering(_section(data, "numbering")),
        roles=parse_roles(_section(data, "roles")),
        log_level=str(logging_section.get("level", "INFO")).upper(),
        checksum=compute_checksum(data),
    )
