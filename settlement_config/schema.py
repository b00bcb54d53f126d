"""
Settlement settings schema.

The YAML file is parsed into these frozen types by the loader.  The
kernel never sees this module: services receive the ``SystemControl``
and ``RolePolicy`` instances built from it.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from settlement_kernel.domain.access import RolePolicy
from settlement_kernel.domain.control import SystemControl


@dataclass(frozen=True)
class DatabaseSettings:
    url: str = "sqlite:///:memory:"
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800


@dataclass(frozen=True)
class DocumentNumbering:
    """Prefixes for invoice and return numbers (``INV-2024-000001``)."""

    invoice_prefix: str = "INV"
    return_prefix: str = "RET"
    pad_width: int = 6


@dataclass(frozen=True)
class SettlementSettings:
    """Everything the settlement engine reads from configuration."""

    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    control: SystemControl = field(default_factory=SystemControl)
    numbering: DocumentNumbering = field(default_factory=DocumentNumbering)
    roles: RolePolicy = field(default_factory=RolePolicy.default)
    log_level: str = "INFO"
    checksum: str = ""
