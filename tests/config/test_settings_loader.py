"""
Tests for settings loading.

Covers:
- Shipped defaults parse into the built-in parameters
- Per-section parsing and rejection of unknown keys
- DATABASE_URL override and the settings_loaded record
"""

from decimal import Decimal

import pytest
import yaml

from settlement_config import DEFAULT_SETTINGS_PATH, get_active_settings
from settlement_config.loader import (
    compute_checksum,
    load_yaml_file,
    parse_control,
    parse_numbering,
    parse_roles,
    parse_settings,
)
from settlement_kernel.domain.access import Operation, Role
from settlement_kernel.domain.control import SystemControl


def _write(tmp_path, data) -> str:
    path = tmp_path / "settings.yaml"
    path.write_text(yaml.safe_dump(data))
    return str(path)


class TestDefaults:
    def test_shipped_defaults_match_builtin_control(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        settings = get_active_settings()

        assert settings.control == SystemControl()
        assert settings.numbering.invoice_prefix == "INV"
        assert settings.roles.allowed(Operation.PERIODS_UNLOCK) == frozenset({Role.SUPER_ADMIN})
        assert settings.log_level == "INFO"
        assert len(settings.checksum) == 64

    def test_database_url_override(self, monkeypatch, captured_logs):
        monkeypatch.setenv("DATABASE_URL", "postgresql://localhost/settlement")
        settings = get_active_settings(DEFAULT_SETTINGS_PATH)

        assert settings.database.url == "postgresql://localhost/settlement"
        loaded = [r for r in captured_logs() if r["message"] == "settings_loaded"]
        assert loaded[-1]["dialect"] == "postgresql"

    def test_checksum_is_deterministic(self):
        data = load_yaml_file(DEFAULT_SETTINGS_PATH)
        assert compute_checksum(data) == compute_checksum(dict(reversed(list(data.items()))))


class TestSections:
    def test_control_decimals_parsed(self):
        control = parse_control({"payout_epsilon": "0.001", "inventory_code_digits": 4})
        assert control.payout_epsilon == Decimal("0.001")
        assert control.inventory_code_range == (1000, 9999)

    def test_control_unknown_key(self):
        with pytest.raises(ValueError, match="control"):
            parse_control({"payout_epsilonn": "0.1"})

    def test_control_bad_number(self):
        with pytest.raises(ValueError):
            parse_control({"share_tolerance": "lots"})

    def test_numbering_prefixes_must_differ(self):
        with pytest.raises(ValueError):
            parse_numbering({"invoice_prefix": "DOC", "return_prefix": "DOC"})

    def test_numbering_pad_width(self):
        with pytest.raises(ValueError):
            parse_numbering({"pad_width": 0})

    def test_roles_override(self):
        policy = parse_roles({"sales.manage": ["ACCOUNTANT"]})
        assert policy.allowed(Operation.SALES_MANAGE) == frozenset({Role.ACCOUNTANT})
        assert Role.ADMIN in policy.allowed(Operation.CONTAINERS_MANAGE)

    @pytest.mark.parametrize(
        "roles",
        [
            {"sales.destroy": ["ADMIN"]},
            {"sales.manage": ["JANITOR"]},
            {"sales.manage": []},
        ],
    )
    def test_roles_rejected(self, roles):
        with pytest.raises(ValueError):
            parse_roles(roles)


class TestParseSettings:
    def test_unknown_top_level_key(self):
        with pytest.raises(ValueError, match="settings"):
            parse_settings({"metrics": {}})

    def test_empty_file_uses_defaults(self, tmp_path, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        path = tmp_path / "empty.yaml"
        path.write_text("")

        settings = get_active_settings(path)
        assert settings.database.url == "sqlite:///:memory:"
        assert settings.control == SystemControl()

    def test_log_level_uppercased(self, tmp_path, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        settings = get_active_settings(_write(tmp_path, {"logging": {"level": "debug"}}))
        assert settings.log_level == "DEBUG"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_settings(tmp_path / "absent.yaml")

    def test_non_mapping_rejected(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ValueError):
            load_yaml_file(path)
