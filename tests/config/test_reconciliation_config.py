"""
Tests for reconciliation configuration.

Covers:
- Schema defaults and validation
- from_dict parsing (YAML-shaped input)
- YAML loading, checksums and the get_active_config entry point
"""

from decimal import Decimal

import pytest
import yaml

from ledger_config import DEFAULT_CONFIG_PATH, get_active_config
from ledger_config.loader import compute_checksum, load_config, load_yaml_file
from ledger_config.schema import ReconciliationConfig
from ledger_kernel.domain.records import CategoryKind, NumberingSettings
from ledger_kernel.exceptions import InvalidConfigurationError


class TestSchemaDefaults:
    """Tests for ReconciliationConfig defaults."""

    def test_defaults(self):
        """Defaults match the documented values."""
        config = ReconciliationConfig.with_defaults()

        assert config.tolerance == Decimal("0.01")
        assert config.aging_boundaries == (30, 60, 90)
        assert config.recurring_due_days == 7
        assert config.recurring_max_catch_up == 60
        assert config.month_placeholder == "{Month}"
        assert config.deposit_first is False

    def test_category_names_cover_every_kind(self):
        """Every category kind has a fallback name."""
        config = ReconciliationConfig()

        for kind in CategoryKind:
            assert config.category_name(kind)
        assert config.category_name(CategoryKind.SECURITY_DEPOSIT) == "Security Deposit"

    def test_default_numbering(self):
        """Numbering defaults come from the prefix/padding settings."""
        config = ReconciliationConfig(invoice_prefix="RENT-", invoice_padding=3)

        assert config.default_numbering() == NumberingSettings(
            prefix="RENT-", next_number=1, padding=3
        )
        assert config.default_numbering().format(7) == "RENT-007"


class TestSchemaValidation:
    """Tests for __post_init__ validation."""

    def test_negative_tolerance_rejected(self):
        with pytest.raises(InvalidConfigurationError) as exc_info:
            ReconciliationConfig(tolerance=Decimal("-0.01"))

        assert exc_info.value.field == "tolerance"

    def test_unsorted_boundaries_rejected(self):
        with pytest.raises(InvalidConfigurationError):
            ReconciliationConfig(aging_boundaries=(60, 30))

    def test_duplicate_boundaries_rejected(self):
        with pytest.raises(InvalidConfigurationError):
            ReconciliationConfig(aging_boundaries=(30, 30, 90))

    def test_non_positive_boundary_rejected(self):
        with pytest.raises(InvalidConfigurationError):
            ReconciliationConfig(aging_boundaries=(0, 30))

    def test_zero_catch_up_rejected(self):
        with pytest.raises(InvalidConfigurationError):
            ReconciliationConfig(recurring_max_catch_up=0)

    def test_missing_category_name_rejected(self):
        with pytest.raises(InvalidConfigurationError) as exc_info:
            ReconciliationConfig(category_names={CategoryKind.RENTAL_INCOME: "Rent"})

        assert exc_info.value.field == "category_names"

    def test_float_tolerance_rejected(self):
        """Floats never become money."""
        with pytest.raises(TypeError):
            ReconciliationConfig(tolerance=0.01)


class TestFromDict:
    """Tests for from_dict parsing."""

    def test_float_tolerance_from_yaml_parsed_via_text(self):
        """YAML floats go through their text form."""
        config = ReconciliationConfig.from_dict({"tolerance": 0.05})

        assert config.tolerance == Decimal("0.05")

    def test_partial_category_names_merge_with_defaults(self):
        config = ReconciliationConfig.from_dict(
            {"category_names": {"rental_income": "Rent Received"}}
        )

        assert config.category_name(CategoryKind.RENTAL_INCOME) == "Rent Received"
        assert config.category_name(CategoryKind.GENERAL_EXPENSE) == "General Expense"

    def test_unknown_category_kind_rejected(self):
        with pytest.raises(InvalidConfigurationError):
            ReconciliationConfig.from_dict({"category_names": {"parking": "Parking"}})

    def test_unknown_key_rejected(self):
        with pytest.raises(InvalidConfigurationError) as exc_info:
            ReconciliationConfig.from_dict({"tolerence": "0.01"})

        assert "tolerence" in exc_info.value.field

    def test_boundaries_list_becomes_tuple(self):
        config = ReconciliationConfig.from_dict({"aging_boundaries": [15, 45]})

        assert config.aging_boundaries == (15, 45)


class TestLoader:
    """Tests for YAML loading and checksums."""

    def test_packaged_defaults_load(self):
        """The packaged defaults.yaml parses to the schema defaults."""
        loaded = load_config(DEFAULT_CONFIG_PATH)

        assert loaded.config == ReconciliationConfig()
        assert loaded.source == str(DEFAULT_CONFIG_PATH)
        assert len(loaded.checksum) == 64

    def test_checksum_is_deterministic(self):
        data = ReconciliationConfig().to_dict()

        assert compute_checksum(data) == compute_checksum(dict(reversed(data.items())))

    def test_checksum_changes_with_values(self):
        base = ReconciliationConfig().to_dict()
        changed = ReconciliationConfig(tolerance=Decimal("0.02")).to_dict()

        assert compute_checksum(base) != compute_checksum(changed)

    def test_custom_file(self, tmp_path):
        path = tmp_path / "ledger.yaml"
        path.write_text(yaml.safe_dump({
            "config_id": "site-a",
            "aging_boundaries": [15, 30],
            "deposit_first": True,
        }))

        config = get_active_config(path)

        assert config.config_id == "site-a"
        assert config.aging_boundaries == (15, 30)
        assert config.deposit_first is True

    def test_non_mapping_document_rejected(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("- just\n- a list\n")

        with pytest.raises(InvalidConfigurationError):
            load_yaml_file(path)

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(tmp_path / "absent.yaml")

    def test_get_active_config_emits_trace(self, captured_logs):
        """Every load logs LEDGER_CONFIG_TRACE with the checksum."""
        get_active_config()

        traces = [r for r in captured_logs() if r["message"] == "LEDGER_CONFIG_TRACE"]
        assert len(traces) == 1
        assert traces[0]["config_id"] == "default"
        assert len(traces[0]["checksum"]) == 64
