"""
Ledger configuration: YAML loading, validation and checksums.
"""

from decimal import Decimal

import pytest
import yaml

from gold_config import DEFAULT_CONFIG_PATH, get_active_config
from gold_config.loader import compute_checksum, load_yaml_file, parse_ledger_config
from gold_kernel.exceptions import ConfigurationError


@pytest.fixture
def base_data():
    return load_yaml_file(DEFAULT_CONFIG_PATH)


class TestDefaults:
    def test_default_config_loads(self):
        config = get_active_config()

        assert config.config_id == "gold-ledger-default"
        assert config.currency == "EGP"
        assert config.default_lot_selection == "fifo"
        assert config.rounding.weight_decimals == 3
        assert config.rounding.money_decimals == 2
        assert config.concurrency.max_retry_attempts == 3

    def test_purity_table(self):
        purities = get_active_config().purity_table()
        assert purities == {
            "14K": Decimal("0.585"),
            "18K": Decimal("0.750"),
            "21K": Decimal("0.875"),
            "22K": Decimal("0.916"),
            "24K": Decimal("1.000"),
        }

    def test_alert_thresholds_are_decimals(self):
        alerts = get_active_config().alerts
        assert alerts.low_ownership_percent == Decimal("50")
        assert alerts.critical_ownership_percent == Decimal("25")
        assert alerts.outstanding_high_amount == Decimal("10000")
        assert alerts.credit_near_limit_percent == Decimal("80")
        assert alerts.credit_high_percent == Decimal("95")

    def test_config_trace_logged(self, captured_logs):
        config = get_active_config()
        traces = [r for r in captured_logs() if r["message"] == "GOLD_CONFIG_TRACE"]
        assert traces[0]["checksum"] == config.checksum
        assert traces[0]["karat_count"] == 5


class TestChecksum:
    def test_checksum_is_deterministic(self, base_data):
        assert parse_ledger_config(base_data).checksum == parse_ledger_config(dict(base_data)).checksum

    def test_checksum_ignores_key_order(self):
        assert compute_checksum({"a": 1, "b": 2}) == compute_checksum({"b": 2, "a": 1})

    def test_checksum_changes_with_content(self, base_data):
        changed = dict(base_data, version=99)
        assert parse_ledger_config(changed).checksum != parse_ledger_config(base_data).checksum


class TestValidation:
    def test_unknown_key_rejected(self, base_data):
        with pytest.raises(ConfigurationError) as exc_info:
            parse_ledger_config(dict(base_data, pricing={"markup": 2}))
        assert exc_info.value.key == "pricing"

    @pytest.mark.parametrize("missing", ["config_id", "currency"])
    def test_required_keys(self, base_data, missing):
        data = dict(base_data)
        del data[missing]
        with pytest.raises(ConfigurationError, match="required"):
            parse_ledger_config(data)

    def test_currency_normalized(self, base_data):
        assert parse_ledger_config(dict(base_data, currency="usd")).currency == "USD"

    @pytest.mark.parametrize("currency", ["EURO", "E1R", "US"])
    def test_bad_currency(self, base_data, currency):
        with pytest.raises(ConfigurationError, match="ISO 4217"):
            parse_ledger_config(dict(base_data, currency=currency))

    def test_bad_lot_selection(self, base_data):
        with pytest.raises(ConfigurationError):
            parse_ledger_config(dict(base_data, lot_selection="random"))

    @pytest.mark.parametrize("purity", ["0", "1.2", "-0.5", None, True])
    def test_purity_out_of_range(self, base_data, purity):
        karats = [{"karat_id": "9K", "purity": purity}]
        with pytest.raises(ConfigurationError):
            parse_ledger_config(dict(base_data, karats=karats))

    def test_duplicate_karat(self, base_data):
        karats = [{"karat_id": "18K", "purity": "0.75"}, {"karat_id": "18K", "purity": "0.75"}]
        with pytest.raises(ConfigurationError, match="duplicate"):
            parse_ledger_config(dict(base_data, karats=karats))

    def test_critical_above_low_rejected(self, base_data):
        alerts = {"low_ownership_percent": "20", "critical_ownership_percent": "30"}
        with pytest.raises(ConfigurationError, match="critical_ownership_percent"):
            parse_ledger_config(dict(base_data, alerts=alerts))

    def test_percentage_above_hundred_rejected(self, base_data):
        with pytest.raises(ConfigurationError):
            parse_ledger_config(dict(base_data, alerts={"credit_high_percent": "150"}))

    def test_concurrency_bounds(self, base_data):
        with pytest.raises(ConfigurationError):
            parse_ledger_config(dict(base_data, concurrency={"lock_timeout_seconds": 0}))
        with pytest.raises(ConfigurationError):
            parse_ledger_config(dict(base_data, concurrency={"max_retry_attempts": 0}))

    def test_rounding_bounds(self, base_data):
        with pytest.raises(ConfigurationError):
            parse_ledger_config(dict(base_data, rounding={"money_decimals": 12}))


class TestOverrideFile:
    def test_override_path(self, tmp_path, base_data):
        override = dict(base_data, config_id="branch-alex", lot_selection="lifo")
        path = tmp_path / "ledger.yaml"
        path.write_text(yaml.safe_dump(override))

        config = get_active_config(path)
        assert config.config_id == "branch-alex"
        assert config.default_lot_selection == "lifo"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(tmp_path / "absent.yaml")
