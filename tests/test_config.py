"""Tests for configuration loading."""

from datetime import time

import pytest

from wallee.common.config import CapacityTariffMode, load_config_file, load_controller_config
from wallee.common.exceptions import ConfigError

MINIMAL = {
    "charging_station": {"host": "192.168.1.50"},
    "meter": {"url": "http://192.168.1.60/api/v1/data"},
    "prices": {"api_key": "token"},
}


@pytest.fixture(autouse=True)
def no_api_key_env(monkeypatch) -> None:
    monkeypatch.delenv("WALLEE_ENTSOE_API_KEY", raising=False)


class TestLoadControllerConfig:
    """Dictionaries are mapped onto settings with defaults and validation."""

    def test_defaults(self) -> None:
        config = load_controller_config(MINIMAL)

        assert config.control.loop_delay_ms == 5000
        assert config.control.max_safe_current_ampere == 16
        assert config.control.shadow_mode is False
        assert config.control.consistency_max_attempts == 10
        assert config.control.consistency_retry_delay_ms == 250
        assert config.control.capacity_tariff_mode == CapacityTariffMode.QUARTER_HOUR
        assert config.charging_station.port == 502
        assert config.prices.domain == "10YBE----------2"
        assert config.prices.tomorrow_available_after == time(13, 10)
        assert config.api.port == 8084

    def test_overrides(self) -> None:
        config = load_controller_config({
            **MINIMAL,
            "control": {
                "loop_delay_ms": 2000,
                "max_safe_current_ampere": 25,
                "shadow_mode": True,
                "capacity_tariff_mode": "instantaneous",
            },
        })

        assert config.control.loop_delay_ms == 2000
        assert config.control.max_safe_current_ampere == 25
        assert config.control.shadow_mode is True
        assert config.control.capacity_tariff_mode == CapacityTariffMode.INSTANTANEOUS

    def test_missing_station_host(self) -> None:
        data = {**MINIMAL, "charging_station": {}}

        with pytest.raises(ConfigError) as exc_info:
            load_controller_config(data)

        assert exc_info.value.key == "charging_station.host"
        assert not exc_info.value.recoverable

    def test_missing_meter_url(self) -> None:
        with pytest.raises(ConfigError):
            load_controller_config({**MINIMAL, "meter": None})

    def test_api_key_required_when_prices_enabled(self) -> None:
        with pytest.raises(ConfigError, match="api_key"):
            load_controller_config({**MINIMAL, "prices": {}})

    def test_api_key_not_required_when_prices_disabled(self) -> None:
        config = load_controller_config({**MINIMAL, "prices": {"enabled": False}})

        assert config.prices.enabled is False

    def test_api_key_from_environment(self, monkeypatch) -> None:
        monkeypatch.setenv("WALLEE_ENTSOE_API_KEY", "from-env")

        config = load_controller_config({**MINIMAL, "prices": {}})

        assert config.prices.api_key == "from-env"

    def test_invalid_tariff_mode(self) -> None:
        with pytest.raises(ConfigError):
            load_controller_config({**MINIMAL, "control": {"capacity_tariff_mode": "monthly"}})

    def test_non_positive_safe_current(self) -> None:
        with pytest.raises(ConfigError):
            load_controller_config({**MINIMAL, "control": {"max_safe_current_ampere": 0}})

    def test_unknown_timezone(self) -> None:
        with pytest.raises(ConfigError):
            load_controller_config({**MINIMAL, "prices": {"api_key": "t", "local_timezone": "Mars/Olympus"}})

    def test_section_must_be_mapping(self) -> None:
        with pytest.raises(ConfigError):
            load_controller_config({**MINIMAL, "control": [1, 2]})


class TestValueTypes:
    """Badly typed values raise ConfigError naming the key."""

    @pytest.mark.parametrize(
        "section, key, value",
        [
            ("control", "loop_delay_ms", "fast"),
            ("control", "max_safe_current_ampere", None),
            ("control", "consistency_max_attempts", True),
            ("charging_station", "port", "modbus"),
            ("meter", "timeout_s", "slow"),
            ("prices", "fetch_interval_s", [300]),
            ("api", "port", {"tcp": 8084}),
        ],
    )
    def test_non_numeric(self, section, key, value) -> None:
        data = {**MINIMAL, section: {**MINIMAL.get(section, {}), key: value}}

        with pytest.raises(ConfigError) as exc_info:
            load_controller_config(data)

        assert exc_info.value.key == f"{section}.{key}"

    def test_numeric_strings_are_accepted(self) -> None:
        config = load_controller_config({
            **MINIMAL,
            "control": {"loop_delay_ms": "2000"},
            "meter": {**MINIMAL["meter"], "timeout_s": "2.5"},
        })

        assert config.control.loop_delay_ms == 2000
        assert config.meter.timeout_s == 2.5

    @pytest.mark.parametrize(
        "section, key",
        [
            ("control", "shadow_mode"),
            ("prices", "enabled"),
            ("api", "enabled"),
            ("logging", "json_format"),
        ],
    )
    def test_quoted_boolean_rejected(self, section, key) -> None:
        data = {**MINIMAL, section: {**MINIMAL.get(section, {}), key: "false"}}

        with pytest.raises(ConfigError) as exc_info:
            load_controller_config(data)

        assert exc_info.value.key == f"{section}.{key}"

    def test_yaml_booleans(self, tmp_path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text(
            "control: {shadow_mode: false}\n"
            "charging_station: {host: station}\n"
            "meter: {url: 'http://meter'}\n"
            "prices: {enabled: no}\n"
        )

        config = load_config_file(path)

        assert config.control.shadow_mode is False
        assert config.prices.enabled is False


class TestLoadConfigFile:
    """YAML files are parsed with safe_load."""

    def test_yaml_file(self, tmp_path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text(
            "charging_station:\n"
            "  host: 192.168.1.50\n"
            "meter:\n"
            "  url: http://192.168.1.60/api/v1/data\n"
            "prices:\n"
            "  api_key: token\n"
            "  tomorrow_available_after: 13:30\n"
        )

        config = load_config_file(path)

        # YAML 1.1 reads an unquoted 13:30 as the sexagesimal integer 810
        assert config.prices.tomorrow_available_after == time(13, 30)

    def test_quoted_time(self, tmp_path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text(
            "charging_station: {host: station}\n"
            "meter: {url: 'http://meter'}\n"
            "prices: {api_key: token, tomorrow_available_after: '14:05'}\n"
        )

        assert load_config_file(path).prices.tomorrow_available_after == time(14, 5)

    def test_missing_file(self, tmp_path) -> None:
        with pytest.raises(ConfigError, match="not found"):
            load_config_file(tmp_path / "absent.yaml")

    def test_invalid_yaml(self, tmp_path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("control: [unclosed\n")

        with pytest.raises(ConfigError):
            load_config_file(path)
