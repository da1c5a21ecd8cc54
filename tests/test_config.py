"""
Tests for configuration loading and property-name mapping.
"""

import json
import logging

from RL_control.config import ControllerConfig, load_config, normalize_mode


class TestFromMapping:
    def test_host_property_names(self):
        cfg = ControllerConfig.from_mapping({"Alpha": "0.2", "TimerInterval": "30", "AbortOnCoilFreeze": "false"})
        assert cfg.alpha == 0.2
        assert cfg.timer_interval == 30
        assert cfg.abort_on_coil_freeze is False

    def test_snake_case_names(self):
        cfg = ControllerConfig.from_mapping({"w_comfort": 0.5, "custom_fan_speeds": "0,50,100"})
        assert cfg.w_comfort == 0.5
        assert cfg.custom_fan_speeds == "0,50,100"

    def test_invalid_value_keeps_default(self):
        assert ControllerConfig.from_mapping({"Alpha": "fast"}).alpha == 0.05

    def test_unknown_keys_ignored(self):
        assert ControllerConfig.from_mapping({"Colour": "blue"}) == ControllerConfig()

    def test_mode_label(self):
        assert ControllerConfig.from_mapping({"OperatingMode": "cool"}).operating_mode == 0


class TestDeprecatedNames:
    def test_min_coil_temp_migrated(self):
        assert ControllerConfig.from_mapping({"MinCoilTemp": 3.5}).min_coil_temp_learning == 3.5

    def test_explicit_new_name_wins(self):
        cfg = ControllerConfig.from_mapping({"MinCoilTemp": 3.5, "MinCoilTempLearning": 4})
        assert cfg.min_coil_temp_learning == 4.0

    def test_garbage_legacy_value_skipped(self):
        assert ControllerConfig.from_mapping({"MinCoilTemp": "cold"}).min_coil_temp_learning == 2.0


class TestNormalizeMode:
    def test_labels(self):
        assert normalize_mode("Heating") == 1
        assert normalize_mode("auto") == 2
        assert normalize_mode("bogus") == 2

    def test_numbers(self):
        assert normalize_mode(0) == 0
        assert normalize_mode(5) == 2
        assert normalize_mode(-1) == 0

    def test_wrong_types(self):
        assert normalize_mode(True) == 2
        assert normalize_mode(1.5) == 2


class TestDerived:
    def test_step_minutes_default(self):
        assert ControllerConfig(timer_interval=30).step_minutes_default == 0.5
        assert ControllerConfig(timer_interval=0).step_minutes_default == 1 / 60

    def test_logging_level(self):
        assert ControllerConfig(log_level=0).logging_level == logging.ERROR
        assert ControllerConfig(log_level=2).logging_level == logging.INFO
        assert ControllerConfig(log_level=9).logging_level == logging.DEBUG


class TestLoadConfig:
    def test_missing_file(self, tmp_path):
        assert load_config(tmp_path / "nope.json") == ControllerConfig()

    def test_broken_file(self, tmp_path):
        path = tmp_path / "controller.json"
        path.write_text("{", encoding="utf-8")
        assert load_config(path) == ControllerConfig()

    def test_non_object(self, tmp_path):
        path = tmp_path / "controller.json"
        path.write_text("[1, 2]", encoding="utf-8")
        assert load_config(path) == ControllerConfig()

    def test_valid_file(self, tmp_path):
        path = tmp_path / "controller.json"
        path.write_text(json.dumps({"Gamma": 0.8, "MaxPowerDelta": 20}), encoding="utf-8")
        cfg = load_config(path)
        assert cfg.gamma == 0.8
        assert cfg.max_power_delta == 20
