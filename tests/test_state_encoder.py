"""
Tests for state bucketing and the debounced coil trend.
"""

import pytest

from RL_control.QL.state_encoder import StateEncoder, coil_bucket, delta_bucket, demand_bucket
from RL_control.QL.types import StateVector


@pytest.fixture
def encoder():
    return StateEncoder()


class TestBuckets:
    def test_demand_is_capped(self):
        assert demand_bucket(0) == 0
        assert demand_bucket(7) == 4

    def test_delta_edge_goes_to_lower_band(self):
        assert delta_bucket(0.0) == 0
        assert delta_bucket(0.3) == 0
        assert delta_bucket(0.31) == 1
        assert delta_bucket(0.8) == 2
        assert delta_bucket(6.0) == 7

    def test_delta_non_finite(self):
        assert delta_bucket(float("nan")) == 0

    def test_coil_relative_to_floor(self):
        assert coil_bucket(None, 2.0) == 0
        assert coil_bucket(2.0, 2.0) == 0
        assert coil_bucket(1.5, 2.0) == -1
        assert coil_bucket(-5.0, 2.0) == -3
        assert coil_bucket(10.0, 2.0) == 3


class TestEncode:
    def test_key_format(self, encoder):
        state = StateVector(num_active_rooms=1, max_delta=0.8, coil_temp=2.0)
        assert encoder.encode(state) == "N1|D2|C0|T0"

    def test_rate_from_previous_reading(self, encoder):
        state = StateVector(num_active_rooms=2, max_delta=1.2, coil_temp=5.0)
        assert encoder.encode(state, previous_coil_temp=4.0, minutes=2.0) == "N2|D3|C3|T1"

    def test_trend_hint_wins(self, encoder):
        state = StateVector(num_active_rooms=1, max_delta=0.8, coil_temp=5.0, trend_hint=-1.0)
        assert encoder.encode(state, previous_coil_temp=4.0, minutes=1.0).endswith("T-1")

    def test_missing_coil_resets_trend(self, encoder):
        encoder.trend_memory = 1
        state = StateVector(num_active_rooms=1, max_delta=0.8, coil_temp=None)
        assert encoder.encode(state) == "N1|D2|C0|T0"
        assert encoder.trend_memory == 0


class TestTrendHysteresis:
    def test_threshold_follows_noise(self):
        assert StateEncoder(trend_deadband=0.05).trend_threshold == pytest.approx(0.05)
        assert StateEncoder(trend_deadband=0.05, noise_per_min=0.1).trend_threshold == pytest.approx(0.3)

    def test_rising_enters_and_leaves(self, encoder):
        assert encoder.trend_bucket(0.06) == 0
        assert encoder.trend_bucket(0.08) == 1
        assert encoder.trend_bucket(0.03) == 1
        assert encoder.trend_bucket(0.02) == 0

    def test_falling_enters_and_leaves(self, encoder):
        assert encoder.trend_bucket(-0.08) == -1
        assert encoder.trend_bucket(-0.03) == -1
        assert encoder.trend_bucket(-0.01) == 0

    def test_unknown_rate_is_flat(self, encoder):
        encoder.trend_bucket(0.5)
        assert encoder.trend_bucket(None) == 0
        assert encoder.trend_memory == 0

    def test_from_config_keeps_memory(self, config):
        enc = StateEncoder.from_config(config.replace(min_coil_temp_learning=4.0), trend_memory=-1)
        assert enc.trend_memory == -1
        assert enc.min_learning_temp == 4.0
