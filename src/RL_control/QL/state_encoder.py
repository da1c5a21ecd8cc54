"""
State encoding: continuous zoning aggregates -> small discrete bucket key.

Key format is ``"N{n}|D{d}|C{c}|T{t}"``:

    N  rooms demanding cooling, 0..4 (4 means four or more)
    D  worst temperature overshoot, 8 bands over fixed edges in degC
    C  coil temperature margin above the learning floor, -3..+3
    T  coil trend, -1 falling / 0 flat / +1 rising (debounced)

The table therefore has at most 5 x 8 x 7 x 3 rows.
"""

import logging
import math
from typing import Final

import numpy as np

from RL_control.QL.types import StateKey, StateVector

_log: Final[logging.Logger] = logging.getLogger(__name__)

DELTA_EDGES: Final[np.ndarray] = np.array([0.3, 0.6, 1.0, 1.5, 2.5, 3.5, 5.0])
COIL_EDGES: Final[np.ndarray] = np.array([-2.0, -1.0, -0.5, 0.5, 1.0, 2.0])
MAX_DEMAND_BUCKET: Final[int] = 4


def demand_bucket(num_active_rooms: int) -> int:
    return max(0, min(MAX_DEMAND_BUCKET, int(num_active_rooms)))


def delta_bucket(max_delta: float) -> int:
    # a value sitting on an edge belongs to the lower band
    if not math.isfinite(max_delta):
        return 0
    return int(np.searchsorted(DELTA_EDGES, max(0.0, max_delta), side='left'))


def coil_bucket(coil_temp: float | None, min_learning_temp: float) -> int:
    if coil_temp is None or not math.isfinite(coil_temp):
        return 0
    margin = coil_temp - min_learning_temp
    return int(np.searchsorted(COIL_EDGES, margin, side='left')) - 3


class StateEncoder:
    """
    Turns a :class:`StateVector` into a StateKey.

    The only memory is ``trend_memory``, the last trend bucket, which makes the
    trend dimension a Schmitt trigger: from flat the coil rate must go beyond
    ``threshold + h`` to register, and once rising/falling it only drops back
    when the rate falls inside ``threshold - h``. This keeps the key from
    chattering when the slope sits right at the threshold.

    Args:
        min_learning_temp: Coil learning floor; the C dimension is relative to it.
        trend_deadband: Smallest coil rate (K/min) treated as a real trend.
        noise_per_min: Measured coil sensor noise (K/min); the threshold is
                       never below three times this.
        hysteresis: Half-width of the hysteresis band as a fraction of the threshold.
    """

    def __init__(
        self,
        min_learning_temp: float = 2.0,
        trend_deadband: float = 0.05,
        noise_per_min: float = 0.0,
        hysteresis: float = 0.5,
        trend_memory: int = 0,
    ):
        self.min_learning_temp = min_learning_temp
        self.trend_deadband = trend_deadband
        self.noise_per_min = noise_per_min
        self.hysteresis = hysteresis
        self.trend_memory = trend_memory if trend_memory in (-1, 0, 1) else 0

    @classmethod
    def from_config(cls, config, trend_memory: int = 0) -> 'StateEncoder':
        return cls(
            min_learning_temp=config.min_coil_temp_learning,
            trend_deadband=config.trend_deadband,
            noise_per_min=config.coil_noise_per_min,
            hysteresis=config.trend_hysteresis,
            trend_memory=trend_memory,
        )

    @property
    def trend_threshold(self) -> float:
        return max(self.trend_deadband, 3.0 * self.noise_per_min)

    def trend_bucket(self, rate: float | None) -> int:
        """Debounced trend for a coil rate in K/min; updates ``trend_memory``."""
        if rate is None or not math.isfinite(rate):
            self.trend_memory = 0
            return 0

        thr = self.trend_threshold
        h = max(0.0, self.hysteresis) * thr
        enter = thr + h
        stay = max(0.0, thr - h)

        prev = self.trend_memory
        if rate > enter:
            trend = 1
        elif rate < -enter:
            trend = -1
        elif prev == 1 and rate > stay:
            trend = 1
        elif prev == -1 and rate < -stay:
            trend = -1
        else:
            trend = 0

        if trend != prev:
            _log.debug('trend_change %d -> %d rate=%.4f thr=%.4f', prev, trend, rate, thr)
        self.trend_memory = trend
        return trend

    def coil_rate(
        self,
        state: StateVector,
        previous_coil_temp: float | None,
        minutes: float | None,
    ) -> float | None:
        if state.trend_hint is not None:
            return state.trend_hint
        if state.coil_temp is None or previous_coil_temp is None:
            return None
        if minutes is None or not minutes > 0:
            return None
        return (state.coil_temp - previous_coil_temp) / minutes

    def encode(
        self,
        state: StateVector,
        previous_coil_temp: float | None = None,
        minutes: float | None = None,
    ) -> StateKey:
        if state.coil_temp is None:
            # no coil reading: neutral coil and trend buckets
            self.trend_memory = 0
            t = 0
        else:
            t = self.trend_bucket(self.coil_rate(state, previous_coil_temp, minutes))

        n = demand_bucket(state.num_active_rooms)
        d = delta_bucket(state.max_delta)
        c = coil_bucket(state.coil_temp, self.min_learning_temp)
        return f'N{n}|D{d}|C{c}|T{t}'
