"""
Coil protection checks, evaluated before any action or learning step.
"""

import logging
import math
from dataclasses import dataclass
from typing import Final

_log: Final[logging.Logger] = logging.getLogger(__name__)

REASON_EMERGENCY: Final[str] = 'emergency_cutoff'
REASON_LEARNING_FLOOR: Final[str] = 'coil_below_learning_min'
REASON_DROP_RATE: Final[str] = 'coil_drop_rate'


@dataclass(frozen=True)
class GateResult:
    ok: bool
    reason: str | None = None
    rate: float | None = None

    def __bool__(self) -> bool:
        return self.ok


class SafetyGate:
    """
    Three checks in fixed priority order, first failure wins:

    1. emergency cutoff (external flag, or emergency coil reading at/below
       ``emergency_coil_temp``)
    2. learning floor (coil at/below ``min_coil_temp_learning``)
    3. drop-rate watchdog (coil falling faster than ``max_coil_drop_rate`` K/min)

    The watchdog keeps the last (timestamp, coil) pair. It is refreshed after
    every check that had a coil reading, pass or fail, so the reference point
    keeps up with real time through a run of faults.
    """

    def __init__(
        self,
        min_coil_temp_learning: float = 2.0,
        emergency_coil_temp: float = 0.0,
        max_coil_drop_rate: float = 1.5,
        abort_on_coil_freeze: bool = True,
    ):
        self.min_coil_temp_learning = min_coil_temp_learning
        self.emergency_coil_temp = emergency_coil_temp
        self.max_coil_drop_rate = max_coil_drop_rate
        self.abort_on_coil_freeze = abort_on_coil_freeze
        self.last_seen: tuple[float, float] | None = None

    def configure(self, config) -> None:
        self.min_coil_temp_learning = config.min_coil_temp_learning
        self.emergency_coil_temp = config.emergency_coil_temp
        self.max_coil_drop_rate = config.max_coil_drop_rate
        self.abort_on_coil_freeze = config.abort_on_coil_freeze

    def reset(self) -> None:
        self.last_seen = None

    def check(
        self,
        coil_temp: float | None,
        emergency: bool = False,
        now: float = 0.0,
        emergency_coil_temp: float | None = None,
    ) -> GateResult:
        if coil_temp is not None and not math.isfinite(coil_temp):
            coil_temp = None
        try:
            return self._evaluate(coil_temp, emergency, now, emergency_coil_temp)
        finally:
            if coil_temp is not None:
                self.last_seen = (now, coil_temp)

    def _evaluate(
        self,
        coil: float | None,
        emergency: bool,
        now: float,
        emergency_coil: float | None,
    ) -> GateResult:
        if emergency:
            _log.error('coil_emergency_cutoff flag=1')
            return GateResult(False, REASON_EMERGENCY)
        if emergency_coil is not None and emergency_coil <= self.emergency_coil_temp:
            _log.error('coil_emergency_cutoff temp=%.2f', emergency_coil)
            return GateResult(False, REASON_EMERGENCY)

        if not self.abort_on_coil_freeze or coil is None:
            return GateResult(True)

        if coil <= self.min_coil_temp_learning:
            _log.warning('coil_below_learning_min coil=%.2f min=%.2f', coil, self.min_coil_temp_learning)
            return GateResult(False, REASON_LEARNING_FLOOR)

        if self.last_seen is not None:
            t_prev, v_prev = self.last_seen
            dt = max(1.0, now - t_prev)
            rate = (v_prev - coil) * 60.0 / dt  # positive = falling
            if rate > self.max_coil_drop_rate:
                _log.warning('coil_drop_rate rate_K_min=%.3f max=%.3f', rate, self.max_coil_drop_rate)
                return GateResult(False, REASON_DROP_RATE, rate)
            return GateResult(True, rate=rate)

        return GateResult(True)
