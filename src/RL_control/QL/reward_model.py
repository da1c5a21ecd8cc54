"""
Transition reward for the cooling controller.

The reward is always computed one tick late: it scores the *previous*
(state, action) pair using the metrics observed *now*, because the effect of
a compressor/fan change only shows up after the next sensing cycle.

Terms (``dt`` is the elapsed step in minutes):

    comfort   -w_comfort * max_delta * dt
    energy    -w_energy * ((p/100)^comp_alpha + fan_weight * (rank/max_rank)^fan_beta) * dt
    window    -w_window * dt                      (any monitored opening open)
    change    -w_change * (|dp| + |df|)            (vs. last applied action)
    progress  w_progress * (wad_prev - wad_now)
    freeze    -w_freeze * max(0, floor - coil) * dt
    trend     w_trend * rate * dt                 (only when |rate| > deadband)

Per-minute terms are scaled by ``dt`` so slow and fast ticks give comparable
magnitudes. ``change`` and ``progress`` are already per-step quantities.
The sum is clipped to ``[reward_min, reward_max]`` to keep Q-values bounded
under bootstrapping.
"""

import math

import numpy as np

from RL_control.QL.action_space import ActionSpace
from RL_control.QL.types import ActionKey, StateVector, TransitionMetrics, split_action_key


def _finite(value: float | None, default: float = 0.0) -> float:
    if value is None or not math.isfinite(value):
        return default
    return float(value)


class RewardModel:
    def __init__(self, config, action_space: ActionSpace):
        self.config = config
        self.action_space = action_space

    def energy_cost(self, power: int, fan: int) -> float:
        cfg = self.config
        comp = (max(0, power) / 100.0) ** cfg.comp_alpha
        max_rank = self.action_space.max_fan_rank
        fan_frac = self.action_space.fan_rank(fan) / max_rank if max_rank > 0 else 0.0
        return comp + cfg.fan_weight * fan_frac ** cfg.fan_beta

    def terms(
        self,
        state: StateVector,
        action: ActionKey,
        metrics: TransitionMetrics,
        previous_metrics: TransitionMetrics | None,
        last_applied_action: ActionKey | None,
        step_minutes: float,
    ) -> dict[str, float]:
        cfg = self.config
        dt = _finite(step_minutes, cfg.step_minutes_default)
        if dt <= 0:
            dt = cfg.step_minutes_default
        p, f = split_action_key(action)

        max_delta = max(0.0, _finite(metrics.max_delta, _finite(state.max_delta)))
        out: dict[str, float] = {
            'comfort': -cfg.w_comfort * max_delta * dt,
            'energy': -cfg.w_energy * self.energy_cost(p, f) * dt,
            'window': -cfg.w_window * dt if (metrics.any_window_open or state.any_window_open) else 0.0,
            'change': 0.0,
            'progress': 0.0,
            'freeze': 0.0,
            'trend': 0.0,
        }

        if last_applied_action is not None:
            lp, lf = split_action_key(last_applied_action)
            out['change'] = -cfg.w_change * (abs(p - lp) + abs(f - lf))

        if previous_metrics is not None:
            improvement = _finite(previous_metrics.comfort_metric) - _finite(metrics.comfort_metric)
            out['progress'] = cfg.w_progress * improvement
            rate = improvement / dt
            if abs(rate) > cfg.trend_reward_deadband:
                out['trend'] = cfg.w_trend * rate * dt

        coil = metrics.coil_temp if metrics.coil_temp is not None else state.coil_temp
        if coil is not None and math.isfinite(coil):
            out['freeze'] = -cfg.w_freeze * max(0.0, cfg.min_coil_temp_learning - coil) * dt

        return out

    def reward(
        self,
        state: StateVector,
        action: ActionKey,
        metrics: TransitionMetrics,
        previous_metrics: TransitionMetrics | None,
        last_applied_action: ActionKey | None,
        step_minutes: float,
    ) -> float:
        terms = self.terms(state, action, metrics, previous_metrics, last_applied_action, step_minutes)
        return self.clip(sum(terms.values()))

    def clip(self, total: float) -> float:
        lo, hi = self.config.reward_min, self.config.reward_max
        if lo > hi:
            lo, hi = hi, lo
        return round(float(np.clip(total, lo, hi)), 6)
