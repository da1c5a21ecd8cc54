"""
Discrete (power, fan) action lattice.

Every action is a ``"power:fan"`` key with both values in 0..100 percent,
taken from the cross-product of the configured power levels and fan speeds.
The full stop ``0:0`` is always part of the lattice, whatever the
configuration says, so the controller can always switch the unit off.

Example:
    >>> space = ActionSpace.from_config(ControllerConfig())
    >>> space.allowed()[:3]
    ['0:0', '0:40', '0:80']
    >>> space.validate((55, 50))
    '40:40'
"""

import json
import logging
import re
from bisect import bisect_left
from typing import Final, Iterable

from RL_control.QL.types import STOP_ACTION, ActionKey, make_action_key, split_action_key

_log: Final[logging.Logger] = logging.getLogger(__name__)

LEVEL_MIN: Final[int] = 0
LEVEL_MAX: Final[int] = 100

_PAIR_RE: Final[re.Pattern[str]] = re.compile(r'^\s*(\d{1,3})\s*:\s*(\d{1,3})\s*$')


def _clamp(value: int) -> int:
    return max(LEVEL_MIN, min(LEVEL_MAX, int(value)))


def parse_levels(csv: str, fallback_step: int) -> list[int]:
    """Parse a comma separated level list.

    Entries that are not integers or fall outside 0..100 are dropped. When
    nothing usable is left, a ladder ``0, step, 2*step, ...`` is generated.
    """
    out: set[int] = set()
    for item in (csv or '').split(','):
        item = item.strip()
        if not item:
            continue
        try:
            v = int(float(item))
        except ValueError:
            continue
        if LEVEL_MIN <= v <= LEVEL_MAX:
            out.add(v)
    if not out:
        step = max(1, int(fallback_step))
        _log.debug('levels_fallback csv=%r step=%d', csv, step)
        out = set(range(LEVEL_MIN, LEVEL_MAX + 1, step))
    return sorted(out)


def parse_pair(text: str) -> tuple[int, int] | None:
    """Parse a strict ``"p:f"`` string; returns None when malformed."""
    if not isinstance(text, str):
        return None
    m = _PAIR_RE.match(text)
    if m is None:
        return None
    return _clamp(int(m.group(1))), _clamp(int(m.group(2)))


def _as_pair(candidate: ActionKey | tuple[int, int]) -> tuple[int, int]:
    if isinstance(candidate, str):
        p, f = split_action_key(candidate)
    else:
        p, f = candidate
    return _clamp(p), _clamp(f)


class ActionSpace:
    """Enumerates and validates the (power, fan) lattice."""

    def __init__(self, power_levels: Iterable[int], fan_levels: Iterable[int]):
        self.power_levels: list[int] = sorted({_clamp(p) for p in power_levels})
        self.fan_levels: list[int] = sorted({_clamp(f) for f in fan_levels})

        keys = [make_action_key(p, f) for p in self.power_levels for f in self.fan_levels]
        if STOP_ACTION not in keys:
            keys.insert(0, STOP_ACTION)
        self._allowed: list[ActionKey] = keys
        self._members: frozenset[ActionKey] = frozenset(keys)

    @classmethod
    def from_config(cls, config) -> 'ActionSpace':
        return cls(
            parse_levels(config.custom_power_levels, config.power_step),
            parse_levels(config.custom_fan_speeds, config.fan_step),
        )

    def allowed(self) -> list[ActionKey]:
        """All legal action keys, in lattice order, ``0:0`` included."""
        return list(self._allowed)

    def __contains__(self, key: object) -> bool:
        return key in self._members

    def __len__(self) -> int:
        return len(self._allowed)

    def to_json(self) -> str:
        return json.dumps(self._allowed)

    @property
    def max_fan_rank(self) -> int:
        return max(0, len(self.fan_levels) - 1)

    def fan_rank(self, fan: int) -> int:
        """Ordinal position of a fan speed among the configured levels.

        Fan power draw is not linear in percent, so energy cost is charged
        by rank. Speeds between levels take the rank of the next level up.
        """
        if not self.fan_levels:
            return 0
        return min(bisect_left(self.fan_levels, fan), self.max_fan_rank)

    def nearest(self, power: int, fan: int, keys: Iterable[ActionKey] | None = None) -> ActionKey:
        best: ActionKey | None = None
        best_d = None
        for k in (self._allowed if keys is None else keys):
            ap, af = split_action_key(k)
            d = (ap - power) ** 2 + (af - fan) ** 2
            if best_d is None or d < best_d:
                best_d = d
                best = k
        return best if best is not None else STOP_ACTION

    def validate(
        self,
        candidate: ActionKey | tuple[int, int],
        last: ActionKey | None = None,
        max_power_delta: int | None = None,
        max_fan_delta: int | None = None,
        exclude_stop: bool = False,
    ) -> ActionKey:
        """Clamp a candidate and snap it onto the lattice.

        With ``last`` and both deltas given, the snap first looks only at
        lattice points reachable from ``last`` within the rate limits, so a
        rate-limited target does not get pushed back out of budget.

        ``exclude_stop`` keeps ``0:0`` out of the result while there is
        demand. When no other point is inside the rate budget the nearest
        non-stop point wins, even if that exceeds the budget.
        """
        p, f = _as_pair(candidate)
        key = make_action_key(p, f)
        candidates = self._allowed
        if exclude_stop:
            candidates = [k for k in self._allowed if k != STOP_ACTION] or self._allowed
        if key in self._members and key in candidates:
            return key

        pool: list[ActionKey] | None = None
        if last is not None and max_power_delta is not None and max_fan_delta is not None:
            lp, lf = _as_pair(last)
            pool = [
                k for k in candidates
                if abs(split_action_key(k)[0] - lp) <= max_power_delta
                and abs(split_action_key(k)[1] - lf) <= max_fan_delta
            ] or None

        best = self.nearest(p, f, pool if pool is not None else candidates)
        _log.debug('action_adjusted_to_allowed req=%s adj=%s', key, best)
        return best

    @staticmethod
    def limit_rate(
        target: ActionKey | tuple[int, int],
        last: ActionKey | tuple[int, int],
        max_power_delta: int,
        max_fan_delta: int,
    ) -> ActionKey:
        """Move from ``last`` towards ``target`` by at most the given deltas per dimension."""
        tp, tf = _as_pair(target)
        lp, lf = _as_pair(last)
        dp = max(0, int(max_power_delta))
        df = max(0, int(max_fan_delta))
        if abs(tp - lp) > dp:
            tp = lp + dp if tp > lp else lp - dp
        if abs(tf - lf) > df:
            tf = lf + df if tf > lf else lf - df
        return make_action_key(tp, tf)
