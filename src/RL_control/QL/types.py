"""
Shared data types for the cooling Q-learning controller.
"""

import enum
import math
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Protocol, TypedDict


ActionKey = str
StateKey = str

STOP_ACTION: ActionKey = '0:0'


def make_action_key(power: int, fan: int) -> ActionKey:
    return f'{int(power)}:{int(fan)}'


def split_action_key(key: ActionKey) -> tuple[int, int]:
    p, f = key.split(':', 1)
    return int(p), int(f)


def _as_float(value: Any, default: float | None = None) -> float | None:
    if isinstance(value, bool):
        return float(value)
    try:
        v = float(value)
    except (TypeError, ValueError):
        return default
    return v if math.isfinite(v) else default


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return float(value) > 0.0
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'on', 'yes')
    return False


@dataclass(frozen=True)
class Aggregates:
    """Zoning summary as reported by the aggregate source.

    Built with :meth:`from_mapping`, which never raises: missing or garbage
    fields fall back to neutral values.
    """
    num_active_rooms: int = 0
    max_delta: float = 0.0
    coil_temp: float | None = None
    emergency_active: bool = False
    emergency_coil_temp: float | None = None
    raw_wad: float | None = None
    hot_rooms: int = 0
    max_dev: float = 0.0
    d_cold: float = 0.0
    cooling_demand: bool | None = None
    total_cooling_demand: float = 0.0
    any_window_open: bool = False
    coil_rate: float | None = None
    ac_active: bool | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> 'Aggregates':
        if not data:
            return cls()
        num_active = _as_float(data.get('numActiveRooms'), 0.0) or 0.0
        demand: bool | None = None
        if 'coolingDemand' in data and data['coolingDemand'] is not None:
            demand = _as_bool(data['coolingDemand'])
        total = data.get('totalCoolingDemand', data.get('totalDemand', 0.0))
        active: bool | None = None
        if data.get('acActive') is not None:
            active = _as_bool(data['acActive'])
        return cls(
            num_active_rooms=max(0, int(num_active)),
            max_delta=max(0.0, _as_float(data.get('maxDeltaT'), 0.0) or 0.0),
            coil_temp=_as_float(data.get('coilTemp')),
            emergency_active=_as_bool(data.get('emergencyActive', False)),
            emergency_coil_temp=_as_float(data.get('emergencyCoilTemp')),
            raw_wad=_as_float(data.get('rawWAD')),
            hot_rooms=max(0, int(_as_float(data.get('hotRooms'), 0.0) or 0.0)),
            max_dev=_as_float(data.get('maxDev'), 0.0) or 0.0,
            d_cold=_as_float(data.get('D_cold'), 0.0) or 0.0,
            cooling_demand=demand,
            total_cooling_demand=_as_float(total, 0.0) or 0.0,
            any_window_open=_as_bool(data.get('anyWindowOpen', False)),
            coil_rate=_as_float(data.get('coilRate')),
            ac_active=active,
        )

    def has_demand(self) -> bool:
        if self.cooling_demand is not None:
            return self.cooling_demand
        return self.num_active_rooms > 0 or self.total_cooling_demand > 0.0

    @property
    def comfort_metric(self) -> float:
        """WAD, falling back to the max overshoot when the source has none."""
        return self.raw_wad if self.raw_wad is not None else self.max_delta


@dataclass(frozen=True)
class StateVector:
    num_active_rooms: int
    max_delta: float
    coil_temp: float | None = None
    trend_hint: float | None = None
    any_window_open: bool = False

    @classmethod
    def from_aggregates(cls, agg: Aggregates) -> 'StateVector':
        return cls(
            num_active_rooms=agg.num_active_rooms,
            max_delta=round(agg.max_delta, 2),
            coil_temp=None if agg.coil_temp is None else round(agg.coil_temp, 2),
            trend_hint=agg.coil_rate,
            any_window_open=agg.any_window_open,
        )


@dataclass(frozen=True)
class TransitionMetrics:
    comfort_metric: float
    max_delta: float
    coil_temp: float | None = None
    any_window_open: bool = False

    @classmethod
    def from_aggregates(cls, agg: Aggregates) -> 'TransitionMetrics':
        return cls(
            comfort_metric=agg.comfort_metric,
            max_delta=agg.max_delta,
            coil_temp=agg.coil_temp,
            any_window_open=agg.any_window_open,
        )


@dataclass(frozen=True)
class TransitionRecord:
    """The (state, action) whose consequence has not been credited yet."""
    state_key: StateKey
    action_key: ActionKey
    prior_action_key: ActionKey
    comfort_metric: float
    coil_temp: float | None
    max_delta: float
    timestamp: float

    def to_dict(self) -> dict[str, Any]:
        return {
            'stateKey': self.state_key,
            'actionKey': self.action_key,
            'priorActionKey': self.prior_action_key,
            'wad': self.comfort_metric,
            'coilTemp': self.coil_temp,
            'maxDelta': self.max_delta,
            'timestamp': self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> Optional['TransitionRecord']:
        if not data:
            return None
        try:
            return cls(
                state_key=str(data['stateKey']),
                action_key=str(data['actionKey']),
                prior_action_key=str(data.get('priorActionKey', STOP_ACTION)),
                comfort_metric=float(data.get('wad', 0.0)),
                coil_temp=_as_float(data.get('coilTemp')),
                max_delta=float(data.get('maxDelta', 0.0)),
                timestamp=float(data['timestamp']),
            )
        except (KeyError, TypeError, ValueError):
            return None

    def metrics(self) -> TransitionMetrics:
        return TransitionMetrics(self.comfort_metric, self.max_delta, self.coil_temp)


class TickPhase(enum.Enum):
    SKIPPED = 'skipped'
    OVERRIDE = 'override'
    GATED = 'gated'
    IDLE = 'idle'
    ACTING = 'acting'


@dataclass
class TickResult:
    phase: TickPhase
    action_key: ActionKey | None = None
    state_key: StateKey | None = None
    reason: str | None = None
    reward: float | None = None
    learned: bool = False
    terms: dict[str, float] = field(default_factory=dict)


class ForceResult(TypedDict, total=False):
    ok: bool
    appliedPower: int
    appliedFan: int
    errorCode: str
    reward: float


class AggregateSource(Protocol):
    def get_aggregates(self) -> Mapping[str, Any]: ...


class ActuationSink(Protocol):
    def command_system(self, power: int, fan: int) -> None: ...
