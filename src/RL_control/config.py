"""
Controller configuration.

All weights, thresholds and level lists live in one immutable dataclass that
the controller receives per apply-cycle (or per tick). Defaults mirror the
values the controller shipped with on the real installation.
"""

import dataclasses
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final, Mapping

_log: Final[logging.Logger] = logging.getLogger(__name__)

MODE_COOLING: Final[int] = 0
MODE_HEATING: Final[int] = 1
MODE_AUTO: Final[int] = 2

_MODE_LABELS: Final[dict[str, int]] = {
    '0': MODE_COOLING, 'cool': MODE_COOLING, 'cooling': MODE_COOLING,
    '1': MODE_HEATING, 'heat': MODE_HEATING, 'heating': MODE_HEATING,
    '2': MODE_AUTO, 'auto': MODE_AUTO,
    'cooperative': MODE_AUTO, 'standalone': MODE_AUTO, 'orchestrated': MODE_AUTO,
}

# 0=ERROR, 1=WARN, 2=INFO, 3=DEBUG
LOG_LEVELS: Final[dict[int, int]] = {
    0: logging.ERROR,
    1: logging.WARNING,
    2: logging.INFO,
    3: logging.DEBUG,
}

# Property names used by the host installation -> dataclass field names
_PROPERTY_NAMES: Final[dict[str, str]] = {
    'ManualOverride': 'manual_override',
    'LogLevel': 'log_level',
    'Alpha': 'alpha',
    'Gamma': 'gamma',
    'MaxPowerDelta': 'max_power_delta',
    'MaxFanDelta': 'max_fan_delta',
    'TimerInterval': 'timer_interval',
    'CustomPowerLevels': 'custom_power_levels',
    'PowerStep': 'power_step',
    'CustomFanSpeeds': 'custom_fan_speeds',
    'FanStep': 'fan_step',
    'EpsilonStart': 'epsilon_start',
    'EpsilonMin': 'epsilon_min',
    'EpsilonDecay': 'epsilon_decay',
    'MinCoilTempLearning': 'min_coil_temp_learning',
    'EmergencyCoilTemp': 'emergency_coil_temp',
    'MaxCoilDropRate': 'max_coil_drop_rate',
    'AbortOnCoilFreeze': 'abort_on_coil_freeze',
    'QTablePath': 'q_table_path',
    'OperatingMode': 'operating_mode',
}

# Deprecated name -> current name
_DEPRECATED: Final[dict[str, str]] = {
    'MinCoilTemp': 'min_coil_temp_learning',
}


def normalize_mode(mode: int | str) -> int:
    """Map a mode label or number onto 0=cooling, 1=heating, 2=auto."""
    if isinstance(mode, str):
        key = mode.strip().lower()
        if key not in _MODE_LABELS:
            _log.warning('set_mode_unknown_label label=%r', mode)
            return MODE_AUTO
        return _MODE_LABELS[key]
    if isinstance(mode, bool) or not isinstance(mode, int):
        _log.warning('set_mode_type_error given=%s', type(mode).__name__)
        return MODE_AUTO
    return max(MODE_COOLING, min(MODE_AUTO, mode))


@dataclass(frozen=True)
class ControllerConfig:
    # learning
    alpha: float = 0.05
    gamma: float = 0.90
    q_initial_value: float = 0.0
    epsilon_start: float = 0.40
    epsilon_min: float = 0.05
    epsilon_decay: float = 0.995
    tie_tolerance: float = 1e-6

    # actions
    custom_power_levels: str = '0,40,80,100'
    power_step: int = 20
    custom_fan_speeds: str = '0,40,80,100'
    fan_step: int = 20
    max_power_delta: int = 40
    max_fan_delta: int = 40

    # state encoding
    trend_deadband: float = 0.05        # K/min
    coil_noise_per_min: float = 0.0     # measured sensor noise, K/min
    trend_hysteresis: float = 0.5       # half-width as a fraction of the threshold

    # coil protection
    min_coil_temp_learning: float = 2.0
    emergency_coil_temp: float = 0.0
    max_coil_drop_rate: float = 1.5     # K/min
    abort_on_coil_freeze: bool = True

    # reward
    w_comfort: float = 0.2
    w_energy: float = 0.1
    comp_alpha: float = 1.5
    fan_weight: float = 0.3
    fan_beta: float = 1.5
    w_window: float = 0.1
    w_change: float = 0.002
    w_progress: float = 0.5
    w_freeze: float = 0.3
    w_trend: float = 0.2
    trend_reward_deadband: float = 0.02  # K/min of WAD improvement
    reward_min: float = -1.5
    reward_max: float = 0.25

    # loop
    timer_interval: int = 60            # seconds
    max_step_minutes: float = 10.0
    manual_override: bool = False
    operating_mode: int = MODE_AUTO
    q_table_path: str = ''
    log_level: int = 3

    @property
    def step_minutes_default(self) -> float:
        return max(1, self.timer_interval) / 60.0

    @property
    def logging_level(self) -> int:
        return LOG_LEVELS.get(max(0, min(3, self.log_level)), logging.DEBUG)

    def replace(self, **changes: Any) -> 'ControllerConfig':
        return dataclasses.replace(self, **changes)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> 'ControllerConfig':
        """Build a config from snake_case or host property names.

        Unknown keys are ignored. A deprecated ``MinCoilTemp`` is migrated into
        ``min_coil_temp_learning`` only when the new name was left at its
        default, so an explicit new value always wins.
        """
        fields = {f.name: f for f in dataclasses.fields(cls)}
        values: dict[str, Any] = {}
        for key, value in data.items():
            name = _PROPERTY_NAMES.get(key, key)
            if name in fields:
                values[name] = value
            elif key not in _DEPRECATED:
                _log.debug('config_unknown_key key=%s', key)

        for old, new in _DEPRECATED.items():
            if old not in data:
                continue
            default = fields[new].default
            try:
                current = float(values.get(new, default))
                legacy = float(data[old])
            except (TypeError, ValueError):
                _log.warning('config_migration_skipped %s=%r', old, data[old])
                continue
            if abs(current - default) < 1e-4 and abs(legacy - default) > 1e-4:
                _log.info('config_migrated %s -> %s value=%s', old, new, data[old])
                values[new] = data[old]

        for name, value in list(values.items()):
            if name == 'operating_mode':
                values[name] = normalize_mode(value)
                continue
            default = fields[name].default
            try:
                if isinstance(default, bool):
                    values[name] = value if isinstance(value, bool) else str(value).strip().lower() in ('1', 'true', 'on', 'yes')
                elif isinstance(default, int):
                    values[name] = int(value)
                elif isinstance(default, float):
                    values[name] = float(value)
                else:
                    values[name] = str(value)
            except (TypeError, ValueError):
                _log.warning('config_invalid_value %s=%r, using default %r', name, value, default)
                values[name] = default
        return cls(**values)


def load_config(path: str | Path) -> ControllerConfig:
    """Read a JSON object of properties; a missing or broken file yields defaults."""
    try:
        with open(path, encoding='utf-8') as f:
            data = json.load(f)
    except FileNotFoundError:
        _log.info('config_missing path=%s, using defaults', path)
        return ControllerConfig()
    except (OSError, ValueError) as e:
        _log.warning('config_unreadable path=%s err=%s', path, e)
        return ControllerConfig()
    if not isinstance(data, dict):
        _log.warning('config_not_object path=%s', path)
        return ControllerConfig()
    return ControllerConfig.from_mapping(data)
