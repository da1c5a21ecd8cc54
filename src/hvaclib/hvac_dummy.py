#!/usr/bin/env python3

# ABOUT
# Split-AC "Dummy" plant
#
# Simulates a ducted split air conditioner cooling a handful of rooms so the
# adaptive controller can be exercised without hardware. It acts both as the
# zoning aggregate source and as the actuation sink.

# LICENSE
# This program or module is free software: you can redistribute it and/or
# modify it under the terms of the GNU General Public License as published
# by the Free Software Foundation, either version 2 of the License, or
# version 3 of the License, or (at your option) any later version. It is
# provided for educational purposes and is distributed in the hope that
# it will be useful, but WITHOUT ANY WARRANTY; without even the implied
# warranty of MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See
# the GNU General Public License for more details.

import logging
import math
from typing import Final, Any, TypedDict

import numpy as np

_log: Final[logging.Logger] = logging.getLogger(__name__)


class ROOM(TypedDict):
    name: str
    temp: float
    target: float
    size: float
    window_open: bool


class HvacDummy:
    HVAC_DEBUG = False

    AMBIENT_TEMP = 30.0       # degC
    AMBIENT_GAIN = 0.02       # 1/min, heat leak towards ambient
    WINDOW_GAIN = 0.06        # 1/min, extra leak through an open window
    COOLING_CAPACITY = 0.35   # K/min per unit room size at 100 % power
    COIL_DEPRESSION = 28.0    # K below return air at 100 % power, no airflow boost
    COIL_TAU_MIN = 8.0        # min, coil time constant
    HYSTERESIS = 0.5          # K, room overshoot needed to count as demanding

    DEFAULT_ROOMS: list[ROOM] = [
        {'name': 'living', 'temp': 27.0, 'target': 23.0, 'size': 1.5, 'window_open': False},
        {'name': 'bedroom', 'temp': 26.0, 'target': 22.5, 'size': 1.0, 'window_open': False},
        {'name': 'office', 'temp': 25.0, 'target': 24.0, 'size': 0.8, 'window_open': False},
    ]

    def __init__(self, rooms: list[ROOM] | None = None, seed: int | None = None, debug: bool = False) -> None:
        self.HVAC_DEBUG = debug
        self.rooms: list[ROOM] = [dict(r) for r in (rooms or self.DEFAULT_ROOMS)]  # type: ignore[misc]
        self.rng = np.random.default_rng(seed)
        self.noise_std: float = 0.02

        self.time: float = 0.0    # simulated seconds
        self.power: int = 0
        self.fan: int = 0
        self.coil_temp: float = float(np.mean([r['temp'] for r in self.rooms]))
        self.emergency: bool = False
        self.ac_active: bool = True
        self.connected: bool = False
        self.energy_used: float = 0.0
        self.commands: list[tuple[int, int]] = []

        self._open_port()

    def __dbg(self, msg: str) -> None:
        _log.debug('HvacDummy: %s', msg)
        if self.HVAC_DEBUG:
            try:
                print('HvacDummy: ' + msg)
            except OSError:
                pass

    def _open_port(self) -> None:
        self.connected = True
        self.__dbg('connected to dummy plant')

    def _close_port(self) -> None:
        self.connected = False
        self.__dbg('disconnected from dummy plant')

    def clock(self) -> float:
        return self.time

    # -------------------- actuation sink --------------------

    def command_system(self, power: int, fan: int) -> None:
        if not self.connected:
            raise OSError('Plant not connected')
        self.power = max(0, min(100, int(power)))
        self.fan = max(0, min(100, int(fan)))
        self.commands.append((self.power, self.fan))
        self.__dbg(f'command power={self.power} fan={self.fan}')

    # -------------------- simulation --------------------

    def tick(self, dt: float = 60.0) -> None:
        """Advance the plant by ``dt`` seconds."""
        minutes = dt / 60.0
        airflow = 0.3 + 0.7 * self.fan / 100.0
        capacity = self.COOLING_CAPACITY * (self.power / 100.0) * airflow
        total_size = sum(r['size'] for r in self.rooms) or 1.0
        # supply air is split by room size, so every room cools at the same rate
        cooling = capacity * len(self.rooms) / total_size

        for r in self.rooms:
            gain = self.AMBIENT_GAIN * (self.AMBIENT_TEMP - r['temp'])
            if r['window_open']:
                gain += self.WINDOW_GAIN * (self.AMBIENT_TEMP - r['temp'])
            r['temp'] += (gain - cooling) * minutes + float(self.rng.normal(0, self.noise_std))

        return_air = float(np.mean([r['temp'] for r in self.rooms]))
        depression = self.COIL_DEPRESSION * (self.power / 100.0) * (1.15 - 0.75 * self.fan / 100.0)
        coil_target = return_air - depression
        self.coil_temp += (coil_target - self.coil_temp) * (1.0 - math.exp(-minutes / self.COIL_TAU_MIN))
        self.coil_temp += float(self.rng.normal(0, self.noise_std))

        self.energy_used += ((self.power / 100.0) ** 1.5 + 0.3 * (self.fan / 100.0)) * minutes
        self.time += dt

    # -------------------- aggregate source --------------------

    def get_aggregates(self) -> dict[str, Any]:
        num_active = 0
        max_delta = 0.0
        max_dev = 0.0
        d_cold = 0.0
        hot_rooms = 0
        weighted = 0.0
        weight = 0.0
        any_window = False
        active: list[str] = []

        for r in self.rooms:
            delta = r['temp'] - r['target']
            max_dev = max(max_dev, abs(delta))
            d_cold = max(d_cold, -delta)
            any_window = any_window or r['window_open']
            if r['window_open'] or delta <= self.HYSTERESIS:
                continue
            num_active += 1
            active.append(r['name'])
            max_delta = max(max_delta, delta)
            weighted += r['size'] * delta
            weight += r['size']
            if delta > 2 * self.HYSTERESIS:
                hot_rooms += 1

        agg = {
            'numActiveRooms': num_active,
            'maxDeltaT': round(max_delta, 2),
            'coilTemp': round(self.coil_temp, 2),
            'emergencyActive': self.emergency,
            'acActive': self.ac_active,
            'rawWAD': round(weighted / weight, 3) if weight > 0 else 0.0,
            'hotRooms': hot_rooms,
            'maxDev': round(max_dev, 2),
            'D_cold': round(d_cold, 2),
            'coolingDemand': num_active > 0,
            'anyWindowOpen': any_window,
            'activeRooms': active,
        }
        self.__dbg(f'aggregates {agg}')
        return agg

    # -------------------- test hooks --------------------

    def set_window(self, name: str, is_open: bool) -> None:
        for r in self.rooms:
            if r['name'] == name:
                r['window_open'] = is_open
                self.__dbg(f'window {name} open={is_open}')
                return
        raise KeyError(name)

    def set_targets(self, target: float) -> None:
        for r in self.rooms:
            r['target'] = target


if __name__ == '__main__':
    plant = HvacDummy(seed=1, debug=True)
    plant.command_system(80, 40)
    try:
        for minute in range(30):
            plant.tick(60)
            agg = plant.get_aggregates()
            print(f"t={minute + 1:3d} min | coil {agg['coilTemp']:6.2f} degC | "
                  f"active {agg['numActiveRooms']} | maxDelta {agg['maxDeltaT']:.2f} | WAD {agg['rawWAD']:.2f}")
    except KeyboardInterrupt:
        print('\nExiting...')
    finally:
        plant._close_port() # pylint: disable=protected-access
