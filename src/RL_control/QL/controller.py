"""
The control loop: one safety-gated learning step per timer tick.

Each tick runs through

    1. reentrancy guard (a busy controller skips the tick)
    2. unit reported inactive -> 0:0, no learning, transition chain dropped
    3. safety gate -> forced 0:0, no learning
    4. demand check -> 0:0, no learning, transition chain dropped
    5. state encoding from the current aggregates
    6. transition update: the buffered (state, action) from the previous tick
       is rewarded against the metrics seen now and written to the Q-table
    7. epsilon-greedy selection, rate limiting, snapping to the lattice
       (0:0 stays out while there is demand)
    8. actuation, epsilon annealing, persistence, buffering of the new step

``force_action_and_learn`` runs the same steps for an action chosen by an
external calibration driver instead of the policy, so forced and autonomous
steps land in the Q-table the same way.
"""

import json
import logging
import random
import threading
import time
from typing import Any, Callable, Final, Mapping

from RL_control.config import ControllerConfig, normalize_mode
from RL_control.QL.action_space import ActionSpace, parse_pair
from RL_control.QL.policy import EpsilonGreedyPolicy
from RL_control.QL.q_table import AttributeStore, MemoryAttributeStore, QTable
from RL_control.QL.reward_model import RewardModel
from RL_control.QL.safety_gate import SafetyGate
from RL_control.QL.state_encoder import StateEncoder
from RL_control.QL.types import (
    STOP_ACTION,
    ActionKey,
    ActuationSink,
    AggregateSource,
    Aggregates,
    ForceResult,
    StateKey,
    StateVector,
    TickPhase,
    TickResult,
    TransitionMetrics,
    TransitionRecord,
    make_action_key,
    split_action_key,
)

_log: Final[logging.Logger] = logging.getLogger(__name__)

ATTR_EPSILON: Final[str] = 'Epsilon'
ATTR_LAST_ACTION: Final[str] = 'LastAction'
ATTR_TRANSITION: Final[str] = 'MetaData'
ATTR_TREND: Final[str] = 'TrendState'


class AdaptiveCoolingController:
    """
    Safety-gated epsilon-greedy Q-learning over (compressor power, fan speed).

    Args:
        config: Immutable parameter set; may be replaced per tick.
        aggregates: Source of zoning aggregates, or None when not linked.
        actuator: Sink receiving ``command_system(power, fan)``.
        store: Attribute store for persisted state (epsilon, Q-table,
               transition buffer, trend memory, last action).
        clock: Returns the current time in seconds.
        rng: Random source for the policy.

    Example:
        >>> plant = HvacDummy()
        >>> ctl = AdaptiveCoolingController(ControllerConfig(), plant, plant, clock=plant.clock)
        >>> result = ctl.process_learning()   # TickResult(phase=ACTING, action_key='40:40', ...)
        >>> plant.tick(60)
    """

    def __init__(
        self,
        config: ControllerConfig,
        aggregates: AggregateSource | None,
        actuator: ActuationSink,
        store: AttributeStore | None = None,
        clock: Callable[[], float] = time.time,
        rng: random.Random | None = None,
    ):
        self.aggregates = aggregates
        self.actuator = actuator
        self.store: AttributeStore = store if store is not None else MemoryAttributeStore()
        self.clock = clock

        self._lock = threading.Lock()

        self.gate = SafetyGate()
        self.encoder = StateEncoder()
        self.policy = EpsilonGreedyPolicy(epsilon=0.0, rng=rng)
        self.q_table = QTable(store=self.store)

        self._transition: TransitionRecord | None = None
        self._last_action: ActionKey = STOP_ACTION

        self._configure(config)
        self._restore()
        if self.policy.epsilon <= 0.0:
            self.policy.reset()

    # -------------------- configuration --------------------

    def _configure(self, config: ControllerConfig) -> None:
        self.config = config
        self.action_space = ActionSpace.from_config(config)
        self.reward_model = RewardModel(config, self.action_space)
        self.gate.configure(config)
        self.policy.configure(config)
        self.q_table.configure(config)
        self.encoder = StateEncoder.from_config(config, trend_memory=self.encoder.trend_memory)

    def apply_changes(self, config: ControllerConfig) -> None:
        """Take a new parameter set; exploration starts over only if it was never initialised."""
        self._configure(config)
        if self.policy.epsilon <= 0.0:
            self.policy.reset()
        _log.info('apply_changes interval_s=%d', config.timer_interval)

    def _restore(self) -> None:
        self.q_table.load()

        try:
            self.policy.epsilon = float(self.store.read(ATTR_EPSILON, '0') or 0.0)
        except ValueError:
            self.policy.epsilon = 0.0

        raw = self.store.read(ATTR_TRANSITION, '')
        if raw:
            try:
                self._transition = TransitionRecord.from_dict(json.loads(raw))
            except ValueError:
                _log.warning('transition_buffer_corrupt, dropped')
                self._transition = None

        try:
            self.encoder.trend_memory = max(-1, min(1, int(self.store.read(ATTR_TREND, '0') or 0)))
        except ValueError:
            self.encoder.trend_memory = 0

        last = parse_pair(self.store.read(ATTR_LAST_ACTION, STOP_ACTION))
        self._last_action = make_action_key(*last) if last is not None else STOP_ACTION

    def _persist(self) -> None:
        self.q_table.persist()
        self.store.write(ATTR_EPSILON, repr(self.policy.epsilon))
        self.store.write(ATTR_LAST_ACTION, self._last_action)
        self.store.write(
            ATTR_TRANSITION,
            json.dumps(self._transition.to_dict()) if self._transition is not None else '',
        )
        self.store.write(ATTR_TREND, str(self.encoder.trend_memory))

    # -------------------- read-only views --------------------

    @property
    def epsilon(self) -> float:
        return self.policy.epsilon

    @property
    def transition(self) -> TransitionRecord | None:
        return self._transition

    @property
    def last_action(self) -> ActionKey:
        return self._last_action

    def get_action_pairs(self) -> str:
        return self.action_space.to_json()

    def get_mode(self) -> int:
        return self.config.operating_mode

    def set_mode(self, mode: int | str) -> int:
        m = normalize_mode(mode)
        self.config = self.config.replace(operating_mode=m)
        _log.info('set_mode mode=%d', m)
        return m

    # -------------------- collaborators --------------------

    def _fetch_aggregates(self) -> tuple[Aggregates, bool]:
        if self.aggregates is None:
            return Aggregates(), False
        try:
            data = self.aggregates.get_aggregates()
        except (OSError, ValueError, TypeError) as e:
            _log.warning('agg_unavailable err=%s', e)
            return Aggregates(), False
        if not isinstance(data, Mapping):
            _log.warning('agg_invalid type=%s', type(data).__name__)
            return Aggregates(), False
        return Aggregates.from_mapping(data), True

    def _apply(self, key: ActionKey) -> bool:
        p, f = split_action_key(key)
        try:
            self.actuator.command_system(p, f)
        except OSError as e:
            _log.error('apply_action_failed p=%d f=%d err=%s', p, f, e)
            return False
        self._last_action = make_action_key(p, f)
        _log.info('apply_action p=%d f=%d', p, f)
        return True

    def command_system(self, power: int, fan: int) -> bool:
        """Direct actuation hook; bypasses learning."""
        p = max(0, min(100, int(power)))
        f = max(0, min(100, int(fan)))
        if not self._lock.acquire(blocking=False):
            _log.warning('command_busy_skip p=%d f=%d', p, f)
            return False
        try:
            ok = self._apply(make_action_key(p, f))
            self.store.write(ATTR_LAST_ACTION, self._last_action)
            return ok
        finally:
            self._lock.release()

    # -------------------- tick building blocks --------------------

    def _gate(self, agg: Aggregates, now: float):
        return self.gate.check(agg.coil_temp, agg.emergency_active, now, agg.emergency_coil_temp)

    def _encode(self, agg: Aggregates, previous: tuple[float, float] | None, now: float) -> tuple[StateVector, StateKey]:
        state = StateVector.from_aggregates(agg)
        prev_coil = minutes = None
        if previous is not None:
            t_prev, prev_coil = previous
            minutes = (now - t_prev) / 60.0
        return state, self.encoder.encode(state, prev_coil, minutes)

    def _credit(
        self,
        state: StateVector,
        key: StateKey,
        metrics: TransitionMetrics,
        now: float,
    ) -> tuple[float | None, dict[str, float]]:
        rec = self._transition
        if rec is None:
            return None, {}

        step = (now - rec.timestamp) / 60.0
        if step <= 0:
            step = self.config.step_minutes_default
        if step > self.config.max_step_minutes:
            _log.warning('transition_stale age_min=%.1f max=%.1f, dropped', step, self.config.max_step_minutes)
            self._transition = None
            return None, {}

        terms = self.reward_model.terms(state, rec.action_key, metrics, rec.metrics(), rec.prior_action_key, step)
        reward = self.reward_model.clip(sum(terms.values()))
        self.q_table.update(rec.state_key, rec.action_key, reward, key)
        return reward, terms

    def _legalize(self, candidate: ActionKey, exclude_stop: bool = True) -> ActionKey:
        cfg = self.config
        limited = self.action_space.limit_rate(candidate, self._last_action, cfg.max_power_delta, cfg.max_fan_delta)
        return self.action_space.validate(
            limited,
            last=self._last_action,
            max_power_delta=cfg.max_power_delta,
            max_fan_delta=cfg.max_fan_delta,
            exclude_stop=exclude_stop,
        )

    def _commit(self, key: StateKey, action: ActionKey, metrics: TransitionMetrics, now: float) -> bool:
        prior = self._last_action
        if not self._apply(action):
            self._transition = None
            self._persist()
            return False
        self.policy.anneal()
        self._transition = TransitionRecord(
            state_key=key,
            action_key=action,
            prior_action_key=prior,
            comfort_metric=metrics.comfort_metric,
            coil_temp=metrics.coil_temp,
            max_delta=metrics.max_delta,
            timestamp=now,
        )
        self._persist()
        return True

    def _stop(self) -> None:
        self._apply(STOP_ACTION)
        self.store.write(ATTR_LAST_ACTION, self._last_action)

    def _idle(self) -> None:
        # unit off or nothing to cool: the decision chain is broken
        self._stop()
        if self._transition is not None:
            self._transition = None
            self.store.write(ATTR_TRANSITION, '')

    # -------------------- timer target --------------------

    def process_learning(self, config: ControllerConfig | None = None) -> TickResult:
        """Run one control tick; never raises for sensor, safety or I/O trouble."""
        if not self._lock.acquire(blocking=False):
            _log.warning('tick_busy_skip')
            return TickResult(TickPhase.SKIPPED, reason='busy')
        try:
            if config is not None:
                self._configure(config)
            return self._tick()
        finally:
            self._lock.release()

    def _tick(self) -> TickResult:
        if self.config.manual_override:
            _log.info('manual_override_active')
            return TickResult(TickPhase.OVERRIDE, reason='manual_override')

        now = self.clock()
        agg, available = self._fetch_aggregates()
        previous = self.gate.last_seen

        if agg.ac_active is False:
            self._idle()
            _log.debug('ac_inactive_skip')
            return TickResult(TickPhase.IDLE, STOP_ACTION, reason='ac_inactive')

        gate = self._gate(agg, now)
        if not gate.ok:
            self._stop()
            return TickResult(TickPhase.GATED, STOP_ACTION, reason=gate.reason)

        if available and not agg.has_demand():
            self._idle()
            _log.info('no_demand_idle')
            return TickResult(TickPhase.IDLE, STOP_ACTION, reason='no_demand')

        state, key = self._encode(agg, previous, now)
        metrics = TransitionMetrics.from_aggregates(agg)
        reward, terms = self._credit(state, key, metrics, now)

        allowed = [a for a in self.action_space.allowed() if a != STOP_ACTION] or [STOP_ACTION]
        choice = self.policy.select(key, allowed, self.q_table)
        action = self._legalize(choice, exclude_stop=choice != STOP_ACTION)

        if not self._commit(key, action, metrics, now):
            return TickResult(
                TickPhase.ACTING, state_key=key, reason='actuation_failed',
                reward=reward, learned=reward is not None, terms=terms,
            )
        _log.debug('tick state=%s choice=%s applied=%s reward=%s', key, choice, action, reward)
        return TickResult(
            TickPhase.ACTING, action, state_key=key,
            reward=reward, learned=reward is not None, terms=terms,
        )

    # -------------------- calibration driver API --------------------

    def force_action_and_learn(self, pair: str) -> ForceResult:
        """Apply an externally chosen ``"power:fan"`` pair and learn from it."""
        parsed = parse_pair(pair)
        if parsed is None:
            _log.warning('force_invalid_pair pair=%r', pair)
            return {'ok': False, 'errorCode': 'invalid_pair'}

        if not self._lock.acquire(blocking=False):
            _log.warning('force_busy_skip pair=%s', pair)
            return {'ok': False, 'errorCode': 'busy'}
        try:
            now = self.clock()
            agg, _ = self._fetch_aggregates()
            previous = self.gate.last_seen

            gate = self._gate(agg, now)
            if not gate.ok:
                self._stop()
                return {'ok': False, 'errorCode': gate.reason or 'safety_gate', 'appliedPower': 0, 'appliedFan': 0}

            state, key = self._encode(agg, previous, now)
            metrics = TransitionMetrics.from_aggregates(agg)
            reward, _ = self._credit(state, key, metrics, now)

            target = self.action_space.validate(parsed)
            action = self._legalize(target, exclude_stop=target != STOP_ACTION)
            if not self._commit(key, action, metrics, now):
                return {'ok': False, 'errorCode': 'actuation_failed'}

            p, f = split_action_key(action)
            result: ForceResult = {'ok': True, 'appliedPower': p, 'appliedFan': f}
            if reward is not None:
                result['reward'] = reward
            return result
        finally:
            self._lock.release()

    # -------------------- maintenance --------------------

    def reset_learning(self) -> bool:
        """Forget everything learned; calling it twice equals calling it once.

        Returns False without touching anything when a tick is in progress.
        """
        if not self._lock.acquire(blocking=False):
            _log.warning('reset_busy_skip')
            return False
        try:
            self.policy.reset()
            self.q_table.clear()
            self._transition = None
            self.encoder.trend_memory = 0
            self.gate.reset()
            self._persist()
        finally:
            self._lock.release()
        _log.info('reset_learning')
        return True

    def snapshot(self) -> dict[str, Any]:
        return {
            'epsilon': self.policy.epsilon,
            'lastAction': self._last_action,
            'transition': self._transition.to_dict() if self._transition is not None else None,
            'trend': self.encoder.trend_memory,
            'qTable': self.q_table.to_dict(),
        }
