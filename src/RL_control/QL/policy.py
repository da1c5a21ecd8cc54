"""
Epsilon-greedy action selection over the allowed action subset.
"""

import logging
import random
from typing import Final, Sequence

from RL_control.QL.q_table import QTable
from RL_control.QL.types import ActionKey, StateKey, split_action_key

_log: Final[logging.Logger] = logging.getLogger(__name__)


def _effort(key: ActionKey) -> int:
    p, f = split_action_key(key)
    return p + f


class EpsilonGreedyPolicy:
    """
    Balances exploration and exploitation:

    - With probability epsilon: a uniformly random allowed action (explore)
    - Otherwise: the allowed action with the highest Q-value (exploit)

    Greedy ties (within ``tie_tolerance``) are ordered by total effort
    (power + fan), highest first, and one of the top two is picked at random.

    Epsilon decays geometrically with :meth:`anneal`, which the controller
    calls only on ticks that actually learned.

    Args:
        epsilon_start: Initial exploration rate, restored by :meth:`reset`.
        epsilon_min: Floor for the exploration rate.
        epsilon_decay: Multiplier applied per learning tick.
        tie_tolerance: Values closer than this are treated as equal.
        rng: Random source (a seeded ``random.Random`` in tests).
    """

    def __init__(
        self,
        epsilon_start: float = 0.40,
        epsilon_min: float = 0.05,
        epsilon_decay: float = 0.995,
        tie_tolerance: float = 1e-6,
        epsilon: float | None = None,
        rng: random.Random | None = None,
    ):
        self.epsilon_start = epsilon_start
        self.epsilon_min = epsilon_min
        self.epsilon_decay = epsilon_decay
        self.tie_tolerance = tie_tolerance
        self.epsilon = epsilon_start if epsilon is None else epsilon
        self.rng = rng if rng is not None else random.Random()

    def configure(self, config) -> None:
        self.epsilon_start = config.epsilon_start
        self.epsilon_min = config.epsilon_min
        self.epsilon_decay = config.epsilon_decay
        self.tie_tolerance = config.tie_tolerance

    def select(self, state: StateKey, allowed: Sequence[ActionKey], q_table: QTable) -> ActionKey:
        if not allowed:
            raise ValueError('no allowed actions to select from')

        if self.rng.random() < self.epsilon:
            choice = self.rng.choice(list(allowed))
            _log.debug('select_explore state=%s pair=%s epsilon=%.4f', state, choice, self.epsilon)
            return choice

        choice = self.greedy(state, allowed, q_table)
        _log.debug('select_exploit state=%s pair=%s epsilon=%.4f', state, choice, self.epsilon)
        return choice

    def greedy(self, state: StateKey, allowed: Sequence[ActionKey], q_table: QTable) -> ActionKey:
        values = q_table.values_for(state, allowed)
        best = max(values.values())
        tied = [a for a in allowed if values[a] >= best - self.tie_tolerance]
        if len(tied) == 1:
            return tied[0]
        # stable sort keeps lattice order among equal effort
        tied.sort(key=_effort, reverse=True)
        return self.rng.choice(tied[:2])

    def anneal(self) -> float:
        self.epsilon = max(self.epsilon_min, self.epsilon * self.epsilon_decay)
        _log.debug('epsilon_anneal eps=%.5f', self.epsilon)
        return self.epsilon

    def reset(self) -> None:
        self.epsilon = self.epsilon_start
        _log.info('epsilon_init eps=%.3f', self.epsilon)
