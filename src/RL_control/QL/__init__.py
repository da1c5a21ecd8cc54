"""
Tabular Q-Learning Module for Split-AC Cooling Control
======================================================

This module implements an online, safety-gated Q-learning controller that
picks a compressor power / fan speed pair every control tick.

## The Learning Problem

Every tick the controller:
1. Observes the current STATE (rooms asking for cooling, worst overshoot,
   coil temperature and its trend)
2. Credits the action it took LAST tick with a REWARD computed from what it
   sees now (comfort, energy, freeze risk, progress)
3. Picks a new ACTION from the (power, fan) lattice
4. Remembers this step so the next tick can credit it

Learning happens one tick late on purpose: the effect of switching the
compressor from 40 % to 80 % is only visible after the next sensing cycle.

## Why a Table?

The state is bucketed into at most 5 x 8 x 7 x 3 = 840 keys and the action
lattice is small (16 pairs with the default 0/40/80/100 levels), so a plain
dictionary of dictionaries is enough. No function approximation needed.

## Safety First

Before anything is selected or learned, the safety gate checks:
    - emergency cutoff (hard stop)
    - coil at or below the learning floor (freeze risk)
    - coil dropping faster than the allowed K/min

A failed check forces ``0:0`` and the tick does not learn. A stop forced by
safety is not a policy decision and must not end up in the Q-table.

Module Components:
    AdaptiveCoolingController: The control loop, one tick at a time
    ActionSpace: The (power, fan) lattice, validation and rate limiting
    StateEncoder: Aggregates -> "N|D|C|T" bucket key
    SafetyGate: Coil protection checks
    RewardModel: Transition reward with per-term breakdown
    QTable: Learned values with atomic persistence
    EpsilonGreedyPolicy: Exploration / exploitation and epsilon annealing
"""

from RL_control.QL.action_space import ActionSpace
from RL_control.QL.controller import AdaptiveCoolingController
from RL_control.QL.policy import EpsilonGreedyPolicy
from RL_control.QL.q_table import MemoryAttributeStore, QTable
from RL_control.QL.reward_model import RewardModel
from RL_control.QL.safety_gate import GateResult, SafetyGate
from RL_control.QL.state_encoder import StateEncoder

__all__ = [
    "AdaptiveCoolingController",
    "ActionSpace",
    "EpsilonGreedyPolicy",
    "GateResult",
    "MemoryAttributeStore",
    "QTable",
    "RewardModel",
    "SafetyGate",
    "StateEncoder",
]
