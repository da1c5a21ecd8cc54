"""
Q-Table: Learned Values for (State, Action) Pairs
==================================================

## Structure

The table is a map of maps:

    {
        "N1|D2|C0|T0": {"40:40": -0.112, "80:40": -0.087, ...},
        "N2|D4|C1|T-1": {...},
    }

Rows appear the first time a state is visited and cells the first time an
action is credited there. Nothing expires; only ``clear()`` (reset) removes
entries. Reading a cell that was never written returns ``initial_value``
(0.0 unless configured otherwise), and the best value of a row that does not
exist yet is 0.0.

## The Update

Standard one-step Q-learning:

    Q(s, a) <- (1 - alpha) * Q(s, a) + alpha * (r + gamma * max_a' Q(s', a'))

## Persistence

The table is JSON-serialised as an object of objects. It is always written
to the attribute store (the host's always-available key/value area). When a
file path is configured it is additionally written to disk atomically: the
JSON goes to ``<path>.tmp`` first and is then renamed over ``<path>``, so a
crash mid-write never leaves a truncated table behind. If the file write
fails the attribute-store copy is still there.

Every persist bumps a revision counter kept in the attribute store, next to
the revision the file last received. On load the file is only trusted when
it is at least as new as the attribute copy.
"""

import json
import logging
import math
import os
from typing import Any, Final, Iterable, Mapping, Protocol

from RL_control.QL.types import ActionKey, StateKey

_log: Final[logging.Logger] = logging.getLogger(__name__)

QTABLE_ATTRIBUTE: Final[str] = 'QTable'
REVISION_ATTRIBUTE: Final[str] = 'QTableRevision'
FILE_REVISION_ATTRIBUTE: Final[str] = 'QTableFileRevision'


def _read_revision(store: 'AttributeStore', name: str) -> int:
    try:
        return max(0, int(store.read(name, '0') or 0))
    except ValueError:
        return 0


class AttributeStore(Protocol):
    def read(self, name: str, default: str = '') -> str: ...
    def write(self, name: str, value: str) -> None: ...


class MemoryAttributeStore:
    """In-process attribute store; strings in, strings out."""

    def __init__(self, initial: Mapping[str, str] | None = None):
        self._values: dict[str, str] = dict(initial or {})

    def read(self, name: str, default: str = '') -> str:
        return self._values.get(name, default)

    def write(self, name: str, value: str) -> None:
        self._values[name] = value

    def __contains__(self, name: object) -> bool:
        return name in self._values


class QTable:
    """
    Tabular Q-values with atomic persistence.

    Args:
        alpha: Learning rate in (0, 1).
        gamma: Discount factor in [0, 1).
        initial_value: Value of a (state, action) cell never written.
        store: Attribute store used as the always-available copy.
        path: Optional JSON file path; empty string disables the file copy.
    """

    def __init__(
        self,
        alpha: float = 0.05,
        gamma: float = 0.90,
        initial_value: float = 0.0,
        store: AttributeStore | None = None,
        path: str = '',
    ):
        self.alpha = alpha
        self.gamma = gamma
        self.initial_value = initial_value
        self.store: AttributeStore = store if store is not None else MemoryAttributeStore()
        self.path = (path or '').strip()
        self._q: dict[StateKey, dict[ActionKey, float]] = {}
        self.revision = 0

    def configure(self, config) -> None:
        self.alpha = config.alpha
        self.gamma = config.gamma
        self.initial_value = config.q_initial_value
        self.path = (config.q_table_path or '').strip()

    # -------------------- access --------------------

    def get(self, state: StateKey, action: ActionKey) -> float:
        return self._q.get(state, {}).get(action, self.initial_value)

    def row(self, state: StateKey) -> dict[ActionKey, float]:
        return dict(self._q.get(state, {}))

    def max_value(self, state: StateKey) -> float:
        return max(self._q.get(state, {}).values(), default=0.0)

    def values_for(self, state: StateKey, actions: Iterable[ActionKey]) -> dict[ActionKey, float]:
        return {a: self.get(state, a) for a in actions}

    def __len__(self) -> int:
        return sum(len(r) for r in self._q.values())

    def __contains__(self, state: object) -> bool:
        return state in self._q

    def states(self) -> list[StateKey]:
        return list(self._q)

    # -------------------- learning --------------------

    def update(self, s_prev: StateKey, a_prev: ActionKey, reward: float, s_new: StateKey) -> float:
        """Apply one Q-learning step and return the new value of Q(s_prev, a_prev).

        The bootstrap term is read before the write, so ``s_prev == s_new``
        uses the old value. A non-finite result is refused and the old value
        kept.
        """
        old = self.get(s_prev, a_prev)
        max_next = self.max_value(s_new)
        new = (1 - self.alpha) * old + self.alpha * (reward + self.gamma * max_next)
        if not math.isfinite(new):
            _log.error('q_update_non_finite state=%s a=%s old=%r r=%r', s_prev, a_prev, old, reward)
            return old
        self._q.setdefault(s_prev, {})[a_prev] = new
        _log.debug('q_update state=%s a=%s old=%.5f new=%.5f r=%.4f next=%s', s_prev, a_prev, old, new, reward, s_new)
        return new

    def clear(self) -> None:
        self._q.clear()

    # -------------------- serialisation --------------------

    def to_dict(self) -> dict[StateKey, dict[ActionKey, float]]:
        return {s: dict(row) for s, row in self._q.items()}

    @staticmethod
    def _clean(data: Any) -> dict[StateKey, dict[ActionKey, float]]:
        out: dict[StateKey, dict[ActionKey, float]] = {}
        if not isinstance(data, dict):
            return out
        for s, row in data.items():
            if not isinstance(row, dict):
                continue
            clean_row: dict[ActionKey, float] = {}
            for a, v in row.items():
                if isinstance(v, bool) or not isinstance(v, (int, float)):
                    continue
                if math.isfinite(v):
                    clean_row[str(a)] = float(v)
            out[str(s)] = clean_row
        return out

    def from_dict(self, data: Any) -> None:
        self._q = self._clean(data)

    def to_json(self) -> str:
        return json.dumps(self._q, separators=(',', ':'), ensure_ascii=False)

    def persist(self) -> bool:
        """Write the table; returns False when the file copy failed."""
        payload = self.to_json()
        self.revision += 1
        self.store.write(QTABLE_ATTRIBUTE, payload)
        self.store.write(REVISION_ATTRIBUTE, str(self.revision))
        if not self.path:
            return True

        tmp = self.path + '.tmp'
        try:
            with open(tmp, 'w', encoding='utf-8') as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, self.path)
        except OSError as e:
            _log.error('q_save_failed path=%s err=%s (attribute copy kept)', self.path, e)
            try:
                os.unlink(tmp)
            except OSError:
                pass
            return False
        self.store.write(FILE_REVISION_ATTRIBUTE, str(self.revision))
        _log.info('q_saved path=%s states=%d rev=%d', self.path, len(self._q), self.revision)
        return True

    def load(self) -> None:
        """Load the newest valid copy: the file unless it lags the attribute store."""
        self.revision = _read_revision(self.store, REVISION_ATTRIBUTE)
        file_revision = _read_revision(self.store, FILE_REVISION_ATTRIBUTE)
        use_file = bool(self.path) and os.path.isfile(self.path)
        if use_file and file_revision < self.revision:
            _log.warning('q_file_stale path=%s file_rev=%d rev=%d', self.path, file_revision, self.revision)
            use_file = False

        if use_file:
            try:
                with open(self.path, encoding='utf-8') as f:
                    data = json.load(f)
            except (OSError, ValueError) as e:
                _log.error('q_load_failed path=%s err=%s', self.path, e)
            else:
                if isinstance(data, dict):
                    self._q = self._clean(data)
                    _log.info('q_loaded path=%s states=%d', self.path, len(self._q))
                    return
        try:
            data = json.loads(self.store.read(QTABLE_ATTRIBUTE, '{}') or '{}')
        except ValueError as e:
            _log.error('q_attribute_corrupt err=%s', e)
            data = {}
        self._q = self._clean(data)
