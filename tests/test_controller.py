"""
Tests for the control loop and the calibration driver API.
"""

import json
import threading

import pytest

from RL_control.QL.safety_gate import REASON_EMERGENCY, REASON_LEARNING_FLOOR
from RL_control.QL.types import TickPhase

from conftest import FakeSource


FIRST_MOVES = {"0:40", "40:0", "40:40"}


class TestIdleAndGated:
    def test_no_demand_stops_without_learning(self, controller, source, actuator):
        source.update(coolingDemand=False, numActiveRooms=0)
        result = controller.process_learning()
        assert result.phase is TickPhase.IDLE
        assert result.action_key == "0:0"
        assert actuator.commands == [(0, 0)]
        assert controller.epsilon == pytest.approx(0.4)

    def test_no_demand_drops_transition(self, controller, source, clock):
        controller.process_learning()
        assert controller.transition is not None
        clock.advance()
        source.update(coolingDemand=False, numActiveRooms=0)
        controller.process_learning()
        assert controller.transition is None

    def test_emergency_with_demand(self, controller, source, actuator):
        source.update(emergencyActive=True)
        result = controller.process_learning()
        assert result.phase is TickPhase.GATED
        assert result.reason == REASON_EMERGENCY
        assert actuator.commands == [(0, 0)]
        assert len(controller.q_table) == 0
        assert controller.epsilon == pytest.approx(0.4)

    def test_learning_floor_keeps_buffered_transition(self, controller, source, clock, actuator):
        first = controller.process_learning()
        buffered = controller.transition
        assert first.phase is TickPhase.ACTING

        clock.advance()
        source.update(coilTemp=1.0)
        gated = controller.process_learning()
        assert gated.phase is TickPhase.GATED
        assert gated.reason == REASON_LEARNING_FLOOR
        assert actuator.commands[-1] == (0, 0)
        assert len(controller.q_table) == 0
        assert controller.transition == buffered

        clock.advance()
        source.update(coilTemp=10.0)
        resumed = controller.process_learning()
        assert resumed.learned
        assert buffered.state_key in controller.q_table
        assert buffered.action_key in controller.q_table.row(buffered.state_key)

    def test_inactive_unit_stops_without_learning(self, controller, source, clock, actuator):
        controller.process_learning()
        clock.advance()
        source.update(acActive=False)
        result = controller.process_learning()
        assert result.phase is TickPhase.IDLE
        assert result.reason == "ac_inactive"
        assert actuator.commands[-1] == (0, 0)
        assert controller.transition is None
        assert len(controller.q_table) == 0
        assert controller.epsilon == pytest.approx(0.4 * 0.995)

    def test_missing_active_flag_does_not_block(self, controller, source):
        source.update(acActive=None)
        assert controller.process_learning().phase is TickPhase.ACTING

    def test_manual_override(self, controller, config, actuator):
        result = controller.process_learning(config.replace(manual_override=True))
        assert result.phase is TickPhase.OVERRIDE
        assert actuator.commands == []


class TestActing:
    def test_first_tick_buffers_without_learning(self, controller, actuator):
        result = controller.process_learning()
        assert result.phase is TickPhase.ACTING
        assert result.action_key in FIRST_MOVES
        assert not result.learned
        assert actuator.commands == [tuple(int(x) for x in result.action_key.split(":"))]
        assert controller.transition.action_key == result.action_key
        assert controller.epsilon == pytest.approx(0.4 * 0.995)

    def test_second_tick_credits_first(self, controller, clock):
        first = controller.process_learning()
        clock.advance()
        second = controller.process_learning()
        assert second.learned
        assert second.reward is not None
        assert set(second.terms) == {"comfort", "energy", "window", "change", "progress", "freeze", "trend"}
        assert first.action_key in controller.q_table.row(first.state_key)

    def test_stale_transition_is_dropped(self, controller, clock):
        controller.process_learning()
        clock.advance(20 * 60)
        result = controller.process_learning()
        assert not result.learned
        assert len(controller.q_table) == 0
        assert controller.transition.timestamp == clock.now

    def test_unlinked_source_counts_as_demand(self, make_controller):
        ctl = make_controller(aggregates=None)
        result = ctl.process_learning()
        assert result.phase is TickPhase.ACTING
        assert result.state_key == "N0|D0|C0|T0"

    def test_failing_source_counts_as_demand(self, controller, source):
        source.error = OSError("zoning offline")
        result = controller.process_learning()
        assert result.phase is TickPhase.ACTING
        assert result.state_key == "N0|D0|C0|T0"

    def test_actuation_failure(self, controller, actuator):
        actuator.fail = True
        result = controller.process_learning()
        assert result.reason == "actuation_failed"
        assert controller.transition is None
        assert controller.epsilon == pytest.approx(0.4)
        assert controller.last_action == "0:0"

    def test_rate_limit_and_lattice(self, make_controller, config, clock, actuator):
        ctl = make_controller(config.replace(epsilon_start=1.0, epsilon_min=1.0), seed=7)
        for _ in range(40):
            ctl.process_learning()
            clock.advance()
        prev = (0, 0)
        for p, f in actuator.commands:
            assert f"{p}:{f}" in ctl.action_space
            assert abs(p - prev[0]) <= config.max_power_delta
            assert abs(f - prev[1]) <= config.max_fan_delta
            prev = (p, f)

    def test_tight_rate_limit_never_parks_at_stop(self, make_controller, config, clock, actuator):
        cfg = config.replace(max_power_delta=30, max_fan_delta=30, epsilon_start=1.0, epsilon_min=1.0)
        ctl = make_controller(cfg, seed=11)
        phases = set()
        for _ in range(30):
            phases.add(ctl.process_learning().phase)
            clock.advance()
        assert phases == {TickPhase.ACTING}
        assert (0, 0) not in actuator.commands
        for row in ctl.q_table.to_dict().values():
            assert "0:0" not in row

    def test_q_table_file_written(self, make_controller, config, tmp_path, clock):
        path = tmp_path / "q.json"
        ctl = make_controller(config.replace(q_table_path=str(path)))
        ctl.process_learning()
        clock.advance()
        ctl.process_learning()
        assert json.loads(path.read_text(encoding="utf-8")) == ctl.q_table.to_dict()


class TestForceAction:
    def test_snaps_and_limits(self, controller, actuator):
        result = controller.force_action_and_learn("55:50")
        assert result == {"ok": True, "appliedPower": 40, "appliedFan": 40}
        assert actuator.commands == [(40, 40)]

    def test_second_force_learns(self, controller, clock):
        controller.force_action_and_learn("40:40")
        clock.advance()
        result = controller.force_action_and_learn("80:80")
        assert result["ok"]
        assert (result["appliedPower"], result["appliedFan"]) == (80, 80)
        assert "reward" in result
        assert len(controller.q_table) == 1

    def test_invalid_pair_changes_nothing(self, controller, actuator, source):
        result = controller.force_action_and_learn("fast:cold")
        assert result == {"ok": False, "errorCode": "invalid_pair"}
        assert actuator.commands == []
        assert source.calls == 0
        assert controller.epsilon == pytest.approx(0.4)

    def test_gate_failure(self, controller, source, actuator):
        source.update(emergencyActive=True)
        result = controller.force_action_and_learn("80:80")
        assert result == {"ok": False, "errorCode": REASON_EMERGENCY, "appliedPower": 0, "appliedFan": 0}
        assert actuator.commands == [(0, 0)]


class TestReentrancy:
    def test_nested_calls_are_skipped(self, make_controller):
        inner = {}

        class CallbackSource(FakeSource):
            def get_aggregates(self):
                inner["tick"] = ctl.process_learning()
                inner["force"] = ctl.force_action_and_learn("40:40")
                inner["command"] = ctl.command_system(40, 40)
                inner["reset"] = ctl.reset_learning()
                return super().get_aggregates()

        ctl = make_controller(aggregates=CallbackSource())
        outer = ctl.process_learning()
        assert outer.phase is TickPhase.ACTING
        assert inner["tick"].phase is TickPhase.SKIPPED
        assert inner["force"] == {"ok": False, "errorCode": "busy"}
        assert inner["command"] is False
        assert inner["reset"] is False
        assert ctl.transition is not None

    def test_reset_from_other_thread_does_not_wait(self, make_controller):
        done = threading.Event()
        outcome = {}

        class SlowSource(FakeSource):
            def get_aggregates(self):
                worker = threading.Thread(target=lambda: (outcome.setdefault("reset", ctl.reset_learning()), done.set()))
                worker.start()
                outcome["returned"] = done.wait(timeout=2.0)
                worker.join()
                return super().get_aggregates()

        ctl = make_controller(aggregates=SlowSource())
        ctl.process_learning()
        assert outcome["returned"] is True
        assert outcome["reset"] is False


class TestMaintenance:
    def test_reset_is_idempotent(self, controller, clock):
        for _ in range(3):
            controller.process_learning()
            clock.advance()
        controller.reset_learning()
        once = controller.snapshot()
        controller.reset_learning()
        assert controller.snapshot() == once
        assert once["qTable"] == {}
        assert once["transition"] is None
        assert once["epsilon"] == pytest.approx(0.4)

    def test_restart_restores_state(self, controller, make_controller, clock):
        controller.process_learning()
        clock.advance()
        controller.process_learning()

        restarted = make_controller()
        assert restarted.epsilon == controller.epsilon
        assert restarted.transition == controller.transition
        assert restarted.last_action == controller.last_action
        assert restarted.q_table.to_dict() == controller.q_table.to_dict()

    def test_mode(self, controller):
        assert controller.set_mode("cool") == 0
        assert controller.get_mode() == 0
        assert controller.set_mode("weird") == 2

    def test_apply_changes_keeps_exploration(self, controller, config):
        controller.process_learning()
        eps = controller.epsilon
        controller.apply_changes(config.replace(custom_power_levels="0,50,100", max_power_delta=50))
        assert controller.epsilon == eps
        assert "50:40" in controller.action_space
        assert controller.gate.max_coil_drop_rate == config.max_coil_drop_rate

    def test_action_pairs(self, controller):
        pairs = json.loads(controller.get_action_pairs())
        assert len(pairs) == 16
        assert "0:0" in pairs
