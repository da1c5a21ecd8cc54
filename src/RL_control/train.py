"""
Simulation loop for the adaptive cooling controller on the split-AC plant.
"""

import logging
import random
from typing import List

from RL_control.config import ControllerConfig, load_config
from RL_control.environment import create_plant
from RL_control.QL.controller import AdaptiveCoolingController
from RL_control.QL.q_table import MemoryAttributeStore
from RL_control.QL.types import TickPhase


def run(
    num_ticks: int = 240,
    config: ControllerConfig | None = None,
    render_interval: int = 10,
    seed: int | None = None,
    verbose: bool = False,
) -> List[float]:
    """
    Run the controller against the simulated plant.

    Every tick the controller reads the plant's aggregates, credits the
    previous action, and commands a new (power, fan) pair; then the plant is
    advanced by one timer interval. Learning is online: there are no
    episodes, the Q-table keeps growing across the whole run.

    Args:
        num_ticks: Number of control ticks to simulate
        config: Controller parameters (defaults if None)
        render_interval: Ticks between progress prints
        seed: Seed for both the plant noise and the policy
        verbose: Whether to show plant debug output

    Returns:
        List of transition rewards (0.0 for ticks that did not learn)
    """
    cfg = config or ControllerConfig()
    logging.getLogger('hvaclib.hvac_dummy').setLevel(logging.WARNING)

    plant = create_plant(debug=verbose, seed=seed)
    controller = AdaptiveCoolingController(
        cfg,
        plant,
        plant,
        store=MemoryAttributeStore(),
        clock=plant.clock,
        rng=random.Random(seed),
    )

    rewards: List[float] = []
    phases = {phase: 0 for phase in TickPhase}

    print(f"Running adaptive cooling controller for {num_ticks} ticks "
          f"({cfg.timer_interval}s interval)")
    print("-" * 60)

    for tick in range(num_ticks):
        result = controller.process_learning()
        phases[result.phase] += 1
        rewards.append(result.reward if result.reward is not None else 0.0)

        plant.tick(cfg.timer_interval)

        if tick % render_interval == 0:
            agg = plant.get_aggregates()
            print(
                f"Tick {tick:4d} | "
                f"{result.phase.value:7s} | "
                f"Action: {result.action_key or '-':>7s} | "
                f"Reward: {rewards[-1]:7.3f} | "
                f"Epsilon: {controller.epsilon:.3f} | "
                f"Coil: {agg['coilTemp']:6.2f} | "
                f"MaxDelta: {agg['maxDeltaT']:.2f}"
            )

    print("-" * 60)
    print(f"Done. States learned: {len(controller.q_table.states())}, "
          f"Q-entries: {len(controller.q_table)}, "
          f"Energy used: {plant.energy_used:.1f}")
    print(", ".join(f"{p.value}={n}" for p, n in phases.items()))

    return rewards


if __name__ == "__main__":
    # Simulation configuration
    NUM_TICKS = 480  # 8 hours at a 60s timer
    CONFIG_PATH = "./controller.json"

    config = load_config(CONFIG_PATH)
    logging.basicConfig(
        level=config.logging_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    rewards = run(
        num_ticks=NUM_TICKS,
        config=config,
        render_interval=30,
        seed=7,
    )
