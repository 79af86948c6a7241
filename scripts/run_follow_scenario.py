#!/usr/bin/env python3
"""
Closed-loop follow scenario.

The ego vehicle starts behind a lead that cruises, brakes, and speeds up
again.  Every tick the controller is solved, the first jerk is applied to the
ego model for one tick period, and the status of the tick is printed.
"""

from __future__ import annotations

import argparse
import logging

import numpy as np

from longmpc import LongitudinalMPC, LongitudinalMPCConfig, OnlineParameters
from longmpc.integrator import integrate_interval


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run a closed-loop follow scenario.")
    parser.add_argument("--duration", type=float, default=20.0, help="Simulated seconds.")
    parser.add_argument("--tick", type=float, default=0.2, help="Control period in seconds.")
    parser.add_argument("--time-gap", type=float, default=1.8, help="Following time gap.")
    parser.add_argument("--plot", action="store_true", help="Plot the last prediction.")
    parser.add_argument("--verbose", action="store_true", help="Log every SQP iteration.")
    return parser.parse_args()


def lead_acceleration(t: float) -> float:
    if 5.0 <= t < 8.0:
        return -3.0
    if 12.0 <= t < 15.0:
        return 2.0
    return 0.0


def main() -> None:
    args = parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    controller = LongitudinalMPC(LongitudinalMPCConfig(time_gap=args.time_gap))
    ego = np.array([0.0, 20.0, 0.0])
    lead_position, lead_velocity = 45.0, 20.0

    t = 0.0
    output = None
    while t < args.duration:
        params = OnlineParameters(lead_position=lead_position, lead_velocity=lead_velocity)
        output = controller.step(ego, params, elapsed=args.tick if t > 0.0 else None)
        gap = lead_position - ego[0]
        print(
            f"t={t:5.1f}s gap={gap:6.2f}m v={ego[1]:5.2f}m/s a={ego[2]:5.2f} "
            f"jerk={output.jerk:6.3f} status={output.status.value} "
            f"it={output.iterations} {1e3 * output.solve_time_s:5.1f}ms"
        )

        ego = integrate_interval(
            controller.dynamics, ego, np.array([output.jerk]), args.tick, substeps=1
        )
        lead_velocity = max(lead_velocity + lead_acceleration(t) * args.tick, 0.0)
        lead_position += lead_velocity * args.tick
        t += args.tick

    if args.plot and output is not None and output.trajectory is not None:
        from longmpc.plotting import plot_trajectory

        plot_trajectory(
            output.trajectory,
            time_gap=controller.time_gap,
            cost_model=controller.cost_model,
            lead_velocity=lead_velocity,
        )


if __name__ == "__main__":
    main()
