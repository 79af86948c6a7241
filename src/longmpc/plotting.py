"""Visualization of predicted follow trajectories."""

from __future__ import annotations

from typing import Optional

import matplotlib.pyplot as plt
import numpy as np
from scipy.interpolate import interp1d

from .cost import FollowCostModel
from .trajectory import Trajectory


def plot_trajectory(
    trajectory: Trajectory,
    time_gap: Optional[float] = None,
    cost_model: Optional[FollowCostModel] = None,
    lead_velocity: Optional[float] = None,
    show: bool = True,
):
    """
    Plot gap, velocity, acceleration and jerk over the horizon.

    When ``time_gap`` and ``lead_velocity`` are given the desired gap is drawn
    next to the predicted one.
    """
    fig, axes = plt.subplots(4, 1, figsize=(8, 9), sharex=True)

    ts = np.asarray(trajectory.time_grid)
    t_fine = np.linspace(ts[0], ts[-1], 200)
    kind = "cubic" if ts.size > 3 else "linear"

    gap = interp1d(ts, trajectory.gaps, kind=kind)(t_fine)
    axes[0].plot(t_fine, gap, label="Predicted gap")
    axes[0].plot(ts, trajectory.gaps, "o", markersize=3, color="C0")
    if time_gap is not None and lead_velocity is not None:
        model = cost_model if cost_model is not None else FollowCostModel()
        desired = model.desired_gap(trajectory.velocities, lead_velocity, time_gap)
        axes[0].plot(ts, desired, "--", label="Desired gap")
    axes[0].set_ylabel("Gap (m)")
    axes[0].legend()

    axes[1].plot(t_fine, interp1d(ts, trajectory.velocities, kind=kind)(t_fine))
    axes[1].set_ylabel("Velocity (m/s)")

    axes[2].plot(ts, trajectory.accelerations, marker=".")
    axes[2].set_ylabel("Accel (m/s²)")

    axes[3].step(ts[:-1], trajectory.jerks, where="post")
    axes[3].set_ylabel("Jerk (m/s³)")
    axes[3].set_xlabel("Time (s)")

    for ax in axes:
        ax.grid(True, alpha=0.3)
    fig.suptitle("Longitudinal MPC prediction")
    plt.tight_layout()
    if show:
        plt.show()
    return fig
