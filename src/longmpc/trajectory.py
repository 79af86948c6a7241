"""Online parameters fed to each solve and the predicted trajectory it returns."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np

from .dynamics import ACCELERATION, POSITION, VELOCITY


@dataclass(frozen=True)
class OnlineParameters:
    """
    Lead observation for one tick.

    ``time_gap`` may be left as ``None`` so the controller's configured
    following time applies.
    """

    lead_position: float
    lead_velocity: float
    time_gap: Optional[float] = None

    @classmethod
    def virtual_lead(
        cls,
        ego_state: np.ndarray,
        time_gap: Optional[float] = None,
        distance: float = 50.0,
        speed_margin: float = 10.0,
    ) -> "OnlineParameters":
        """A far, faster lead used when no real lead is tracked."""
        return cls(
            lead_position=float(ego_state[POSITION]) + distance,
            lead_velocity=float(ego_state[VELOCITY]) + speed_margin,
            time_gap=time_gap,
        )

    def lead_positions(self, time_grid: np.ndarray) -> np.ndarray:
        """Constant-velocity prediction of the lead on ``time_grid``."""
        return self.lead_position + self.lead_velocity * np.asarray(time_grid)


@dataclass
class Trajectory:
    """
    Predicted ego motion over the horizon.

    Attributes
    ----------
    time_grid : np.ndarray
        Node times, shape ``(N+1,)``.
    states : np.ndarray
        Node states ``[x, v, a]``, shape ``(N+1, 3)``.
    controls : np.ndarray
        Jerk per interval, shape ``(N, 1)``.
    lead_positions : np.ndarray
        Predicted lead position at every node, shape ``(N+1,)``.
    """

    time_grid: np.ndarray
    states: np.ndarray
    controls: np.ndarray
    lead_positions: np.ndarray

    @property
    def positions(self) -> np.ndarray:
        return self.states[:, POSITION]

    @property
    def velocities(self) -> np.ndarray:
        return self.states[:, VELOCITY]

    @property
    def accelerations(self) -> np.ndarray:
        return self.states[:, ACCELERATION]

    @property
    def jerks(self) -> np.ndarray:
        return self.controls[:, 0]

    @property
    def gaps(self) -> np.ndarray:
        return self.lead_positions - self.positions

    @property
    def first_control(self) -> np.ndarray:
        return self.controls[0].copy()

    @property
    def commanded_acceleration(self) -> float:
        """Acceleration reached at the end of the first interval."""
        return float(self.states[1, ACCELERATION])

    def sample(self, t: float) -> np.ndarray:
        """Linearly interpolated state at time ``t`` (clamped to the horizon)."""
        return np.array(
            [np.interp(t, self.time_grid, self.states[:, i]) for i in range(self.states.shape[1])]
        )

    def copy(self) -> "Trajectory":
        return Trajectory(
            time_grid=self.time_grid.copy(),
            states=self.states.copy(),
            controls=self.controls.copy(),
            lead_positions=self.lead_positions.copy(),
        )
