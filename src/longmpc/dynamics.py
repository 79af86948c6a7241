"""
Longitudinal ego dynamics.

The ego vehicle is a triple integrator driven by jerk: position, velocity and
acceleration are the state and jerk is the only control.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

import numpy as np


StateVector = np.ndarray
ControlVector = np.ndarray

POSITION = 0
VELOCITY = 1
ACCELERATION = 2


@dataclass(frozen=True)
class LongitudinalDynamics:
    """Continuous-time model ``d/dt [x, v, a] = [v, a, j]``."""

    @property
    def state_dim(self) -> int:
        return 3

    @property
    def control_dim(self) -> int:
        return 1

    def state_derivative(self, state: StateVector, control: ControlVector) -> StateVector:
        return np.array([state[VELOCITY], state[ACCELERATION], control[0]])

    def linearize(
        self, state: StateVector, control: ControlVector
    ) -> Tuple[np.ndarray, np.ndarray]:
        """
        Returns the Jacobians ``A = df/dx`` and ``B = df/du``.  The model is
        linear so both are constant.
        """
        A = np.zeros((self.state_dim, self.state_dim))
        A[POSITION, VELOCITY] = 1.0
        A[VELOCITY, ACCELERATION] = 1.0
        B = np.zeros((self.state_dim, self.control_dim))
        B[ACCELERATION, 0] = 1.0
        return A, B
