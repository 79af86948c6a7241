"""
Explicit Runge-Kutta integration over one shooting interval.

The interval is split into equal substeps and each substep is advanced with
the classic four-stage RK4 scheme under a constant control.  The sensitivity
variant integrates the variational equations with the same stages, which
gives the exact derivatives of the discrete map (not of the continuous flow).
"""

from __future__ import annotations

from typing import Tuple

import numpy as np

from .dynamics import ControlVector, LongitudinalDynamics, StateVector
from .errors import NumericalOverflowError


def rk4_step(
    dynamics: LongitudinalDynamics, state: StateVector, control: ControlVector, h: float
) -> StateVector:
    k1 = dynamics.state_derivative(state, control)
    k2 = dynamics.state_derivative(state + 0.5 * h * k1, control)
    k3 = dynamics.state_derivative(state + 0.5 * h * k2, control)
    k4 = dynamics.state_derivative(state + h * k3, control)
    return state + (h / 6.0) * (k1 + 2.0 * k2 + 2.0 * k3 + k4)


def integrate_interval(
    dynamics: LongitudinalDynamics,
    state: StateVector,
    control: ControlVector,
    duration: float,
    substeps: int = 1,
) -> StateVector:
    """Advances ``state`` over ``duration`` using ``substeps`` RK4 steps."""
    h = duration / substeps
    x = np.asarray(state, dtype=float)
    for _ in range(substeps):
        x = rk4_step(dynamics, x, control, h)
    _check_finite(x)
    return x


def integrate_with_sensitivities(
    dynamics: LongitudinalDynamics,
    state: StateVector,
    control: ControlVector,
    duration: float,
    substeps: int = 1,
) -> Tuple[StateVector, np.ndarray, np.ndarray]:
    """
    Integrates one interval and returns ``(x_end, A_d, B_d)`` where
    ``A_d = d x_end / d state`` and ``B_d = d x_end / d control``.
    """
    nx = dynamics.state_dim
    nu = dynamics.control_dim
    h = duration / substeps
    x = np.asarray(state, dtype=float)
    A_d = np.eye(nx)
    B_d = np.zeros((nx, nu))

    for _ in range(substeps):
        x, A_step, B_step = _rk4_step_with_sensitivities(dynamics, x, control, h)
        A_d = A_step @ A_d
        B_d = A_step @ B_d + B_step

    _check_finite(x, A_d, B_d)
    return x, A_d, B_d


def _rk4_step_with_sensitivities(
    dynamics: LongitudinalDynamics, x: StateVector, u: ControlVector, h: float
) -> Tuple[StateVector, np.ndarray, np.ndarray]:
    nx = dynamics.state_dim
    eye = np.eye(nx)

    k1 = dynamics.state_derivative(x, u)
    A1, B1 = dynamics.linearize(x, u)
    dk1_dx = A1
    dk1_du = B1

    x2 = x + 0.5 * h * k1
    k2 = dynamics.state_derivative(x2, u)
    A2, B2 = dynamics.linearize(x2, u)
    dk2_dx = A2 @ (eye + 0.5 * h * dk1_dx)
    dk2_du = A2 @ (0.5 * h * dk1_du) + B2

    x3 = x + 0.5 * h * k2
    k3 = dynamics.state_derivative(x3, u)
    A3, B3 = dynamics.linearize(x3, u)
    dk3_dx = A3 @ (eye + 0.5 * h * dk2_dx)
    dk3_du = A3 @ (0.5 * h * dk2_du) + B3

    x4 = x + h * k3
    k4 = dynamics.state_derivative(x4, u)
    A4, B4 = dynamics.linearize(x4, u)
    dk4_dx = A4 @ (eye + h * dk3_dx)
    dk4_du = A4 @ (h * dk3_du) + B4

    x_next = x + (h / 6.0) * (k1 + 2.0 * k2 + 2.0 * k3 + k4)
    A_step = eye + (h / 6.0) * (dk1_dx + 2.0 * dk2_dx + 2.0 * dk3_dx + dk4_dx)
    B_step = (h / 6.0) * (dk1_du + 2.0 * dk2_du + 2.0 * dk3_du + dk4_du)
    return x_next, A_step, B_step


def _check_finite(*arrays: np.ndarray) -> None:
    for array in arrays:
        if not np.all(np.isfinite(array)):
            raise NumericalOverflowError("non-finite value during integration")
