"""
Least-squares cost of the follow controller.

The residuals are written once as CasADi expressions and turned into
functions returning the residual vector together with its exact Jacobians.
The Gauss-Newton solver only needs these first derivatives.

Stage residual (per interval)::

    h = [ exp(0.3 * norm_rw_error),
          (gap - desired_gap) / (0.05 * v + 0.5),
          a * (0.1 * v + 1),
          j * (0.1 * v + 1) ]

The terminal residual drops the jerk entry.  The parameter vector of a node
is ``[lead_position, lead_velocity, time_gap]``.
"""

from __future__ import annotations

from typing import Dict, Optional, Tuple

import casadi as ca
import numpy as np

from .config import FollowGapParams
from .dynamics import ACCELERATION, POSITION, VELOCITY


NUM_STAGE_RESIDUALS = 4
NUM_TERMINAL_RESIDUALS = 3
NUM_PARAMETERS = 3

LEAD_POSITION = 0
LEAD_VELOCITY = 1
TIME_GAP = 2

_SQRT_FLOOR = 1e-9


class FollowCostModel:
    """
    Stage and terminal residuals with their Jacobians.

    Parameters
    ----------
    params : FollowGapParams
        Gap shaping constants.  Defaults reproduce the tuned follow profile:
        about 1.5 m at standstill growing to 4 m above roughly 5 m/s.
    """

    def __init__(self, params: Optional[FollowGapParams] = None):
        self.params = params if params is not None else FollowGapParams()

        v_ego = ca.SX.sym("v_ego")
        v_lead = ca.SX.sym("v_lead")
        time_gap = ca.SX.sym("time_gap")
        gap = ca.SX.sym("gap")
        self._gap_fun = ca.Function(
            "follow_gap",
            [v_ego, v_lead, time_gap, gap],
            [
                self._min_gap_expr(v_ego),
                self._reaction_window_expr(v_ego, v_lead, time_gap),
                self._desired_gap_expr(v_ego, v_lead, time_gap),
                self._norm_rw_error_expr(v_ego, v_lead, time_gap, gap),
            ],
            ["v_ego", "v_lead", "time_gap", "gap"],
            ["min_gap", "reaction_window", "desired_gap", "norm_rw_error"],
        )

        x = ca.SX.sym("x", 3)
        u = ca.SX.sym("u", 1)
        p = ca.SX.sym("p", NUM_PARAMETERS)
        stage = self._stage_residual_expr(x, u, p)
        terminal = self._terminal_residual_expr(x, p)
        self._stage_fun = ca.Function(
            "stage_residual",
            [x, u, p],
            [stage, ca.jacobian(stage, x), ca.jacobian(stage, u)],
        )
        self._terminal_fun = ca.Function(
            "terminal_residual", [x, p], [terminal, ca.jacobian(terminal, x)]
        )
        self._stage_maps: Dict[int, ca.Function] = {}

    # ------------------------------------------------------------------
    # Gap shaping
    # ------------------------------------------------------------------
    def min_gap(self, v_ego):
        """Sigmoid standstill-to-cruise minimum distance."""
        return self._eval_gap("min_gap", v_ego, 0.0, 0.0, 0.0)

    def reaction_window(self, v_ego, v_lead, time_gap):
        """Time-gap and braking-distance buffer on top of the minimum gap."""
        return self._eval_gap("reaction_window", v_ego, v_lead, time_gap, 0.0)

    def desired_gap(self, v_ego, v_lead, time_gap):
        return self._eval_gap("desired_gap", v_ego, v_lead, time_gap, 0.0)

    def norm_rw_error(self, v_ego, v_lead, time_gap, gap):
        return self._eval_gap("norm_rw_error", v_ego, v_lead, time_gap, gap)

    # ------------------------------------------------------------------
    # Residuals
    # ------------------------------------------------------------------
    def stage_terms(
        self, states: np.ndarray, controls: np.ndarray, params: np.ndarray
    ) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Evaluates the stage residuals of all intervals at once.

        Parameters
        ----------
        states : np.ndarray
            Node states, shape ``(N, 3)``.
        controls : np.ndarray
            Interval controls, shape ``(N, 1)``.
        params : np.ndarray
            Node parameters, shape ``(N, 3)``.

        Returns
        -------
        residuals : np.ndarray, shape ``(N, 4)``
        jac_x : np.ndarray, shape ``(N, 4, 3)``
        jac_u : np.ndarray, shape ``(N, 4, 1)``
        """
        n = states.shape[0]
        mapped = self._stage_maps.get(n)
        if mapped is None:
            mapped = self._stage_fun.map(n)
            self._stage_maps[n] = mapped
        h, jac_x, jac_u = mapped(
            np.ascontiguousarray(states.T),
            np.ascontiguousarray(controls.T),
            np.ascontiguousarray(params.T),
        )
        residuals = h.full().T
        jac_x = jac_x.full().reshape(NUM_STAGE_RESIDUALS, n, 3).transpose(1, 0, 2)
        jac_u = jac_u.full().T[:, :, None]
        return residuals, jac_x, jac_u

    def terminal_terms(
        self, state: np.ndarray, params: np.ndarray
    ) -> Tuple[np.ndarray, np.ndarray]:
        """Terminal residual, shape ``(3,)``, and its Jacobian ``(3, 3)``."""
        h, jac_x = self._terminal_fun(state, params)
        return h.full().ravel(), jac_x.full()

    # ------------------------------------------------------------------
    # Expressions
    # ------------------------------------------------------------------
    def _min_gap_expr(self, v_ego):
        c = self.params
        return (
            c.sigmoid_span / (1.0 + ca.exp(c.sigmoid_offset - c.sigmoid_slope * v_ego))
            + c.min_gap_floor
        )

    def _reaction_window_expr(self, v_ego, v_lead, time_gap):
        g = self.params.gravity
        return (
            v_ego * time_gap
            - (v_lead - v_ego) * time_gap
            + v_ego * v_ego / (2.0 * g)
            - v_lead * v_lead / (2.0 * g)
        )

    def _desired_gap_expr(self, v_ego, v_lead, time_gap):
        return self._min_gap_expr(v_ego) + self._reaction_window_expr(
            v_ego, v_lead, time_gap
        )

    def _norm_rw_error_expr(self, v_ego, v_lead, time_gap, gap):
        c = self.params
        # floor keeps negative velocities finite so the QP can flag them
        root = ca.sqrt(ca.fmax(v_ego + c.ttc_velocity_offset, _SQRT_FLOOR))
        return (self._reaction_window_expr(v_ego, v_lead, time_gap) + c.margin - gap) / (
            root + c.ttc_denominator_offset
        )

    def _common_residuals(self, x, p):
        c = self.params
        v_ego = x[VELOCITY]
        v_lead = p[LEAD_VELOCITY]
        time_gap = p[TIME_GAP]
        gap = p[LEAD_POSITION] - x[POSITION]
        comfort = c.comfort_velocity_scale * v_ego + c.comfort_offset
        ttc = ca.exp(
            c.ttc_exponent * self._norm_rw_error_expr(v_ego, v_lead, time_gap, gap)
        )
        distance = (gap - self._desired_gap_expr(v_ego, v_lead, time_gap)) / (
            c.distance_velocity_scale * v_ego + c.distance_offset
        )
        acceleration = x[ACCELERATION] * comfort
        return [ttc, distance, acceleration], comfort

    def _stage_residual_expr(self, x, u, p):
        terms, comfort = self._common_residuals(x, p)
        return ca.vertcat(*terms, u[0] * comfort)

    def _terminal_residual_expr(self, x, p):
        terms, _ = self._common_residuals(x, p)
        return ca.vertcat(*terms)

    def _eval_gap(self, output: str, v_ego, v_lead, time_gap, gap):
        args = np.broadcast_arrays(
            *(np.asarray(value, dtype=float) for value in (v_ego, v_lead, time_gap, gap))
        )
        shape = args[0].shape
        flat = [arg.reshape(1, -1) for arg in args]
        count = flat[0].shape[1]
        fun = self._gap_fun if count == 1 else self._gap_fun.map(count)
        result = fun(v_ego=flat[0], v_lead=flat[1], time_gap=flat[2], gap=flat[3])
        values = result[output].full().ravel()
        if shape == ():
            return float(values[0])
        return values.reshape(shape)
