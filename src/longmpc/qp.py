"""
Condensed quadratic subproblem of one Gauss-Newton iteration.

Condensing eliminates the state steps with the linearized shooting equations

    dx_0     = x0 - x_0
    dx_{k+1} = A_k dx_k + B_k du_k + d_k

so that every state step becomes ``dx_k = Gamma_k du + c_k``.  What is left
is a dense QP over the jerk steps only::

    min  0.5 du' H du + g' du
    s.t. G du >= h

with one row of ``G`` per node velocity bound.  The reduced QP is solved with
a primal active-set method that can be hot-started from the working set of a
previous solve.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Sequence, Tuple

import numpy as np
from scipy.optimize import linprog

from .config import SolverOptions
from .dynamics import VELOCITY
from .ocp import LongitudinalOCP, OCPEvaluation


logger = logging.getLogger(__name__)


class QPStatus(Enum):
    OPTIMAL = "optimal"
    INFEASIBLE = "infeasible"
    MAX_ITERATIONS = "max_iterations"
    TIME_LIMIT = "time_limit"
    SINGULAR = "singular"


@dataclass
class CondensedQP:
    """
    Reduced QP data plus the affine map from jerk steps back to state steps.

    Attributes
    ----------
    gamma : np.ndarray
        ``(N+1, nx, N*nu)`` sensitivities of node states to the jerk steps.
    offsets : np.ndarray
        ``(N+1, nx)`` state steps at zero jerk step.
    """

    H: np.ndarray
    g: np.ndarray
    G: np.ndarray
    h: np.ndarray
    gamma: np.ndarray
    offsets: np.ndarray

    def state_step(self, control_step: np.ndarray) -> np.ndarray:
        return np.einsum("kij,j->ki", self.gamma, control_step) + self.offsets


@dataclass
class QPSolution:
    status: QPStatus
    step: np.ndarray
    multipliers: np.ndarray
    active_set: Tuple[int, ...] = ()
    iterations: int = 0
    message: str = ""

    @property
    def success(self) -> bool:
        return self.status == QPStatus.OPTIMAL


def condense(
    ocp: LongitudinalOCP, evaluation: OCPEvaluation, regularization: float = 0.0
) -> CondensedQP:
    """Builds the reduced QP of the Gauss-Newton model at ``evaluation``."""
    layout = ocp.layout
    n = layout.num_intervals
    nx = layout.state_dim
    nu = layout.control_dim
    nz = layout.condensed_dim

    gamma = np.zeros((n + 1, nx, nz))
    offsets = np.zeros((n + 1, nx))
    offsets[0] = evaluation.initial_defect
    for k in range(n):
        gamma[k + 1] = evaluation.A[k] @ gamma[k]
        gamma[k + 1][:, k * nu : (k + 1) * nu] += evaluation.B[k]
        offsets[k + 1] = evaluation.A[k] @ offsets[k] + evaluation.defects[k]

    H = regularization * np.eye(nz)
    g = np.zeros(nz)
    for k in range(n):
        M = evaluation.stage_jac_x[k] @ gamma[k]
        M[:, k * nu : (k + 1) * nu] += evaluation.stage_jac_u[k]
        r = evaluation.stage_residuals[k] + evaluation.stage_jac_x[k] @ offsets[k]
        W = ocp.stage_weights[k]
        H += M.T @ (W[:, None] * M)
        g += M.T @ (W * r)

    M = evaluation.terminal_jac_x @ gamma[n]
    r = evaluation.terminal_residual + evaluation.terminal_jac_x @ offsets[n]
    W = ocp.terminal_weights
    H += M.T @ (W[:, None] * M)
    g += M.T @ (W * r)

    G = gamma[:, VELOCITY, :].copy()
    h = ocp.velocity_lower_bound - (evaluation.states[:, VELOCITY] + offsets[:, VELOCITY])
    return CondensedQP(H=0.5 * (H + H.T), g=g, G=G, h=h, gamma=gamma, offsets=offsets)


class ActiveSetQPSolver:
    """
    Primal active-set method for ``min 0.5 z'Hz + g'z  s.t.  Gz >= h``.

    ``H`` must be positive definite.  The start point is the origin when it is
    feasible, otherwise a feasible vertex from an LP.  Rows of ``G`` that are
    identically zero are never put in the working set; a positive bound on
    such a row proves infeasibility on its own.

    After a full step that no constraint blocks, the iterate is taken as the
    minimizer over the working set and only the multipliers are checked.
    The recomputed step there is only solve noise on ill-conditioned ``H``.
    """

    def __init__(
        self,
        max_iterations: int = 500,
        tolerance: float = 1e-9,
        feasibility_tolerance: float = 1e-8,
        multiplier_tolerance: float = 1e-6,
    ):
        self.max_iterations = max_iterations
        self.tolerance = tolerance
        self.feasibility_tolerance = feasibility_tolerance
        self.multiplier_tolerance = multiplier_tolerance

    def solve(
        self,
        H: np.ndarray,
        g: np.ndarray,
        G: np.ndarray,
        h: np.ndarray,
        active_set: Sequence[int] = (),
        deadline: Optional[float] = None,
    ) -> QPSolution:
        """
        Solves the QP, hot-started from ``active_set``.

        ``deadline`` is an absolute ``time.perf_counter()`` value; once it has
        passed the loop stops with ``QPStatus.TIME_LIMIT``.
        """
        n = H.shape[0]
        m = G.shape[0]
        row_norms = np.linalg.norm(G, axis=1) if m else np.zeros(0)
        trivial = row_norms <= self.tolerance
        feas_tol = self.feasibility_tolerance * (1.0 + np.abs(h))

        if np.any(h[trivial] > feas_tol[trivial]):
            rows = np.flatnonzero(trivial & (h > feas_tol))
            return self._infeasible(n, m, f"constant constraint rows {rows.tolist()} violated")

        z = np.zeros(n)
        if np.any(G @ z < h - feas_tol):
            z = self._feasible_point(G, h)
            if z is None:
                return self._infeasible(n, m, "no point satisfies the constraints")

        working = self._initial_working_set(G, h, z, active_set, trivial, feas_tol)

        # set after a full unblocked step: z then minimizes over the working set
        at_minimizer = False
        for iteration in range(1, self.max_iterations + 1):
            if deadline is not None and time.perf_counter() > deadline:
                return QPSolution(
                    status=QPStatus.TIME_LIMIT,
                    step=z,
                    multipliers=np.zeros(m),
                    active_set=tuple(sorted(working)),
                    iterations=iteration - 1,
                    message="deadline passed inside the active-set loop",
                )
            try:
                p, lam = self._equality_step(H, g, G, working, z)
            except np.linalg.LinAlgError as exc:
                return QPSolution(
                    status=QPStatus.SINGULAR,
                    step=z,
                    multipliers=np.zeros(m),
                    active_set=tuple(working),
                    iterations=iteration,
                    message=str(exc),
                )

            stationary = at_minimizer or np.linalg.norm(p, np.inf) <= self.tolerance * max(
                1.0, np.linalg.norm(z, np.inf)
            )
            if stationary:
                lam_tol = self.multiplier_tolerance * max(1.0, np.max(np.abs(lam), initial=0.0))
                if not working or np.min(lam) >= -lam_tol:
                    multipliers = np.zeros(m)
                    multipliers[working] = np.maximum(lam, 0.0)
                    return QPSolution(
                        status=QPStatus.OPTIMAL,
                        step=z,
                        multipliers=multipliers,
                        active_set=tuple(sorted(working)),
                        iterations=iteration,
                    )
                working.pop(int(np.argmin(lam)))
                at_minimizer = False
                continue

            alpha = 1.0
            blocking: Optional[int] = None
            Gp = G @ p
            slack = G @ z - h
            for i in range(m):
                if trivial[i] or i in working or Gp[i] >= -self.tolerance:
                    continue
                step = max(slack[i], 0.0) / -Gp[i]
                if step < alpha:
                    alpha = step
                    blocking = i
            z = z + alpha * p
            if blocking is not None:
                working.append(blocking)
            at_minimizer = blocking is None

        return QPSolution(
            status=QPStatus.MAX_ITERATIONS,
            step=z,
            multipliers=np.zeros(m),
            active_set=tuple(sorted(working)),
            iterations=self.max_iterations,
            message="active-set iteration limit reached",
        )

    def _equality_step(
        self, H: np.ndarray, g: np.ndarray, G: np.ndarray, working: list, z: np.ndarray
    ) -> Tuple[np.ndarray, np.ndarray]:
        n = H.shape[0]
        grad = H @ z + g
        if not working:
            return np.linalg.solve(H, -grad), np.zeros(0)
        Aw = G[working]
        k = Aw.shape[0]
        kkt = np.zeros((n + k, n + k))
        kkt[:n, :n] = H
        kkt[:n, n:] = -Aw.T
        kkt[n:, :n] = Aw
        rhs = np.concatenate([-grad, np.zeros(k)])
        sol = np.linalg.solve(kkt, rhs)
        return sol[:n], sol[n:]

    def _feasible_point(self, G: np.ndarray, h: np.ndarray) -> Optional[np.ndarray]:
        n = G.shape[1]
        res = linprog(
            c=np.zeros(n),
            A_ub=-G,
            b_ub=-h,
            bounds=[(None, None)] * n,
            method="highs",
        )
        if res.status != 0 or res.x is None:
            logger.debug("[QP] phase 1 failed: %s", res.message)
            return None
        return np.asarray(res.x, dtype=float)

    def _initial_working_set(
        self,
        G: np.ndarray,
        h: np.ndarray,
        z: np.ndarray,
        active_set: Sequence[int],
        trivial: np.ndarray,
        feas_tol: np.ndarray,
    ) -> list:
        n = G.shape[1]
        slack = G @ z - h
        working: list = []
        for i in active_set:
            i = int(i)
            if i < 0 or i >= G.shape[0] or trivial[i] or i in working:
                continue
            if abs(slack[i]) > feas_tol[i] or len(working) >= n:
                continue
            candidate = working + [i]
            if np.linalg.matrix_rank(G[candidate]) == len(candidate):
                working = candidate
        return working

    def _infeasible(self, n: int, m: int, message: str) -> QPSolution:
        return QPSolution(
            status=QPStatus.INFEASIBLE,
            step=np.zeros(n),
            multipliers=np.zeros(m),
            message=message,
        )


@dataclass
class CondensedQPSolver:
    """Condensing followed by the hot-started active-set solve."""

    options: SolverOptions = field(default_factory=SolverOptions)

    def __post_init__(self) -> None:
        self.active_set_solver = ActiveSetQPSolver(
            max_iterations=self.options.max_qp_iterations,
            tolerance=self.options.qp_tolerance,
        )

    def solve(
        self,
        ocp: LongitudinalOCP,
        evaluation: OCPEvaluation,
        hot_start: Sequence[int] = (),
        deadline: Optional[float] = None,
    ) -> Tuple[QPSolution, CondensedQP]:
        qp = condense(ocp, evaluation, self.options.hessian_regularization)
        solution = self.active_set_solver.solve(
            qp.H, qp.g, qp.G, qp.h, hot_start, deadline=deadline
        )
        return solution, qp
