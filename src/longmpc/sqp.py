"""
Gauss-Newton sequential quadratic programming over the shooting problem.

Every iteration linearizes the defects and the cost residuals at the current
iterate, solves the condensed QP, and takes the full step.  The loop stops
when the defects are closed and the cost no longer changes, when the QP
reports infeasibility, or when the iteration or wall-clock budget runs out.
The budget is only checked between iterations so the returned iterate is
always a complete one.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .config import SolverOptions
from .errors import NumericalOverflowError
from .ocp import LongitudinalOCP, OCPEvaluation
from .qp import CondensedQPSolver, QPStatus


logger = logging.getLogger(__name__)


class SQPStatus(Enum):
    CONVERGED = "converged"
    MAX_ITERATIONS = "max_iterations"
    TIME_BUDGET = "time_budget"
    INFEASIBLE = "infeasible"
    QP_FAILED = "qp_failed"
    DIVERGED = "diverged"
    NUMERICAL_OVERFLOW = "numerical_overflow"


@dataclass
class IterationRecord:
    iteration: int
    cost: float
    defect: float
    step_norm: float
    qp_iterations: int
    active_constraints: int


@dataclass
class SQPResult:
    """
    Outcome of one SQP solve.

    ``states``/``controls`` hold the last complete iterate, ``best_states``/
    ``best_controls`` the iterate with the lowest cost among those with closed
    defects (or the lowest cost overall if none closed them).  Candidates are
    the warm-start seed and iterates reached by an accepted QP step; the
    default straight-line guess never is.  ``states`` is
    ``None`` only when not even the initial guess could be evaluated.
    """

    status: SQPStatus
    states: Optional[np.ndarray]
    controls: Optional[np.ndarray]
    cost: float
    defect: float
    iterations: int
    best_states: Optional[np.ndarray] = None
    best_controls: Optional[np.ndarray] = None
    best_cost: float = float("inf")
    best_defect: float = float("inf")
    multipliers: np.ndarray = field(default_factory=lambda: np.zeros(0))
    active_set: Tuple[int, ...] = ()
    history: List[IterationRecord] = field(default_factory=list)
    solve_time_s: float = 0.0
    message: str = ""

    @property
    def converged(self) -> bool:
        return self.status == SQPStatus.CONVERGED


class SQPSolver:
    def __init__(self, options: Optional[SolverOptions] = None):
        self.options = options if options is not None else SolverOptions()
        self.qp_solver = CondensedQPSolver(self.options)

    def solve(
        self,
        ocp: LongitudinalOCP,
        initial_states: Optional[np.ndarray] = None,
        initial_controls: Optional[np.ndarray] = None,
        hot_start: Sequence[int] = (),
        deadline: Optional[float] = None,
    ) -> SQPResult:
        """
        Runs Gauss-Newton SQP on ``ocp``.

        Parameters
        ----------
        initial_states, initial_controls : np.ndarray, optional
            Seed iterate.  Defaults to the OCP's straight-line guess.
        hot_start : Sequence[int]
            Working set used to hot-start the first QP.
        deadline : float, optional
            Absolute ``time.perf_counter()`` value after which no new
            iteration is started.  Defaults to ``time_budget_s`` from now.
        """
        opts = self.options
        start = time.perf_counter()
        if deadline is None and opts.time_budget_s is not None:
            deadline = start + opts.time_budget_s

        if initial_states is None or initial_controls is None:
            states, controls = ocp.initial_guess()
        else:
            states = np.array(initial_states, dtype=float)
            controls = np.array(initial_controls, dtype=float)

        try:
            evaluation = ocp.evaluate(states, controls)
        except NumericalOverflowError as exc:
            return SQPResult(
                status=SQPStatus.NUMERICAL_OVERFLOW,
                states=None,
                controls=None,
                cost=float("nan"),
                defect=float("nan"),
                iterations=0,
                solve_time_s=time.perf_counter() - start,
                message=str(exc),
            )

        result = SQPResult(
            status=SQPStatus.MAX_ITERATIONS,
            states=evaluation.states,
            controls=evaluation.controls,
            cost=evaluation.cost,
            defect=evaluation.max_defect,
            iterations=0,
        )
        # before the first accepted step only a warm-start seed counts as best
        if initial_states is not None and initial_controls is not None:
            self._track_best(result, evaluation)
        active_set: Tuple[int, ...] = tuple(hot_start)
        initial_cost = evaluation.cost

        for iteration in range(1, opts.max_sqp_iterations + 1):
            qp_solution, qp = self.qp_solver.solve(ocp, evaluation, active_set, deadline)
            result.iterations = iteration

            if qp_solution.status == QPStatus.TIME_LIMIT:
                result.status = SQPStatus.TIME_BUDGET
                result.message = f"time budget exhausted inside QP of iteration {iteration}"
                break

            if qp_solution.status == QPStatus.INFEASIBLE:
                result.status = SQPStatus.INFEASIBLE
                result.message = qp_solution.message
                break
            if not qp_solution.success:
                result.status = SQPStatus.QP_FAILED
                result.message = f"QP {qp_solution.status.value}: {qp_solution.message}"
                break

            control_step = qp_solution.step
            state_step = qp.state_step(control_step)
            new_states = evaluation.states + state_step
            new_controls = evaluation.controls + control_step.reshape(evaluation.controls.shape)
            active_set = qp_solution.active_set

            try:
                new_evaluation = ocp.evaluate(new_states, new_controls)
            except NumericalOverflowError as exc:
                result.status = SQPStatus.NUMERICAL_OVERFLOW
                result.message = str(exc)
                break

            step_norm = float(
                max(np.max(np.abs(control_step)), np.max(np.abs(state_step)))
            )
            result.history.append(
                IterationRecord(
                    iteration=iteration,
                    cost=new_evaluation.cost,
                    defect=new_evaluation.max_defect,
                    step_norm=step_norm,
                    qp_iterations=qp_solution.iterations,
                    active_constraints=len(qp_solution.active_set),
                )
            )
            logger.debug(
                "[SQP] it %d cost %.6g defect %.3e step %.3e qp_it %d",
                iteration,
                new_evaluation.cost,
                new_evaluation.max_defect,
                step_norm,
                qp_solution.iterations,
            )

            cost_change = abs(new_evaluation.cost - evaluation.cost)
            previous_cost = evaluation.cost
            evaluation = new_evaluation
            result.states = evaluation.states
            result.controls = evaluation.controls
            result.cost = evaluation.cost
            result.defect = evaluation.max_defect
            result.multipliers = qp_solution.multipliers
            result.active_set = qp_solution.active_set
            self._track_best(result, evaluation)

            if evaluation.cost > opts.divergence_factor * max(initial_cost, 1.0):
                result.status = SQPStatus.DIVERGED
                result.message = f"cost grew from {initial_cost:.6g} to {evaluation.cost:.6g}"
                break

            if (
                evaluation.max_defect <= opts.defect_tolerance
                and cost_change
                <= opts.cost_tolerance_abs + opts.cost_tolerance_rel * abs(previous_cost)
            ):
                result.status = SQPStatus.CONVERGED
                break

            if deadline is not None and time.perf_counter() > deadline:
                result.status = SQPStatus.TIME_BUDGET
                result.message = f"time budget exhausted after {iteration} iterations"
                break
        else:
            result.message = f"no convergence in {opts.max_sqp_iterations} iterations"

        result.solve_time_s = time.perf_counter() - start
        return result

    def _track_best(self, result: SQPResult, evaluation: OCPEvaluation) -> None:
        # closed defects first, then lowest cost
        tol = self.options.defect_tolerance
        new_key = (evaluation.max_defect > tol, evaluation.cost)
        best_key = (result.best_defect > tol, result.best_cost)
        if new_key < best_key:
            result.best_states = evaluation.states
            result.best_controls = evaluation.controls
            result.best_cost = evaluation.cost
            result.best_defect = evaluation.max_defect
