"""
Injected configuration for the longitudinal follow controller.

Every tuning constant of the problem lives here instead of as a module level
constant, so a solver instance can be built and tested in isolation with any
weights, gap shaping or solver budget.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Optional

import numpy as np


@dataclass
class CostWeights:
    """
    Diagonal weights of the least-squares stage and terminal costs.

    Attributes
    ----------
    stage_diag : np.ndarray
        Weights of ``[ttc, distance, acceleration, jerk]`` residuals.
    terminal_diag : np.ndarray
        Weights of ``[ttc, distance, acceleration]`` residuals at the last node.
    scale_weights_by_interval : bool
        Scale the weights of interval ``k`` by ``durations[k] / durations[0]``
        so the long intervals at the end of the grid count proportionally.
    """

    stage_diag: np.ndarray = field(
        default_factory=lambda: np.array([5.0, 0.1, 10.0, 20.0])
    )
    terminal_diag: np.ndarray = field(
        default_factory=lambda: np.array([5.0, 0.1, 10.0])
    )
    scale_weights_by_interval: bool = True

    def __post_init__(self) -> None:
        self.stage_diag = np.asarray(self.stage_diag, dtype=float)
        self.terminal_diag = np.asarray(self.terminal_diag, dtype=float)
        if self.stage_diag.shape != (4,):
            raise ValueError("stage_diag must hold 4 weights")
        if self.terminal_diag.shape != (3,):
            raise ValueError("terminal_diag must hold 3 weights")
        if np.any(self.stage_diag < 0.0) or np.any(self.terminal_diag < 0.0):
            raise ValueError("cost weights must be non-negative")


@dataclass
class FollowGapParams:
    """Constants shaping the desired gap and the closing-rate penalty."""

    gravity: float = 9.81
    margin: float = 4.0
    sigmoid_span: float = 2.75
    sigmoid_offset: float = 2.2
    sigmoid_slope: float = 0.9
    min_gap_floor: float = 1.25
    ttc_exponent: float = 0.3
    ttc_velocity_offset: float = 0.5
    ttc_denominator_offset: float = 0.1
    distance_velocity_scale: float = 0.05
    distance_offset: float = 0.5
    comfort_velocity_scale: float = 0.1
    comfort_offset: float = 1.0

    def __post_init__(self) -> None:
        if self.gravity <= 0.0:
            raise ValueError("gravity must be positive")


@dataclass
class SolverOptions:
    """Iteration and wall-clock budget of one SQP solve."""

    max_sqp_iterations: int = 20
    defect_tolerance: float = 1e-6
    cost_tolerance_abs: float = 1e-6
    cost_tolerance_rel: float = 1e-4
    divergence_factor: float = 1e6
    time_budget_s: Optional[float] = 0.1
    max_qp_iterations: int = 500
    qp_tolerance: float = 1e-9
    hessian_regularization: float = 1e-9

    def __post_init__(self) -> None:
        if self.max_sqp_iterations < 1:
            raise ValueError("max_sqp_iterations must be >= 1")
        if self.max_qp_iterations < 1:
            raise ValueError("max_qp_iterations must be >= 1")
        if self.time_budget_s is not None and self.time_budget_s <= 0.0:
            raise ValueError("time_budget_s must be positive or None")


@dataclass
class LongitudinalMPCConfig:
    """
    Top level configuration of a controller instance.

    The horizon entries are the fixed time grid: ``num_short_intervals``
    intervals of ``short_interval_sec`` followed by equally long intervals
    filling ``horizon_sec``.
    """

    horizon_sec: float = 10.0
    num_intervals: int = 20
    num_short_intervals: int = 5
    short_interval_sec: float = 0.2
    short_substeps: int = 1
    long_substeps: int = 3
    time_gap: float = 1.8
    fallback_deceleration: float = -1.0
    fallback_max_jerk: float = 2.0
    fallback_defect_threshold: float = 1e-3
    weights: CostWeights = field(default_factory=CostWeights)
    gap: FollowGapParams = field(default_factory=FollowGapParams)
    solver: SolverOptions = field(default_factory=SolverOptions)

    def __post_init__(self) -> None:
        if not math.isfinite(self.time_gap) or self.time_gap < 0.0:
            raise ValueError("time_gap must be a finite non-negative number")
        if self.fallback_deceleration > 0.0:
            raise ValueError("fallback_deceleration must not be positive")
        if self.fallback_max_jerk <= 0.0:
            raise ValueError("fallback_max_jerk must be positive")
