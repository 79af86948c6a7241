"""
Real-time longitudinal follow controller.

The package exposes the pieces of a jerk-based nonlinear MPC that keeps a
speed-dependent distance to a lead vehicle: a triple-integrator ego model, a
non-uniform shooting grid with RK4 integration, a least-squares comfort and
safety cost, a Gauss-Newton SQP over a condensed active-set QP, and a
controller that warm-starts each tick and degrades to a safe fallback.
"""

from .config import CostWeights, FollowGapParams, LongitudinalMPCConfig, SolverOptions
from .controller import ControllerOutput, ControllerState, LongitudinalMPC
from .cost import FollowCostModel
from .discretization import Horizon, non_uniform_horizon
from .dynamics import LongitudinalDynamics
from .errors import (
    FailureKind,
    InputInvalidError,
    LongitudinalMPCError,
    NumericalOverflowError,
)
from .ocp import LongitudinalOCP, OCPAssembler
from .qp import ActiveSetQPSolver, CondensedQPSolver, QPStatus
from .sqp import SQPResult, SQPSolver, SQPStatus
from .trajectory import OnlineParameters, Trajectory
from .warm_start import WarmStartCache

__all__ = [
    "CostWeights",
    "FollowGapParams",
    "LongitudinalMPCConfig",
    "SolverOptions",
    "ControllerOutput",
    "ControllerState",
    "LongitudinalMPC",
    "FollowCostModel",
    "Horizon",
    "non_uniform_horizon",
    "LongitudinalDynamics",
    "FailureKind",
    "InputInvalidError",
    "LongitudinalMPCError",
    "NumericalOverflowError",
    "LongitudinalOCP",
    "OCPAssembler",
    "ActiveSetQPSolver",
    "CondensedQPSolver",
    "QPStatus",
    "SQPResult",
    "SQPSolver",
    "SQPStatus",
    "OnlineParameters",
    "Trajectory",
    "WarmStartCache",
]
