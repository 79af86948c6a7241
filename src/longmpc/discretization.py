"""
Shooting grid of the follow controller.

The horizon is split into a few short intervals near the present, where the
command matters most, followed by longer intervals reaching far enough ahead
to see the consequences of closing in on the lead.  Longer intervals are
integrated with more internal substeps.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class Horizon:
    """
    Immutable shooting grid.

    Attributes
    ----------
    durations : np.ndarray
        Duration of each shooting interval, shape ``(N,)``.
    substeps : np.ndarray
        Number of integrator substeps inside each interval, shape ``(N,)``.
    total_duration : float
        Authoritative horizon length.  ``time_grid[-1]`` equals it exactly.
    """

    durations: np.ndarray
    substeps: np.ndarray
    total_duration: float

    def __post_init__(self) -> None:
        durations = np.array(self.durations, dtype=float)
        substeps = np.array(self.substeps, dtype=int)
        if durations.ndim != 1 or durations.size == 0:
            raise ValueError("durations must be a non-empty 1D array")
        if substeps.shape != durations.shape:
            raise ValueError("substeps must match durations")
        if np.any(durations <= 0.0):
            raise ValueError("interval durations must be positive")
        if np.any(substeps < 1):
            raise ValueError("every interval needs at least one substep")
        if not math.isclose(
            math.fsum(durations), self.total_duration, rel_tol=0.0, abs_tol=1e-9
        ):
            raise ValueError(
                f"durations sum to {math.fsum(durations)}, expected {self.total_duration}"
            )
        durations.setflags(write=False)
        substeps.setflags(write=False)
        object.__setattr__(self, "durations", durations)
        object.__setattr__(self, "substeps", substeps)

    @property
    def num_intervals(self) -> int:
        return int(self.durations.size)

    @property
    def num_nodes(self) -> int:
        return self.num_intervals + 1

    @property
    def time_grid(self) -> np.ndarray:
        """Node times starting at 0 and ending exactly at ``total_duration``."""
        grid = np.concatenate(([0.0], np.cumsum(self.durations)))
        grid[-1] = self.total_duration
        return grid

    @property
    def total_substeps(self) -> int:
        return int(self.substeps.sum())


def non_uniform_horizon(
    total_duration: float = 10.0,
    num_intervals: int = 20,
    num_short: int = 5,
    short_duration: float = 0.2,
    short_substeps: int = 1,
    long_substeps: int = 3,
) -> Horizon:
    """
    Builds the two-level grid.

    The long interval duration is derived from the horizon length and the
    interval count, ``(total - num_short * short) / (num_intervals - num_short)``,
    so the substep counts never leak into the durations.
    """
    if num_intervals < 1:
        raise ValueError("num_intervals must be >= 1")
    if not 0 <= num_short <= num_intervals:
        raise ValueError("num_short must lie in [0, num_intervals]")
    num_long = num_intervals - num_short
    short_total = num_short * short_duration
    if num_long == 0:
        if not math.isclose(short_total, total_duration, rel_tol=0.0, abs_tol=1e-9):
            raise ValueError("short intervals must fill the horizon when no long ones remain")
        long_duration = 0.0
    else:
        long_duration = (total_duration - short_total) / num_long
        if long_duration <= 0.0:
            raise ValueError("short intervals leave no time for the long intervals")

    durations = np.array([short_duration] * num_short + [long_duration] * num_long)
    substeps = np.array([short_substeps] * num_short + [long_substeps] * num_long)
    return Horizon(durations=durations, substeps=substeps, total_duration=total_duration)
