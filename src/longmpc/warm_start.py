"""
Warm-start storage between control ticks.

The cache keeps the last converged trajectory together with the QP working
set.  At the next tick the trajectory is shifted forward in time by the
elapsed tick duration and re-sampled on the (fixed) grid, which gives the SQP
a seed that is close to optimal when the scene has not changed much.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from .discretization import Horizon
from .dynamics import LongitudinalDynamics
from .integrator import integrate_interval
from .trajectory import Trajectory


@dataclass
class WarmStart:
    trajectory: Trajectory
    multipliers: np.ndarray
    active_set: Tuple[int, ...]


@dataclass
class WarmStartSeed:
    states: np.ndarray
    controls: np.ndarray
    active_set: Tuple[int, ...]


class WarmStartCache:
    """
    Single-slot store written by the controller at the end of a successful
    tick and read at the start of the next one.
    """

    def __init__(self, dynamics: LongitudinalDynamics):
        self.dynamics = dynamics
        self._entry: Optional[WarmStart] = None

    @property
    def is_empty(self) -> bool:
        return self._entry is None

    @property
    def entry(self) -> Optional[WarmStart]:
        return self._entry

    def store(
        self,
        trajectory: Trajectory,
        multipliers: np.ndarray,
        active_set: Tuple[int, ...],
    ) -> None:
        self._entry = WarmStart(
            trajectory=trajectory.copy(),
            multipliers=np.array(multipliers, dtype=float),
            active_set=tuple(int(i) for i in active_set),
        )

    def reset(self) -> None:
        self._entry = None

    def seed(
        self,
        initial_state: np.ndarray,
        horizon: Horizon,
        shift: Optional[float] = None,
    ) -> Optional[WarmStartSeed]:
        """
        Returns the cached trajectory advanced by ``shift`` seconds on the
        grid of ``horizon``, or ``None`` if the cache is empty.

        ``shift`` defaults to one node, the duration of the first interval.
        Node 0 is replaced by the measured ``initial_state``; the remaining
        nodes keep the shifted prediction so the shooting defects carry the
        mismatch instead of a re-simulation.
        The hot-start working set keeps the stored constraints whose
        multipliers are positive.
        """
        if self._entry is None:
            return None
        if shift is None:
            shift = float(horizon.durations[0])
        if shift < 0.0:
            raise ValueError("shift must be non-negative")

        previous = self._entry.trajectory
        old_grid = previous.time_grid
        new_grid = horizon.time_grid
        query = new_grid + shift

        controls = np.zeros((horizon.num_intervals, previous.controls.shape[1]))
        for k in range(horizon.num_intervals):
            controls[k] = previous.controls[_interval_index(old_grid, query[k])]

        states = np.zeros((horizon.num_nodes, previous.states.shape[1]))
        end_time = old_grid[-1]
        for k, t in enumerate(query):
            if t <= end_time:
                states[k] = previous.sample(t)
            else:
                states[k] = integrate_interval(
                    self.dynamics,
                    previous.states[-1],
                    previous.controls[-1],
                    t - end_time,
                    substeps=int(horizon.substeps[-1]),
                )
        states[0] = initial_state

        active_set = _remap_active_set(
            _binding_constraints(self._entry), old_grid, query
        )
        return WarmStartSeed(states=states, controls=controls, active_set=active_set)


def _interval_index(grid: np.ndarray, t: float) -> int:
    index = int(np.searchsorted(grid, t + 1e-9, side="right")) - 1
    return min(max(index, 0), grid.size - 2)


def _remap_active_set(
    active_set: Tuple[int, ...], old_grid: np.ndarray, query: np.ndarray
) -> Tuple[int, ...]:
    """Keeps node constraints whose shifted time lands on an old active node."""
    if not active_set:
        return ()
    active = set(active_set)
    remapped = []
    for k, t in enumerate(query):
        nearest = int(np.argmin(np.abs(old_grid - t)))
        if nearest in active and abs(old_grid[nearest] - t) <= 1e-9:
            remapped.append(k)
    return tuple(remapped)


def _binding_constraints(entry: WarmStart) -> Tuple[int, ...]:
    """
    Working-set rows whose stored multiplier is positive.

    Rows that were active with a zero multiplier would be dropped again in the
    first QP iteration, so they are left out of the hot start.
    """
    multipliers = entry.multipliers
    if multipliers.shape[0] == 0:
        return entry.active_set
    return tuple(
        i for i in entry.active_set if i < multipliers.shape[0] and multipliers[i] > 0.0
    )
