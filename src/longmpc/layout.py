"""Index bookkeeping of the multiple-shooting decision vector."""

from dataclasses import dataclass


@dataclass
class ShootingLayout:
    """Node count and condensed (jerk-only) size for ``num_intervals`` intervals."""

    state_dim: int
    control_dim: int
    num_intervals: int

    @property
    def num_nodes(self) -> int:
        return self.num_intervals + 1

    @property
    def control_block(self) -> int:
        return self.control_dim * self.num_intervals

    @property
    def condensed_dim(self) -> int:
        return self.control_block
