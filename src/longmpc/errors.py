"""Exceptions raised by the numeric kernels and failure kinds reported per tick."""

from __future__ import annotations

from enum import Enum


class LongitudinalMPCError(Exception):
    """Base class of every error raised by this package."""


class InputInvalidError(LongitudinalMPCError, ValueError):
    """Ego state or online parameters are malformed or non-finite."""


class NumericalOverflowError(LongitudinalMPCError, ArithmeticError):
    """Integration or cost evaluation produced a non-finite value."""


class FailureKind(Enum):
    INPUT_INVALID = "input_invalid"
    NUMERICAL_OVERFLOW = "numerical_overflow"
    INFEASIBLE = "infeasible"
    BUDGET_EXCEEDED = "budget_exceeded"
    DIVERGED = "diverged"
