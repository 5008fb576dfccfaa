"""Exceptions raised by the risk model pipeline."""

from __future__ import annotations


class RiskModelError(Exception):
    """Base class for all pipeline errors."""


class ConfigurationError(RiskModelError, ValueError):
    """Invalid parameters or inputs, raised before any computation."""


class InsufficientDataError(RiskModelError):
    """An operation does not have enough data to produce a comparable result."""


class RankDeficientFoldError(InsufficientDataError):
    """A cross-validation training fold cannot identify every coefficient."""

    def __init__(self, fold, rank: int, n_columns: int):
        self.fold = fold
        self.rank = rank
        self.n_columns = n_columns
        super().__init__(
            f"Training data for fold {fold!r} is rank deficient "
            f"(rank {rank} < {n_columns} design columns)."
        )
