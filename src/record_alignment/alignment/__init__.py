"""Pairwise correlation and network solve."""

from record_alignment.alignment.correlation import (
    Candidate,
    PairwiseMeasurement,
    PairwiseMeasurementSet,
    correlate,
)
from record_alignment.alignment.solver import Solution, SolverOptions, solve

__all__ = [
    "Candidate",
    "PairwiseMeasurement",
    "PairwiseMeasurementSet",
    "Solution",
    "SolverOptions",
    "correlate",
    "solve",
]
