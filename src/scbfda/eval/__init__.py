"""Evaluation utilities for simultaneous confidence band coverage studies."""

from ..datagen.random_fields import FieldDGP
from .eval import (
    BandMethod,
    BandResult,
    CoverageEvaluation,
    aggregate_band_results,
    evaluate_single_band,
    evaluations_to_frame,
    make_band_method,
    run_coverage_simulation,
    summarize_evaluation,
)

__all__ = [
    "BandMethod",
    "BandResult",
    "CoverageEvaluation",
    "FieldDGP",
    "aggregate_band_results",
    "evaluate_single_band",
    "evaluations_to_frame",
    "make_band_method",
    "run_coverage_simulation",
    "summarize_evaluation",
]
