"""Evaluation framework for simultaneous confidence bands of functional data.

This module assesses the performance of band methods through Monte Carlo
simulation: coverage of the true parameter function, direction and magnitude
of violations, and band tightness.

The evaluation workflow consists of:
1. Generating a sample from a FieldDGP (data generating process)
2. Computing a confidence band using a band method
3. Evaluating each band against the true parameter function
4. Aggregating results across simulations

Key classes:
    BandResult: Metrics for a single confidence band evaluation.
    CoverageEvaluation: Aggregated statistics across multiple simulations.

Key functions:
    evaluate_single_band: Evaluate one band against the true function.
    aggregate_band_results: Aggregate multiple band evaluations.
    run_coverage_simulation: Convenience function for full simulation studies.
    summarize_evaluation: Generate human-readable summary reports.
    evaluations_to_frame: Collect evaluations into a pandas DataFrame.
"""

from collections.abc import Iterable, Mapping
from dataclasses import asdict, dataclass
from typing import Any, Literal, Protocol

import numpy as np
import pandas as pd
from scipy import stats
from tqdm import tqdm

from ..datagen.random_fields import FieldDGP
from ..methods import scb_mean, scb_snr
from ..methods.config import QuantileMethod

Target = Literal["mean", "snr"]

# =============================================================================
# Type Protocols
# =============================================================================


class BandMethod(Protocol):
    """Protocol for a confidence band method callable.

    A band method takes a sample with realizations along the last axis and a
    coverage level, and returns the critical value together with the lower
    and upper bounds on the grid of the sample.
    """

    def __call__(self, Y: np.ndarray, level: float, /) -> tuple[float, np.ndarray, np.ndarray]:
        ...


def make_band_method(
    target: Target = "mean",
    method: QuantileMethod | str = "tGKF",
    param_method: Mapping[str, Any] | None = None,
) -> BandMethod:
    """Wrap ``scb_mean`` or ``scb_snr`` into a BandMethod.

    Examples:
        >>> band_method = make_band_method("mean", "GKF")
        >>> rng = np.random.default_rng(3)
        >>> q, lower, upper = band_method(rng.standard_normal((30, 20)), 0.9)
        >>> bool(np.all(lower <= upper))
        True
    """
    scb = {"mean": scb_mean, "snr": scb_snr}[target]

    def band_method(Y, level):
        result = scb(Y, level=level, method=method, param_method=param_method)
        return result.q, result.lo, result.up

    return band_method


# =============================================================================
# Data Classes
# =============================================================================


@dataclass
class BandResult:
    """Results from evaluating a single band against the true function.

    Attributes:
        covers_entirely: Whether the band contains the true function everywhere.
        violation_above: Whether the true function exceeds the upper band anywhere.
        violation_below: Whether the true function falls below the lower band anywhere.
        max_violation_above: Maximum distance the truth exceeds the upper band.
        max_violation_below: Maximum distance the truth falls below the lower band.
        mean_band_width: Width between the bounds averaged over the grid.
        band_widths: Width at each grid point.
        pointwise_covered: Boolean array indicating coverage at each grid point.
        proportion_grid_points_violated: Fraction of grid points violated.
        q: Critical value of the band, if known.
    """

    # Core coverage
    covers_entirely: bool
    violation_above: bool
    violation_below: bool

    # Violation magnitudes
    max_violation_above: float  # max(truth - upper, 0)
    max_violation_below: float  # max(lower - truth, 0)

    # Band properties
    mean_band_width: float
    band_widths: np.ndarray
    pointwise_covered: np.ndarray

    proportion_grid_points_violated: float
    q: float | None = None


@dataclass
class CoverageEvaluation:
    """Aggregated evaluation results from many band simulations.

    Attributes:
        n_simulations: Number of simulations aggregated.
        nominal_level: Target simultaneous coverage of the bands.
        coverage_rate: Proportion of bands that fully cover the truth.
        coverage_se: Standard error of the coverage rate.
        coverage_ci_lower: Lower bound of the 95% Wilson interval.
        coverage_ci_upper: Upper bound of the 95% Wilson interval.
        violation_rate_above: Proportion of bands with violations above.
        violation_rate_below: Proportion of bands with violations below.
        direction_test_pvalue: P-value for symmetry of violation direction.
        mean_band_width: Average width across the grid and simulations.
        std_band_width: Standard deviation of the per-band mean width.
        width_percentiles: 10th, 50th, 90th percentiles of the mean width.
        pointwise_coverage_rates: Coverage rate at each grid point.
        mean_max_violation: Average of maximum violation magnitudes.
        percentile_95_max_violation: 95th percentile of maximum violations.
        mean_proportion_grid_points_violated: Average fraction of points violated.
        mean_q: Average critical value, None if unknown.
    """

    n_simulations: int
    nominal_level: float

    # Coverage metrics
    coverage_rate: float
    coverage_se: float
    coverage_ci_lower: float
    coverage_ci_upper: float

    # Directional violations
    violation_rate_above: float
    violation_rate_below: float
    direction_test_pvalue: float  # H0: P(above) = P(below) | violation

    # Tightness metrics
    mean_band_width: float
    std_band_width: float
    width_percentiles: dict

    pointwise_coverage_rates: np.ndarray

    # Violation magnitudes
    mean_max_violation: float
    percentile_95_max_violation: float
    mean_proportion_grid_points_violated: float

    mean_q: float | None = None


# =============================================================================
# Per-Band Evaluation Functions
# =============================================================================


def evaluate_single_band(
    lower_band: np.ndarray,
    upper_band: np.ndarray,
    truth: np.ndarray,
    q: float | None = None,
) -> BandResult:
    """Evaluate a single confidence band against the true function.

    Args:
        lower_band: Lower bound at each grid point.
        upper_band: Upper bound at each grid point.
        truth: True parameter function on the same grid (1-D or 2-D).
        q: Critical value of the band, stored for aggregation.

    Returns:
        Evaluation metrics for this single band.

    Examples:
        >>> truth = np.sin(np.linspace(0, 3, 50))
        >>> result = evaluate_single_band(truth - 0.1, truth + 0.1, truth)
        >>> result.covers_entirely
        True
        >>> round(result.mean_band_width, 6)
        0.2
    """
    truth = np.asarray(truth, dtype=np.float64)
    lower_band = np.asarray(lower_band, dtype=np.float64)
    upper_band = np.asarray(upper_band, dtype=np.float64)
    if lower_band.shape != truth.shape or upper_band.shape != truth.shape:
        raise ValueError(
            f"Band of shape {lower_band.shape}/{upper_band.shape} does not match "
            f"the truth of shape {truth.shape}"
        )

    # Use small tolerance for boundary comparisons due to floating point
    tolerance = 1e-10
    above = (truth - upper_band) > tolerance
    below = (lower_band - truth) > tolerance
    pointwise_covered = ~(above | below)

    band_widths = upper_band - lower_band

    return BandResult(
        covers_entirely=bool(pointwise_covered.all()),
        violation_above=bool(above.any()),
        violation_below=bool(below.any()),
        max_violation_above=float(np.max(np.maximum(truth - upper_band, 0.0))),
        max_violation_below=float(np.max(np.maximum(lower_band - truth, 0.0))),
        mean_band_width=float(np.nanmean(band_widths)),
        band_widths=band_widths,
        pointwise_covered=pointwise_covered,
        proportion_grid_points_violated=float(np.mean(~pointwise_covered)),
        q=None if q is None else float(q),
    )


def aggregate_band_results(
    results: Iterable[BandResult], nominal_level: float = 0.95
) -> CoverageEvaluation:
    """Aggregate multiple BandResult objects into overall evaluation statistics.

    Args:
        results: Iterator or list of BandResult objects from individual simulations.
        nominal_level: Nominal simultaneous coverage. Defaults to 0.95.

    Returns:
        Aggregated evaluation statistics across all bands.

    Raises:
        ValueError: If results is empty.
    """
    # Convert to list to allow multiple passes
    results_list: list[BandResult] = list(results)
    n_sims = len(results_list)

    if n_sims == 0:
        raise ValueError("No results to aggregate")

    # -------------------------------------------------------------------------
    # Coverage statistics
    # -------------------------------------------------------------------------
    covers = np.array([r.covers_entirely for r in results_list])
    coverage_rate = float(np.mean(covers))
    coverage_se = float(np.sqrt(coverage_rate * (1 - coverage_rate) / n_sims))

    # Wilson score interval for coverage
    z = stats.norm.ppf(0.975)
    denom = 1 + z**2 / n_sims
    center = (coverage_rate + z**2 / (2 * n_sims)) / denom
    margin = (
        z
        * np.sqrt(coverage_rate * (1 - coverage_rate) / n_sims + z**2 / (4 * n_sims**2))
        / denom
    )

    # -------------------------------------------------------------------------
    # Directional violations
    # -------------------------------------------------------------------------
    violations_above = np.array([r.violation_above for r in results_list])
    violations_below = np.array([r.violation_below for r in results_list])
    n_above = int(violations_above.sum())
    n_below = int(violations_below.sum())

    # A single band can violate in both directions
    direction_test_pvalue = _binomial_test_twosided(n_above, n_above + n_below, 0.5)

    # -------------------------------------------------------------------------
    # Tightness metrics
    # -------------------------------------------------------------------------
    sim_mean_widths = np.array([r.mean_band_width for r in results_list])
    width_percentiles = {
        "p10": float(np.nanpercentile(sim_mean_widths, 10)),
        "p50": float(np.nanpercentile(sim_mean_widths, 50)),
        "p90": float(np.nanpercentile(sim_mean_widths, 90)),
    }

    pointwise_coverage_rates = np.mean(
        np.stack([r.pointwise_covered for r in results_list]), axis=0
    )

    max_violations = np.array(
        [max(r.max_violation_above, r.max_violation_below) for r in results_list]
    )
    qs = [r.q for r in results_list if r.q is not None]

    return CoverageEvaluation(
        n_simulations=n_sims,
        nominal_level=nominal_level,
        coverage_rate=coverage_rate,
        coverage_se=coverage_se,
        coverage_ci_lower=float(center - margin),
        coverage_ci_upper=float(center + margin),
        violation_rate_above=float(np.mean(violations_above)),
        violation_rate_below=float(np.mean(violations_below)),
        direction_test_pvalue=direction_test_pvalue,
        mean_band_width=float(np.nanmean(sim_mean_widths)),
        std_band_width=float(np.nanstd(sim_mean_widths)),
        width_percentiles=width_percentiles,
        pointwise_coverage_rates=pointwise_coverage_rates,
        mean_max_violation=float(np.mean(max_violations)),
        percentile_95_max_violation=float(np.percentile(max_violations, 95)),
        mean_proportion_grid_points_violated=float(
            np.mean([r.proportion_grid_points_violated for r in results_list])
        ),
        mean_q=float(np.mean(qs)) if qs else None,
    )


def _binomial_test_twosided(k: int, n: int, p: float) -> float:
    """Two-sided exact binomial test p-value, 1 when there are no trials."""
    if n == 0:
        return 1.0
    return float(stats.binomtest(k, n, p, alternative="two-sided").pvalue)


# =============================================================================
# Simulation Runner (Convenience Function)
# =============================================================================


def run_coverage_simulation(
    dgp: FieldDGP,
    band_method: BandMethod,
    n_samples: int,
    level: float = 0.95,
    n_simulations: int = 1000,
    target: Target = "mean",
    seed: int | None = None,
    progress: bool = False,
) -> CoverageEvaluation:
    """Run a complete simulation study evaluating a confidence band method.

    Args:
        dgp: Data generating process of the functional sample.
        band_method: Function with signature (Y, level) -> (q, lower, upper),
            e.g. from :func:`make_band_method`.
        n_samples: Number of realizations per simulated sample.
        level: Nominal simultaneous coverage. Defaults to 0.95.
        n_simulations: Number of Monte Carlo simulations. Defaults to 1000.
        target: Parameter function the band is compared with, ``"mean"`` or
            ``"snr"``.
        seed: Random seed for reproducibility. Defaults to None.
        progress: Whether to show a tqdm progress bar. Defaults to False.

    Returns:
        Aggregated evaluation statistics across all simulations.

    Examples:
        >>> from scbfda.datagen import make_field_dgp
        >>> dgp = make_field_dgp("sin_cos", np.linspace(0, 1, 40))
        >>> evaluation = run_coverage_simulation(
        ...     dgp, make_band_method("mean", "GKF"), n_samples=30,
        ...     n_simulations=5, seed=0,
        ... )
        >>> evaluation.n_simulations
        5
    """
    rng = np.random.default_rng(seed)
    truth = dgp.true_mean if target == "mean" else dgp.get_true_snr(rng=rng)

    def result_generator():
        iterator = range(n_simulations)
        if progress:
            iterator = tqdm(iterator, desc=f"Simulating {dgp.name or 'DGP'}", leave=False)

        for _ in iterator:
            Y = dgp.sample(n_samples, rng)
            q, lower, upper = band_method(Y, level)
            yield evaluate_single_band(lower, upper, truth, q=q)

    return aggregate_band_results(result_generator(), nominal_level=level)


# =============================================================================
# Reporting
# =============================================================================


def summarize_evaluation(evaluation: CoverageEvaluation) -> str:
    """Generate a formatted text summary of evaluation results.

    Examples:
        >>> result = evaluate_single_band(np.zeros(3) - 1, np.zeros(3) + 1, np.zeros(3))
        >>> "COVERAGE" in summarize_evaluation(aggregate_band_results([result]))
        True
    """
    lines = [
        "=" * 60,
        "SIMULTANEOUS CONFIDENCE BAND EVALUATION SUMMARY",
        "=" * 60,
        f"Simulations: {evaluation.n_simulations}",
        f"Nominal level: {evaluation.nominal_level:.3f}",
        "",
        "COVERAGE",
        "-" * 40,
        f"  Coverage rate: {evaluation.coverage_rate:.4f}",
        f"  Standard error: {evaluation.coverage_se:.4f}",
        f"  95% CI: [{evaluation.coverage_ci_lower:.4f}, {evaluation.coverage_ci_upper:.4f}]",
        "",
        "DIRECTIONAL VIOLATIONS",
        "-" * 40,
        f"  Violation rate (above): {evaluation.violation_rate_above:.4f}",
        f"  Violation rate (below): {evaluation.violation_rate_below:.4f}",
        f"  Symmetry test p-value: {evaluation.direction_test_pvalue:.4f}",
        "",
        "BAND TIGHTNESS",
        "-" * 40,
        f"  Mean band width: {evaluation.mean_band_width:.4f}",
        f"  Std band width: {evaluation.std_band_width:.4f}",
    ]
    for name, width in evaluation.width_percentiles.items():
        lines.append(f"  Width {name}: {width:.4f}")
    if evaluation.mean_q is not None:
        lines.append(f"  Mean critical value: {evaluation.mean_q:.4f}")

    lines.extend(
        [
            "",
            "VIOLATION MAGNITUDES",
            "-" * 40,
            f"  Mean max violation: {evaluation.mean_max_violation:.4f}",
            f"  95th percentile max violation: {evaluation.percentile_95_max_violation:.4f}",
            f"  Mean proportion of grid points violated: "
            f"{evaluation.mean_proportion_grid_points_violated:.4f}",
            "=" * 60,
        ]
    )
    return "\n".join(lines)


def evaluations_to_frame(
    records: Iterable[tuple[Mapping[str, Any], CoverageEvaluation]],
) -> pd.DataFrame:
    """Collect labelled evaluations into one row per evaluation.

    Args:
        records: Pairs of (labels, evaluation), where labels describe the
            simulation setting, e.g. ``{"dgp": "ou", "n": 50, "method": "GKF"}``.

    Returns:
        DataFrame with the label columns followed by the scalar metrics.
        Width percentiles are flattened into ``width_p10`` etc.; pointwise
        arrays are dropped.
    """
    rows = []
    for labels, evaluation in records:
        metrics = asdict(evaluation)
        metrics.pop("pointwise_coverage_rates")
        for name, value in metrics.pop("width_percentiles").items():
            metrics[f"width_{name}"] = value
        rows.append({**labels, **metrics})
    return pd.DataFrame(rows)
