"""Simultaneous confidence bands for functional data.

Every entry point follows the same pipeline: validate the sample(s) and the
quantile configuration, compute the pointwise statistic with its standard
error and normalized residual field, estimate the critical value of the
supremum of the limiting field, and assemble the band

    bias * estimate +/- q * se.
"""

import math
from collections.abc import Mapping
from dataclasses import dataclass, replace
from typing import Any

import numpy as np
from numpy.typing import NDArray
from torch import Tensor

from ..errors import InputShapeError, ParameterRangeError
from .band import Band, build_band
from .config import QuantileConfig, QuantileMethod, _is_real, resolve_quantile_config
from .quantile import estimate_quantile
from .residuals import DeltaStat, ResidualField
from .smoothing import KernelName, LocalLinearSmoother
from .statistics import (
    DeltaStatistic,
    LinearContrastStatistic,
    MeanDifferenceStatistic,
    MeanStatistic,
    ResidualsType,
    SNRStatistic,
)


@dataclass(frozen=True)
class SCBResult:
    """Simultaneous confidence band together with its ingredients.

    Attributes:
        estimate: Pointwise (bias-corrected) estimate.
        band: Lower and upper bounds.
        level: Targeted simultaneous coverage.
        q: Critical value.
        residuals: Normalized residual field the critical value was
            estimated from.
        method: Quantile method used.
        lkc: Lipschitz-Killing curvatures L_0..L_D (GKF family), else None.
        se: Pointwise standard error.
        x_eval: Evaluation grid of the contrast variant, else None.
    """

    estimate: NDArray
    band: Band
    level: float
    q: float
    residuals: ResidualField
    method: QuantileMethod
    lkc: NDArray | None
    se: NDArray
    x_eval: NDArray | None = None

    @property
    def lo(self) -> NDArray:
        return self.band.lo

    @property
    def up(self) -> NDArray:
        return self.band.up


def _run_pipeline(statistic, inputs: tuple, config: QuantileConfig, level: float) -> SCBResult:
    """Statistic -> critical value -> band for already validated inputs."""
    if config.bootstrap_variant is None:
        config = replace(config, bootstrap_variant=statistic.bootstrap_variant)
    field = statistic.compute(*inputs)
    quantile = estimate_quantile(field.residuals, config, df=field.df)
    band = build_band(field.estimate, quantile.q, field.se, field.bias_factor)
    return SCBResult(
        estimate=field.corrected_estimate,
        band=band,
        level=float(level),
        q=quantile.q,
        residuals=field.residuals,
        method=config.method,
        lkc=quantile.lkc,
        se=field.se,
    )


def scb_mean(
    Y: NDArray | Tensor,
    level: float = 0.95,
    method: QuantileMethod | str = "tGKF",
    param_method: Mapping[str, Any] | None = None,
) -> SCBResult:
    """Simultaneous confidence band for the mean function of a sample.

    Args:
        Y: Sample of shape (K, N) or (K1, K2, N), realizations on the last
            axis. Accepts numpy arrays or torch tensors.
        level: Targeted simultaneous coverage, strictly between 0 and 1.
            Defaults to 0.95.
        method: ``"tGKF"``, ``"GKF"``, ``"NonParametricBootstrap"`` or
            ``"MultiplierBootstrap"``. Defaults to ``"tGKF"``.
        param_method: Options of the quantile method, see
            :func:`resolve_quantile_config`.

    Returns:
        SCBResult with the sample mean as estimate.

    Raises:
        InputShapeError: If Y is not a valid sample.
        UnsupportedMethodError: If the method is unknown.
        ParameterRangeError: If level or an option is out of range.
        NumericalError: If the critical value cannot be computed.

    Examples:
        >>> rng = np.random.default_rng(0)
        >>> res = scb_mean(rng.standard_normal((50, 40)), method="GKF")
        >>> bool(np.all(res.lo <= res.estimate) and np.all(res.estimate <= res.up))
        True
    """
    statistic = MeanStatistic()
    inputs = statistic.check_inputs(Y)
    config = resolve_quantile_config(method, level, param_method)
    return _run_pipeline(statistic, inputs, config, level)


def scb_meandiff(
    Y1: NDArray | Tensor,
    Y2: NDArray | Tensor,
    level: float = 0.95,
    method: QuantileMethod | str = "tGKF",
    param_method: Mapping[str, Any] | None = None,
) -> SCBResult:
    """Simultaneous confidence band for the difference of two mean functions.

    The samples are independent and may have different sizes, but must be
    observed on the same grid. Swapping them negates and mirrors the band;
    with a bootstrap quantile the critical values of the two orders are
    separate draws and agree up to Monte Carlo error.

    Args:
        Y1: First sample, shape (K, N1) or (K1, K2, N1).
        Y2: Second sample, same spatial shape as Y1.
        level: Targeted simultaneous coverage. Defaults to 0.95.
        method: Quantile method tag. Defaults to ``"tGKF"``.
        param_method: Options of the quantile method.

    Returns:
        SCBResult with mean(Y1) - mean(Y2) as estimate.
    """
    statistic = MeanDifferenceStatistic()
    inputs = statistic.check_inputs(Y1, Y2)
    config = resolve_quantile_config(method, level, param_method)
    return _run_pipeline(statistic, inputs, config, level)


def scb_snr(
    Y: NDArray | Tensor,
    level: float = 0.95,
    method: QuantileMethod | str = "GKF",
    param_method: Mapping[str, Any] | None = None,
    residuals_type: ResidualsType = "delta",
) -> SCBResult:
    """Simultaneous confidence band for the signal-to-noise ratio mean / sd.

    The band is centered on the bias-corrected SNR b(N) * SNR, see
    :func:`snr_bias_factor`, and its half-width uses the delta-method
    standard error sqrt(1 + SNR^2 / 2) / sqrt(N).

    Args:
        Y: Sample with at least 3 realizations.
        level: Targeted simultaneous coverage. Defaults to 0.95.
        method: Quantile method tag. Defaults to ``"GKF"``.
        param_method: Options of the quantile method. The bootstraps default to the
            ``"regular"`` variant.
        residuals_type: ``"delta"`` or ``"standard"`` residual field.

    Returns:
        SCBResult with the bias-corrected SNR as estimate.
    """
    statistic = SNRStatistic(residuals_type)
    inputs = statistic.check_inputs(Y)
    config = resolve_quantile_config(method, level, param_method)
    return _run_pipeline(statistic, inputs, config, level)


def scb_delta(
    Y: NDArray | Tensor,
    level: float = 0.95,
    stat: DeltaStat = "skewness",
    method: QuantileMethod | str = "GKF",
    param_method: Mapping[str, Any] | None = None,
    residuals_type: ResidualsType = "delta",
) -> SCBResult:
    """Simultaneous confidence band for a pointwise moment functional.

    Args:
        Y: Sample with at least 3 realizations.
        level: Targeted simultaneous coverage. Defaults to 0.95.
        stat: ``"skewness"`` or ``"kurtosis"``.
        method: Quantile method tag. Defaults to ``"GKF"``.
        param_method: Options of the quantile method. The bootstraps default to the
            ``"regular"`` variant.
        residuals_type: ``"delta"`` or ``"standard"`` residual field.

    Returns:
        SCBResult with the plug-in statistic as estimate.
    """
    statistic = DeltaStatistic(stat, residuals_type)
    inputs = statistic.check_inputs(Y)
    config = resolve_quantile_config(method, level, param_method)
    return _run_pipeline(statistic, inputs, config, level)


def _as_grid(values: Any, name: str) -> NDArray:
    grid = np.asarray(values, dtype=np.float64).ravel()
    if grid.size < 1 or not np.all(np.isfinite(grid)):
        raise InputShapeError(f"'{name}' must be a non-empty finite grid")
    return grid


def scb_contrast(
    Y: NDArray | Tensor,
    X: NDArray,
    c: NDArray,
    x: NDArray | None = None,
    level: float = 0.95,
    method: QuantileMethod | str = "tGKF",
    param_method: Mapping[str, Any] | None = None,
    weights: NDArray | None = None,
    bw: float | None = None,
    kernel: KernelName = "gaussian",
    x_eval: NDArray | None = None,
    xlim: tuple[float, float] | None = None,
    eval_n: int | None = None,
) -> SCBResult:
    """Simultaneous confidence band for a contrast of a functional linear model.

    Fits Y(t) = X beta(t) + error(t) by ordinary least squares at every grid
    point and bands c' beta(t). On 1-D grids the sample can first be smoothed
    with a linear smoother: either a weight matrix ``weights`` of shape
    (M, K) or a local linear smoother with bandwidth ``bw`` evaluated at
    ``x_eval`` (defaults to ``x``). Without smoothing the band is computed on
    the raw grid and linearly interpolated onto ``x_eval``, or onto
    ``eval_n`` equispaced points spanning ``xlim``.

    Args:
        Y: Sample of shape (K, N), or (K1, K2, N) without smoothing.
        X: Design matrix of shape (N, p) with full column rank.
        c: Contrast vector of length p.
        x: Raw grid of length K. Defaults to K equispaced points in [0, 1].
        level: Targeted simultaneous coverage. Defaults to 0.95.
        method: Quantile method tag. Defaults to ``"tGKF"``.
        param_method: Options of the quantile method.
        weights: Linear smoothing matrix applied to every realization.
        bw: Bandwidth of the local linear smoother.
        kernel: Kernel of the local linear smoother.
        x_eval: Evaluation grid.
        xlim: Range of the interpolation grid. Defaults to the range of x.
            Only valid without smoothing and without ``x_eval``.
        eval_n: Size of the interpolation grid. Defaults to 4 * K. Same
            restriction as ``xlim``.

    Returns:
        SCBResult with c' beta as estimate and the evaluation grid in
        ``x_eval`` (None for 2-D grids).

    Raises:
        InputShapeError: On inconsistent shapes of Y, X, c, x or weights.
        ParameterRangeError: If both weights and bw are given, if xlim or
            eval_n is combined with smoothing or x_eval, or on an invalid
            bandwidth, xlim or eval_n.
        NumericalError: If X does not have full column rank.

    Examples:
        >>> rng = np.random.default_rng(1)
        >>> X = np.column_stack([np.ones(30), rng.standard_normal(30)])
        >>> res = scb_contrast(rng.standard_normal((20, 30)), X, [0.0, 1.0], method="GKF")
        >>> res.x_eval.shape, res.estimate.shape
        ((80,), (80,))
    """
    statistic = LinearContrastStatistic()
    Y, X, c = statistic.check_inputs(Y, X, c)
    n_points = Y.shape[0]
    smooth = weights is not None or bw is not None

    if weights is not None and bw is not None:
        raise ParameterRangeError(
            "Give either smoothing 'weights' or a bandwidth 'bw', not both"
        )
    if Y.ndim != 2 and (smooth or x is not None or x_eval is not None):
        raise InputShapeError("Smoothing and interpolation need a 1-D grid")
    if (xlim is not None or eval_n is not None) and (smooth or x_eval is not None or Y.ndim != 2):
        raise ParameterRangeError(
            "'xlim' and 'eval_n' only set the interpolation grid of an unsmoothed 1-D "
            "band and cannot be combined with 'x_eval', 'weights' or 'bw'"
        )

    grid = np.linspace(0.0, 1.0, n_points) if x is None else _as_grid(x, "x")
    if grid.size != n_points:
        raise InputShapeError(f"Grid 'x' has {grid.size} points but Y has {n_points}")
    if x_eval is not None:
        x_eval = _as_grid(x_eval, "x_eval")

    if not smooth and Y.ndim == 2 and np.any(np.diff(grid) <= 0):
        raise InputShapeError("Grid 'x' must be strictly increasing for interpolation")

    if weights is not None:
        W = np.asarray(weights, dtype=np.float64)
        if W.ndim != 2 or W.shape[1] != n_points:
            raise InputShapeError(
                f"Smoothing weights must have shape (M, {n_points}), got {W.shape}"
            )
        if x_eval is None and W.shape[0] == n_points:
            x_eval = grid
        if x_eval is not None and x_eval.size != W.shape[0]:
            raise InputShapeError(
                f"x_eval has {x_eval.size} points but the weights produce {W.shape[0]}"
            )
    elif bw is not None:
        if x_eval is None:
            x_eval = grid
        # Validates the kernel and bandwidth before any numeric work
        smoother = LocalLinearSmoother(kernel)
        if not _is_real(bw) or not math.isfinite(bw) or not bw > 0:
            raise ParameterRangeError(f"Bandwidth must be positive, got {bw!r}")
    elif Y.ndim == 2 and x_eval is None:
        lo_x, hi_x = (grid.min(), grid.max()) if xlim is None else xlim
        if not lo_x <= hi_x:
            raise ParameterRangeError(f"xlim must be increasing, got {xlim!r}")
        n_eval = 4 * n_points if eval_n is None else eval_n
        if isinstance(n_eval, bool) or not isinstance(n_eval, (int, np.integer)) or n_eval < 1:
            raise ParameterRangeError(f"eval_n must be a positive integer, got {eval_n!r}")
        x_eval = np.linspace(lo_x, hi_x, int(n_eval))

    config = resolve_quantile_config(method, level, param_method)

    if weights is not None:
        Y = W @ Y
    elif bw is not None:
        Y, _ = smoother.smooth(grid, Y, x_eval, float(bw))

    result = _run_pipeline(statistic, (Y, X, c), config, level)
    if smooth or Y.ndim != 2:
        return replace(result, x_eval=x_eval)

    # Raw-grid band interpolated onto the evaluation grid
    return SCBResult(
        estimate=np.interp(x_eval, grid, result.estimate),
        band=Band(
            lo=np.interp(x_eval, grid, result.lo),
            up=np.interp(x_eval, grid, result.up),
        ),
        level=result.level,
        q=result.q,
        residuals=result.residuals,
        method=result.method,
        lkc=result.lkc,
        se=np.interp(x_eval, grid, result.se),
        x_eval=x_eval,
    )

