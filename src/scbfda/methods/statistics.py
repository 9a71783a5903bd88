"""Pointwise statistics of functional samples and their residual fields.

Each statistic is a small plugin with two steps: ``check_inputs`` validates
shapes without numeric work, ``compute`` returns a :class:`FieldStatistic`
holding the pointwise estimate, its standard error, the normalized residual
field handed to the quantile strategies and the degrees of freedom used by
the tGKF. The class attribute ``bootstrap_variant`` is the bootstrap
studentization used when the caller does not choose one.
"""

import math
from dataclasses import dataclass
from typing import Literal

import numpy as np
from numpy.typing import NDArray
from scipy.special import gammaln
from torch import Tensor

from ..errors import InputShapeError, NumericalError, ParameterRangeError
from .method_utils import as_sample, pointwise_mean_var
from .residuals import DeltaStat, ResidualField, delta_residuals, snr_residuals

ResidualsType = Literal["delta", "standard"]

# Above this sample size the SNR bias correction is dropped
SNR_BIAS_MAX_N = 250


@dataclass(frozen=True)
class FieldStatistic:
    """Pointwise estimate with the ingredients of its confidence band.

    Attributes:
        estimate: Pointwise estimate (before bias correction).
        se: Pointwise standard error of the estimate.
        residuals: Normalized residual field.
        df: Degrees of freedom of the limiting t field.
        bias_factor: Multiplicative bias correction applied to the estimate.
    """

    estimate: NDArray
    se: NDArray
    residuals: ResidualField
    df: float
    bias_factor: float = 1.0

    @property
    def corrected_estimate(self) -> NDArray:
        return self.bias_factor * self.estimate


class MeanStatistic:
    """Pointwise sample mean; residuals (Y - mean) / sd."""

    name = "mean"
    bootstrap_variant = "t"

    def check_inputs(self, Y: NDArray | Tensor) -> tuple[NDArray]:
        return (as_sample(Y, "Y"),)

    def compute(self, Y: NDArray) -> FieldStatistic:
        n = Y.shape[-1]
        mean, var = pointwise_mean_var(Y)
        return FieldStatistic(
            estimate=mean,
            se=np.sqrt(var / n),
            residuals=ResidualField.from_blocks(Y - mean[..., None]),
            df=n - 1,
        )


class MeanDifferenceStatistic:
    """Difference of the means of two independent samples.

    With c = N2/N1 and S^2 = (1 + c) var1 + (1 + 1/c) var2 the residuals
    R1 = (Y1 - mean1) sqrt(1 + c) / S and R2 = (Y2 - mean2) sqrt(1 + 1/c) / S
    are stacked along the realization axis. Weighting each block by
    1/sqrt(N_b) reproduces the covariance of the pivot of mean1 - mean2.
    """

    name = "meandiff"
    bootstrap_variant = "t"

    def check_inputs(
        self, Y1: NDArray | Tensor, Y2: NDArray | Tensor
    ) -> tuple[NDArray, NDArray]:
        Y1 = as_sample(Y1, "Y1")
        Y2 = as_sample(Y2, "Y2")
        if Y1.shape[:-1] != Y2.shape[:-1]:
            raise InputShapeError(
                f"Samples live on different grids: {Y1.shape[:-1]} vs {Y2.shape[:-1]}"
            )
        return Y1, Y2

    def compute(self, Y1: NDArray, Y2: NDArray) -> FieldStatistic:
        n1, n2 = Y1.shape[-1], Y2.shape[-1]
        c = n2 / n1
        mean1, var1 = pointwise_mean_var(Y1)
        mean2, var2 = pointwise_mean_var(Y2)

        pooled = (1.0 + c) * var1 + (1.0 + 1.0 / c) * var2
        S = np.sqrt(np.where(pooled > 0, pooled, 1.0))[..., None]
        R1 = (Y1 - mean1[..., None]) * math.sqrt(1.0 + c) / S
        R2 = (Y2 - mean2[..., None]) * math.sqrt(1.0 + 1.0 / c) / S

        return FieldStatistic(
            estimate=mean1 - mean2,
            se=np.sqrt(pooled / (n1 + n2)),
            residuals=ResidualField(
                values=np.concatenate([R1, R2], axis=-1), subdivision=(n1, n1 + n2)
            ),
            df=n1 + n2 - 2,
        )


def snr_bias_factor(n: int) -> float:
    """Finite-sample bias correction of the plug-in SNR for Gaussian data.

    b(N) = Gamma((N-1)/2) / Gamma((N-2)/2) * sqrt(2/(N-1)) for N <= 250,
    else 1.

    Examples:
        >>> round(snr_bias_factor(10), 4)
        0.9139
        >>> snr_bias_factor(1000)
        1.0
    """
    if n > SNR_BIAS_MAX_N:
        return 1.0
    return math.exp(gammaln((n - 1) / 2) - gammaln((n - 2) / 2)) * math.sqrt(2.0 / (n - 1))


def _check_residuals_type(residuals_type: str) -> None:
    if residuals_type not in ("delta", "standard"):
        raise ParameterRangeError(
            f"residuals_type must be 'delta' or 'standard', got {residuals_type!r}"
        )


class SNRStatistic:
    """Pointwise signal-to-noise ratio mean / sd with bias correction.

    Args:
        residuals_type: ``"delta"`` uses the delta-method residuals for the
            quantile, ``"standard"`` the centered sample. The standard error
            is the delta-method one in both cases.
    """

    name = "snr"
    # Resample sds of skewed influence residuals inflate the sup
    bootstrap_variant = "regular"

    def __init__(self, residuals_type: ResidualsType = "delta"):
        _check_residuals_type(residuals_type)
        self.residuals_type = residuals_type

    def check_inputs(self, Y: NDArray | Tensor) -> tuple[NDArray]:
        return (as_sample(Y, "Y", min_realizations=3),)

    def compute(self, Y: NDArray) -> FieldStatistic:
        n = Y.shape[-1]
        delta = snr_residuals(Y)
        if self.residuals_type == "delta":
            residuals = ResidualField.from_blocks(delta.residuals)
        else:
            residuals = ResidualField.from_blocks(Y - Y.mean(axis=-1, keepdims=True))

        return FieldStatistic(
            estimate=delta.stat,
            se=delta.asymptotic_sd / math.sqrt(n),
            residuals=residuals,
            df=n - 1,
            bias_factor=snr_bias_factor(n),
        )


class DeltaStatistic:
    """Moment functional (skewness, kurtosis) with delta-method residuals."""

    name = "delta"
    bootstrap_variant = "regular"

    def __init__(self, stat: DeltaStat = "skewness", residuals_type: ResidualsType = "delta"):
        if stat not in ("skewness", "kurtosis"):
            raise ParameterRangeError(f"Unknown delta-method statistic: {stat}")
        _check_residuals_type(residuals_type)
        self.stat = stat
        self.residuals_type = residuals_type

    def check_inputs(self, Y: NDArray | Tensor) -> tuple[NDArray]:
        return (as_sample(Y, "Y", min_realizations=3),)

    def compute(self, Y: NDArray) -> FieldStatistic:
        n = Y.shape[-1]
        delta = delta_residuals(Y, self.stat)
        if self.residuals_type == "delta":
            residuals = ResidualField.from_blocks(delta.residuals)
        else:
            residuals = ResidualField.from_blocks(Y - Y.mean(axis=-1, keepdims=True))

        return FieldStatistic(
            estimate=delta.stat,
            se=delta.asymptotic_sd / math.sqrt(n),
            residuals=residuals,
            df=n - 1,
        )


class LinearContrastStatistic:
    """Contrast c' beta(t) of a pointwise ordinary least squares fit Y(t) ~ X.

    The standard error is sigma(t) * sqrt(c' (X'X)^-1 c) with
    sigma(t)^2 = sum_i residual_i(t)^2 / (N - p).
    """

    name = "contrast"
    bootstrap_variant = "t"

    def check_inputs(
        self, Y: NDArray | Tensor, X: NDArray, c: NDArray
    ) -> tuple[NDArray, NDArray, NDArray]:
        Y = as_sample(Y, "Y")
        n = Y.shape[-1]
        X = np.asarray(X, dtype=np.float64)
        if X.ndim == 1:
            X = X[:, None]
        if X.ndim != 2 or X.shape[0] != n:
            raise InputShapeError(
                f"Design matrix must have shape (N={n}, p), got {X.shape}"
            )
        c = np.asarray(c, dtype=np.float64).ravel()
        if c.shape[0] != X.shape[1]:
            raise InputShapeError(
                f"Contrast has length {c.shape[0]} but the design has {X.shape[1]} columns"
            )
        if n <= X.shape[1]:
            raise InputShapeError(
                f"Need more realizations than design columns, got N={n}, p={X.shape[1]}"
            )
        return Y, X, c

    def compute(self, Y: NDArray, X: NDArray, c: NDArray) -> FieldStatistic:
        n, p = X.shape
        if np.linalg.matrix_rank(X) < p:
            raise NumericalError(
                "Design matrix does not have full column rank", stage="design"
            )
        xtx_inv = np.linalg.inv(X.T @ X)
        design_factor = math.sqrt(float(c @ xtx_inv @ c))

        flat = Y.reshape(-1, n)
        beta = flat @ X @ xtx_inv
        residuals = flat - beta @ X.T
        sigma = np.sqrt((residuals**2).sum(axis=-1) / (n - p))

        spatial = Y.shape[:-1]
        return FieldStatistic(
            estimate=(beta @ c).reshape(spatial),
            se=(sigma * design_factor).reshape(spatial),
            residuals=ResidualField.from_blocks(residuals.reshape(Y.shape)),
            df=n - p,
        )
