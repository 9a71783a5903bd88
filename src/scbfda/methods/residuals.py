"""Residual fields and delta-method residual builders.

A residual field is the sample of an (asymptotically) unit-variance
field whose supremum law matches the pivot of a statistic. Nonlinear
statistics such as the signal-to-noise ratio or the skewness obtain their
residuals from the influence function of a first-order Taylor expansion.
"""

from dataclasses import dataclass
from typing import Literal

import numpy as np
from numpy.typing import NDArray

from ..errors import InputShapeError, ParameterRangeError
from .method_utils import block_slices, normalize_residuals, pointwise_mean_var

DeltaStat = Literal["skewness", "kurtosis"]


@dataclass(frozen=True)
class ResidualField:
    """Normalized residuals with realizations along the last axis.

    Attributes:
        values: Array of shape (K_1, ..., K_d, N_total).
        subdivision: Cumulative end indices of independent blocks along the
            last axis, e.g. ``(N,)`` or ``(N1, N1 + N2)``.
    """

    values: NDArray
    subdivision: tuple[int, ...]

    def __post_init__(self):
        if not self.subdivision or self.subdivision[-1] != self.values.shape[-1]:
            raise InputShapeError(
                f"subdivision {self.subdivision} does not match "
                f"{self.values.shape[-1]} realizations"
            )

    @classmethod
    def from_blocks(cls, *blocks: NDArray, normalize: bool = True) -> "ResidualField":
        """Stack centered residual blocks and optionally normalize them jointly."""
        values = np.concatenate(blocks, axis=-1)
        subdivision = tuple(int(n) for n in np.cumsum([b.shape[-1] for b in blocks]))
        if normalize:
            values = normalize_residuals(values, subdivision)
        return cls(values=values, subdivision=subdivision)

    @property
    def n_blocks(self) -> int:
        return len(self.subdivision)

    @property
    def spatial_shape(self) -> tuple[int, ...]:
        return self.values.shape[:-1]

    @property
    def dim(self) -> int:
        return self.values.ndim - 1

    def blocks(self) -> list[NDArray]:
        return [self.values[..., s] for s in block_slices(self.subdivision)]


@dataclass(frozen=True)
class DeltaResiduals:
    """Output of a delta-method residual builder.

    Attributes:
        stat: Pointwise plug-in estimate.
        residuals: Centered influence-function residuals, shape of the sample.
        asymptotic_sd: Pointwise asymptotic standard deviation of
            sqrt(N) * (stat - truth).
    """

    stat: NDArray
    residuals: NDArray
    asymptotic_sd: NDArray


def _standardize(Y: NDArray) -> tuple[NDArray, NDArray, NDArray]:
    mean, var = pointwise_mean_var(Y)
    sd = np.sqrt(var)
    if np.any(sd <= 0):
        raise InputShapeError("Sample has zero variance at some grid points")
    Z = (Y - mean[..., None]) / sd[..., None]
    return mean, sd, Z


def _center(R: NDArray) -> NDArray:
    return R - R.mean(axis=-1, keepdims=True)


def snr_residuals(Y: NDArray) -> DeltaResiduals:
    """Delta-method residuals of the pointwise signal-to-noise ratio mean/sd.

    With Z = (Y - mean)/sd the influence function of SNR is
    Z - SNR/2 * (Z^2 - 1); under Gaussianity its variance is 1 + SNR^2/2.

    Args:
        Y: Sample of shape (K_1, ..., K_d, N).

    Returns:
        Plug-in SNR, residuals and the Gaussian asymptotic standard deviation.
    """
    mean, sd, Z = _standardize(Y)
    snr = mean / sd
    residuals = Z - 0.5 * snr[..., None] * (Z**2 - 1.0)
    return DeltaResiduals(
        stat=snr,
        residuals=_center(residuals),
        asymptotic_sd=np.sqrt(1.0 + 0.5 * snr**2),
    )


def delta_residuals(Y: NDArray, stat: DeltaStat = "skewness") -> DeltaResiduals:
    """Delta-method residuals of pointwise moment functionals.

    Supported statistics:
        - ``"skewness"``: gamma = m3 / sd^3 with influence
          Z^3 - gamma - 3 Z - 3/2 gamma (Z^2 - 1).
        - ``"kurtosis"``: kappa = m4 / sd^4 with influence
          Z^4 - kappa - 4 gamma Z - 2 kappa (Z^2 - 1).

    The asymptotic standard deviation is the pointwise sample standard
    deviation of the residuals.

    Raises:
        ParameterRangeError: If ``stat`` is not supported.
    """
    _, _, Z = _standardize(Y)
    skew = np.mean(Z**3, axis=-1)

    if stat == "skewness":
        value = skew
        residuals = Z**3 - value[..., None] - 3.0 * Z - 1.5 * value[..., None] * (Z**2 - 1.0)
    elif stat == "kurtosis":
        value = np.mean(Z**4, axis=-1)
        residuals = (
            Z**4
            - value[..., None]
            - 4.0 * skew[..., None] * Z
            - 2.0 * value[..., None] * (Z**2 - 1.0)
        )
    else:
        raise ParameterRangeError(f"Unknown delta-method statistic: {stat}")

    residuals = _center(residuals)
    return DeltaResiduals(
        stat=value,
        residuals=residuals,
        asymptotic_sd=residuals.std(axis=-1, ddof=1),
    )
