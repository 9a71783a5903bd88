"""Assembly of simultaneous confidence bands from their ingredients."""

import math
from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray

from ..errors import InputShapeError, NumericalError


@dataclass(frozen=True)
class Band:
    """Lower and upper bounds of a simultaneous confidence band."""

    lo: NDArray
    up: NDArray

    @property
    def width(self) -> NDArray:
        return self.up - self.lo

    def contains(self, values: NDArray) -> bool:
        """Whether ``values`` lies inside the band at every grid point."""
        values = np.asarray(values)
        return bool(np.all((self.lo <= values) & (values <= self.up)))


def build_band(
    estimate: NDArray, q: float, se: NDArray, bias_factor: float = 1.0
) -> Band:
    """Construct the band bias * estimate +/- q * se.

    Args:
        estimate: Pointwise estimate.
        q: Critical value, finite and nonnegative.
        se: Pointwise standard error, broadcastable to ``estimate``.
        bias_factor: Multiplicative finite-sample bias correction of the
            estimate (1 for unbiased statistics).

    Returns:
        Band whose bounds enclose the corrected estimate.

    Raises:
        NumericalError: If q is negative or not finite.
        InputShapeError: If ``se`` does not match ``estimate``.

    Examples:
        >>> band = build_band(np.zeros(3), 2.0, np.full(3, 0.5))
        >>> band.lo, band.up
        (array([-1., -1., -1.]), array([1., 1., 1.]))
    """
    if not math.isfinite(q) or q < 0:
        raise NumericalError(f"Critical value must be finite and >= 0, got {q}", stage="band")

    estimate = np.asarray(estimate, dtype=np.float64)
    se = np.asarray(se, dtype=np.float64)
    try:
        shape = np.broadcast_shapes(estimate.shape, se.shape)
    except ValueError:
        shape = None
    if shape != estimate.shape:
        raise InputShapeError(
            f"Standard error of shape {se.shape} does not match estimate {estimate.shape}"
        )

    center = bias_factor * estimate
    margin = q * np.abs(se)
    return Band(lo=center - margin, up=center + margin)
