"""Shared array utilities for the band methods."""

from collections.abc import Sequence

import numpy as np
import torch
from numpy.typing import NDArray
from torch import Tensor

from ..errors import InputShapeError


def numpy_to_torch(arr: NDArray | Tensor, device: torch.device | None = None) -> Tensor:
    """Convert numpy array or torch tensor to tensor on specified device.

    Args:
        arr: Input numpy array or torch tensor.
        device: Target device (defaults to CUDA if available).

    Returns:
        PyTorch tensor on the specified device.
    """
    if device is None:
        device = torch.device("cuda" if torch.cuda.is_available() else "cpu")

    # If already a tensor, just move to the target device
    if isinstance(arr, Tensor):
        return arr.to(device)

    return torch.from_numpy(np.ascontiguousarray(arr)).to(device)


def torch_to_numpy(tensor: Tensor | NDArray) -> NDArray:
    """Convert tensor or numpy array to numpy array.

    Args:
        tensor: Input PyTorch tensor or numpy array.

    Returns:
        Numpy array with preserved dtype.
    """
    if isinstance(tensor, np.ndarray):
        return tensor

    # If tensor, convert to numpy (moving to CPU if necessary)
    return tensor.detach().cpu().numpy()


def as_sample(
    Y: NDArray | Tensor, name: str = "Y", min_realizations: int = 2
) -> NDArray:
    """Validate a functional sample and return it as a float64 array.

    A sample has shape (K_1, ..., K_d, N) with d in {1, 2}: the last axis
    enumerates the N realizations of the field.

    Args:
        Y: Sample as numpy array or torch tensor (including CUDA tensors).
        name: Name used in error messages.
        min_realizations: Smallest admissible N.

    Returns:
        Sample as a float64 numpy array.

    Raises:
        InputShapeError: If Y is not an array, has the wrong number of axes,
            too few realizations or non-finite entries.
    """
    if isinstance(Y, Tensor):
        Y = Y.detach().cpu().numpy()
    elif not isinstance(Y, np.ndarray):
        raise InputShapeError(
            f"{name} must be an array whose last axis enumerates the realizations, "
            f"got {type(Y).__name__}"
        )

    if Y.ndim not in (2, 3):
        raise InputShapeError(
            f"{name} must have shape (K_1, [K_2,] N) over a 1-D or 2-D grid, "
            f"got shape {Y.shape}"
        )

    n = Y.shape[-1]
    if n < min_realizations:
        raise InputShapeError(
            f"{name} needs at least {min_realizations} realizations, got N={n}"
        )

    Y = np.asarray(Y, dtype=np.float64)
    if not np.all(np.isfinite(Y)):
        raise InputShapeError(f"{name} contains non-finite values")
    return Y


def pointwise_mean_var(Y: NDArray) -> tuple[NDArray, NDArray]:
    """Pointwise sample mean and unbiased sample variance over the last axis."""
    return Y.mean(axis=-1), Y.var(axis=-1, ddof=1)


def block_slices(subdivision: Sequence[int]) -> list[slice]:
    """Turn cumulative block end indices into slices along the realization axis.

    Examples:
        >>> block_slices((3, 7))
        [slice(0, 3, None), slice(3, 7, None)]
    """
    starts = (0, *subdivision[:-1])
    return [slice(start, stop) for start, stop in zip(starts, subdivision)]


def block_weighted_variance(R: NDArray, subdivision: Sequence[int]) -> NDArray:
    """Sum over blocks of the pointwise sample variance of each block.

    For a single block this is the ordinary pointwise sample variance. For
    two independent samples it is the variance of the pivot
    sqrt(N_1) * mean(R_1) - sqrt(N_2) * mean(R_2).
    """
    return sum(R[..., s].var(axis=-1, ddof=1) for s in block_slices(subdivision))


def normalize_residuals(
    R: NDArray, subdivision: Sequence[int] | None = None
) -> NDArray:
    """Scale a residual field to unit (block-weighted) pointwise variance.

    Curvature and bootstrap estimators expect this normalization; it is an
    explicit step of every statistic.

    Args:
        R: Residual field with realizations along the last axis.
        subdivision: Cumulative block end indices. Defaults to one block.

    Returns:
        Normalized residual field of the same shape.
    """
    if subdivision is None:
        subdivision = (R.shape[-1],)
    var = block_weighted_variance(R, subdivision)
    # Constant points carry no information; leave them at zero instead of NaN
    sd = np.sqrt(np.where(var > 0, var, 1.0))
    return np.where(var[..., None] > 0, R / sd[..., None], 0.0)
