"""Simultaneous Confidence Bands for Functional Data.

This package computes simultaneous confidence bands for the mean, the
difference of means, the signal-to-noise ratio, moment functionals and
linear-model contrasts of functional samples observed on 1-D and 2-D grids,
using the Gaussian Kinematic Formula or bootstrap critical values. It also
ships the random field generators and the Monte-Carlo coverage evaluation
used to study the bands.
"""

from . import datagen, errors, eval, methods
from .methods import (
    QuantileMethod,
    SCBResult,
    scb_contrast,
    scb_delta,
    scb_mean,
    scb_meandiff,
    scb_snr,
)

__all__ = [
    "QuantileMethod",
    "SCBResult",
    "datagen",
    "errors",
    "eval",
    "methods",
    "scb_contrast",
    "scb_delta",
    "scb_mean",
    "scb_meandiff",
    "scb_snr",
]
