"""Simultaneous confidence band methods for functional data."""

from .band import Band, build_band
from .config import QuantileConfig, QuantileMethod, resolve_quantile_config
from .ec_density import EulerCharacteristicDensity, gkf_quantile
from .lkc import CallableLKCEstimator, CurvatureEstimator, DirectLKCEstimator
from .quantile import (
    GKFQuantile,
    MultiplierBootstrapQuantile,
    NonParametricBootstrapQuantile,
    QuantileEstimate,
    TGKFQuantile,
    estimate_quantile,
)
from .residuals import ResidualField, delta_residuals, snr_residuals
from .scb import SCBResult, scb_contrast, scb_delta, scb_mean, scb_meandiff, scb_snr
from .smoothing import LocalLinearSmoother
from .statistics import (
    DeltaStatistic,
    FieldStatistic,
    LinearContrastStatistic,
    MeanDifferenceStatistic,
    MeanStatistic,
    SNRStatistic,
    snr_bias_factor,
)

__all__ = [
    "Band",
    "CallableLKCEstimator",
    "CurvatureEstimator",
    "DeltaStatistic",
    "DirectLKCEstimator",
    "EulerCharacteristicDensity",
    "FieldStatistic",
    "GKFQuantile",
    "LinearContrastStatistic",
    "LocalLinearSmoother",
    "MeanDifferenceStatistic",
    "MeanStatistic",
    "MultiplierBootstrapQuantile",
    "NonParametricBootstrapQuantile",
    "QuantileConfig",
    "QuantileEstimate",
    "QuantileMethod",
    "ResidualField",
    "SCBResult",
    "SNRStatistic",
    "TGKFQuantile",
    "build_band",
    "delta_residuals",
    "estimate_quantile",
    "gkf_quantile",
    "resolve_quantile_config",
    "scb_contrast",
    "scb_delta",
    "scb_mean",
    "scb_meandiff",
    "scb_snr",
    "snr_bias_factor",
    "snr_residuals",
]
