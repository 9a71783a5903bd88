"""Random field generators and data generating processes."""

from .random_fields import (
    NOISE_GENERATORS,
    FieldDGP,
    arb_cov_noise,
    bernstein_sum_noise,
    degras_nongauss_noise,
    functional_data_sample,
    gauss_density_sum_2d_noise,
    gauss_density_sum_noise,
    get_standard_field_dgps,
    hermite_sum_noise,
    make_field_dgp,
    ou_noise,
    sin_cos_sum_noise,
    squared_exp_1d_noise,
    squared_exp_2d_noise,
)

__all__ = [
    "NOISE_GENERATORS",
    "FieldDGP",
    "arb_cov_noise",
    "bernstein_sum_noise",
    "degras_nongauss_noise",
    "functional_data_sample",
    "gauss_density_sum_2d_noise",
    "gauss_density_sum_noise",
    "get_standard_field_dgps",
    "hermite_sum_noise",
    "make_field_dgp",
    "ou_noise",
    "sin_cos_sum_noise",
    "squared_exp_1d_noise",
    "squared_exp_2d_noise",
]
