"""
Unit tests for random_fields module.

Critical behaviors tested:
1. Noise generators return (K, N) or (K, K, N) samples with the documented
   pointwise variance
2. sigma rescales the pointwise standard deviation
3. functional_data_sample adds the mean and observation noise
4. FieldDGP exposes analytic or Monte Carlo standard deviations and SNR
5. Invalid parameters raise
"""

import numpy as np
import pytest

from scbfda.datagen.random_fields import (
    NOISE_GENERATORS,
    TWO_D_GENERATORS,
    FieldDGP,
    bernstein_sum_noise,
    degras_nongauss_noise,
    functional_data_sample,
    gauss_density_sum_2d_noise,
    gauss_density_sum_noise,
    get_standard_field_dgps,
    make_field_dgp,
    ou_noise,
    sin_cos_sum_noise,
    squared_exp_1d_noise,
    squared_exp_2d_noise,
)
from scbfda.errors import InputShapeError, ParameterRangeError

UNIT_VARIANCE_1D = [
    "sin_cos",
    "gauss_density",
    "ou",
    "bernstein",
    "hermite",
    "arb_cov",
    "squared_exp_1d",
]


@pytest.fixture
def x():
    return np.linspace(0, 1, 50)


@pytest.fixture
def rng():
    """Fixed RNG for reproducible tests."""
    return np.random.default_rng(42)


# =============================================================================
# Noise Generators
# =============================================================================


class TestOneDimensionalNoise:
    """Test the 1-D noise generators."""

    @pytest.mark.parametrize("name", UNIT_VARIANCE_1D + ["degras"])
    def test_shape(self, name, x, rng):
        Y = NOISE_GENERATORS[name](7, x, rng=rng)
        assert Y.shape == (50, 7)

    @pytest.mark.parametrize("name", UNIT_VARIANCE_1D)
    def test_unit_variance(self, name, x, rng):
        """Verify the generators are normalized to unit pointwise variance."""
        Y = NOISE_GENERATORS[name](20_000, x, rng=rng)
        np.testing.assert_allclose(Y.mean(axis=1), 0.0, atol=0.05)
        np.testing.assert_allclose(Y.var(axis=1), 1.0, rtol=0.06)

    def test_degras_variance(self, x, rng):
        Y = degras_nongauss_noise(50_000, x, rng=rng)
        expected = np.sin(np.pi * x) ** 2 / 9 + 4 / 9 * (x - 0.5) ** 2
        np.testing.assert_allclose(Y.var(axis=1), expected, rtol=0.1, atol=1e-3)

    def test_degras_is_skewed(self, x, rng):
        """Centered chi-square coefficients give a right-skewed field."""
        Y = degras_nongauss_noise(50_000, x, rng=rng)
        Z = (Y[25] - Y[25].mean()) / Y[25].std()
        assert np.mean(Z**3) > 0.5

    def test_default_grid(self, rng):
        assert sin_cos_sum_noise(3, rng=rng).shape == (100, 3)

    def test_sigma_rescales(self, x, rng):
        Y = sin_cos_sum_noise(20_000, x, sigma=lambda t: 1 + 2 * t, rng=rng)
        np.testing.assert_allclose(Y.std(axis=1), 1 + 2 * x, rtol=0.05)

    def test_constant_sigma(self, x, rng):
        Y = gauss_density_sum_noise(20_000, x, sigma=lambda t: 3.0, rng=rng)
        np.testing.assert_allclose(Y.std(axis=1), 3.0, rtol=0.05)

    def test_sigma_shape_mismatch_raises(self, x, rng):
        with pytest.raises(InputShapeError, match="sigma"):
            sin_cos_sum_noise(5, x, sigma=lambda t: np.ones(7), rng=rng)

    def test_custom_coefficients(self, x, rng):
        """Rademacher coefficients keep unit variance."""

        def rademacher(gen, shape):
            return gen.choice([-1.0, 1.0], size=shape)

        Y = bernstein_sum_noise(20_000, x, rng=rng, rand_number=rademacher)
        np.testing.assert_allclose(Y.var(axis=1), 1.0, rtol=0.06)

    def test_ou_correlation(self, rng):
        """Verify the exact OU transition gives corr exp(-alpha |s - t|)."""
        x = np.array([0.0, 0.1, 0.3])
        Y = ou_noise(50_000, x, rng=rng)
        corr = np.corrcoef(Y)
        np.testing.assert_allclose(corr[0, 1], np.exp(-0.5), atol=0.02)
        np.testing.assert_allclose(corr[0, 2], np.exp(-1.5), atol=0.02)

    def test_ou_invalid_parameters(self, x):
        with pytest.raises(ParameterRangeError):
            ou_noise(3, x, alpha_ou=0.0)

    def test_squared_exp_invalid_nu(self, x):
        with pytest.raises(ParameterRangeError):
            squared_exp_1d_noise(3, x, nu=-0.1)

    def test_reproducible_with_seed(self, x):
        a = gauss_density_sum_noise(5, x, rng=np.random.default_rng(0))
        b = gauss_density_sum_noise(5, x, rng=np.random.default_rng(0))
        np.testing.assert_array_equal(a, b)


class TestTwoDimensionalNoise:
    """Test the 2-D noise generators."""

    def test_squared_exp_shape_and_variance(self, rng):
        Y = squared_exp_2d_noise(4000, np.arange(1.0, 11.0), rng=rng, nu=2.0)
        assert Y.shape == (10, 10, 4000)
        np.testing.assert_allclose(Y.var(axis=-1), 1.0, rtol=0.12)

    def test_squared_exp_default_grid(self, rng):
        assert squared_exp_2d_noise(2, rng=rng).shape == (50, 50, 2)

    def test_gauss_density_shape_and_variance(self, rng):
        Y = gauss_density_sum_2d_noise(10_000, np.linspace(0, 1, 12), rng=rng)
        assert Y.shape == (12, 12, 10_000)
        np.testing.assert_allclose(Y.var(axis=-1), 1.0, rtol=0.08)

    def test_sigma_over_square_grid(self, rng):
        x = np.linspace(0, 1, 8)
        Y = gauss_density_sum_2d_noise(10_000, x, sigma=lambda t: 2.0, rng=rng)
        np.testing.assert_allclose(Y.std(axis=-1), 2.0, rtol=0.05)

    def test_registered(self):
        assert set(TWO_D_GENERATORS) <= set(NOISE_GENERATORS)


# =============================================================================
# Functional Data Samples
# =============================================================================


class TestFunctionalDataSample:
    def test_mean_added(self, x, rng):
        Y = functional_data_sample(20_000, x, mu=lambda t: 5 * t, rng=rng)
        np.testing.assert_allclose(Y.mean(axis=1), 5 * x, atol=0.05)

    def test_observation_noise(self, x, rng):
        Y = functional_data_sample(20_000, x, sd_obs_noise=1.0, rng=rng)
        np.testing.assert_allclose(Y.var(axis=1), 2.0, rtol=0.06)

    def test_noise_kwargs_forwarded(self, rng):
        x = np.array([0.0, 0.1])
        Y = functional_data_sample(
            50_000, x, noise=ou_noise, rng=rng, alpha_ou=10.0, sigma_ou=np.sqrt(20.0)
        )
        assert np.corrcoef(Y)[0, 1] == pytest.approx(np.exp(-1.0), abs=0.02)

    def test_two_dimensional_mean(self, rng):
        x = np.linspace(0, 1, 6)
        Y = functional_data_sample(
            3, x, mu=lambda t: np.add.outer(t, t), noise=gauss_density_sum_2d_noise, rng=rng
        )
        assert Y.shape == (6, 6, 3)

    @pytest.mark.parametrize(
        "kwargs", [{"N": 0}, {"N": 5, "sd_obs_noise": -1.0}], ids=["n_zero", "obs_noise"]
    )
    def test_invalid_parameters(self, x, kwargs):
        with pytest.raises(ParameterRangeError):
            functional_data_sample(x=x, **kwargs)


# =============================================================================
# Data Generating Processes
# =============================================================================


class TestFieldDGP:
    def test_sample_uses_generator(self, x, rng):
        calls = []

        def generator(N, gen):
            calls.append(N)
            return np.zeros((x.size, N))

        dgp = FieldDGP(generator=generator, true_mean=np.zeros(x.size), x=x)
        assert dgp.sample(4, rng).shape == (50, 4)
        assert calls == [4]

    def test_analytic_sd(self, x):
        dgp = make_field_dgp("gauss_density", x, sigma=lambda t: 1 + t, sd_obs_noise=0.5)
        np.testing.assert_allclose(dgp.get_true_sd(), np.sqrt((1 + x) ** 2 + 0.25))

    def test_analytic_sd_matches_samples(self, x, rng):
        dgp = make_field_dgp("sin_cos", x, sigma=lambda t: 2 - t)
        Y = dgp.sample(20_000, rng)
        np.testing.assert_allclose(Y.std(axis=1), dgp.get_true_sd(), rtol=0.05)

    def test_monte_carlo_sd_cached(self, x, rng):
        dgp = make_field_dgp("degras", x)
        assert dgp.true_sd is None

        sd = dgp.get_true_sd(n_samples=50_000, rng=rng)
        expected = np.sqrt(np.sin(np.pi * x) ** 2 / 9 + 4 / 9 * (x - 0.5) ** 2)
        np.testing.assert_allclose(sd, expected, rtol=0.1, atol=0.01)
        assert dgp.get_true_sd() is sd

    def test_true_snr(self, x):
        dgp = make_field_dgp("hermite", x, mu=lambda t: 2 * t, sigma=lambda t: 4.0)
        np.testing.assert_allclose(dgp.get_true_snr(), 2 * x / 4.0)

    def test_two_dimensional_dgp(self, rng):
        dgp = make_field_dgp("gauss_density_2d", np.linspace(0, 1, 9))
        assert dgp.true_mean.shape == (9, 9)
        assert dgp.true_sd.shape == (9, 9)
        assert dgp.sample(3, rng).shape == (9, 9, 3)

    def test_names(self, x):
        assert make_field_dgp("ou", x).name == "ou"
        assert make_field_dgp("ou", x, name="ou_fine").name == "ou_fine"

    def test_unknown_noise(self, x):
        with pytest.raises(ParameterRangeError, match="Unknown noise"):
            make_field_dgp("brownian", x)

    def test_standard_dgps(self, rng):
        dgps = get_standard_field_dgps(np.linspace(0, 1, 30))
        assert set(dgps) == {
            "sin_cos",
            "gauss_density",
            "gauss_density_hetero",
            "squared_exp",
            "bernstein",
            "hermite",
            "ou",
            "degras",
        }
        for name, dgp in dgps.items():
            assert dgp.name == name
            assert dgp.true_mean.shape == (30,)
            assert dgp.sample(4, rng).shape == (30, 4)
