"""
Unit tests for Euler characteristic densities and the GKF quantile.

Critical behaviors tested:
1. Gaussian densities match their closed forms
2. Student-t densities converge to the Gaussian ones as df grows
3. The GKF quantile solves the tail equation and reduces to the pointwise
   quantile when all curvatures of positive dimension vanish
4. Degenerate curvatures raise NumericalError, negative ones are clipped
"""

import math
import warnings

import numpy as np
import pytest
from scipy import stats

from scbfda.errors import NumericalError, ParameterRangeError
from scbfda.methods.ec_density import EulerCharacteristicDensity, gkf_quantile


@pytest.fixture
def u_grid():
    """Thresholds covering the relevant tail region."""
    return np.linspace(0.5, 5.0, 46)


# =============================================================================
# EC Densities
# =============================================================================


class TestGaussianDensities:
    """Test Gaussian EC densities against their closed forms."""

    def test_closed_forms(self, u_grid):
        """Verify rho_0..rho_3 of a Gaussian field."""
        rho = EulerCharacteristicDensity("gauss").densities(u_grid)
        base = np.exp(-(u_grid**2) / 2)

        np.testing.assert_allclose(rho[0], stats.norm.sf(u_grid), rtol=1e-12)
        np.testing.assert_allclose(rho[1], base / (2 * np.pi), rtol=1e-12)
        np.testing.assert_allclose(rho[2], u_grid * base / (2 * np.pi) ** 1.5, rtol=1e-12)
        np.testing.assert_allclose(
            rho[3], (u_grid**2 - 1) * base / (2 * np.pi) ** 2, rtol=1e-12
        )

    def test_tail_single_point_is_normal_tail(self):
        """A single point domain has P(G > u) = 1 - Phi(u)."""
        ec = EulerCharacteristicDensity("gauss")
        assert float(ec.tail(1.959964, [1.0])) == pytest.approx(0.025, abs=1e-7)

    def test_tail_rejects_too_many_curvatures(self):
        """Verify at most four curvatures are accepted."""
        ec = EulerCharacteristicDensity("gauss")
        with pytest.raises(ParameterRangeError):
            ec.tail(2.0, [1.0, 1.0, 1.0, 1.0, 1.0])


class TestStudentTDensities:
    """Test Student-t EC densities."""

    @pytest.mark.parametrize("df", [1e6, 1e8], ids=["df_1e6", "df_1e8"])
    def test_converge_to_gaussian(self, df, u_grid):
        """Verify t densities approach Gaussian densities for large df."""
        rho_t = EulerCharacteristicDensity("t", df).densities(u_grid)
        rho_g = EulerCharacteristicDensity("gauss").densities(u_grid)
        np.testing.assert_allclose(rho_t, rho_g, rtol=1e-3, atol=1e-7)

    def test_infinite_df_is_gaussian(self):
        """Verify df=inf maps onto the Gaussian field."""
        assert EulerCharacteristicDensity("t", np.inf).field == "gauss"

    def test_rho1_closed_form(self, u_grid):
        """Verify rho_1 = (1 + u^2/nu)^(-(nu-1)/2) / (2 pi)."""
        nu = 7.0
        rho = EulerCharacteristicDensity("t", nu).densities(u_grid)
        expected = (1 + u_grid**2 / nu) ** (-(nu - 1) / 2) / (2 * np.pi)
        np.testing.assert_allclose(rho[1], expected, rtol=1e-12)
        np.testing.assert_allclose(rho[0], stats.t.sf(u_grid, nu), rtol=1e-12)

    def test_heavier_tails_than_gaussian(self):
        """Verify the t tail dominates the Gaussian tail at large u."""
        t_tail = EulerCharacteristicDensity("t", 5).tail(3.0, [1.0, 2.0])
        g_tail = EulerCharacteristicDensity("gauss").tail(3.0, [1.0, 2.0])
        assert t_tail > g_tail

    @pytest.mark.parametrize("df", [None, 0.5, -1.0], ids=["missing", "below_one", "negative"])
    def test_invalid_df_raises(self, df):
        with pytest.raises(ParameterRangeError):
            EulerCharacteristicDensity("t", df)

    def test_unknown_field_raises(self):
        with pytest.raises(ParameterRangeError):
            EulerCharacteristicDensity("chi2")


# =============================================================================
# GKF Quantile
# =============================================================================


class TestGKFQuantile:
    """Test the root finder of the GKF tail equation."""

    def test_single_point(self):
        """Verify D=0 with L0=1 gives the two-sided normal quantile."""
        assert gkf_quantile(0.05, [1.0]) == pytest.approx(1.959964, abs=1e-6)

    def test_zero_length_domain(self):
        """Vanishing L1 reduces to the pointwise quantile."""
        assert gkf_quantile(0.05, [1.0, 0.0]) == pytest.approx(1.959964, abs=1e-6)

    def test_several_isolated_points(self):
        """L0 points with no curvature give a Bonferroni bound."""
        assert gkf_quantile(0.05, [2.0, 0.0]) == pytest.approx(
            stats.norm.isf(0.0125), rel=1e-10
        )

    @pytest.mark.parametrize(
        "lkc",
        [[1.0, 1.5], [1.0, 4.0, 2.0], [1.0, 3.0, 10.0, 5.0]],
        ids=["1d", "2d", "3d"],
    )
    def test_solves_tail_equation(self, lkc):
        """Verify the returned q satisfies sum_j L_j rho_j(q) = alpha/2."""
        alpha = 0.05
        q = gkf_quantile(alpha, lkc)
        tail = EulerCharacteristicDensity("gauss").tail(q, lkc)
        assert float(tail) == pytest.approx(alpha / 2, abs=1e-9)
        assert q > stats.norm.isf(alpha / 2)

    def test_one_dimensional_closed_form(self):
        """Verify 1-D root against the explicit tail expression."""
        L1 = 2.0
        q = gkf_quantile(0.1, [1.0, L1])
        tail = stats.norm.sf(q) + L1 * math.exp(-(q**2) / 2) / (2 * math.pi)
        assert tail == pytest.approx(0.05, abs=1e-9)

    def test_t_single_point(self):
        """Verify tGKF for a single point is the Student-t quantile."""
        q = gkf_quantile(0.05, [1.0], field="t", df=9)
        assert q == pytest.approx(stats.t.isf(0.025, 9), rel=1e-10)

    def test_t_wider_than_gaussian(self):
        q_t = gkf_quantile(0.05, [1.0, 3.0], field="t", df=10)
        q_g = gkf_quantile(0.05, [1.0, 3.0])
        assert q_t > q_g

    def test_monotone_in_curvature(self):
        """Verify larger domains need larger critical values."""
        qs = [gkf_quantile(0.05, [1.0, L1]) for L1 in (0.5, 1.0, 2.0, 5.0, 20.0)]
        assert np.all(np.diff(qs) > 0)

    def test_monotone_in_alpha(self):
        qs = [gkf_quantile(alpha, [1.0, 3.0]) for alpha in (0.2, 0.1, 0.05, 0.01)]
        assert np.all(np.diff(qs) > 0)

    def test_negative_curvature_clipped_with_warning(self):
        """Verify negative curvatures warn and are treated as zero."""
        with pytest.warns(UserWarning, match="clipped"):
            q = gkf_quantile(0.05, [1.0, -0.3])
        assert q == pytest.approx(1.959964, abs=1e-6)

    def test_nonnegative_curvature_no_warning(self):
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            gkf_quantile(0.05, [1.0, 2.0])

    @pytest.mark.parametrize(
        "lkc",
        [[1.0, np.nan], [1.0, np.inf], [0.0, 0.0]],
        ids=["nan", "inf", "all_zero"],
    )
    def test_degenerate_curvatures_raise(self, lkc):
        with pytest.raises(NumericalError) as excinfo:
            gkf_quantile(0.05, lkc, method="GKF")
        assert excinfo.value.stage == "lkc"
        assert "method=GKF" in str(excinfo.value)
