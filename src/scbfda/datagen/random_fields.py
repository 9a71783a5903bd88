"""
Random Field Generators for Functional Data

Each noise generator has the signature
(N, x, sigma=None, rng=None, **kwargs) -> array of shape (K, N) or (K, K, N)
and produces zero-mean fields whose pointwise standard deviation is given by
``sigma`` (a function of the grid, evaluated once and broadcast over the
realizations). Without ``sigma`` the fields have unit variance, except for the
non-Gaussian Degras process.

The FieldDGP wrapper combines a noise generator with a mean function and is
what the coverage studies consume.
"""

from collections.abc import Callable
from dataclasses import dataclass, field

import numpy as np
from scipy import stats
from scipy.ndimage import gaussian_filter

from ..errors import InputShapeError, ParameterRangeError

SigmaFunction = Callable[[np.ndarray], np.ndarray | float]


def _default_grid(n_points: int = 100) -> np.ndarray:
    return np.linspace(0.0, 1.0, n_points)


def _sd_over_grid(sigma: SigmaFunction | None, x: np.ndarray, shape: tuple[int, ...]) -> np.ndarray:
    """Evaluate sigma once and add a broadcastable realization axis."""
    if sigma is None:
        return np.ones(shape + (1,))
    sd = np.asarray(sigma(x), dtype=np.float64)
    try:
        sd = np.broadcast_to(sd, shape)
    except ValueError:
        raise InputShapeError(
            f"sigma returned shape {sd.shape}, which does not match the grid {shape}"
        ) from None
    return sd[..., None]


def _normalized_basis_sum(
    f: np.ndarray,
    N: int,
    rng: np.random.Generator,
    rand_number: Callable[[np.random.Generator, tuple[int, int]], np.ndarray] | None,
) -> np.ndarray:
    """Random sum of basis functions scaled to unit pointwise variance.

    f has shape (n_points, n_basis); coefficients have mean 0 and variance 1.
    """
    norm = np.sqrt(np.sum(f**2, axis=1, keepdims=True))
    coefficients = (
        rng.standard_normal((f.shape[1], N))
        if rand_number is None
        else rand_number(rng, (f.shape[1], N))
    )
    return (f / norm) @ coefficients


# =============================================================================
# 1-D noise fields
# =============================================================================


def sin_cos_sum_noise(
    N: int,
    x: np.ndarray | None = None,
    sigma: SigmaFunction | None = None,
    rng: np.random.Generator | None = None,
) -> np.ndarray:
    """
    Gaussian field sin(pi x / 2) Z1 + cos(pi x / 2) Z2 with Z1, Z2 ~ N(0, 1).

    The field is stationary with unit variance and very smooth, which makes it
    the canonical case where GKF bands are close to exact.
    """
    rng = np.random.default_rng() if rng is None else rng
    x = _default_grid() if x is None else np.asarray(x, dtype=np.float64)
    z = rng.standard_normal((2, N))
    Y = np.outer(np.sin(np.pi / 2 * x), z[0]) + np.outer(np.cos(np.pi / 2 * x), z[1])
    return Y * _sd_over_grid(sigma, x, x.shape)


def gauss_density_sum_noise(
    N: int,
    x: np.ndarray | None = None,
    sigma: SigmaFunction | None = None,
    rng: np.random.Generator | None = None,
    anchor_points: np.ndarray | None = None,
    anchor_sd: np.ndarray | float | None = None,
    rand_number: Callable[[np.random.Generator, tuple[int, int]], np.ndarray] | None = None,
) -> np.ndarray:
    """
    Random sum of Gaussian densities, normalized to unit variance.

    Parameters
    ----------
    anchor_points : np.ndarray, optional
        Means of the densities. Defaults to 15 equispaced points over range(x).
    anchor_sd : np.ndarray or float, optional
        Standard deviations of the densities. Defaults to range(x) / n_anchors.
    rand_number : Callable, optional
        (rng, shape) -> coefficients with mean 0 and variance 1. Defaults to
        standard Gaussians; non-Gaussian choices give non-Gaussian fields.
    """
    rng = np.random.default_rng() if rng is None else rng
    x = _default_grid() if x is None else np.asarray(x, dtype=np.float64)
    if anchor_points is None:
        anchor_points = np.linspace(x.min(), x.max(), 15)
    anchor_points = np.asarray(anchor_points, dtype=np.float64)
    if anchor_sd is None:
        anchor_sd = np.ptp(x) / anchor_points.size
    anchor_sd = np.broadcast_to(np.asarray(anchor_sd, dtype=np.float64), anchor_points.shape)

    f = stats.norm.pdf(x[:, None], loc=anchor_points[None, :], scale=anchor_sd[None, :])
    return _normalized_basis_sum(f, N, rng, rand_number) * _sd_over_grid(sigma, x, x.shape)


def ou_noise(
    N: int,
    x: np.ndarray | None = None,
    sigma: SigmaFunction | None = None,
    rng: np.random.Generator | None = None,
    alpha_ou: float = 5.0,
    sigma_ou: float = np.sqrt(10.0),
    gamma: np.ndarray | None = None,
) -> np.ndarray:
    """
    Ornstein-Uhlenbeck process started in its stationary law.

    With the defaults the stationary variance sigma_ou^2 / (2 alpha_ou) is 1.
    The process is continuous but nowhere differentiable, so curvature based
    methods are expected to be conservative or to undercover on fine grids.

    Parameters
    ----------
    alpha_ou : float
        Mean reversion rate.
    sigma_ou : float
        Diffusion coefficient.
    gamma : np.ndarray, optional
        Mean curve of the process on the grid. Defaults to 0.
    """
    if alpha_ou <= 0 or sigma_ou <= 0:
        raise ParameterRangeError("alpha_ou and sigma_ou must be positive")
    rng = np.random.default_rng() if rng is None else rng
    x = _default_grid() if x is None else np.asarray(x, dtype=np.float64)
    gamma = np.zeros_like(x) if gamma is None else np.asarray(gamma, dtype=np.float64)

    Y = np.empty((x.size, N))
    Y[0] = rng.normal(0.0, sigma_ou / np.sqrt(2 * alpha_ou), N) + gamma[0]

    # Exact transition of the OU process between grid points
    decay = np.exp(-alpha_ou * np.diff(x))
    step_sd = sigma_ou * np.sqrt((1 - decay**2) / (2 * alpha_ou))
    for k in range(1, x.size):
        Y[k] = (Y[k - 1] - gamma[k - 1]) * decay[k - 1] + gamma[k]
        Y[k] += rng.normal(0.0, step_sd[k - 1], N)
    return Y * _sd_over_grid(sigma, x, x.shape)


def degras_nongauss_noise(
    N: int,
    x: np.ndarray | None = None,
    sigma: SigmaFunction | None = None,
    rng: np.random.Generator | None = None,
) -> np.ndarray:
    """
    Non-Gaussian field of Degras (2011, Statistica Sinica).

    sqrt(2)/6 (chi2_1 - 1) sin(pi x) + 2/3 (Exp(1) - 1) (x - 0.5), both
    coefficients centered. Pointwise variance is
    sin(pi x)^2 / 9 + 4/9 (x - 0.5)^2, not 1.
    """
    rng = np.random.default_rng() if rng is None else rng
    x = _default_grid() if x is None else np.asarray(x, dtype=np.float64)
    chi = rng.chisquare(1, N) - 1.0
    expo = rng.exponential(1.0, N) - 1.0
    Y = np.sqrt(2) / 6 * np.outer(np.sin(np.pi * x), chi) + 2 / 3 * np.outer(x - 0.5, expo)
    return Y * _sd_over_grid(sigma, x, x.shape)


def bernstein_sum_noise(
    N: int,
    x: np.ndarray | None = None,
    sigma: SigmaFunction | None = None,
    rng: np.random.Generator | None = None,
    rand_number: Callable[[np.random.Generator, tuple[int, int]], np.ndarray] | None = None,
) -> np.ndarray:
    """Random sum of the seven Bernstein polynomials of degree 6 on [0, 1]."""
    rng = np.random.default_rng() if rng is None else rng
    x = _default_grid() if x is None else np.asarray(x, dtype=np.float64)
    degree = 6
    f = np.column_stack(
        [stats.binom.pmf(k, degree, np.clip(x, 0.0, 1.0)) for k in range(degree + 1)]
    )
    return _normalized_basis_sum(f, N, rng, rand_number) * _sd_over_grid(sigma, x, x.shape)


def hermite_sum_noise(
    N: int,
    x: np.ndarray | None = None,
    sigma: SigmaFunction | None = None,
    rng: np.random.Generator | None = None,
    rand_number: Callable[[np.random.Generator, tuple[int, int]], np.ndarray] | None = None,
) -> np.ndarray:
    """Random sum of the first five physicists' Hermite polynomials at 3x."""
    rng = np.random.default_rng() if rng is None else rng
    x = _default_grid() if x is None else np.asarray(x, dtype=np.float64)
    f = np.polynomial.hermite.hermvander(3.0 * x, 4)
    return _normalized_basis_sum(f, N, rng, rand_number) * _sd_over_grid(sigma, x, x.shape)


def arb_cov_noise(
    N: int,
    x: np.ndarray | None = None,
    sigma: SigmaFunction | None = None,
    rng: np.random.Generator | None = None,
    cov_fun: Callable[[np.ndarray, np.ndarray], np.ndarray] | None = None,
) -> np.ndarray:
    """
    Gaussian field with an arbitrary covariance function.

    Parameters
    ----------
    cov_fun : Callable, optional
        Vectorized covariance (s, t) -> C(s, t). Defaults to the squared
        exponential exp(-(s - t)^2 / 64).
    """
    rng = np.random.default_rng() if rng is None else rng
    x = _default_grid() if x is None else np.asarray(x, dtype=np.float64)
    if cov_fun is None:
        def cov_fun(s, t):
            return np.exp(-((s - t) ** 2) / 4 / 4**2)

    cov = cov_fun(x[:, None], x[None, :])
    # SVD tolerates the numerically singular covariances of smooth kernels
    Y = rng.multivariate_normal(np.zeros(x.size), cov, size=N, method="svd").T
    return Y * _sd_over_grid(sigma, x, x.shape)


def squared_exp_1d_noise(
    N: int,
    x: np.ndarray | None = None,
    sigma: SigmaFunction | None = None,
    rng: np.random.Generator | None = None,
    nu: float = 0.05,
) -> np.ndarray:
    """Gaussian field with covariance exp(-(s - t)^2 / (2 nu^2))."""
    if nu <= 0:
        raise ParameterRangeError(f"nu must be positive, got {nu}")

    def cov_fun(s, t):
        return np.exp(-((s - t) ** 2) / 2 / nu**2)

    return arb_cov_noise(N, x, sigma=sigma, rng=rng, cov_fun=cov_fun)


# =============================================================================
# 2-D noise fields
# =============================================================================


def squared_exp_2d_noise(
    N: int,
    x: np.ndarray | None = None,
    sigma: SigmaFunction | None = None,
    rng: np.random.Generator | None = None,
    nu: float = 5.0,
) -> np.ndarray:
    """
    Isotropic 2-D Gaussian field obtained by smoothing white noise.

    White noise on a padded (K + 2a) x (K + 2a) pixel grid, a = 4 nu, is
    convolved with a Gaussian kernel of bandwidth ``nu`` pixels and scaled by
    2 nu sqrt(pi) to unit variance. The grid ``x`` (default 1..50) only sets
    the size K and is passed to ``sigma``.
    """
    if nu <= 0:
        raise ParameterRangeError(f"nu must be positive, got {nu}")
    rng = np.random.default_rng() if rng is None else rng
    x = np.arange(1.0, 51.0) if x is None else np.asarray(x, dtype=np.float64)
    K = x.size
    pad = int(np.ceil(4 * nu))

    white = rng.standard_normal((K + 2 * pad, K + 2 * pad, N))
    smooth = gaussian_filter(white, sigma=(nu, nu, 0), mode="constant")
    Y = smooth[pad : pad + K, pad : pad + K] * 2 * nu * np.sqrt(np.pi)
    return Y * _sd_over_grid(sigma, x, (K, K))


def gauss_density_sum_2d_noise(
    N: int,
    x: np.ndarray | None = None,
    sigma: SigmaFunction | None = None,
    rng: np.random.Generator | None = None,
    M: int = 6,
    bdx: float = 0.02,
    anchor_sd: float = 0.1,
    rand_number: Callable[[np.random.Generator, tuple[int, int]], np.ndarray] | None = None,
) -> np.ndarray:
    """
    Random sum of M^2 isotropic Gaussian bumps on the square grid x times x.

    Parameters
    ----------
    M : int
        Bumps per axis; centers form an M x M grid spanning
        [min(x) + bdx, max(x) - bdx] along each axis.
    bdx : float
        Inset of the outermost centers from the border of the domain.
    anchor_sd : float
        Standard deviation of every bump.
    """
    rng = np.random.default_rng() if rng is None else rng
    x = _default_grid(50) if x is None else np.asarray(x, dtype=np.float64)
    K = x.size
    centers_1d = np.linspace(x.min() + bdx, x.max() - bdx, M)
    cs, ct = np.meshgrid(centers_1d, centers_1d, indexing="ij")
    s, t = np.meshgrid(x, x, indexing="ij")

    dist = np.hypot(
        s.reshape(-1, 1) - cs.reshape(1, -1), t.reshape(-1, 1) - ct.reshape(1, -1)
    )
    f = stats.norm.pdf(dist, scale=anchor_sd)
    Y = _normalized_basis_sum(f, N, rng, rand_number).reshape(K, K, N)
    return Y * _sd_over_grid(sigma, x, (K, K))


NOISE_GENERATORS: dict[str, Callable[..., np.ndarray]] = {
    "sin_cos": sin_cos_sum_noise,
    "gauss_density": gauss_density_sum_noise,
    "ou": ou_noise,
    "degras": degras_nongauss_noise,
    "bernstein": bernstein_sum_noise,
    "hermite": hermite_sum_noise,
    "arb_cov": arb_cov_noise,
    "squared_exp_1d": squared_exp_1d_noise,
    "squared_exp_2d": squared_exp_2d_noise,
    "gauss_density_2d": gauss_density_sum_2d_noise,
}

TWO_D_GENERATORS = ("squared_exp_2d", "gauss_density_2d")


def functional_data_sample(
    N: int,
    x: np.ndarray | None = None,
    mu: Callable[[np.ndarray], np.ndarray | float] | None = None,
    noise: Callable[..., np.ndarray] = sin_cos_sum_noise,
    sigma: SigmaFunction | None = None,
    sd_obs_noise: float = 0.0,
    rng: np.random.Generator | None = None,
    **noise_kwargs,
) -> np.ndarray:
    """
    Sample of the signal plus noise model Y = mu(x) + sigma(x) Z + eps.

    Parameters
    ----------
    N : int
        Number of realizations.
    x : np.ndarray, optional
        Grid passed to ``mu``, ``noise`` and ``sigma``.
    mu : Callable, optional
        Population mean on the grid. Defaults to 0.
    noise : Callable
        Noise generator, e.g. one of ``NOISE_GENERATORS``.
    sigma : Callable, optional
        Pointwise standard deviation of the noise field.
    sd_obs_noise : float
        Standard deviation of independent Gaussian observation noise.
    rng : np.random.Generator, optional
        Random number generator.
    **noise_kwargs
        Extra parameters of the noise generator.

    Returns
    -------
    np.ndarray
        Sample with realizations along the last axis.
    """
    if N < 1:
        raise ParameterRangeError(f"N must be positive, got {N}")
    if sd_obs_noise < 0:
        raise ParameterRangeError(f"sd_obs_noise must be >= 0, got {sd_obs_noise}")
    rng = np.random.default_rng() if rng is None else rng

    Y = noise(N, x, sigma=sigma, rng=rng, **noise_kwargs)
    if mu is not None:
        grid = _default_grid() if x is None else np.asarray(x, dtype=np.float64)
        Y = Y + np.broadcast_to(np.asarray(mu(grid), dtype=np.float64), Y.shape[:-1])[..., None]
    if sd_obs_noise > 0:
        Y = Y + rng.normal(0.0, sd_obs_noise, Y.shape)
    return Y


# =============================================================================
# Data generating processes for coverage studies
# =============================================================================


@dataclass
class FieldDGP:
    """
    Functional data generating process with known population mean.

    Parameters
    ----------
    generator : Callable
        Function with signature (N, rng) -> sample of shape (..., N)
    true_mean : np.ndarray
        Population mean on the grid
    x : np.ndarray
        Grid the sample is observed on
    true_sd : np.ndarray, optional
        Population pointwise standard deviation. If None, will be estimated
        via Monte Carlo when needed.
    name : str
        Human-readable name for this DGP
    description : str
        Description of what makes this DGP interesting
    """

    generator: Callable[[int, np.random.Generator], np.ndarray]
    true_mean: np.ndarray
    x: np.ndarray
    true_sd: np.ndarray | None = None
    name: str = ""
    description: str = ""
    _estimated_sd_cache: np.ndarray | None = field(default=None, repr=False, init=False)

    def sample(self, N: int, rng: np.random.Generator | None = None) -> np.ndarray:
        """Generate a sample of N realizations."""
        if rng is None:
            rng = np.random.default_rng()
        return self.generator(N, rng)

    def get_true_sd(
        self, n_samples: int = 20_000, rng: np.random.Generator | None = None
    ) -> np.ndarray:
        """Population pointwise standard deviation, analytic or Monte Carlo."""
        if self.true_sd is not None:
            return self.true_sd
        if self._estimated_sd_cache is None:
            self._estimated_sd_cache = self.sample(n_samples, rng).std(axis=-1, ddof=1)
        return self._estimated_sd_cache

    def get_true_snr(
        self, n_samples: int = 20_000, rng: np.random.Generator | None = None
    ) -> np.ndarray:
        return self.true_mean / self.get_true_sd(n_samples, rng)


def make_field_dgp(
    noise: str = "sin_cos",
    x: np.ndarray | None = None,
    mu: Callable[[np.ndarray], np.ndarray | float] | None = None,
    sigma: SigmaFunction | None = None,
    sd_obs_noise: float = 0.0,
    name: str | None = None,
    **noise_kwargs,
) -> FieldDGP:
    """
    Wrap a named noise generator and a mean function into a FieldDGP.

    The true standard deviation is analytic for the unit-variance generators
    and left to Monte Carlo for the Degras process and custom covariances.
    """
    if noise not in NOISE_GENERATORS:
        raise ParameterRangeError(
            f"Unknown noise generator {noise!r}; choose one of {sorted(NOISE_GENERATORS)}"
        )
    generator_fn = NOISE_GENERATORS[noise]
    two_d = noise in TWO_D_GENERATORS
    if x is None and noise == "squared_exp_2d":
        x = np.arange(1.0, 51.0)
    elif x is None:
        x = _default_grid(50 if two_d else 100)
    x = np.asarray(x, dtype=np.float64)
    shape = (x.size, x.size) if two_d else x.shape

    true_mean = np.zeros(shape)
    if mu is not None:
        true_mean = true_mean + np.asarray(mu(x), dtype=np.float64)

    true_sd = None
    if noise not in ("degras", "arb_cov"):
        true_sd = np.sqrt(_sd_over_grid(sigma, x, shape)[..., 0] ** 2 + sd_obs_noise**2)

    def generator(N, rng):
        return functional_data_sample(
            N,
            x,
            mu=mu,
            noise=generator_fn,
            sigma=sigma,
            sd_obs_noise=sd_obs_noise,
            rng=rng,
            **noise_kwargs,
        )

    return FieldDGP(
        generator=generator,
        true_mean=true_mean,
        x=x,
        true_sd=true_sd,
        name=name or noise,
        description=f"{noise} noise, {'2-D' if two_d else '1-D'} grid of {x.size} points",
    )


def get_standard_field_dgps(x: np.ndarray | None = None) -> dict[str, FieldDGP]:
    """
    Standard set of 1-D DGPs for coverage studies.

    Returns
    -------
    dict
        Mapping from short name to FieldDGP
    """
    x = _default_grid() if x is None else np.asarray(x, dtype=np.float64)

    def sine_mean(t):
        return np.sin(4 * np.pi * t) * np.exp(-3 * t)

    def hetero_sd(t):
        return (1.5 - t) / 1.5

    dgps = {
        "sin_cos": make_field_dgp("sin_cos", x),
        "gauss_density": make_field_dgp("gauss_density", x, mu=sine_mean),
        "gauss_density_hetero": make_field_dgp(
            "gauss_density", x, mu=sine_mean, sigma=hetero_sd, name="gauss_density_hetero"
        ),
        "squared_exp": make_field_dgp("squared_exp_1d", x, name="squared_exp", nu=0.1),
        "bernstein": make_field_dgp("bernstein", x),
        "hermite": make_field_dgp("hermite", x),
        "ou": make_field_dgp("ou", x),
        "degras": make_field_dgp("degras", x, mu=sine_mean),
    }
    return dgps
