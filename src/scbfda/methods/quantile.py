"""Critical values for simultaneous confidence bands.

Four interchangeable strategies estimate the (1 - alpha) quantile of the
supremum of the absolute limiting field of a statistic:

- GKF / tGKF: Gaussian Kinematic Formula with Gaussian or Student-t Euler
  characteristic densities and curvatures estimated from the residuals.
- NonParametricBootstrap: resampling of realizations with replacement.
- MultiplierBootstrap: random sign/Gaussian perturbation of the residuals.

Bootstrap replicates are split into independent batches, each drawing from
its own random stream spawned from the configured seed. The result is
therefore identical whether the batches run sequentially or on a thread
pool, and a run can be cancelled between batches.
"""

import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Protocol

import numpy as np
import torch
from numpy.typing import NDArray
from torch import Tensor

from ..errors import BootstrapCancelledError, NumericalError
from .config import QuantileConfig, QuantileMethod
from .ec_density import gkf_quantile
from .method_utils import block_slices, numpy_to_torch, torch_to_numpy
from .residuals import ResidualField


@dataclass(frozen=True)
class QuantileEstimate:
    """Critical value together with the quantities it was derived from.

    Attributes:
        q: Critical value (>= 0).
        lkc: Curvatures L_0..L_D used by the GKF family, else None.
        maxima: Bootstrap distribution of the supremum, else None.
    """

    q: float
    lkc: NDArray | None = None
    maxima: NDArray | None = None


class QuantileEstimator(Protocol):
    """Protocol for a quantile strategy."""

    def estimate(
        self, residuals: ResidualField, config: QuantileConfig, df: float | None = None
    ) -> QuantileEstimate:
        ...


# =============================================================================
# Gaussian Kinematic Formula
# =============================================================================


class GKFQuantile:
    """GKF approximation for Gaussian limiting fields."""

    field = "gauss"

    def estimate_lkc(self, residuals: ResidualField, config: QuantileConfig) -> NDArray:
        """Return L_0..L_D with L_0 taken from the configuration."""
        subdivision = residuals.subdivision if residuals.n_blocks > 1 else None
        estimated = np.atleast_1d(
            np.asarray(
                config.lkc_estimator.estimate(residuals.values, subdivision),
                dtype=np.float64,
            )
        )
        if estimated.shape != (residuals.dim,):
            raise NumericalError(
                f"Curvature estimator returned {estimated.shape[0]} values for a "
                f"{residuals.dim}-D domain",
                method=config.method.value,
                stage="lkc",
            )
        return np.concatenate([[float(config.L0)], estimated])

    def estimate(
        self, residuals: ResidualField, config: QuantileConfig, df: float | None = None
    ) -> QuantileEstimate:
        lkc = self.estimate_lkc(residuals, config)
        q = gkf_quantile(
            config.alpha,
            lkc,
            field=self.field,
            df=df if self.field == "t" else None,
            method=config.method.value,
        )
        return QuantileEstimate(q=q, lkc=lkc)


class TGKFQuantile(GKFQuantile):
    """GKF approximation using Student-t Euler characteristic densities."""

    field = "t"

    def estimate(
        self, residuals: ResidualField, config: QuantileConfig, df: float | None = None
    ) -> QuantileEstimate:
        if df is None:
            raise NumericalError(
                "tGKF needs the degrees of freedom of the statistic",
                method=config.method.value,
                stage="root_find",
            )
        return super().estimate(residuals, config, df)


# =============================================================================
# Bootstrap
# =============================================================================


def _studentized_maxima(numerator: Tensor, variance: Tensor) -> Tensor:
    """Max over grid points of |numerator| / sqrt(variance), per replicate.

    Args:
        numerator: (n_points, n_replicates) pivot numerators.
        variance: Pointwise variances, (n_points, n_replicates) or (n_points, 1).
    """
    positive = variance > 0
    sd = torch.sqrt(torch.where(positive, variance, torch.ones_like(variance)))
    stat = torch.where(positive, torch.abs(numerator) / sd, torch.zeros_like(numerator))
    return torch.max(stat, dim=0).values


class _BootstrapQuantile:
    """Shared batching, seeding and cancellation of bootstrap strategies."""

    device = torch.device("cpu")

    def _replicates(
        self, blocks: list[Tensor], n_rep: int, generator: torch.Generator, config: QuantileConfig
    ) -> Tensor:
        raise NotImplementedError

    def estimate(
        self, residuals: ResidualField, config: QuantileConfig, df: float | None = None
    ) -> QuantileEstimate:
        method = config.method.value
        if config.mboots * config.alpha < 1:
            raise NumericalError(
                f"Mboots={config.mboots} replicates cannot resolve a tail of "
                f"probability alpha={config.alpha:.4g}",
                method=method,
                stage="bootstrap",
            )

        # Flatten the grid: (n_points, n_realizations)
        flat = residuals.values.reshape(-1, residuals.values.shape[-1])
        R = numpy_to_torch(flat, self.device).to(torch.float64)
        blocks = [R[:, s] for s in block_slices(residuals.subdivision)]

        sizes = [config.batch_size] * (config.mboots // config.batch_size)
        if config.mboots % config.batch_size:
            sizes.append(config.mboots % config.batch_size)
        streams = np.random.SeedSequence(config.seed).spawn(len(sizes))

        def make_task(n_rep: int, stream: np.random.SeedSequence) -> Callable[[], Tensor]:
            def task() -> Tensor:
                generator = torch.Generator(device=self.device)
                generator.manual_seed(int(stream.generate_state(1, dtype=np.uint64)[0] >> 1))
                return self._replicates(blocks, n_rep, generator, config)

            return task

        tasks = [make_task(n, s) for n, s in zip(sizes, streams)]
        maxima = torch_to_numpy(torch.cat(_run_batches(tasks, config)))

        if not np.all(np.isfinite(maxima)):
            raise NumericalError(
                "Bootstrap distribution of the maximum is not finite",
                method=method,
                stage="bootstrap",
            )

        q = float(np.quantile(maxima, 1.0 - config.alpha, method="median_unbiased"))
        return QuantileEstimate(q=q, maxima=maxima)


def _run_batches(tasks: list[Callable[[], Tensor]], config: QuantileConfig) -> list[Tensor]:
    """Run bootstrap batches, sequentially or on a thread pool.

    Cancellation and timeout are checked before each batch starts. A
    cancelled run raises and discards every finished batch.
    """
    deadline = None if config.timeout is None else time.monotonic() + config.timeout
    method = config.method.value

    def cancelled() -> bool:
        if config.cancel_event is not None and config.cancel_event.is_set():
            return True
        return deadline is not None and time.monotonic() > deadline

    def cancel_error() -> BootstrapCancelledError:
        return BootstrapCancelledError(
            "Bootstrap run cancelled before all replicates finished",
            method=method,
            stage="bootstrap",
        )

    results: list[Tensor | None] = [None] * len(tasks)

    if config.n_jobs == 1:
        for i, task in enumerate(tasks):
            if cancelled():
                raise cancel_error()
            results[i] = task()
        return results

    def guarded(task: Callable[[], Tensor]) -> Tensor | None:
        if cancelled():
            return None
        return task()

    with ThreadPoolExecutor(max_workers=config.n_jobs) as executor:
        futures = {executor.submit(guarded, task): i for i, task in enumerate(tasks)}
        for future in as_completed(futures):
            out = future.result()
            if out is None:
                for pending in futures:
                    pending.cancel()
                raise cancel_error()
            results[futures[future]] = out
    return results


class NonParametricBootstrapQuantile(_BootstrapQuantile):
    """Resample realizations with replacement within each independent block.

    Each replicate evaluates
    sup_t |sum_b +-sqrt(N_b) (mean*_b(t) - mean_b(t))| / sd(t), where sd is
    the replicate's own block-weighted standard deviation (``"t"``) or the
    sample one (``"regular"``).
    """

    def _replicates(
        self, blocks: list[Tensor], n_rep: int, generator: torch.Generator, config: QuantileConfig
    ) -> Tensor:
        numerator = 0.0
        variance = 0.0
        for b, Rb in enumerate(blocks):
            n_b = Rb.shape[1]
            idx = torch.randint(0, n_b, (n_rep, n_b), generator=generator, device=Rb.device)
            # Resampling counts avoid materializing (n_points, n_rep, n_b)
            counts = torch.zeros((n_rep, n_b), dtype=Rb.dtype, device=Rb.device)
            counts.scatter_add_(1, idx, torch.ones_like(counts))

            mean_star = Rb @ counts.T / n_b
            mean_b = Rb.mean(dim=1, keepdim=True)
            sign = 1.0 if b == 0 else -1.0
            numerator = numerator + sign * np.sqrt(n_b) * (mean_star - mean_b)

            if config.bootstrap_variant != "regular":
                second = (Rb**2) @ counts.T / n_b
                variance = variance + (second - mean_star**2) * n_b / (n_b - 1)
            else:
                variance = variance + Rb.var(dim=1, keepdim=True)

        return _studentized_maxima(numerator, variance)


class MultiplierBootstrapQuantile(_BootstrapQuantile):
    """Perturb residuals by independent Gaussian or Rademacher multipliers.

    Each replicate evaluates
    sup_t |sum_b +-N_b^(-1/2) sum_i g_i R_bi(t)| / sd(t), where sd is the
    multiplier-weighted standard deviation (``"t"``) or the sample one
    (``"regular"``).
    """

    def _replicates(
        self, blocks: list[Tensor], n_rep: int, generator: torch.Generator, config: QuantileConfig
    ) -> Tensor:
        numerator = 0.0
        variance = 0.0
        for b, Rb in enumerate(blocks):
            n_b = Rb.shape[1]
            if config.multiplier == "gaussian":
                g = torch.randn(
                    (n_rep, n_b), generator=generator, dtype=Rb.dtype, device=Rb.device
                )
            else:
                g = torch.randint(
                    0, 2, (n_rep, n_b), generator=generator, device=Rb.device
                ).to(Rb.dtype) * 2.0 - 1.0

            weighted_sum = Rb @ g.T
            sign = 1.0 if b == 0 else -1.0
            numerator = numerator + sign * weighted_sum / np.sqrt(n_b)

            if config.bootstrap_variant != "regular":
                mean_g = weighted_sum / n_b
                second = (Rb**2) @ (g**2).T / n_b
                variance = variance + (second - mean_g**2) * n_b / (n_b - 1)
            else:
                variance = variance + Rb.var(dim=1, keepdim=True)

        return _studentized_maxima(numerator, variance)


_STRATEGIES: dict[QuantileMethod, type] = {
    QuantileMethod.GKF: GKFQuantile,
    QuantileMethod.TGKF: TGKFQuantile,
    QuantileMethod.NONPARAMETRIC_BOOTSTRAP: NonParametricBootstrapQuantile,
    QuantileMethod.MULTIPLIER_BOOTSTRAP: MultiplierBootstrapQuantile,
}


def get_quantile_estimator(method: QuantileMethod) -> QuantileEstimator:
    """Return the strategy implementing a quantile method."""
    return _STRATEGIES[method]()


def estimate_quantile(
    residuals: ResidualField, config: QuantileConfig, df: float | None = None
) -> QuantileEstimate:
    """Estimate the critical value for a residual field under a configuration."""
    return get_quantile_estimator(config.method).estimate(residuals, config, df)
