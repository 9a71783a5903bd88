"""Quantile method tags and validation of method-specific options.

Every ``scb_*`` entry point resolves its options through
:func:`resolve_quantile_config` before touching the data, so invalid input
fails fast and no partial computation happens.
"""

import math
import numbers
import threading
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

from ..errors import ParameterRangeError, UnsupportedMethodError
from .lkc import CallableLKCEstimator, CurvatureEstimator, DirectLKCEstimator

BootstrapVariant = Literal["t", "regular"]
MultiplierKind = Literal["gaussian", "rademacher"]

DEFAULT_L0 = 1
DEFAULT_MBOOTS = 5000
DEFAULT_BATCH_SIZE = 500


class QuantileMethod(str, Enum):
    """Strategies for the critical value of the band."""

    TGKF = "tGKF"
    GKF = "GKF"
    NONPARAMETRIC_BOOTSTRAP = "NonParametricBootstrap"
    MULTIPLIER_BOOTSTRAP = "MultiplierBootstrap"

    @property
    def is_gkf(self) -> bool:
        return self in (QuantileMethod.TGKF, QuantileMethod.GKF)

    @property
    def is_bootstrap(self) -> bool:
        return not self.is_gkf


@dataclass(frozen=True)
class QuantileConfig:
    """Validated configuration of a quantile strategy.

    Attributes:
        method: Quantile strategy.
        alpha: One minus the targeted coverage probability.
        L0: Euler characteristic of the domain (GKF family).
        lkc_estimator: Curvature estimator (GKF family).
        mboots: Number of bootstrap replicates (bootstrap family).
        bootstrap_variant: ``"t"`` studentizes each replicate by its own
            pointwise standard deviation, ``"regular"`` by the sample one.
            None defers to the default of the banded statistic.
        multiplier: Distribution of the multiplier bootstrap weights.
        seed: Seed of the bootstrap random streams.
        n_jobs: Worker threads used for bootstrap batches.
        batch_size: Replicates per bootstrap batch.
        timeout: Wall-clock limit in seconds for a bootstrap run.
        cancel_event: Event that cancels a running bootstrap when set.
    """

    method: QuantileMethod
    alpha: float
    L0: int = DEFAULT_L0
    lkc_estimator: CurvatureEstimator = field(default_factory=DirectLKCEstimator)
    mboots: int = DEFAULT_MBOOTS
    bootstrap_variant: BootstrapVariant | None = None
    multiplier: MultiplierKind = "gaussian"
    seed: int | None = None
    n_jobs: int = 1
    batch_size: int = DEFAULT_BATCH_SIZE
    timeout: float | None = None
    cancel_event: threading.Event | None = None

    @property
    def level(self) -> float:
        return 1.0 - self.alpha


_KEY_ALIASES = {
    "L0": "L0",
    "LKC_estim": "lkc_estimator",
    "lkc_estimator": "lkc_estimator",
    "Mboots": "mboots",
    "mboots": "mboots",
    "bootstrap_variant": "bootstrap_variant",
    "multiplier": "multiplier",
    "seed": "seed",
    "n_jobs": "n_jobs",
    "batch_size": "batch_size",
    "timeout": "timeout",
    "cancel_event": "cancel_event",
}


def _is_real(value: Any) -> bool:
    return isinstance(value, numbers.Real) and not isinstance(value, bool)


def _as_integer(value: Any, name: str, minimum: int) -> int:
    if not _is_real(value) or not math.isfinite(value) or value != int(value):
        raise ParameterRangeError(f"The element {name} must be an integer, got {value!r}")
    if value < minimum:
        raise ParameterRangeError(f"The element {name} must be >= {minimum}, got {value!r}")
    return int(value)


def _as_choice(value: Any, name: str, choices: tuple[str, ...]) -> str:
    if value not in choices:
        raise ParameterRangeError(f"The element {name} must be one of {choices}, got {value!r}")
    return value


def resolve_method(method: QuantileMethod | str) -> QuantileMethod:
    """Map a method tag to its enum member.

    Raises:
        UnsupportedMethodError: If the tag is not a known quantile method.
    """
    if isinstance(method, QuantileMethod):
        return method
    try:
        return QuantileMethod(method)
    except ValueError:
        valid = [m.value for m in QuantileMethod]
        raise UnsupportedMethodError(
            f"Unknown quantile method {method!r}; choose one of {valid}"
        ) from None


def check_level(level: Any) -> float:
    """Return level as float if it lies strictly between 0 and 1."""
    if not _is_real(level) or not 0 < level < 1:
        raise ParameterRangeError(
            f"The input 'level' needs to be strictly between 0 and 1, got {level!r}"
        )
    return float(level)


def resolve_quantile_config(
    method: QuantileMethod | str,
    level: float,
    param_method: Mapping[str, Any] | None = None,
) -> QuantileConfig:
    """Validate a quantile method and its options and fill in the defaults.

    Args:
        method: Quantile method tag or enum member.
        level: Targeted coverage probability, strictly between 0 and 1.
        param_method: Method-specific options. Recognized keys are ``L0``,
            ``LKC_estim`` (alias ``lkc_estimator``), ``Mboots``,
            ``bootstrap_variant``, ``multiplier``, ``seed``, ``n_jobs``,
            ``batch_size``, ``timeout`` and ``cancel_event``. Missing keys
            take their documented defaults.

    Returns:
        Frozen, validated configuration.

    Raises:
        UnsupportedMethodError: If the method is unknown.
        ParameterRangeError: If the level or any option is out of range.

    Examples:
        >>> cfg = resolve_quantile_config("MultiplierBootstrap", 0.9)
        >>> cfg.mboots, round(cfg.alpha, 2)
        (5000, 0.1)
    """
    quantile_method = resolve_method(method)
    alpha = 1.0 - check_level(level)

    if param_method is None:
        param_method = {}
    elif not isinstance(param_method, Mapping):
        raise ParameterRangeError(
            "'param_method' must be a mapping of method options or None, "
            f"got {type(param_method).__name__}"
        )

    unknown = sorted(set(param_method) - set(_KEY_ALIASES))
    if unknown:
        raise ParameterRangeError(f"Unknown entries in param_method: {unknown}")

    options = {_KEY_ALIASES[key]: value for key, value in param_method.items()}
    resolved: dict[str, Any] = {}

    if "L0" in options:
        resolved["L0"] = _as_integer(options["L0"], "L0", minimum=0)

    if "lkc_estimator" in options:
        estimator = options["lkc_estimator"]
        if hasattr(estimator, "estimate"):
            resolved["lkc_estimator"] = estimator
        elif callable(estimator):
            resolved["lkc_estimator"] = CallableLKCEstimator(estimator)
        else:
            raise ParameterRangeError(
                "The element LKC_estim must estimate the Lipschitz-Killing "
                "curvatures from the normalized residuals"
            )

    if "mboots" in options:
        resolved["mboots"] = _as_integer(options["mboots"], "Mboots", minimum=1)

    if "bootstrap_variant" in options:
        resolved["bootstrap_variant"] = _as_choice(
            options["bootstrap_variant"], "bootstrap_variant", ("t", "regular")
        )

    if "multiplier" in options:
        resolved["multiplier"] = _as_choice(
            options["multiplier"], "multiplier", ("gaussian", "rademacher")
        )

    if options.get("seed") is not None:
        resolved["seed"] = _as_integer(options["seed"], "seed", minimum=0)

    if "n_jobs" in options:
        resolved["n_jobs"] = _as_integer(options["n_jobs"], "n_jobs", minimum=1)

    if "batch_size" in options:
        resolved["batch_size"] = _as_integer(options["batch_size"], "batch_size", minimum=1)

    if options.get("timeout") is not None:
        timeout = options["timeout"]
        if not _is_real(timeout) or not timeout > 0:
            raise ParameterRangeError(f"The element timeout must be positive, got {timeout!r}")
        resolved["timeout"] = float(timeout)

    if options.get("cancel_event") is not None:
        event = options["cancel_event"]
        if not hasattr(event, "is_set"):
            raise ParameterRangeError("The element cancel_event must provide is_set()")
        resolved["cancel_event"] = event

    return QuantileConfig(method=quantile_method, alpha=alpha, **resolved)
