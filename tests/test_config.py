"""
Unit tests for quantile method configuration.

Critical behaviors tested:
1. Defaults are filled in for missing options
2. Legacy option names are accepted as aliases
3. Invalid levels, methods and option values fail fast with typed errors
4. Plain functions are wrapped as curvature estimators
"""

import threading

import pytest

from scbfda.errors import ParameterRangeError, UnsupportedMethodError
from scbfda.methods.config import (
    QuantileConfig,
    QuantileMethod,
    check_level,
    resolve_method,
    resolve_quantile_config,
)
from scbfda.methods.lkc import CallableLKCEstimator, DirectLKCEstimator


class TestQuantileMethod:
    """Test method tags."""

    @pytest.mark.parametrize(
        "tag,expected",
        [
            ("tGKF", QuantileMethod.TGKF),
            ("GKF", QuantileMethod.GKF),
            ("NonParametricBootstrap", QuantileMethod.NONPARAMETRIC_BOOTSTRAP),
            ("MultiplierBootstrap", QuantileMethod.MULTIPLIER_BOOTSTRAP),
            (QuantileMethod.GKF, QuantileMethod.GKF),
        ],
        ids=["tgkf", "gkf", "npb", "mb", "enum"],
    )
    def test_resolve(self, tag, expected):
        assert resolve_method(tag) is expected

    def test_families(self):
        assert QuantileMethod.TGKF.is_gkf
        assert QuantileMethod.MULTIPLIER_BOOTSTRAP.is_bootstrap
        assert not QuantileMethod.GKF.is_bootstrap

    @pytest.mark.parametrize("tag", ["gkf", "KR", "", "bootstrap"])
    def test_unknown_method_raises(self, tag):
        with pytest.raises(UnsupportedMethodError, match="Unknown quantile method"):
            resolve_method(tag)


class TestLevel:
    @pytest.mark.parametrize("level", [0.5, 0.9, 0.95, 0.999])
    def test_valid(self, level):
        assert check_level(level) == level

    @pytest.mark.parametrize(
        "level",
        [0, 1, 1.2, -0.1, float("nan"), "0.95", True, None],
        ids=["zero", "one", "above", "negative", "nan", "string", "bool", "none"],
    )
    def test_invalid(self, level):
        with pytest.raises(ParameterRangeError, match="level"):
            check_level(level)


class TestResolveQuantileConfig:
    """Test option validation and defaults."""

    def test_defaults(self):
        cfg = resolve_quantile_config("tGKF", 0.95)

        assert isinstance(cfg, QuantileConfig)
        assert cfg.method is QuantileMethod.TGKF
        assert cfg.alpha == pytest.approx(0.05)
        assert cfg.level == pytest.approx(0.95)
        assert cfg.L0 == 1
        assert isinstance(cfg.lkc_estimator, DirectLKCEstimator)
        assert cfg.mboots == 5000
        assert cfg.bootstrap_variant is None
        assert cfg.multiplier == "gaussian"
        assert cfg.seed is None
        assert cfg.n_jobs == 1
        assert cfg.timeout is None
        assert cfg.cancel_event is None

    def test_aliases(self):
        """Verify both option spellings map to the same field."""
        a = resolve_quantile_config("MultiplierBootstrap", 0.9, {"Mboots": 100})
        b = resolve_quantile_config("MultiplierBootstrap", 0.9, {"mboots": 100})
        assert a.mboots == b.mboots == 100

    def test_all_options(self):
        event = threading.Event()
        cfg = resolve_quantile_config(
            "NonParametricBootstrap",
            0.9,
            {
                "L0": 2,
                "Mboots": 200,
                "bootstrap_variant": "regular",
                "multiplier": "rademacher",
                "seed": 7,
                "n_jobs": 4,
                "batch_size": 50,
                "timeout": 2.5,
                "cancel_event": event,
            },
        )
        assert cfg.L0 == 2
        assert cfg.mboots == 200
        assert cfg.bootstrap_variant == "regular"
        assert cfg.multiplier == "rademacher"
        assert cfg.seed == 7
        assert cfg.n_jobs == 4
        assert cfg.batch_size == 50
        assert cfg.timeout == 2.5
        assert cfg.cancel_event is event

    def test_integer_valued_float_accepted(self):
        cfg = resolve_quantile_config("MultiplierBootstrap", 0.95, {"Mboots": 300.0})
        assert cfg.mboots == 300
        assert isinstance(cfg.mboots, int)

    def test_callable_lkc_estimator_is_wrapped(self):
        def constant_lkc(R):
            return [1.0]

        cfg = resolve_quantile_config("GKF", 0.95, {"LKC_estim": constant_lkc})
        assert isinstance(cfg.lkc_estimator, CallableLKCEstimator)

    def test_estimator_object_kept(self):
        estimator = DirectLKCEstimator()
        cfg = resolve_quantile_config("GKF", 0.95, {"lkc_estimator": estimator})
        assert cfg.lkc_estimator is estimator

    def test_config_is_frozen(self):
        cfg = resolve_quantile_config("GKF", 0.95)
        with pytest.raises(AttributeError):
            cfg.alpha = 0.1

    def test_unknown_key_raises(self):
        with pytest.raises(ParameterRangeError, match="Unknown entries"):
            resolve_quantile_config("GKF", 0.95, {"Mbots": 100})

    def test_non_mapping_raises(self):
        with pytest.raises(ParameterRangeError, match="mapping"):
            resolve_quantile_config("GKF", 0.95, [("Mboots", 100)])

    def test_unknown_method_raises_before_options(self):
        with pytest.raises(UnsupportedMethodError):
            resolve_quantile_config("bogus", 0.95, {"Mboots": -1})

    @pytest.mark.parametrize(
        "options",
        [
            {"Mboots": 0},
            {"Mboots": 10.5},
            {"Mboots": True},
            {"L0": -1},
            {"L0": "1"},
            {"bootstrap_variant": "studentized"},
            {"multiplier": "poisson"},
            {"seed": -3},
            {"n_jobs": 0},
            {"batch_size": 0},
            {"timeout": 0},
            {"timeout": -1.0},
            {"cancel_event": object()},
            {"LKC_estim": 3.0},
        ],
        ids=[
            "mboots_zero",
            "mboots_fraction",
            "mboots_bool",
            "l0_negative",
            "l0_string",
            "variant",
            "multiplier",
            "seed_negative",
            "n_jobs_zero",
            "batch_size_zero",
            "timeout_zero",
            "timeout_negative",
            "cancel_event",
            "lkc_estimator",
        ],
    )
    def test_invalid_option_raises(self, options):
        with pytest.raises(ParameterRangeError):
            resolve_quantile_config("MultiplierBootstrap", 0.95, options)

    def test_none_options_take_defaults(self):
        cfg = resolve_quantile_config(
            "MultiplierBootstrap", 0.95, {"seed": None, "timeout": None}
        )
        assert cfg.seed is None
        assert cfg.timeout is None
