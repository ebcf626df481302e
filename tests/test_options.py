"""Tests for splitting caller keyword arguments into options and parameters."""

import numpy as np
import pytest

from knitro_jax import KnitroOptions


class TestFromKwargs:
    def test_reserved_options(self):
        cb = lambda session, x, lambda_: 0  # noqa: E731
        options = KnitroOptions.from_kwargs(
            x0=[1.0, 2.0], y0=[3.0], z0=np.zeros(2), callback=cb, outlev=0
        )
        np.testing.assert_array_equal(options.x0, [1.0, 2.0])
        np.testing.assert_array_equal(options.y0, [3.0])
        np.testing.assert_array_equal(options.z0, [0.0, 0.0])
        assert options.callback is cb
        assert options.params == {"outlev": 0}

    def test_parameters_keep_their_order(self):
        options = KnitroOptions.from_kwargs(presolve=0, opttol=1e-12, outlev=0)
        assert list(options.params) == ["presolve", "opttol", "outlev"]

    def test_numpy_scalars_are_unwrapped(self):
        options = KnitroOptions.from_kwargs(maxit=np.int64(10), feastol=np.float64(1e-6))
        assert type(options.params["maxit"]) is int
        assert type(options.params["feastol"]) is float

    def test_string_and_bool_parameters(self):
        options = KnitroOptions.from_kwargs(algorithm="direct", ms_enable=True)
        assert options.params == {"algorithm": "direct", "ms_enable": True}

    def test_unsupported_parameter_type(self):
        with pytest.raises(TypeError, match="'opttol'"):
            KnitroOptions.from_kwargs(opttol=[1e-8])

    def test_callback_must_be_callable(self):
        with pytest.raises(TypeError, match="callable"):
            KnitroOptions.from_kwargs(callback=3)

    def test_defaults(self):
        options = KnitroOptions.from_kwargs()
        assert options.x0 is None
        assert options.y0 is None
        assert options.z0 is None
        assert options.callback is None
        assert options.params == {}


class TestValidate:
    def test_matching_lengths(self):
        KnitroOptions.from_kwargs(x0=np.ones(3), y0=np.ones(2), z0=np.ones(3)).validate(3, 2)

    @pytest.mark.parametrize(
        "kwargs, name",
        [
            ({"x0": np.ones(2)}, "x0"),
            ({"y0": np.ones(3)}, "y0"),
            ({"z0": np.ones(4)}, "z0"),
        ],
    )
    def test_wrong_lengths(self, kwargs, name):
        with pytest.raises(ValueError, match=f"{name} must have length"):
            KnitroOptions.from_kwargs(**kwargs).validate(3, 2)
