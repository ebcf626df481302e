"""Tests for least-squares models and their feasibility form."""

import jax
import jax.numpy as jnp
import numpy as np
import pytest

from knitro_jax import AbstractADModel, ADNLPModel, ADNLSModel, NLSMeta, feasibility_form

# Enable 64-bit precision for numerical accuracy
jax.config.update("jax_enable_x64", True)


def rosenbrock_residual(x):
    return jnp.array([x[0] - 1, 10 * (x[1] - x[0] ** 2)])


def chain_residual(x):
    n = x.shape[0]
    return jnp.concatenate([10 * (x[1:] - x[:-1] ** 2), x[: n - 1] - 1])


def quadratic_constraints(x):
    return jnp.array([jnp.sum(x**2) - 5, jnp.prod(x) - 2])


@pytest.fixture
def constrained_nls():
    return ADNLSModel(
        chain_residual,
        [0.5, 1.0, 1.5],
        4,
        lvar=[1.0, 1.0, 1.0],
        uvar=[np.inf, np.inf, np.inf],
        c=quadratic_constraints,
        lcon=np.zeros(2),
        ucon=np.zeros(2),
        name="chain",
    )


class TestNLSMeta:
    def test_dense_jacobian_default(self):
        meta = NLSMeta(4, 3)
        assert meta.nequ == 4
        assert meta.nvar == 3
        assert meta.nnzj == 12

    def test_negative_size(self):
        with pytest.raises(ValueError):
            NLSMeta(-1, 3)


class TestADNLSModel:
    def test_residual_and_jacobian(self):
        nls = ADNLSModel(rosenbrock_residual, [-1.2, 1.0], 2)
        x = np.array([-1.2, 1.0])
        np.testing.assert_allclose(nls.residual(x), [-2.2, -4.4], rtol=1e-12)
        rows, cols = nls.jac_structure_residual()
        J = np.zeros((2, 2))
        J[rows - 1, cols - 1] = nls.jac_coord_residual(x)
        np.testing.assert_allclose(J, [[1.0, 0.0], [24.0, 10.0]], rtol=1e-12)

    def test_objective_is_half_squared_norm(self):
        nls = ADNLSModel(rosenbrock_residual, [-1.2, 1.0], 2)
        x = np.array([-1.2, 1.0])
        assert nls.obj(x) == pytest.approx(0.5 * (2.2**2 + 4.4**2))
        # ∇f = Jᵀ F
        np.testing.assert_allclose(
            nls.grad(x), [1.0 * -2.2 + 24.0 * -4.4, 10.0 * -4.4], rtol=1e-12
        )

    def test_general_interface_without_constraints(self):
        nls = ADNLSModel(rosenbrock_residual, [-1.2, 1.0], 2)
        assert nls.meta.ncon == 0
        assert nls.cons(np.zeros(2)).shape == (0,)
        assert nls.hess_coord(np.zeros(2)).shape == (3,)

    def test_matches_general_model_of_same_objective(self, constrained_nls):
        nlp = ADNLPModel(
            lambda x: 0.5 * jnp.sum(chain_residual(x) ** 2),
            [0.5, 1.0, 1.5],
            c=quadratic_constraints,
            lcon=np.zeros(2),
            ucon=np.zeros(2),
        )
        assert isinstance(constrained_nls, AbstractADModel)
        x = np.array([1.1, 1.2, 1.5])
        y = np.array([0.3, -2.0])
        v = np.array([1.0, -1.0, 2.0])
        tol = {"rtol": 1e-12, "atol": 1e-10}
        np.testing.assert_allclose(constrained_nls.grad(x), nlp.grad(x), **tol)
        np.testing.assert_allclose(constrained_nls.jac_coord(x), nlp.jac_coord(x), **tol)
        np.testing.assert_allclose(
            constrained_nls.hess_coord(x, y, obj_weight=2.0),
            nlp.hess_coord(x, y, obj_weight=2.0),
            **tol,
        )
        np.testing.assert_allclose(constrained_nls.hprod(x, v, y), nlp.hprod(x, v, y), **tol)

    def test_meta(self, constrained_nls):
        assert constrained_nls.meta.nvar == 3
        assert constrained_nls.meta.ncon == 2
        assert constrained_nls.nls_meta.nequ == 4
        assert constrained_nls.nls_meta.nnzj == 12

    def test_constraints_need_bounds(self):
        with pytest.raises(ValueError, match="lcon and ucon"):
            ADNLSModel(chain_residual, np.ones(3), 4, c=quadratic_constraints)


class TestFeasibilityForm:
    def test_dimensions(self, constrained_nls):
        ff = feasibility_form(constrained_nls)
        assert ff.meta.nvar == 3 + 4
        assert ff.meta.ncon == 4 + 2
        assert ff.meta.name == "chain-ffnls"
        assert ff.meta.minimize

    def test_bounds_and_start(self, constrained_nls):
        ff = feasibility_form(constrained_nls)
        x0 = np.array([0.5, 1.0, 1.5])
        r0 = np.asarray(chain_residual(x0))
        np.testing.assert_allclose(ff.meta.x0, np.concatenate([x0, r0]))
        np.testing.assert_array_equal(ff.meta.lvar[:3], np.ones(3))
        assert np.all(np.isneginf(ff.meta.lvar[3:]))
        assert np.all(np.isposinf(ff.meta.uvar))
        np.testing.assert_array_equal(ff.meta.lcon, np.zeros(6))
        np.testing.assert_array_equal(ff.meta.ucon, np.zeros(6))
        np.testing.assert_array_equal(ff.meta.y0, np.zeros(6))

    def test_residual_equalities_come_first(self, constrained_nls):
        ff = feasibility_form(constrained_nls)
        x = np.array([1.0, 2.0, 3.0])
        r = np.array([0.1, 0.2, 0.3, 0.4])
        z = np.concatenate([x, r])
        expected = np.concatenate(
            [np.asarray(chain_residual(x)) - r, np.asarray(quadratic_constraints(x))]
        )
        np.testing.assert_allclose(ff.cons(z), expected, rtol=1e-12)
        assert ff.obj(z) == pytest.approx(0.5 * np.dot(r, r))

    def test_start_is_feasible_for_residual_equalities(self, constrained_nls):
        ff = feasibility_form(constrained_nls)
        np.testing.assert_allclose(ff.cons(ff.meta.x0)[:4], 0.0, atol=1e-14)

    def test_maximize_is_preserved(self):
        nls = ADNLSModel(
            lambda x: x,
            [0.5],
            1,
            c=lambda x: jnp.array([x[0]]),
            lcon=[0.0],
            ucon=[1.0],
            minimize=False,
        )
        assert not feasibility_form(nls).meta.minimize
