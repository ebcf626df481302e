"""Tests for the JAX-differentiated general model.

Derivatives are compared against hand-computed values on small problems.
"""

import jax
import jax.numpy as jnp
import numpy as np
import pytest

from knitro_jax import ADNLPModel, NLPModelMeta, dense_structure, lower_triangle_structure

# Enable 64-bit precision for numerical accuracy
jax.config.update("jax_enable_x64", True)


def rosenbrock(x):
    return (x[0] - 1) ** 2 + 100 * (x[1] - x[0] ** 2) ** 2


def rosenbrock_hessian(x):
    return np.array(
        [
            [2 - 400 * (x[1] - 3 * x[0] ** 2), -400 * x[0]],
            [-400 * x[0], 200.0],
        ]
    )


def _dense_from_tril(vals, rows, cols, n):
    H = np.zeros((n, n))
    H[rows - 1, cols - 1] = vals
    return H + H.T - np.diag(np.diag(H))


@pytest.fixture
def constrained():
    """minimize x1^2 + x2 x3  s.t.  x1 x2 = 1,  x1^2 + x3^2 <= 4."""
    return ADNLPModel(
        lambda x: x[0] ** 2 + x[1] * x[2],
        jnp.array([1.0, 2.0, 3.0]),
        c=lambda x: jnp.array([x[0] * x[1], x[0] ** 2 + x[2] ** 2]),
        lcon=[1.0, -np.inf],
        ucon=[1.0, 4.0],
    )


class TestNLPModelMeta:
    def test_defaults(self):
        meta = NLPModelMeta(3, ncon=2)
        np.testing.assert_array_equal(meta.x0, np.zeros(3))
        assert np.all(np.isneginf(meta.lvar))
        assert np.all(np.isposinf(meta.uvar))
        np.testing.assert_array_equal(meta.y0, np.zeros(2))
        assert meta.nnzj == 6
        assert meta.nnzh == 6
        assert meta.minimize
        assert meta.name == "Generic"

    def test_crossed_variable_bounds(self):
        with pytest.raises(ValueError, match="lvar"):
            NLPModelMeta(1, lvar=[1.0], uvar=[0.0])

    def test_crossed_constraint_bounds(self):
        with pytest.raises(ValueError, match="lcon"):
            NLPModelMeta(1, ncon=1, lcon=[2.0], ucon=[1.0])

    def test_wrong_length(self):
        with pytest.raises(ValueError, match="lvar"):
            NLPModelMeta(2, lvar=[0.0])


class TestStructures:
    def test_dense_structure_is_row_major(self):
        rows, cols = dense_structure(2, 3)
        np.testing.assert_array_equal(rows, [1, 1, 1, 2, 2, 2])
        np.testing.assert_array_equal(cols, [1, 2, 3, 1, 2, 3])

    def test_lower_triangle(self):
        rows, cols = lower_triangle_structure(3)
        assert rows.shape == (6,)
        assert np.all(rows >= cols)
        assert rows.min() == 1 and cols.min() == 1
        assert set(zip(rows.tolist(), cols.tolist())) == {
            (1, 1), (2, 1), (2, 2), (3, 1), (3, 2), (3, 3),
        }


class TestUnconstrainedModel:
    def test_meta(self):
        nlp = ADNLPModel(rosenbrock, [-1.2, 1.0])
        assert nlp.meta.nvar == 2
        assert nlp.meta.ncon == 0
        assert nlp.meta.nnzj == 0
        assert nlp.meta.nnzh == 3

    def test_objective_and_gradient(self):
        nlp = ADNLPModel(rosenbrock, [-1.2, 1.0])
        x = np.array([-1.2, 1.0])
        assert nlp.obj(x) == pytest.approx(24.2)
        np.testing.assert_allclose(nlp.grad(x), [-215.6, -88.0], rtol=1e-12)

    def test_no_constraints(self):
        nlp = ADNLPModel(rosenbrock, [-1.2, 1.0])
        x = np.array([0.5, 0.5])
        assert nlp.cons(x).shape == (0,)
        assert nlp.jac_coord(x).shape == (0,)
        rows, cols = nlp.jac_structure()
        assert rows.shape == (0,) and cols.shape == (0,)

    def test_hessian_lower_triangle(self):
        nlp = ADNLPModel(rosenbrock, [-1.2, 1.0])
        x = np.array([-1.2, 1.0])
        rows, cols = nlp.hess_structure()
        H = _dense_from_tril(nlp.hess_coord(x), rows, cols, 2)
        np.testing.assert_allclose(H, rosenbrock_hessian(x), rtol=1e-12)

    def test_objective_weight(self):
        nlp = ADNLPModel(rosenbrock, [-1.2, 1.0])
        x = np.array([0.3, -0.7])
        np.testing.assert_allclose(
            nlp.hess_coord(x, obj_weight=-2.0), -2.0 * nlp.hess_coord(x), rtol=1e-12
        )
        np.testing.assert_allclose(nlp.hess_coord(x, obj_weight=0.0), 0.0)

    def test_hessian_vector_product(self):
        nlp = ADNLPModel(rosenbrock, [-1.2, 1.0])
        x = np.array([-1.2, 1.0])
        v = np.array([0.5, -2.0])
        np.testing.assert_allclose(nlp.hprod(x, v), rosenbrock_hessian(x) @ v, rtol=1e-12)


class TestConstrainedModel:
    def test_meta(self, constrained):
        meta = constrained.meta
        assert meta.nvar == 3
        assert meta.ncon == 2
        assert meta.nnzj == 6
        assert meta.nnzh == 6
        assert np.isneginf(meta.lcon[1])

    def test_constraints_and_jacobian(self, constrained):
        x = np.array([1.0, 2.0, 3.0])
        np.testing.assert_allclose(constrained.cons(x), [2.0, 10.0])
        rows, cols = constrained.jac_structure()
        J = np.zeros((2, 3))
        J[rows - 1, cols - 1] = constrained.jac_coord(x)
        np.testing.assert_allclose(J, [[2.0, 1.0, 0.0], [2.0, 0.0, 6.0]])

    def test_lagrangian_hessian(self, constrained):
        x = np.array([1.0, 2.0, 3.0])
        y = np.array([0.5, -1.5])
        rows, cols = constrained.hess_structure()
        H = _dense_from_tril(constrained.hess_coord(x, y, obj_weight=2.0), rows, cols, 3)
        # 2 * ∇²f + 0.5 * ∇²c1 - 1.5 * ∇²c2
        expected = 2.0 * np.array([[2.0, 0.0, 0.0], [0.0, 0.0, 1.0], [0.0, 1.0, 0.0]])
        expected += 0.5 * np.array([[0.0, 1.0, 0.0], [1.0, 0.0, 0.0], [0.0, 0.0, 0.0]])
        expected -= 1.5 * np.diag([2.0, 0.0, 2.0])
        np.testing.assert_allclose(H, expected, rtol=1e-12)

    def test_constraint_only_hessian(self, constrained):
        x = np.array([1.0, 2.0, 3.0])
        y = np.array([1.0, 0.0])
        v = np.array([1.0, 1.0, 1.0])
        np.testing.assert_allclose(
            constrained.hprod(x, v, y, obj_weight=0.0), [1.0, 1.0, 0.0], atol=1e-12
        )

    def test_wrong_multiplier_length(self, constrained):
        with pytest.raises(ValueError, match="y must have length 2"):
            constrained.hess_coord(np.ones(3), np.ones(3))


class TestModelValidation:
    def test_bounds_without_constraints(self):
        with pytest.raises(ValueError, match="without a constraint function"):
            ADNLPModel(rosenbrock, [0.0, 0.0], lcon=[0.0], ucon=[1.0])

    def test_constraints_without_bounds(self):
        with pytest.raises(ValueError, match="lcon and ucon"):
            ADNLPModel(rosenbrock, [0.0, 0.0], c=lambda x: jnp.array([x[0]]))

    def test_maximize_flag(self):
        nlp = ADNLPModel(lambda x: x[0], [0.5], lvar=[0.0], uvar=[1.0], minimize=False)
        assert not nlp.meta.minimize
        np.testing.assert_array_equal(nlp.meta.lvar, [0.0])
