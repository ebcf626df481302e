"""Nonlinear programming models differentiated with JAX.

A model describes

    minimize (or maximize)  f(x)
    subject to              lcon <= c(x) <= ucon
                            lvar <=  x   <= uvar

and exposes its derivatives in sparse coordinate form with 1-based indices.
The Hessian of the Lagrangian

    H(x, y) = obj_weight * ∇²f(x) + Σ_i y_i ∇²c_i(x)

is reported through its lower triangle (``rows >= cols``).

:class:`ADNLPModel` computes every derivative with JAX automatic
differentiation inside ``eqx.filter_jit`` kernels, so the user only writes
``f`` and ``c`` with ``jax.numpy``. Structures are dense.
"""

import abc
from collections.abc import Callable
from typing import Optional

import equinox as eqx
import jax
import jax.numpy as jnp
import numpy as np
from jaxtyping import Array, Float

from knitro_jax.types import Structure, Vector
from knitro_jax.utils import as_vector


class NLPModelMeta(eqx.Module):
    """Dimensions, bounds and starting point of a model.

    Attributes:
        nvar: Number of variables.
        x0: Default initial point.
        lvar: Variable lower bounds (``-inf`` when unbounded).
        uvar: Variable upper bounds (``+inf`` when unbounded).
        ncon: Number of general (non-bound) constraints.
        y0: Default constraint multipliers.
        lcon: Constraint lower bounds.
        ucon: Constraint upper bounds.
        nnzj: Nonzeros in the constraint Jacobian structure.
        nnzh: Nonzeros in the lower triangle of the Lagrangian Hessian.
        minimize: ``True`` to minimize, ``False`` to maximize.
        name: Model name used in log messages.
    """

    nvar: int
    x0: np.ndarray
    lvar: np.ndarray
    uvar: np.ndarray
    ncon: int
    y0: np.ndarray
    lcon: np.ndarray
    ucon: np.ndarray
    nnzj: int
    nnzh: int
    minimize: bool
    name: str

    def __init__(
        self,
        nvar: int,
        x0=None,
        lvar=None,
        uvar=None,
        ncon: int = 0,
        y0=None,
        lcon=None,
        ucon=None,
        nnzj: Optional[int] = None,
        nnzh: Optional[int] = None,
        minimize: bool = True,
        name: str = "Generic",
    ):
        if nvar < 0 or ncon < 0:
            raise ValueError("nvar and ncon must be nonnegative")
        self.nvar = int(nvar)
        self.ncon = int(ncon)
        self.x0 = _filled(x0, nvar, 0.0, "x0")
        self.lvar = _filled(lvar, nvar, -np.inf, "lvar")
        self.uvar = _filled(uvar, nvar, np.inf, "uvar")
        self.y0 = _filled(y0, ncon, 0.0, "y0")
        self.lcon = _filled(lcon, ncon, -np.inf, "lcon")
        self.ucon = _filled(ucon, ncon, np.inf, "ucon")
        self.nnzj = int(ncon * nvar if nnzj is None else nnzj)
        self.nnzh = int(nvar * (nvar + 1) // 2 if nnzh is None else nnzh)
        self.minimize = bool(minimize)
        self.name = name

    def __check_init__(self):
        if np.any(self.lvar > self.uvar):
            raise ValueError(f"{self.name}: lvar must not exceed uvar")
        if np.any(self.lcon > self.ucon):
            raise ValueError(f"{self.name}: lcon must not exceed ucon")
        if self.nnzj < 0 or self.nnzh < 0:
            raise ValueError(f"{self.name}: nnzj and nnzh must be nonnegative")


def _filled(values, n: int, default: float, name: str) -> np.ndarray:
    if values is None:
        return np.full(n, default, dtype=float)
    return as_vector(values, n, name)


class AbstractNLPModel(eqx.Module):
    """Interface the solver adapter consumes.

    Vectors are host ``numpy`` arrays; index structures are 1-based.
    """

    meta: eqx.AbstractVar[NLPModelMeta]

    @abc.abstractmethod
    def obj(self, x: Vector) -> float:
        """Objective value f(x)."""

    @abc.abstractmethod
    def grad(self, x: Vector) -> Vector:
        """Objective gradient ∇f(x)."""

    @abc.abstractmethod
    def cons(self, x: Vector) -> Vector:
        """Constraint residuals c(x), length ``ncon``."""

    @abc.abstractmethod
    def jac_structure(self) -> Structure:
        """1-based ``(rows, cols)`` of the constraint Jacobian."""

    @abc.abstractmethod
    def jac_coord(self, x: Vector) -> Vector:
        """Constraint Jacobian values in :meth:`jac_structure` order."""

    @abc.abstractmethod
    def hess_structure(self) -> Structure:
        """1-based ``(rows, cols)`` of the lower triangle of the Lagrangian Hessian."""

    @abc.abstractmethod
    def hess_coord(
        self, x: Vector, y: Optional[Vector] = None, obj_weight: float = 1.0
    ) -> Vector:
        """Lagrangian Hessian values in :meth:`hess_structure` order."""

    @abc.abstractmethod
    def hprod(
        self,
        x: Vector,
        v: Vector,
        y: Optional[Vector] = None,
        obj_weight: float = 1.0,
    ) -> Vector:
        """Lagrangian Hessian-vector product H(x, y) @ v."""


# ---------------------------------------------------------------------------
# Compiled kernels. ``f`` and ``c`` are static under filter_jit, so a model
# compiles each kernel once and reuses it for every evaluation.
# ---------------------------------------------------------------------------


def _lagrangian(
    f: Callable,
    c: Optional[Callable],
    x: Float[Array, " n"],
    y: Float[Array, " m"],
    obj_weight: Float[Array, ""],
) -> Float[Array, ""]:
    val = obj_weight * f(x)
    if c is not None:
        val = val + jnp.dot(y, jnp.asarray(c(x)))
    return val


@eqx.filter_jit
def _obj_kernel(f, x):
    return f(x)


@eqx.filter_jit
def _grad_kernel(f, x):
    return jax.grad(f)(x)


@eqx.filter_jit
def _vec_kernel(fn, x):
    return jnp.asarray(fn(x))


@eqx.filter_jit
def _jac_kernel(fn, x):
    return jax.jacfwd(lambda z: jnp.asarray(fn(z)))(x)


@eqx.filter_jit
def _hess_kernel(f, c, x, y, obj_weight):
    return jax.hessian(lambda z: _lagrangian(f, c, z, y, obj_weight))(x)


@eqx.filter_jit
def _hprod_kernel(f, c, x, y, obj_weight, v):
    # Forward-over-reverse
    _, hv = jax.jvp(jax.grad(lambda z: _lagrangian(f, c, z, y, obj_weight)), (x,), (v,))
    return hv


def dense_structure(nrows: int, ncols: int) -> Structure:
    """1-based row-major coordinates of a dense ``nrows x ncols`` matrix."""
    rows = np.repeat(np.arange(1, nrows + 1), ncols)
    cols = np.tile(np.arange(1, ncols + 1), nrows)
    return rows, cols


def lower_triangle_structure(n: int) -> Structure:
    """1-based coordinates of the dense lower triangle of an ``n x n`` matrix."""
    rows, cols = np.tril_indices(n)
    return rows + 1, cols + 1


class AbstractADModel(AbstractNLPModel):
    """Derivatives of ``f`` and ``c`` by JAX automatic differentiation.

    Subclasses provide the objective ``f`` and the optional constraints ``c``
    as fields; every evaluation goes through the compiled kernels above.
    """

    f: eqx.AbstractVar[Callable]
    c: eqx.AbstractVar[Optional[Callable]]

    def obj(self, x: Vector) -> float:
        return float(_obj_kernel(self.f, np.asarray(x, dtype=float)))

    def grad(self, x: Vector) -> Vector:
        return np.asarray(_grad_kernel(self.f, np.asarray(x, dtype=float)))

    def cons(self, x: Vector) -> Vector:
        if self.c is None:
            return np.zeros(0)
        return np.asarray(_vec_kernel(self.c, np.asarray(x, dtype=float)))

    def jac_structure(self) -> Structure:
        return dense_structure(self.meta.ncon, self.meta.nvar)

    def jac_coord(self, x: Vector) -> Vector:
        if self.c is None:
            return np.zeros(0)
        return np.asarray(_jac_kernel(self.c, np.asarray(x, dtype=float))).ravel()

    def hess_structure(self) -> Structure:
        return lower_triangle_structure(self.meta.nvar)

    def hess_coord(
        self, x: Vector, y: Optional[Vector] = None, obj_weight: float = 1.0
    ) -> Vector:
        H = _hess_kernel(
            self.f,
            self.c,
            np.asarray(x, dtype=float),
            self._multipliers(y),
            jnp.asarray(obj_weight, dtype=float),
        )
        rows, cols = np.tril_indices(self.meta.nvar)
        return np.asarray(H)[rows, cols]

    def hprod(
        self,
        x: Vector,
        v: Vector,
        y: Optional[Vector] = None,
        obj_weight: float = 1.0,
    ) -> Vector:
        return np.asarray(
            _hprod_kernel(
                self.f,
                self.c,
                np.asarray(x, dtype=float),
                self._multipliers(y),
                jnp.asarray(obj_weight, dtype=float),
                np.asarray(v, dtype=float),
            )
        )

    def _multipliers(self, y: Optional[Vector]) -> np.ndarray:
        if y is None:
            return np.zeros(self.meta.ncon)
        return as_vector(y, self.meta.ncon, "y")


class ADNLPModel(AbstractADModel):
    """Model whose derivatives are obtained with JAX automatic differentiation.

    Attributes:
        meta: Dimensions, bounds and starting point.
        f: Objective ``f(x) -> scalar`` written with ``jax.numpy``.
        c: Optional constraints ``c(x) -> (ncon,)``.

    Example:
        >>> import jax.numpy as jnp
        >>> from knitro_jax import ADNLPModel
        >>>
        >>> nlp = ADNLPModel(
        ...     lambda x: (x[0] - 1) ** 2 + 4 * (x[1] - 3) ** 2,
        ...     jnp.zeros(2),
        ...     c=lambda x: jnp.array([x[0] + x[1] - 1.0]),
        ...     lcon=[0.0],
        ...     ucon=[0.0],
        ... )
    """

    meta: NLPModelMeta
    f: Callable = eqx.field(static=True)
    c: Optional[Callable] = eqx.field(static=True)

    def __init__(
        self,
        f: Callable,
        x0,
        c: Optional[Callable] = None,
        lcon=None,
        ucon=None,
        lvar=None,
        uvar=None,
        y0=None,
        minimize: bool = True,
        name: str = "Generic",
    ):
        x0 = np.asarray(x0, dtype=float).reshape(-1)
        if c is None:
            if lcon is not None or ucon is not None:
                raise ValueError("constraint bounds given without a constraint function")
            ncon = 0
        else:
            if lcon is None or ucon is None:
                raise ValueError("a constraint function needs both lcon and ucon")
            ncon = np.asarray(lcon, dtype=float).reshape(-1).shape[0]
        self.meta = NLPModelMeta(
            x0.shape[0],
            x0=x0,
            lvar=lvar,
            uvar=uvar,
            ncon=ncon,
            y0=y0,
            lcon=lcon,
            ucon=ucon,
            minimize=minimize,
            name=name,
        )
        self.f = f
        self.c = c
