"""Nonlinear least-squares models.

A least-squares model minimizes ``½‖F(x)‖²`` for a residual function
``F: R^n -> R^nequ``, optionally subject to bounds and general constraints.
Besides the general model interface it exposes the residual and the sparse
residual Jacobian, which a least-squares solver entry point consumes directly.

Solvers that only accept bound-constrained least-squares problems can be
handed :func:`feasibility_form` instead, which rewrites the problem as a
general model over ``(x, r)``:

    minimize    ½‖r‖²
    subject to  F(x) - r = 0
                lcon <= c(x) <= ucon
                lvar <=  x   <= uvar
"""

from collections.abc import Callable
from typing import Optional

import equinox as eqx
import jax.numpy as jnp
import numpy as np

from knitro_jax.model import (
    AbstractADModel,
    ADNLPModel,
    NLPModelMeta,
    _jac_kernel,
    _vec_kernel,
    dense_structure,
)
from knitro_jax.types import Structure, Vector


class NLSMeta(eqx.Module):
    """Residual dimensions of a least-squares model.

    Attributes:
        nequ: Number of residuals.
        nvar: Number of variables.
        nnzj: Nonzeros in the residual Jacobian structure.
    """

    nequ: int
    nvar: int
    nnzj: int

    def __init__(self, nequ: int, nvar: int, nnzj: Optional[int] = None):
        self.nequ = int(nequ)
        self.nvar = int(nvar)
        self.nnzj = int(nequ * nvar if nnzj is None else nnzj)

    def __check_init__(self):
        if self.nequ < 0 or self.nnzj < 0:
            raise ValueError("nequ and nnzj must be nonnegative")


class ADNLSModel(AbstractADModel):
    """Least-squares model differentiated with JAX.

    Attributes:
        meta: Dimensions, bounds and starting point.
        nls_meta: Residual dimensions.
        F: Residual function ``F(x) -> (nequ,)``.
        c: Optional general constraints ``c(x) -> (ncon,)``.
        f: The objective ``½‖F(x)‖²``, built once from ``F``.
    """

    meta: NLPModelMeta
    nls_meta: NLSMeta
    F: Callable = eqx.field(static=True)
    c: Optional[Callable] = eqx.field(static=True)
    f: Callable = eqx.field(static=True)

    def __init__(
        self,
        F: Callable,
        x0,
        nequ: int,
        lvar=None,
        uvar=None,
        c: Optional[Callable] = None,
        lcon=None,
        ucon=None,
        y0=None,
        minimize: bool = True,
        name: str = "Generic",
    ):
        x0 = np.asarray(x0, dtype=float).reshape(-1)
        if c is None:
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
        self.nls_meta = NLSMeta(nequ, x0.shape[0])
        self.F = F
        self.c = c

        def half_squared_norm(x):
            r = jnp.asarray(F(x))
            return 0.5 * jnp.dot(r, r)

        self.f = half_squared_norm

    def residual(self, x: Vector) -> Vector:
        return np.asarray(_vec_kernel(self.F, np.asarray(x, dtype=float)))

    def jac_structure_residual(self) -> Structure:
        return dense_structure(self.nls_meta.nequ, self.meta.nvar)

    def jac_coord_residual(self, x: Vector) -> Vector:
        return np.asarray(_jac_kernel(self.F, np.asarray(x, dtype=float))).ravel()


def feasibility_form(nls: ADNLSModel) -> ADNLPModel:
    """Rewrite a constrained least-squares model as a general model over ``(x, r)``.

    The new variables ``r`` are tied to the residuals by the equality
    constraints ``F(x) - r = 0``, which come first; the original constraints
    follow. The first ``nvar`` components of a solution of the returned model
    solve the original problem.

    Args:
        nls: The least-squares model to convert.

    Returns:
        A general model with ``nvar + nequ`` variables and
        ``nequ + ncon`` constraints, starting from ``[x0; F(x0)]``.
    """
    n, ne = nls.meta.nvar, nls.nls_meta.nequ
    F, c = nls.F, nls.c

    def objective(z):
        r = z[n:]
        return 0.5 * jnp.dot(r, r)

    def constraints(z):
        x, r = z[:n], z[n:]
        res = jnp.asarray(F(x)) - r
        if c is None:
            return res
        return jnp.concatenate([res, jnp.asarray(c(x))])

    x0 = nls.meta.x0
    return ADNLPModel(
        objective,
        np.concatenate([x0, nls.residual(x0)]),
        c=constraints,
        lcon=np.concatenate([np.zeros(ne), nls.meta.lcon]),
        ucon=np.concatenate([np.zeros(ne), nls.meta.ucon]),
        lvar=np.concatenate([nls.meta.lvar, np.full(ne, -np.inf)]),
        uvar=np.concatenate([nls.meta.uvar, np.full(ne, np.inf)]),
        y0=np.concatenate([np.zeros(ne), nls.meta.y0]),
        minimize=nls.meta.minimize,
        name=f"{nls.meta.name}-ffnls",
    )
