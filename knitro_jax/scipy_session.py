"""In-process solver session backed by SciPy's ``trust-constr`` method.

:class:`ScipySession` implements :class:`~knitro_jax.session.AbstractSession`
without any proprietary dependency. Every function value and derivative the
SciPy engine needs is obtained by issuing evaluation requests to the
registered callbacks, exactly as a native solver would:

* ``EVALFC`` / ``EVALGA`` provide the objective, constraints, gradient and
  constraint Jacobian. One request serves all quantities at a point.
* ``EVALH`` with ``sigma = ±1`` and no multipliers provides the objective
  Hessian. The constraint Hessian comes from ``EVALH_NO_F`` when the
  ``hessian_no_f`` parameter allows it, otherwise from ``EVALH`` with
  ``sigma = 0``.
* With ``hessopt = 5`` both Hessians are ``LinearOperator`` objects backed
  by ``EVALHV`` / ``EVALHV_NO_F`` requests. ``hessopt = 2`` and ``3`` use
  SciPy's BFGS and SR1 updates instead.
* When residuals are registered, the objective is ``½‖r‖²`` with gradient
  ``Jᵀr`` and Gauss-Newton Hessian ``JᵀJ``, all built from ``EVALR`` and
  ``EVALRJ`` requests.

Maximization is carried out as minimization of ``-f``. Reported objectives
are in the original sense and multipliers satisfy
``∇f + Jᵀλ_c + λ_x = 0`` at a minimizer (signs flipped when maximizing).

The interior-point path of ``trust-constr`` stops as soon as one barrier
subproblem is solved. The session restarts it with a smaller barrier until
the barrier parameter is negligible, and it reports as the optimality error
the KKT residual of the original problem (stationarity and complementarity).
"""

import logging
import time
from typing import Optional

import numpy as np
import scipy.sparse as sp
from scipy.optimize import (
    BFGS,
    SR1,
    Bounds,
    NonlinearConstraint,
    minimize,
)
from scipy.sparse.linalg import LinearOperator

from knitro_jax import codes
from knitro_jax.session import AbstractSession, EvalRequest, EvalResult
from knitro_jax.types import EvalCallback, NewPointCallback, ParamValue

logger = logging.getLogger(__name__)

_INT_PARAMS = {
    "outlev": 0,
    "maxit": 1000,
    "maxfevals": -1,
    "hessopt": codes.HESSOPT_EXACT,
    "hessian_no_f": codes.HESSIAN_NO_F_FORBID,
    # accepted for compatibility, no effect on trust-constr
    "presolve": 1,
    "algorithm": 0,
}
_FLOAT_PARAMS = {
    "maxtime_real": 1.0e8,
    "maxtime_cpu": 1.0e8,
    "opttol": 1.0e-8,
    "feastol": 1.0e-8,
    "xtol": 1.0e-12,
}
_HESSOPTS = (
    codes.HESSOPT_EXACT,
    codes.HESSOPT_BFGS,
    codes.HESSOPT_SR1,
    codes.HESSOPT_PRODUCT,
)
# large enough for a full Newton step on the first iteration
_INITIAL_TR_RADIUS = 1.0e3
# the barrier must fall below this fraction of min(opttol, feastol)
_BARRIER_TARGET = 0.1
_BARRIER_DECAY = 1.0e-2


class _Abort(Exception):
    """Stops the SciPy loop from inside a callback.

    When ``infeasible_code`` is given, the final code depends on whether the
    last iterate was feasible.
    """

    def __init__(self, code: int, infeasible_code: Optional[int] = None):
        super().__init__(code)
        self.code = code
        self.infeasible_code = infeasible_code

    def resolve(self, feasible: bool) -> int:
        if self.infeasible_code is None or feasible:
            return self.code
        return self.infeasible_code


def _symmetric(vals, rows, cols, n: int) -> sp.csr_matrix:
    """Assemble a symmetric matrix from the triplets of one triangle."""
    tri = sp.coo_matrix((vals, (rows, cols)), shape=(n, n)).tocsr()
    return (tri + tri.T - sp.diags(tri.diagonal())).tocsr()


def _complementarity(values, w, lower, upper) -> np.ndarray:
    """Complementarity violation of multipliers ``w`` in the minimization sense.

    A positive entry pairs with the upper bound, a negative one with the
    lower bound. A multiplier on an infinite bound has the wrong sign and
    counts in full.
    """
    active = w != 0
    w, values = w[active], values[active]
    gap = np.where(w > 0, upper[active] - values, values - lower[active])
    return np.where(np.isinf(gap), np.abs(w), np.abs(w * gap))


class _Evaluator:
    """Issues evaluation requests and caches the results per point."""

    def __init__(self, session: "ScipySession", sign: float, max_fevals: int):
        self._s = session
        self.sign = sign
        self.max_fevals = max_fevals
        self.nfev = 0
        self._cache: dict[int, tuple[np.ndarray, tuple]] = {}

    def _request(
        self,
        callback: EvalCallback,
        code: int,
        x: np.ndarray,
        lambda_: Optional[np.ndarray] = None,
        sigma: float = 1.0,
        vec: Optional[np.ndarray] = None,
    ) -> EvalResult:
        s = self._s
        if lambda_ is None:
            lambda_ = np.zeros(s._m + s._n)
        result = s._new_result()
        rc = callback(EvalRequest(code, x.copy(), lambda_, sigma, vec), result)
        if rc:
            logger.debug("evaluation callback returned %s for request %d", rc, code)
            raise _Abort(codes.RC_CALLBACK_ERR)
        return result

    def _cached(self, code: int, x: np.ndarray):
        hit = self._cache.get(code)
        if hit is not None and np.array_equal(hit[0], x):
            return hit[1]
        return None

    def _count(self):
        self.nfev += 1
        if 0 <= self.max_fevals < self.nfev:
            raise _Abort(codes.RC_FEVAL_LIMIT_FEAS, codes.RC_FEVAL_LIMIT_INFEAS)

    # -- general model ------------------------------------------------------

    def fc(self, x: np.ndarray) -> tuple[float, np.ndarray]:
        hit = self._cached(codes.RC_EVALFC, x)
        if hit is None:
            self._count()
            res = self._request(self._s._eval_cb, codes.RC_EVALFC, x)
            hit = (float(res.obj), res.c.copy())
            self._cache[codes.RC_EVALFC] = (x.copy(), hit)
        return hit

    def ga(self, x: np.ndarray) -> tuple[np.ndarray, sp.csr_matrix]:
        hit = self._cached(codes.RC_EVALGA, x)
        if hit is None:
            s = self._s
            res = self._request(s._grad_cb, codes.RC_EVALGA, x)
            jac = sp.coo_matrix(
                (res.jac.copy(), (s._jac_cons, s._jac_vars)), shape=(s._m, s._n)
            ).tocsr()
            hit = (res.obj_grad.copy(), jac)
            self._cache[codes.RC_EVALGA] = (x.copy(), hit)
        return hit

    def hess(self, x: np.ndarray, sigma: float, v: np.ndarray) -> sp.csr_matrix:
        s = self._s
        code = codes.RC_EVALH
        if sigma == 0.0 and s._params["hessian_no_f"] == codes.HESSIAN_NO_F_ALLOW:
            code = codes.RC_EVALH_NO_F
        lambda_ = np.concatenate([v, np.zeros(s._n)])
        res = self._request(s._hess_cb, code, x, lambda_, sigma)
        return _symmetric(res.hess, s._hess_vars1, s._hess_vars2, s._n)

    def hess_operator(self, x: np.ndarray, sigma: float, v: np.ndarray) -> LinearOperator:
        s = self._s
        code = codes.RC_EVALHV
        if sigma == 0.0 and s._params["hessian_no_f"] == codes.HESSIAN_NO_F_ALLOW:
            code = codes.RC_EVALHV_NO_F
        x = x.copy()
        lambda_ = np.concatenate([v, np.zeros(s._n)])

        def matvec(p):
            p = np.asarray(p, dtype=float).reshape(-1)
            res = self._request(s._hess_cb, code, x, lambda_, sigma, p)
            return res.hess_vec.copy()

        return LinearOperator((s._n, s._n), matvec=matvec, dtype=float)

    # -- least squares ------------------------------------------------------

    def rsd(self, x: np.ndarray) -> np.ndarray:
        hit = self._cached(codes.RC_EVALR, x)
        if hit is None:
            self._count()
            res = self._request(self._s._rsd_cb, codes.RC_EVALR, x)
            hit = res.rsd.copy()
            self._cache[codes.RC_EVALR] = (x.copy(), hit)
        return hit

    def rsd_jac(self, x: np.ndarray) -> sp.csr_matrix:
        hit = self._cached(codes.RC_EVALRJ, x)
        if hit is None:
            s = self._s
            res = self._request(s._rsd_jac_cb, codes.RC_EVALRJ, x)
            hit = sp.coo_matrix(
                (res.rsd_jac.copy(), (s._rsd_jac_rsds, s._rsd_jac_vars)),
                shape=(s._ne, s._n),
            ).tocsr()
            self._cache[codes.RC_EVALRJ] = (x.copy(), hit)
        return hit

    # -- objective in the original sense ------------------------------------

    def objective(self, x: np.ndarray) -> float:
        if self._s._lsq:
            r = self.rsd(x)
            return 0.5 * float(r @ r)
        return self.fc(x)[0]

    def gradient(self, x: np.ndarray) -> np.ndarray:
        if self._s._lsq:
            return self.rsd_jac(x).T @ self.rsd(x)
        return self.ga(x)[0]


class ScipySession(AbstractSession):
    """Solver session driving ``scipy.optimize.minimize(method="trust-constr")``.

    Parameters are set by their Knitro names: ``outlev``, ``maxit``,
    ``maxtime_real``, ``maxtime_cpu``, ``maxfevals``, ``opttol``,
    ``feastol``, ``xtol``, ``hessopt`` (1, 2, 3 or 5) and ``hessian_no_f``.
    ``presolve`` and ``algorithm`` are accepted and ignored. An unknown name
    or a value of the wrong type makes :meth:`solve` return
    ``RC_BAD_PARAMINPUT`` without evaluating anything.

    Initial multipliers are validated and otherwise ignored, since
    ``trust-constr`` computes its own multiplier estimates.
    """

    infinity = codes.INFINITY
    supports_solve_time = True

    def __init__(self):
        self._n = 0
        self._m = 0
        self._ne = 0
        self._goal = codes.OBJGOAL_MINIMIZE
        self._lvar = np.zeros(0)
        self._uvar = np.zeros(0)
        self._lcon = np.zeros(0)
        self._ucon = np.zeros(0)
        self._x0 = np.zeros(0)
        self._params: dict[str, ParamValue] = {}
        self.reset_params_to_defaults()

        self._eval_cb: Optional[EvalCallback] = None
        self._grad_cb: Optional[EvalCallback] = None
        self._hess_cb: Optional[EvalCallback] = None
        self._rsd_cb: Optional[EvalCallback] = None
        self._rsd_jac_cb: Optional[EvalCallback] = None
        self._newpt_cb: Optional[NewPointCallback] = None
        self._jac_cons = self._jac_vars = np.zeros(0, dtype=np.int32)
        self._hess_vars1 = self._hess_vars2 = np.zeros(0, dtype=np.int32)
        self._rsd_jac_rsds = self._rsd_jac_vars = np.zeros(0, dtype=np.int32)
        self._nnzh = 0
        self._nnzj_rsd = 0

        self._status: Optional[int] = None
        self._x = np.zeros(0)
        self._lambda = np.zeros(0)
        self._obj = np.nan
        self._feas_error = np.nan
        self._opt_error = np.nan
        self._gx = np.zeros(0)
        self._iters = 0
        self._cpu_time = 0.0
        self._real_time = 0.0
        self._evaluator: Optional[_Evaluator] = None
        self._freed = False

    # -- problem definition -------------------------------------------------

    def set_obj_goal(self, goal: int) -> None:
        if goal not in (codes.OBJGOAL_MINIMIZE, codes.OBJGOAL_MAXIMIZE):
            raise ValueError(f"unknown objective goal {goal}")
        self._goal = goal

    def add_vars(self, n: int) -> None:
        self._n += n
        self._lvar = np.concatenate([self._lvar, np.full(n, -np.inf)])
        self._uvar = np.concatenate([self._uvar, np.full(n, np.inf)])
        self._x0 = np.concatenate([self._x0, np.zeros(n)])

    def set_var_lobnds(self, values: np.ndarray) -> None:
        self._lvar = self._vector(values, self._n, "variable lower bounds")

    def set_var_upbnds(self, values: np.ndarray) -> None:
        self._uvar = self._vector(values, self._n, "variable upper bounds")

    def add_cons(self, m: int) -> None:
        self._m += m
        self._lcon = np.concatenate([self._lcon, np.full(m, -np.inf)])
        self._ucon = np.concatenate([self._ucon, np.full(m, np.inf)])

    def set_con_lobnds(self, values: np.ndarray) -> None:
        self._lcon = self._vector(values, self._m, "constraint lower bounds")

    def set_con_upbnds(self, values: np.ndarray) -> None:
        self._ucon = self._vector(values, self._m, "constraint upper bounds")

    def add_rsds(self, ne: int) -> None:
        self._ne += ne

    def set_var_primal_init_values(self, values: np.ndarray) -> None:
        self._x0 = self._vector(values, self._n, "primal initial values")

    def set_var_dual_init_values(self, values: np.ndarray) -> None:
        self._vector(values, self._n, "bound multiplier initial values")

    def set_con_dual_init_values(self, values: np.ndarray) -> None:
        self._vector(values, self._m, "constraint multiplier initial values")

    @staticmethod
    def _vector(values, size: int, what: str) -> np.ndarray:
        vec = np.array(values, dtype=float).reshape(-1)
        if vec.shape[0] != size:
            raise ValueError(f"expected {size} {what}, got {vec.shape[0]}")
        return vec

    # -- callbacks ----------------------------------------------------------

    def add_eval_callback(self, callback: EvalCallback) -> int:
        self._eval_cb = callback
        return 0

    def set_cb_grad(self, cb, callback, jac_index_cons, jac_index_vars) -> None:
        self._grad_cb = callback
        self._jac_cons = np.asarray(jac_index_cons, dtype=np.int32)
        self._jac_vars = np.asarray(jac_index_vars, dtype=np.int32)

    def set_cb_hess(self, cb, nnzh, callback, hess_index_vars1, hess_index_vars2) -> None:
        self._hess_cb = callback
        self._nnzh = int(nnzh)
        self._hess_vars1 = np.asarray(hess_index_vars1, dtype=np.int32)
        self._hess_vars2 = np.asarray(hess_index_vars2, dtype=np.int32)

    def add_lsq_eval_callback(self, callback: EvalCallback) -> int:
        self._rsd_cb = callback
        return 0

    def set_cb_rsd_jac(self, cb, nnzj, callback, jac_index_rsds, jac_index_vars) -> None:
        self._rsd_jac_cb = callback
        self._nnzj_rsd = int(nnzj)
        self._rsd_jac_rsds = np.asarray(jac_index_rsds, dtype=np.int32)
        self._rsd_jac_vars = np.asarray(jac_index_vars, dtype=np.int32)

    def set_newpt_callback(self, callback: NewPointCallback) -> None:
        self._newpt_cb = callback

    @property
    def _lsq(self) -> bool:
        return self._rsd_cb is not None

    def _new_result(self) -> EvalResult:
        return EvalResult(
            c=np.zeros(self._m),
            obj_grad=np.zeros(self._n),
            jac=np.zeros(self._jac_cons.shape[0]),
            hess=np.zeros(self._nnzh),
            hess_vec=np.zeros(self._n),
            rsd=np.zeros(self._ne),
            rsd_jac=np.zeros(self._nnzj_rsd),
        )

    # -- parameters ---------------------------------------------------------

    def set_param(self, name: str, value: ParamValue) -> None:
        logger.debug("set_param %s = %r", name, value)
        self._params[name] = value

    def reset_params_to_defaults(self) -> None:
        self._params = {**_INT_PARAMS, **_FLOAT_PARAMS}

    def _invalid_params(self) -> list[str]:
        bad = []
        for name, value in self._params.items():
            if name in _INT_PARAMS:
                ok = isinstance(value, (int, np.integer))
            elif name in _FLOAT_PARAMS:
                ok = isinstance(value, (int, float, np.number)) and not isinstance(
                    value, bool
                )
            else:
                ok = False
            if not ok:
                bad.append(name)
        if "hessopt" not in bad and self._params["hessopt"] not in _HESSOPTS:
            bad.append("hessopt")
        return bad

    # -- solve --------------------------------------------------------------

    def solve(self) -> int:
        if self._freed:
            raise RuntimeError("session has been freed")
        cpu0, real0 = time.process_time(), time.perf_counter()
        try:
            self._status = self._run(cpu0, real0)
        finally:
            self._cpu_time = time.process_time() - cpu0
            self._real_time = time.perf_counter() - real0
        logger.debug(
            "trust-constr finished with code %d after %d iterations",
            self._status,
            self._iters,
        )
        return self._status

    def _run(self, cpu0: float, real0: float) -> int:
        self._x = self._x0.copy()
        self._lambda = np.zeros(self._m + self._n)
        self._gx = np.full(self._n, np.nan)

        bad = self._invalid_params()
        if bad:
            logger.warning("rejected solver parameters: %s", ", ".join(sorted(bad)))
            return codes.RC_BAD_PARAMINPUT
        if not self._callbacks_ready():
            logger.warning("session is missing evaluation callbacks for its problem")
            return codes.RC_ILLEGAL_CALL

        params = self._params
        sign = 1.0 if self._goal == codes.OBJGOAL_MINIMIZE else -1.0
        ev = _Evaluator(self, sign, int(params["maxfevals"]))
        self._evaluator = ev
        feastol = float(params["feastol"])
        opttol = float(params["opttol"])
        maxit = int(params["maxit"])

        lvar = np.where(self._lvar <= -self.infinity, -np.inf, self._lvar)
        uvar = np.where(self._uvar >= self.infinity, np.inf, self._uvar)
        lcon = np.where(self._lcon <= -self.infinity, -np.inf, self._lcon)
        ucon = np.where(self._ucon >= self.infinity, np.inf, self._ucon)
        has_bounds = bool(np.any(np.isfinite(lvar)) or np.any(np.isfinite(uvar)))
        bounds = (lvar, uvar, lcon, ucon)

        constraints = []
        if self._m > 0:
            constraints.append(
                NonlinearConstraint(
                    lambda x: ev.fc(x)[1],
                    lcon,
                    ucon,
                    jac=lambda x: ev.ga(x)[1],
                    hess=self._constraint_hessian(ev),
                )
            )

        tracked = {
            "x": self._x0.copy(),
            "v": [],
            "violation": np.inf,
            "optimality": np.inf,
            "offset": 0,
        }

        def iteration(xk, state):
            # nit counts the check of the starting point of every restart
            step = max(int(state.nit) - 1, 0)
            self._iters = tracked["offset"] + step
            tracked.update(
                x=np.array(xk, dtype=float),
                v=list(state.v),
                violation=float(state.constr_violation),
                optimality=float(state.optimality),
            )
            if time.perf_counter() - real0 > float(params["maxtime_real"]) or (
                time.process_time() - cpu0 > float(params["maxtime_cpu"])
            ):
                raise _Abort(codes.RC_TIME_LIMIT_FEAS, codes.RC_TIME_LIMIT_INFEAS)
            if self._newpt_cb is not None and step > 0:
                lam = self._multipliers(tracked["v"], sign, has_bounds)
                rc = self._newpt_cb(self, tracked["x"], lam)
                if rc == codes.RC_USER_TERMINATION:
                    raise _Abort(codes.RC_USER_TERMINATION)
                if rc:
                    raise _Abort(codes.RC_CALLBACK_ERR)
            return False

        if self._lsq:
            fun = lambda x: sign * ev.objective(x)  # noqa: E731
            jac = lambda x: sign * ev.gradient(x)  # noqa: E731

            def hess(x):
                J = ev.rsd_jac(x)
                return (sign * (J.T @ J)).tocsr()

        else:
            fun = lambda x: sign * ev.fc(x)[0]  # noqa: E731
            jac = lambda x: sign * ev.ga(x)[0]  # noqa: E731
            hess = self._objective_hessian(ev, sign)

        barrier_tol = _BARRIER_TARGET * min(opttol, feastol)
        options = {
            "maxiter": maxit + 1,
            "gtol": min(opttol, feastol),
            "xtol": float(params["xtol"]),
            "barrier_tol": barrier_tol,
            "initial_tr_radius": _INITIAL_TR_RADIUS,
            "verbose": min(max(int(params["outlev"]), 0), 3),
        }

        def trust_constr(x0):
            return minimize(
                fun,
                x0,
                method="trust-constr",
                jac=jac,
                hess=hess,
                bounds=Bounds(lvar, uvar) if has_bounds else None,
                constraints=constraints,
                callback=iteration,
                options=options,
            )

        try:
            res = trust_constr(self._x0.copy())
            # The interior-point method stops on the optimality of its
            # barrier subproblem, so shrink the barrier until it vanishes.
            while (
                res.status == 1
                and getattr(res, "barrier_parameter", 0.0) > barrier_tol
                and self._iters < maxit
            ):
                mu = max(barrier_tol, _BARRIER_DECAY * float(res.barrier_parameter))
                logger.debug(
                    "restarting trust-constr with barrier %.1e after %d iterations",
                    mu,
                    self._iters,
                )
                tracked["offset"] = self._iters
                options.update(
                    maxiter=maxit - self._iters + 1,
                    initial_barrier_parameter=mu,
                    initial_barrier_tolerance=mu,
                )
                res = trust_constr(np.array(res.x, dtype=float))
        except _Abort as abort:
            feasible = tracked["violation"] <= feastol
            code = abort.resolve(feasible)
            self._finish(
                tracked["x"],
                tracked["v"],
                sign,
                has_bounds,
                bounds,
                tracked["violation"],
                tracked["optimality"],
                evaluate=code != codes.RC_CALLBACK_ERR,
            )
            return code

        self._iters = tracked["offset"] + max(int(res.nit) - 1, 0)
        violation = float(res.constr_violation)
        evaluated = self._finish(
            res.x, list(res.v), sign, has_bounds, bounds, violation, float(res.optimality)
        )
        if not evaluated:
            return codes.RC_CALLBACK_ERR

        feasible = violation <= feastol
        if res.status == 0:
            return codes.RC_ITER_LIMIT_FEAS if feasible else codes.RC_ITER_LIMIT_INFEAS
        if res.status in (1, 2):
            if feasible and self._opt_error <= opttol:
                return codes.RC_OPTIMAL
            if self._iters >= maxit:
                return codes.RC_ITER_LIMIT_FEAS if feasible else codes.RC_ITER_LIMIT_INFEAS
            return codes.RC_FEAS_XTOL if feasible else codes.RC_INFEASIBLE
        return codes.RC_CALLBACK_ERR

    def _callbacks_ready(self) -> bool:
        if self._lsq:
            # residual problems only take bounds
            return self._rsd_jac_cb is not None and self._m == 0
        if self._eval_cb is None or self._grad_cb is None:
            return False
        exact = self._params["hessopt"] in (codes.HESSOPT_EXACT, codes.HESSOPT_PRODUCT)
        return not (exact and self._hess_cb is None)

    def _objective_hessian(self, ev: _Evaluator, sign: float):
        hessopt = self._params["hessopt"]
        if hessopt == codes.HESSOPT_BFGS:
            return BFGS()
        if hessopt == codes.HESSOPT_SR1:
            return SR1()
        zeros = np.zeros(self._m)
        if hessopt == codes.HESSOPT_PRODUCT:
            return lambda x: ev.hess_operator(x, sign, zeros)
        return lambda x: ev.hess(x, sign, zeros)

    def _constraint_hessian(self, ev: _Evaluator):
        hessopt = self._params["hessopt"]
        if hessopt == codes.HESSOPT_BFGS:
            return BFGS()
        if hessopt == codes.HESSOPT_SR1:
            return SR1()
        if hessopt == codes.HESSOPT_PRODUCT:
            return lambda x, v: ev.hess_operator(x, 0.0, np.asarray(v, dtype=float))
        return lambda x, v: ev.hess(x, 0.0, np.asarray(v, dtype=float))

    def _multipliers(self, v: list, sign: float, has_bounds: bool) -> np.ndarray:
        """Lay out SciPy's per-constraint multipliers as ``[λ_c; λ_x]``."""
        lam_c = np.zeros(self._m)
        lam_x = np.zeros(self._n)
        k = 0
        if self._m > 0 and len(v) > k:
            lam_c = sign * np.asarray(v[k], dtype=float).reshape(-1)
            k += 1
        if has_bounds and len(v) > k:
            lam_x = sign * np.asarray(v[k], dtype=float).reshape(-1)
        return np.concatenate([lam_c, lam_x])

    def _finish(
        self,
        x,
        v: list,
        sign: float,
        has_bounds: bool,
        bounds: tuple,
        violation: float,
        optimality: float,
        evaluate: bool = True,
    ) -> bool:
        """Record the final point and evaluate the quantities reported for it.

        Returns ``False`` when a callback fails during that evaluation; the
        objective, gradient and optimality error are then left as ``NaN``.
        """
        self._x = np.array(x, dtype=float)
        self._lambda = self._multipliers(v, sign, has_bounds)
        self._feas_error = violation
        self._opt_error = optimality
        self._obj = np.nan
        self._gx = np.full(self._n, np.nan)
        if not evaluate:
            return True
        ev = self._evaluator
        ev.max_fevals = -1
        try:
            obj = ev.objective(self._x)
            gx = np.asarray(ev.gradient(self._x), dtype=float)
            opt_error = self._kkt_error(gx, sign, bounds)
        except _Abort:
            logger.warning("evaluation callback failed at the final point")
            self._opt_error = np.nan
            return False
        self._obj, self._gx, self._opt_error = obj, gx, opt_error
        return True

    def _kkt_error(self, gx: np.ndarray, sign: float, bounds: tuple) -> float:
        """Infinity norm of stationarity and complementarity at the final point."""
        lvar, uvar, lcon, ucon = bounds
        lam_c, lam_x = self._lambda[: self._m], self._lambda[self._m :]
        stationarity = gx + lam_x
        errors = [_complementarity(self._x, sign * lam_x, lvar, uvar)]
        if self._m > 0:
            c = self._evaluator.fc(self._x)[1]
            J = self._evaluator.ga(self._x)[1]
            stationarity = stationarity + J.T @ lam_c
            errors.append(_complementarity(c, sign * lam_c, lcon, ucon))
        errors.append(np.abs(stationarity))
        return float(max((np.max(e) for e in errors if e.size), default=0.0))

    # -- results ------------------------------------------------------------

    def _require_solved(self):
        if self._status is None:
            raise RuntimeError("solve() has not been called")

    def get_solution(self) -> tuple[int, float, np.ndarray, np.ndarray]:
        self._require_solved()
        return self._status, self._obj, self._x.copy(), self._lambda.copy()

    def get_abs_feas_error(self) -> float:
        self._require_solved()
        return self._feas_error

    def get_abs_opt_error(self) -> float:
        self._require_solved()
        return self._opt_error

    def get_number_iters(self) -> int:
        return self._iters

    def get_objgrad_values(self) -> np.ndarray:
        """Objective gradient at the final point, in the original sense."""
        self._require_solved()
        return self._gx.copy()

    def get_solve_time_cpu(self) -> float:
        return self._cpu_time

    def get_solve_time_real(self) -> float:
        return self._real_time

    def free(self) -> None:
        self._eval_cb = self._grad_cb = self._hess_cb = None
        self._rsd_cb = self._rsd_jac_cb = self._newpt_cb = None
        self._evaluator = None
        self._freed = True
