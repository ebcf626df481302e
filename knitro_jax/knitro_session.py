"""Solver session backed by the Artelys Knitro Python API.

:class:`KnitroSession` forwards the session protocol to the ``knitro``
package (``KN_new``, ``KN_add_vars``, ..., ``KN_free``). It converts Knitro's
``evalRequest`` / ``evalResult`` objects to :class:`EvalRequest` /
:class:`EvalResult` around every callback, so evaluation callbacks are
backend independent.

The ``knitro`` package and a valid license are required; the package is
imported when a session is created.
"""

import logging
import re
from typing import Optional

import numpy as np

from knitro_jax import codes
from knitro_jax.session import AbstractSession, EvalRequest, EvalResult
from knitro_jax.types import EvalCallback, NewPointCallback, ParamValue

logger = logging.getLogger(__name__)

# Knitro result fields written by the callback for each request code
_RESULT_FIELDS = {
    codes.RC_EVALFC: (("c", "c"),),
    codes.RC_EVALGA: (("obj_grad", "objGrad"), ("jac", "jac")),
    codes.RC_EVALH: (("hess", "hess"),),
    codes.RC_EVALH_NO_F: (("hess", "hess"),),
    codes.RC_EVALHV: (("hess_vec", "hessVec"),),
    codes.RC_EVALHV_NO_F: (("hess_vec", "hessVec"),),
    codes.RC_EVALR: (("rsd", "rsd"),),
    codes.RC_EVALRJ: (("rsd_jac", "rsdJac"),),
}


def _import_knitro():
    try:
        import knitro
    except ImportError as err:
        raise ImportError(
            "KnitroSession needs the Knitro Python API; install it with "
            "`pip install knitro-jax[knitro]` and provide a Knitro license"
        ) from err
    return knitro


def _release_major(release: str) -> int:
    match = re.search(r"(\d+)\.\d+", release)
    return int(match.group(1)) if match else 0


class KnitroSession(AbstractSession):
    """One ``KN_context`` of the Knitro solver."""

    def __init__(self):
        kn = _import_knitro()
        self._kn = kn
        self._kc = kn.KN_new()
        self.infinity = float(kn.KN_INFINITY)
        release = str(kn.KN_get_release())
        self.supports_solve_time = _release_major(release) >= 12
        logger.debug("created Knitro session (%s)", release)
        self._n = 0
        self._m = 0
        self._ne = 0
        self._nnzj = 0
        self._nnzh = 0
        self._nnzj_rsd = 0

    # -- problem definition -------------------------------------------------

    def set_obj_goal(self, goal: int) -> None:
        kn = self._kn
        kn_goal = (
            kn.KN_OBJGOAL_MINIMIZE
            if goal == codes.OBJGOAL_MINIMIZE
            else kn.KN_OBJGOAL_MAXIMIZE
        )
        kn.KN_set_obj_goal(self._kc, kn_goal)

    def add_vars(self, n: int) -> None:
        self._kn.KN_add_vars(self._kc, n)
        self._n += n

    def set_var_lobnds(self, values: np.ndarray) -> None:
        self._kn.KN_set_var_lobnds(self._kc, xLoBnds=list(values))

    def set_var_upbnds(self, values: np.ndarray) -> None:
        self._kn.KN_set_var_upbnds(self._kc, xUpBnds=list(values))

    def add_cons(self, m: int) -> None:
        if m > 0:
            self._kn.KN_add_cons(self._kc, m)
        self._m += m

    def set_con_lobnds(self, values: np.ndarray) -> None:
        if self._m > 0:
            self._kn.KN_set_con_lobnds(self._kc, cLoBnds=list(values))

    def set_con_upbnds(self, values: np.ndarray) -> None:
        if self._m > 0:
            self._kn.KN_set_con_upbnds(self._kc, cUpBnds=list(values))

    def add_rsds(self, ne: int) -> None:
        self._kn.KN_add_rsds(self._kc, ne)
        self._ne += ne

    def set_var_primal_init_values(self, values: np.ndarray) -> None:
        self._kn.KN_set_var_primal_init_values(self._kc, xInitVals=list(values))

    def set_var_dual_init_values(self, values: np.ndarray) -> None:
        self._kn.KN_set_var_dual_init_values(self._kc, lambdaInitVals=list(values))

    def set_con_dual_init_values(self, values: np.ndarray) -> None:
        if self._m > 0:
            self._kn.KN_set_con_dual_init_values(self._kc, lambdaInitVals=list(values))

    # -- callbacks ----------------------------------------------------------

    def _wrap(self, callback: EvalCallback):
        def knitro_callback(kc, cb, evalRequest, evalResult, userParams):
            vec = getattr(evalRequest, "vec", None)
            request = EvalRequest(
                int(evalRequest.type),
                np.asarray(evalRequest.x, dtype=float),
                np.asarray(evalRequest.lambda_, dtype=float),
                float(evalRequest.sigma),
                None if vec is None else np.asarray(vec, dtype=float),
            )
            result = EvalResult(
                c=np.zeros(self._m),
                obj_grad=np.zeros(self._n),
                jac=np.zeros(self._nnzj),
                hess=np.zeros(self._nnzh),
                hess_vec=np.zeros(self._n),
                rsd=np.zeros(self._ne),
                rsd_jac=np.zeros(self._nnzj_rsd),
            )
            rc = callback(request, result)
            if rc:
                return rc
            if request.code == codes.RC_EVALFC:
                evalResult.obj = result.obj
            for ours, theirs in _RESULT_FIELDS.get(request.code, ()):
                target = getattr(evalResult, theirs)
                for i, value in enumerate(getattr(result, ours)):
                    target[i] = value
            return 0

        return knitro_callback

    def add_eval_callback(self, callback: EvalCallback) -> int:
        index_cons = list(range(self._m)) if self._m > 0 else None
        return self._kn.KN_add_eval_callback(
            self._kc,
            evalObj=True,
            indexCons=index_cons,
            funcCallback=self._wrap(callback),
        )

    def set_cb_grad(self, cb, callback, jac_index_cons, jac_index_vars) -> None:
        self._nnzj = len(jac_index_cons)
        kwargs = {}
        if self._nnzj > 0:
            kwargs = dict(jacIndexCons=list(jac_index_cons), jacIndexVars=list(jac_index_vars))
        self._kn.KN_set_cb_grad(
            self._kc,
            cb,
            objGradIndexVars=self._kn.KN_DENSE,
            gradCallback=self._wrap(callback),
            **kwargs,
        )

    def set_cb_hess(self, cb, nnzh, callback, hess_index_vars1, hess_index_vars2) -> None:
        self._nnzh = int(nnzh)
        self._kn.KN_set_cb_hess(
            self._kc,
            cb,
            hessIndexVars1=list(hess_index_vars1),
            hessIndexVars2=list(hess_index_vars2),
            hessCallback=self._wrap(callback),
        )

    def add_lsq_eval_callback(self, callback: EvalCallback) -> int:
        return self._kn.KN_add_lsq_eval_callback(
            self._kc, rsdCallback=self._wrap(callback)
        )

    def set_cb_rsd_jac(self, cb, nnzj, callback, jac_index_rsds, jac_index_vars) -> None:
        self._nnzj_rsd = int(nnzj)
        self._kn.KN_set_cb_rsd_jac(
            self._kc,
            cb,
            jacIndexRsds=list(jac_index_rsds),
            jacIndexVars=list(jac_index_vars),
            rsdJacCallback=self._wrap(callback),
        )

    def set_newpt_callback(self, callback: NewPointCallback) -> None:
        def knitro_newpt(kc, x, lambda_, userParams):
            rc = callback(
                self,
                np.asarray(x, dtype=float),
                np.asarray(lambda_, dtype=float),
            )
            return 0 if rc is None else int(rc)

        self._kn.KN_set_newpt_callback(self._kc, knitro_newpt)

    # -- parameters and solve -----------------------------------------------

    def set_param(self, name: str, value: ParamValue) -> None:
        kn = self._kn
        if isinstance(value, str):
            kn.KN_set_char_param(self._kc, name, value)
        elif isinstance(value, (bool, int, np.integer)):
            kn.KN_set_int_param(self._kc, name, int(value))
        else:
            kn.KN_set_double_param(self._kc, name, float(value))

    def reset_params_to_defaults(self) -> None:
        self._kn.KN_reset_params_to_defaults(self._kc)

    def solve(self) -> int:
        return int(self._kn.KN_solve(self._kc))

    # -- results ------------------------------------------------------------

    def get_solution(self) -> tuple[int, float, np.ndarray, np.ndarray]:
        status, obj, x, lambda_ = self._kn.KN_get_solution(self._kc)
        return (
            int(status),
            float(obj),
            np.asarray(x, dtype=float),
            np.asarray(lambda_, dtype=float),
        )

    def get_abs_feas_error(self) -> float:
        return float(self._kn.KN_get_abs_feas_error(self._kc))

    def get_abs_opt_error(self) -> float:
        return float(self._kn.KN_get_abs_opt_error(self._kc))

    def get_number_iters(self) -> int:
        return int(self._kn.KN_get_number_iters(self._kc))

    def get_objgrad_values(self) -> np.ndarray:
        _, values = self._kn.KN_get_objgrad_values(self._kc)
        return np.asarray(values, dtype=float)

    def get_solve_time_cpu(self) -> float:
        return float(self._kn.KN_get_solve_time_cpu(self._kc))

    def get_solve_time_real(self) -> float:
        return float(self._kn.KN_get_solve_time_real(self._kc))

    def free(self) -> None:
        kc: Optional[object] = self._kc
        self._kc = None
        if kc is not None:
            self._kn.KN_free(kc)
