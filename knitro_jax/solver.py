"""Adapter between nonlinear models and a callback-driven solver session.

:func:`knitro` translates a model into the calling convention of an
:class:`~knitro_jax.session.AbstractSession`, runs one blocking solve and
translates the raw outcome into an :class:`~knitro_jax.stats.ExecutionStats`.

The translation covers:

1. Bound sanitization: infinite bounds are replaced by the session's
   ``infinity`` before registration, and an entirely infinite variable
   bound vector is not registered at all.
2. Structure translation: 1-based model indices become 0-based ``int32``
   session indices, and the model's lower-triangle Hessian is handed over
   as an upper triangle by swapping rows and columns.
3. Callback registration: one callback serves objective, constraints and
   all derivative requests of a general model; least-squares models register
   a residual callback and a residual-Jacobian callback.
4. Least-squares dispatch: a least-squares model with general constraints is
   rewritten in feasibility form and solved as a general model, because the
   least-squares entry point only accepts bounds.
5. Result extraction and status classification with
   :func:`~knitro_jax.status.knitro_statuses`.

A session is created for each call and released on every exit path.
"""

import contextlib
import enum
import logging
import time
from collections.abc import Callable, Iterator
from typing import NamedTuple, Optional, Union

import numpy as np

from knitro_jax import codes
from knitro_jax.knitro_session import KnitroSession
from knitro_jax.model import AbstractNLPModel, NLPModelMeta
from knitro_jax.nls import ADNLSModel, feasibility_form
from knitro_jax.options import KnitroOptions
from knitro_jax.scipy_session import ScipySession
from knitro_jax.session import AbstractSession, EvalRequest, EvalResult
from knitro_jax.stats import ExecutionStats
from knitro_jax.status import knitro_statuses
from knitro_jax.utils import replace_infinite, zero_based

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AbstractSession]

_BACKENDS: dict[str, SessionFactory] = {
    "scipy": ScipySession,
    "knitro": KnitroSession,
}


def register_backend(name: str, factory: SessionFactory) -> None:
    """Make ``factory`` available as ``knitro(model, backend=name)``."""
    if not callable(factory):
        raise TypeError("a backend factory must be callable")
    _BACKENDS[name] = factory


def _session_factory(backend: Union[str, SessionFactory]) -> SessionFactory:
    if isinstance(backend, str):
        try:
            return _BACKENDS[backend]
        except KeyError:
            raise ValueError(
                f"unknown backend {backend!r}; expected one of {sorted(_BACKENDS)}"
            ) from None
    if callable(backend):
        return backend
    raise TypeError("backend must be a registered name or a session factory")


class ProblemKind(enum.Enum):
    """How a model is handed to the solver."""

    GENERAL = "general"
    LEAST_SQUARES = "least_squares"
    CONSTRAINED_LEAST_SQUARES = "constrained_least_squares"


def problem_kind(model: AbstractNLPModel) -> ProblemKind:
    """Classify ``model`` by its structure: residuals present, constraints present."""
    if getattr(model, "nls_meta", None) is None:
        return ProblemKind.GENERAL
    if model.meta.ncon > 0:
        return ProblemKind.CONSTRAINED_LEAST_SQUARES
    return ProblemKind.LEAST_SQUARES


def knitro(
    model: AbstractNLPModel,
    backend: Union[str, SessionFactory] = "scipy",
    **kwargs,
) -> ExecutionStats:
    """Solve ``model`` with a callback-driven solver session.

    Args:
        model: A general or least-squares model.
        backend: ``"scipy"`` (in-process, default), ``"knitro"`` (requires the
            Knitro Python API and license), any name added with
            :func:`register_backend`, or a zero-argument callable returning a
            session.
        **kwargs: ``x0`` (initial point, length ``nvar``), ``y0`` (initial
            constraint multipliers, length ``ncon``), ``z0`` (initial bound
            multipliers, length ``nvar``) and ``callback`` (called after each
            iteration as ``callback(session, x, lambda_)``). Every other
            keyword argument is passed to the solver as a parameter, e.g.
            ``outlev=0`` or ``opttol=1e-12``.

    Returns:
        The execution statistics of the solve. For a least-squares model with
        general constraints the solution has ``nvar + nequ`` components, the
        first ``nvar`` of which solve the original problem.

    Raises:
        ValueError: If an option vector does not match the model dimensions or
            the backend name is unknown.
        TypeError: If ``callback`` is not callable or a solver parameter is
            not a number, a bool or a string.
    """
    options = KnitroOptions.from_kwargs(**kwargs)
    options.validate(model.meta.nvar, model.meta.ncon)
    factory = _session_factory(backend)

    kind = problem_kind(model)
    if kind is ProblemKind.CONSTRAINED_LEAST_SQUARES:
        logger.warning(
            "only bound-constrained least-squares problems reach the "
            "least-squares entry point; converting %s to feasibility form",
            model.meta.name,
        )
        return _solve_general(
            feasibility_form(model), _lift_options(model, options), factory
        )
    if kind is ProblemKind.LEAST_SQUARES:
        return _solve_least_squares(model, options, factory)
    return _solve_general(model, options, factory)


def _lift_options(nls: ADNLSModel, options: KnitroOptions) -> KnitroOptions:
    """Express caller options in the variables of the feasibility form."""
    ne = nls.nls_meta.nequ
    x0 = options.x0
    if x0 is not None:
        x0 = np.concatenate([x0, nls.residual(x0)])
    y0 = options.y0
    if y0 is not None:
        y0 = np.concatenate([np.zeros(ne), y0])
    z0 = options.z0
    if z0 is not None:
        z0 = np.concatenate([z0, np.zeros(ne)])
    return KnitroOptions(
        x0=x0, y0=y0, z0=z0, callback=options.callback, params=options.params
    )


# ---------------------------------------------------------------------------
# Session lifetime
# ---------------------------------------------------------------------------


@contextlib.contextmanager
def _open_session(factory: SessionFactory) -> Iterator[AbstractSession]:
    session = factory()
    logger.debug("opened %s", type(session).__name__)
    try:
        session.reset_params_to_defaults()
        yield session
    finally:
        _release(session)


def _release(session: AbstractSession) -> None:
    # Failures here must not hide the outcome of the solve
    for step in (session.reset_params_to_defaults, session.free):
        try:
            step()
        except Exception:
            logger.warning(
                "%s.%s failed during teardown",
                type(session).__name__,
                step.__name__,
                exc_info=True,
            )


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


def _register_variables(
    session: AbstractSession, meta: NLPModelMeta, options: KnitroOptions
) -> None:
    if meta.minimize:
        session.set_obj_goal(codes.OBJGOAL_MINIMIZE)
    else:
        session.set_obj_goal(codes.OBJGOAL_MAXIMIZE)

    session.add_vars(meta.nvar)
    # Entirely infinite bounds keep the solver default (unbounded)
    if not np.all(np.isinf(meta.lvar)):
        session.set_var_lobnds(replace_infinite(meta.lvar, session.infinity))
    if not np.all(np.isinf(meta.uvar)):
        session.set_var_upbnds(replace_infinite(meta.uvar, session.infinity))

    x0 = meta.x0 if options.x0 is None else options.x0
    session.set_var_primal_init_values(x0)
    if options.z0 is not None:
        session.set_var_dual_init_values(options.z0)


def _constraint_multipliers(request: EvalRequest, m: int) -> Optional[np.ndarray]:
    if m == 0:
        return None
    return np.asarray(request.lambda_[:m], dtype=float)


def _general_callback(nlp: AbstractNLPModel):
    m = nlp.meta.ncon

    def eval_all(request: EvalRequest, result: EvalResult) -> int:
        x = request.x
        code = request.code
        if code == codes.RC_EVALFC:
            result.obj = nlp.obj(x)
            if m > 0:
                result.c[:] = nlp.cons(x)
        elif code == codes.RC_EVALGA:
            result.obj_grad[:] = nlp.grad(x)
            if m > 0:
                result.jac[:] = nlp.jac_coord(x)
        elif code in (codes.RC_EVALH, codes.RC_EVALH_NO_F):
            sigma = request.sigma if code == codes.RC_EVALH else 0.0
            result.hess[:] = nlp.hess_coord(
                x, _constraint_multipliers(request, m), obj_weight=sigma
            )
        elif code in (codes.RC_EVALHV, codes.RC_EVALHV_NO_F):
            sigma = request.sigma if code == codes.RC_EVALHV else 0.0
            result.hess_vec[:] = nlp.hprod(
                x, request.vec, _constraint_multipliers(request, m), obj_weight=sigma
            )
        else:
            logger.warning("evaluation callback called with unknown request code %d", code)
            return codes.RC_CALLBACK_ERR
        return 0

    return eval_all


def _residual_callbacks(nls: ADNLSModel):
    def eval_r(request: EvalRequest, result: EvalResult) -> int:
        if request.code != codes.RC_EVALR:
            logger.warning(
                "residual callback incorrectly called with eval request code %d",
                request.code,
            )
            return -1
        result.rsd[:] = nls.residual(request.x)
        return 0

    def eval_rj(request: EvalRequest, result: EvalResult) -> int:
        if request.code != codes.RC_EVALRJ:
            logger.warning(
                "residual Jacobian callback incorrectly called with eval request code %d",
                request.code,
            )
            return -1
        result.rsd_jac[:] = nls.jac_coord_residual(request.x)
        return 0

    return eval_r, eval_rj


# ---------------------------------------------------------------------------
# Solve and extraction
# ---------------------------------------------------------------------------


class _Outcome(NamedTuple):
    status: int
    objective: float
    solution: np.ndarray
    lambda_: np.ndarray
    primal_feas: float
    dual_feas: float
    iter: int
    cpu_time: float
    real_time: float


def _run(session: AbstractSession, options: KnitroOptions) -> _Outcome:
    for name, value in options.params.items():
        session.set_param(str(name), value)
    if options.callback is not None:
        session.set_newpt_callback(options.callback)

    start = time.perf_counter()
    session.solve()
    wall = time.perf_counter() - start

    status, objective, x, lambda_ = session.get_solution()
    if session.supports_solve_time:
        cpu_time = session.get_solve_time_cpu()
        real_time = session.get_solve_time_real()
    else:
        cpu_time = real_time = wall
    return _Outcome(
        status=int(status),
        objective=float(objective),
        solution=np.asarray(x, dtype=float),
        lambda_=np.asarray(lambda_, dtype=float),
        primal_feas=float(session.get_abs_feas_error()),
        dual_feas=float(session.get_abs_opt_error()),
        iter=int(session.get_number_iters()),
        cpu_time=float(cpu_time),
        real_time=float(real_time),
    )


def _stats(outcome: _Outcome, n: int, m: int, **solver_specific) -> ExecutionStats:
    lambda_ = outcome.lambda_
    return ExecutionStats(
        status=knitro_statuses(outcome.status),
        solution=outcome.solution,
        objective=outcome.objective,
        dual_feas=outcome.dual_feas,
        primal_feas=outcome.primal_feas,
        iter=outcome.iter,
        elapsed_time=outcome.cpu_time,
        real_time=outcome.real_time,
        # The solver returns one vector: m constraint entries, then n bound entries
        multipliers=lambda_[:m],
        multipliers_L=lambda_[m : m + n],
        multipliers_U=np.zeros(0),
        solver_specific={
            "internal_msg": outcome.status,
            "real_time": outcome.real_time,
            **solver_specific,
        },
    )


def _solve_general(
    nlp: AbstractNLPModel, options: KnitroOptions, factory: SessionFactory
) -> ExecutionStats:
    meta = nlp.meta
    n, m = meta.nvar, meta.ncon

    if m > 0:
        jrows, jcols = nlp.jac_structure()
    else:
        jrows = jcols = np.zeros(0, dtype=np.int64)
    hrows, hcols = nlp.hess_structure()
    eval_all = _general_callback(nlp)

    with _open_session(factory) as session:
        _register_variables(session, meta, options)

        session.add_cons(m)
        session.set_con_lobnds(replace_infinite(meta.lcon, session.infinity))
        session.set_con_upbnds(replace_infinite(meta.ucon, session.infinity))
        if options.y0 is not None:
            session.set_con_dual_init_values(options.y0)

        cb = session.add_eval_callback(eval_all)
        session.set_cb_grad(
            cb,
            eval_all,
            jac_index_cons=zero_based(np.asarray(jrows)),
            jac_index_vars=zero_based(np.asarray(jcols)),
        )
        # The model reports the lower triangle; the solver wants the upper one
        session.set_cb_hess(
            cb,
            meta.nnzh,
            eval_all,
            hess_index_vars1=zero_based(np.asarray(hcols)),
            hess_index_vars2=zero_based(np.asarray(hrows)),
        )
        # Hessians without the objective term are available on request
        session.set_param("hessian_no_f", codes.HESSIAN_NO_F_ALLOW)

        outcome = _run(session, options)
        gx = session.get_objgrad_values()

    return _stats(outcome, n, m, gx=np.asarray(gx, dtype=float))


def _solve_least_squares(
    nls: ADNLSModel, options: KnitroOptions, factory: SessionFactory
) -> ExecutionStats:
    meta = nls.meta
    jrows, jcols = nls.jac_structure_residual()
    eval_r, eval_rj = _residual_callbacks(nls)

    with _open_session(factory) as session:
        _register_variables(session, meta, options)

        session.add_rsds(nls.nls_meta.nequ)
        cb = session.add_lsq_eval_callback(eval_r)
        session.set_cb_rsd_jac(
            cb,
            nls.nls_meta.nnzj,
            eval_rj,
            jac_index_rsds=zero_based(np.asarray(jrows)),
            jac_index_vars=zero_based(np.asarray(jcols)),
        )

        outcome = _run(session, options)

    return _stats(outcome, meta.nvar, meta.ncon)
