"""knitro-jax: nonlinear and least-squares models solved through Knitro-style sessions.

Models are written as JAX functions; first and second derivatives come from
automatic differentiation. :func:`knitro` hands a model to a callback-driven
solver session (Artelys Knitro when available, SciPy's ``trust-constr``
otherwise) and reports the outcome as :class:`ExecutionStats`.
"""

from knitro_jax.knitro_session import KnitroSession
from knitro_jax.model import (
    AbstractADModel,
    AbstractNLPModel,
    ADNLPModel,
    NLPModelMeta,
    dense_structure,
    lower_triangle_structure,
)
from knitro_jax.nls import ADNLSModel, NLSMeta, feasibility_form
from knitro_jax.options import KnitroOptions
from knitro_jax.scipy_session import ScipySession
from knitro_jax.session import AbstractSession, EvalRequest, EvalResult
from knitro_jax.solver import ProblemKind, knitro, problem_kind, register_backend
from knitro_jax.stats import ExecutionStats
from knitro_jax.status import knitro_statuses
from knitro_jax.types import SolverStatus

__all__ = [
    # Main entry point
    "knitro",
    "knitro_statuses",
    "ExecutionStats",
    "KnitroOptions",
    "SolverStatus",
    "ProblemKind",
    "problem_kind",
    "register_backend",
    # Models
    "NLPModelMeta",
    "AbstractNLPModel",
    "AbstractADModel",
    "ADNLPModel",
    "NLSMeta",
    "ADNLSModel",
    "feasibility_form",
    "dense_structure",
    "lower_triangle_structure",
    # Sessions
    "AbstractSession",
    "EvalRequest",
    "EvalResult",
    "ScipySession",
    "KnitroSession",
]
