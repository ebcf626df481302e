from typing import Any

import equinox as eqx
import numpy as np


class ExecutionStats(eqx.Module):
    """Normalized report of one solve.

    Attributes:
        status: Semantic status, one of the :class:`~knitro_jax.SolverStatus`
            values.
        solution: Final point.
        objective: Objective value at ``solution``.
        dual_feas: Absolute optimality (KKT) error reported by the solver.
        primal_feas: Absolute feasibility error reported by the solver.
        iter: Number of iterations.
        elapsed_time: CPU time of the solve in seconds.
        real_time: Wall-clock time of the solve in seconds.
        multipliers: Multipliers of the general constraints.
        multipliers_L: Multipliers of the variable bounds.
        multipliers_U: Always empty; the solver reports a single multiplier
            per bounded variable, stored in ``multipliers_L``.
        solver_specific: Backend diagnostics. Always holds ``internal_msg``
            (the raw status code) and ``real_time``.
    """

    status: str
    solution: np.ndarray
    objective: float
    dual_feas: float
    primal_feas: float
    iter: int
    elapsed_time: float
    real_time: float
    multipliers: np.ndarray
    multipliers_L: np.ndarray
    multipliers_U: np.ndarray
    solver_specific: dict[str, Any]
