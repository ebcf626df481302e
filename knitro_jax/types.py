"""Type definitions for knitro-jax.

This module contains type aliases and the semantic status constants used
throughout the package. Array shapes are written with jaxtyping so that the
helpers in :mod:`knitro_jax.utils` can be checked at runtime with beartype.
"""

from collections.abc import Callable
from typing import Any, Union

import numpy as np
from jaxtyping import Float, Int

# Host-side vectors exchanged with the solver
Vector = Float[np.ndarray, " n"]
IndexVector = Int[np.ndarray, " nnz"]

# Coordinate (sparse triplet) structure: (rows, cols)
Structure = tuple[IndexVector, IndexVector]

# Evaluation callback: callback(request, result) -> return code (0 = success)
EvalCallback = Callable[[Any, Any], int]

# Per-iteration callback: callback(session, x, lambda_) -> return code
NewPointCallback = Callable[[Any, Vector, Vector], Union[int, None]]

# Values a solver parameter may take
ParamValue = Union[bool, int, float, str]


class SolverStatus:
    """Semantic outcome of a solve, independent of the raw solver code."""

    FIRST_ORDER = "first_order"
    ACCEPTABLE = "acceptable"
    STALLED = "stalled"
    INFEASIBLE = "infeasible"
    UNBOUNDED = "unbounded"
    MAX_ITER = "max_iter"
    MAX_TIME = "max_time"
    MAX_EVAL = "max_eval"
    EXCEPTION = "exception"
    UNKNOWN = "unknown"
