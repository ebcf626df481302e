"""Protocol of a callback-driven nonlinear solver session.

A session is the opaque handle the adapter configures for exactly one solve:
variables, constraints and residuals are registered with their bounds, the
evaluation callbacks are registered together with the sparse structures of
the derivatives they fill, parameters are set by name, and a single blocking
:meth:`AbstractSession.solve` drives the optimization. The session calls back
into the adapter with an :class:`EvalRequest` and an :class:`EvalResult`
whose buffers the adapter fills in place.

All indices handed to a session are 0-based. Unbounded entries are expressed
with :attr:`AbstractSession.infinity`, never with ``inf``.
"""

import abc
from dataclasses import dataclass, field
from typing import NamedTuple, Optional

import numpy as np

from knitro_jax.types import EvalCallback, NewPointCallback, ParamValue


class EvalRequest(NamedTuple):
    """What the solver asks the adapter to evaluate.

    Attributes:
        code: Request code, one of the ``RC_EVAL*`` constants.
        x: Current point.
        lambda_: Current multipliers, ``m`` constraint entries then ``n``
            bound entries.
        sigma: Objective weight for Hessian requests.
        vec: Vector to multiply for Hessian-vector product requests.
    """

    code: int
    x: np.ndarray
    lambda_: np.ndarray
    sigma: float = 1.0
    vec: Optional[np.ndarray] = None


@dataclass
class EvalResult:
    """Output buffers of one evaluation, filled in place by the callback."""

    obj: float = 0.0
    c: np.ndarray = field(default_factory=lambda: np.zeros(0))
    obj_grad: np.ndarray = field(default_factory=lambda: np.zeros(0))
    jac: np.ndarray = field(default_factory=lambda: np.zeros(0))
    hess: np.ndarray = field(default_factory=lambda: np.zeros(0))
    hess_vec: np.ndarray = field(default_factory=lambda: np.zeros(0))
    rsd: np.ndarray = field(default_factory=lambda: np.zeros(0))
    rsd_jac: np.ndarray = field(default_factory=lambda: np.zeros(0))


class AbstractSession(abc.ABC):
    """One solver handle, created per solve and freed afterwards.

    Attributes:
        infinity: Magnitude that stands for an unbounded value.
        supports_solve_time: Whether :meth:`get_solve_time_cpu` and
            :meth:`get_solve_time_real` are available.
    """

    infinity: float
    supports_solve_time: bool = False

    # -- problem definition -------------------------------------------------

    @abc.abstractmethod
    def set_obj_goal(self, goal: int) -> None: ...

    @abc.abstractmethod
    def add_vars(self, n: int) -> None: ...

    @abc.abstractmethod
    def set_var_lobnds(self, values: np.ndarray) -> None: ...

    @abc.abstractmethod
    def set_var_upbnds(self, values: np.ndarray) -> None: ...

    @abc.abstractmethod
    def add_cons(self, m: int) -> None: ...

    @abc.abstractmethod
    def set_con_lobnds(self, values: np.ndarray) -> None: ...

    @abc.abstractmethod
    def set_con_upbnds(self, values: np.ndarray) -> None: ...

    @abc.abstractmethod
    def add_rsds(self, ne: int) -> None: ...

    @abc.abstractmethod
    def set_var_primal_init_values(self, values: np.ndarray) -> None: ...

    @abc.abstractmethod
    def set_var_dual_init_values(self, values: np.ndarray) -> None: ...

    @abc.abstractmethod
    def set_con_dual_init_values(self, values: np.ndarray) -> None: ...

    # -- callbacks ----------------------------------------------------------

    @abc.abstractmethod
    def add_eval_callback(self, callback: EvalCallback) -> int:
        """Register the objective and constraints callback; return its handle."""

    @abc.abstractmethod
    def set_cb_grad(
        self,
        cb: int,
        callback: EvalCallback,
        jac_index_cons: np.ndarray,
        jac_index_vars: np.ndarray,
    ) -> None:
        """Register the gradient and Jacobian callback with the Jacobian structure."""

    @abc.abstractmethod
    def set_cb_hess(
        self,
        cb: int,
        nnzh: int,
        callback: EvalCallback,
        hess_index_vars1: np.ndarray,
        hess_index_vars2: np.ndarray,
    ) -> None:
        """Register the Hessian callback with an upper-triangle structure.

        Every pair satisfies ``hess_index_vars1[k] <= hess_index_vars2[k]``.
        """

    @abc.abstractmethod
    def add_lsq_eval_callback(self, callback: EvalCallback) -> int:
        """Register the residual callback; return its handle."""

    @abc.abstractmethod
    def set_cb_rsd_jac(
        self,
        cb: int,
        nnzj: int,
        callback: EvalCallback,
        jac_index_rsds: np.ndarray,
        jac_index_vars: np.ndarray,
    ) -> None:
        """Register the residual Jacobian callback with its structure."""

    @abc.abstractmethod
    def set_newpt_callback(self, callback: NewPointCallback) -> None:
        """Register a callback invoked after every iteration."""

    # -- parameters and solve -----------------------------------------------

    @abc.abstractmethod
    def set_param(self, name: str, value: ParamValue) -> None: ...

    @abc.abstractmethod
    def reset_params_to_defaults(self) -> None: ...

    @abc.abstractmethod
    def solve(self) -> int:
        """Run the solver to completion and return its status code."""

    # -- results ------------------------------------------------------------

    @abc.abstractmethod
    def get_solution(self) -> tuple[int, float, np.ndarray, np.ndarray]:
        """Return ``(status, objective, x, lambda_)``.

        ``lambda_`` holds the ``m`` constraint multipliers followed by the
        ``n`` bound multipliers.
        """

    @abc.abstractmethod
    def get_abs_feas_error(self) -> float: ...

    @abc.abstractmethod
    def get_abs_opt_error(self) -> float: ...

    @abc.abstractmethod
    def get_number_iters(self) -> int: ...

    @abc.abstractmethod
    def get_objgrad_values(self) -> np.ndarray: ...

    def get_solve_time_cpu(self) -> float:
        raise NotImplementedError(f"{type(self).__name__} does not time its solves")

    def get_solve_time_real(self) -> float:
        raise NotImplementedError(f"{type(self).__name__} does not time its solves")

    @abc.abstractmethod
    def free(self) -> None:
        """Release every resource held by the session."""
