"""Caller options of a solve.

Four keyword arguments are interpreted locally: ``x0``, ``y0``, ``z0`` and
``callback``. Every other keyword argument is a solver parameter, forwarded
to the session by name without interpretation, in the order given.
"""

from typing import Any, Optional

import equinox as eqx
import numpy as np

from knitro_jax.types import NewPointCallback, ParamValue

RESERVED = ("x0", "y0", "z0", "callback")


def _optional_vector(values) -> Optional[np.ndarray]:
    if values is None:
        return None
    return np.array(values, dtype=float).reshape(-1)


def _param_value(name: str, value: Any) -> ParamValue:
    if isinstance(value, np.generic):
        value = value.item()
    if not isinstance(value, (bool, int, float, str)):
        raise TypeError(
            f"solver parameter {name!r} must be a number, a bool or a string, "
            f"got {type(value).__name__}"
        )
    return value


class KnitroOptions(eqx.Module):
    """Options of one solve.

    Attributes:
        x0: Initial primal point, length ``nvar``. Defaults to ``meta.x0``.
        y0: Initial constraint multipliers, length ``ncon``.
        z0: Initial bound multipliers, length ``nvar``.
        callback: Called after every iteration as
            ``callback(session, x, lambda_)``; returning
            ``RC_USER_TERMINATION`` stops the solve.
        params: Solver parameters by name, in insertion order.
    """

    x0: Optional[np.ndarray] = None
    y0: Optional[np.ndarray] = None
    z0: Optional[np.ndarray] = None
    callback: Optional[NewPointCallback] = None
    params: dict[str, ParamValue] = eqx.field(default_factory=dict)

    def __check_init__(self):
        if self.callback is not None and not callable(self.callback):
            raise TypeError("callback must be callable")

    @classmethod
    def from_kwargs(cls, **kwargs) -> "KnitroOptions":
        """Split keyword arguments into reserved options and solver parameters."""
        params = {
            str(name): _param_value(name, value)
            for name, value in kwargs.items()
            if name not in RESERVED
        }
        return cls(
            x0=_optional_vector(kwargs.get("x0")),
            y0=_optional_vector(kwargs.get("y0")),
            z0=_optional_vector(kwargs.get("z0")),
            callback=kwargs.get("callback"),
            params=params,
        )

    def validate(self, nvar: int, ncon: int) -> None:
        """Check vector lengths against the model dimensions."""
        for name, value, size in (
            ("x0", self.x0, nvar),
            ("y0", self.y0, ncon),
            ("z0", self.z0, nvar),
        ):
            if value is not None and value.shape[0] != size:
                raise ValueError(f"{name} must have length {size}, got {value.shape[0]}")
