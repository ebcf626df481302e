import numpy as np
from beartype import beartype
from jaxtyping import Float, Int, Int32, jaxtyped


@jaxtyped(typechecker=beartype)
def replace_infinite(
    values: Float[np.ndarray, " n"], sentinel: float
) -> Float[np.ndarray, " n"]:
    """Return ``values`` with every infinite entry replaced by ``±sentinel``.

    The input is copied only when it actually contains an infinite entry.
    """
    mask = np.isinf(values)
    if not np.any(mask):
        return values
    out = values.copy()
    out[mask] = np.sign(values[mask]) * sentinel
    return out


@jaxtyped(typechecker=beartype)
def zero_based(indices: Int[np.ndarray, " k"]) -> Int32[np.ndarray, " k"]:
    """Shift 1-based model indices to the 0-based ``int32`` solver convention."""
    return (indices - 1).astype(np.int32)


def as_vector(values, n: int, name: str) -> np.ndarray:
    """Convert ``values`` to a float vector of length ``n`` or raise ValueError."""
    vec = np.asarray(values, dtype=float).reshape(-1)
    if vec.shape[0] != n:
        raise ValueError(f"{name} must have length {n}, got {vec.shape[0]}")
    return vec
