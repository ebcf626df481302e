"""Classification of raw solver return codes into semantic statuses."""

from knitro_jax.types import SolverStatus


def knitro_statuses(code: int) -> str:
    """Map a raw solver return code to a :class:`SolverStatus` value.

    Ranges are closed intervals and the first matching rule wins. Codes
    outside every documented range map to ``SolverStatus.UNKNOWN``.
    """
    if code == 0:
        return SolverStatus.FIRST_ORDER
    if code == -100:
        return SolverStatus.ACCEPTABLE
    if -103 <= code <= -101:
        return SolverStatus.STALLED  # feasible
    if -299 <= code <= -200:
        return SolverStatus.INFEASIBLE
    if -301 <= code <= -300:
        return SolverStatus.UNBOUNDED
    if code in (-400, -410):  # -400 = feasible, -410 = infeasible
        return SolverStatus.MAX_ITER
    if code in (-401, -411):
        return SolverStatus.MAX_TIME
    if code in (-402, -412):
        return SolverStatus.MAX_EVAL
    if -600 <= code <= -500:
        return SolverStatus.EXCEPTION
    return SolverStatus.UNKNOWN
