"""Numeric constants of the callback-driven solver protocol.

The numbering follows the Knitro reference manual so that request and return
codes coming from the real ``knitro`` package and from the in-process
backend can be compared against the same names.
"""

# Value used in place of an infinite bound
INFINITY = 1.0e20

# Objective goal
OBJGOAL_MINIMIZE = 0
OBJGOAL_MAXIMIZE = 1

# Evaluation request codes
RC_EVALFC = 1
RC_EVALGA = 2
RC_EVALH = 3
RC_EVALHV = 7
RC_EVALH_NO_F = 8
RC_EVALHV_NO_F = 9
RC_EVALR = 10
RC_EVALRJ = 11

# Return codes
RC_OPTIMAL = 0
RC_NEAR_OPT = -100
RC_FEAS_XTOL = -101
RC_INFEASIBLE = -200
RC_UNBOUNDED = -300
RC_ITER_LIMIT_FEAS = -400
RC_TIME_LIMIT_FEAS = -401
RC_FEVAL_LIMIT_FEAS = -402
RC_ITER_LIMIT_INFEAS = -410
RC_TIME_LIMIT_INFEAS = -411
RC_FEVAL_LIMIT_INFEAS = -412
RC_CALLBACK_ERR = -500
RC_USER_TERMINATION = -504
RC_ILLEGAL_CALL = -515
RC_BAD_PARAMINPUT = -521

# Parameter values
HESSIAN_NO_F_FORBID = 0
HESSIAN_NO_F_ALLOW = 1

HESSOPT_EXACT = 1
HESSOPT_BFGS = 2
HESSOPT_SR1 = 3
HESSOPT_PRODUCT = 5
