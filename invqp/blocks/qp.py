"""
Dense primal active-set solver for the inverse-control QP.

This module exposes an `ActiveSetSolver` that solves problems of the form

    minimize_x      ½ xᵀ Q x + xᵀ p
    subject to      A x ≥ b
                    Aeq x = beq

with either constraint set possibly empty.

Conventions
-----------
  - Stationarity on the working set W (all equality rows + active inequality rows):
        Q x + p = Aeqᵀ ν + A_Wᵀ λ
    so that an optimal point has λ ≥ 0 for every active inequality.
  - Equality rows are always in the working set and never dropped.

Algorithm
---------
1) Equality feasibility: minimum-norm least-squares point of Aeq x = beq.
   A residual above tolerance means the equalities are inconsistent → INFEASIBLE.
2) Minimize over the equality working set. If that point satisfies every
   inequality it is optimal (the usual unconstrained / loosely bounded case).
3) Otherwise find a feasible start with a phase-1 LP (HiGHS via scipy).
4) Primal active-set loop from the feasible start:
     - null-space step toward the minimizer on the current working set
     - ratio test along the step; the first blocking row joins the working set
     - at a working-set stationary point, drop the most negative multiplier
   Ties in both the ratio test and the drop rule go to the smallest row index.

Notes
-----
- Q is symmetrized; singular Q is handled by `reduced_step` (see reg.py).
- Numerical failures never raise: they come back as QPStatus.NUMERICAL_ERROR
  together with the last iterate.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Tuple

import numpy as np
import scipy.linalg as la
from numpy.linalg import norm
from scipy.optimize import linprog

from .aux import QPConfig, QPProblem, QPResult, QPStatus
from .reg import RAY, STEP, _sym, min_norm_solution, multipliers, null_space_basis, reduced_step

# linprog status codes
_LP_OK = 0
_LP_ITER_LIMIT = 1
_LP_INFEASIBLE = 2


def as_problem(Q, p, A=None, b=None, Aeq=None, beq=None) -> QPProblem:
    """Coerce raw arrays into a shape-checked QPProblem (None → empty block)."""
    p = np.asarray(p, float).ravel()
    n = p.size
    Q = np.asarray(Q, float)
    if Q.shape != (n, n):
        raise ValueError(f"Q has shape {Q.shape}, expected {(n, n)}")

    def _pair(M, v, label):
        if M is None and v is None:
            return np.zeros((0, n)), np.zeros(0)
        if M is None or v is None:
            raise ValueError(f"{label}: matrix and right-hand side must be given together")
        M = np.asarray(M, float)
        if M.ndim == 1 and M.size == 0:
            M = M.reshape(0, n)
        v = np.asarray(v, float).ravel()
        if M.ndim != 2 or M.shape[1] != n or M.shape[0] != v.size:
            raise ValueError(
                f"{label}: matrix {M.shape} and rhs {v.shape} do not match size {n}"
            )
        return M, v

    A, b = _pair(A, b, "inequality system")
    Aeq, beq = _pair(Aeq, beq, "equality system")
    return QPProblem(Q=Q, p=p, A=A, b=b, Aeq=Aeq, beq=beq)


class ActiveSetSolver:
    """
    Dense active-set QP solver.

    Parameters
    ----------
    cfg : QPConfig, optional
        Tolerances and iteration limit.

    Attributes
    ----------
    last_x : np.ndarray | None
        Most recent iterate of the last call; reset at the start of every solve.
    """

    def __init__(self, cfg: QPConfig | None = None):
        self.cfg = cfg if cfg is not None else QPConfig()
        self.last_x: Optional[np.ndarray] = None

    # ------------------------------ entry points ------------------------------
    def solve_ineq(self, Q, p, A=None, b=None) -> QPResult:
        """Unconstrained / inequality-only problem."""
        return self.solve(Q, p, A, b, None, None)

    def solve_eq(self, Q, p, Aeq, beq) -> QPResult:
        """Equality-only problem."""
        return self.solve(Q, p, None, None, Aeq, beq)

    def solve(self, Q, p, A=None, b=None, Aeq=None, beq=None) -> QPResult:
        """
        Solve the general problem. Shape errors raise ValueError; everything
        numerical is reported through the returned status.
        """
        prob = as_problem(Q, p, A, b, Aeq, beq)
        n = prob.size
        self.last_x = np.zeros(n)

        if n == 0:
            return self._solve_empty(prob)

        if not all(np.all(np.isfinite(M)) for M in (prob.Q, prob.p, prob.A, prob.b, prob.Aeq, prob.beq)):
            return self._result(prob, self.last_x, QPStatus.NUMERICAL_ERROR,
                                message="non-finite problem data")

        try:
            return self._solve(prob)
        except (la.LinAlgError, FloatingPointError) as e:
            logging.debug(f"[ActiveSet] linear algebra failure: {e}")
            return self._result(prob, self.last_x, QPStatus.NUMERICAL_ERROR, message=str(e))

    # ------------------------------ internals ------------------------------
    def _row_tol(self, M: np.ndarray, rhs: np.ndarray, x: np.ndarray) -> np.ndarray:
        """Per-row feasibility tolerance scaled by |rhs_i| and ||m_i||·||x||."""
        if M.shape[0] == 0:
            return np.zeros(0)
        scale = np.maximum(np.abs(rhs), norm(M, axis=1) * norm(x))
        return self.cfg.feas_tol * np.maximum(1.0, scale)

    def _result(self, prob: QPProblem, x, status, *, lam=None, nu=None,
                iterations=0, active=None, phase1=False, message="") -> QPResult:
        return QPResult(
            x=np.array(x, float, copy=True),
            status=status,
            lam=np.zeros(prob.num_ineq) if lam is None else lam,
            nu=np.zeros(prob.num_eq) if nu is None else nu,
            iterations=iterations,
            active=list(active) if active else [],
            phase1=phase1,
            message=message,
        )

    def _solve_empty(self, prob: QPProblem) -> QPResult:
        x = np.zeros(0)
        ok = bool(np.all(prob.b <= self.cfg.feas_tol * np.maximum(1.0, np.abs(prob.b))))
        ok = ok and bool(np.all(np.abs(prob.beq) <= self.cfg.feas_tol))
        status = QPStatus.SOLVED if ok else QPStatus.INFEASIBLE
        return self._result(prob, x, status)

    def _solve(self, prob: QPProblem) -> QPResult:
        cfg = self.cfg
        Q = _sym(prob.Q)
        p, A, b, Aeq, beq = prob.p, prob.A, prob.b, prob.Aeq, prob.beq
        n, meq, m = prob.size, prob.num_eq, prob.num_ineq

        # --- equality feasibility ---
        if meq:
            x0 = min_norm_solution(Aeq, beq, cfg.rank_tol)
            self.last_x = x0
            res = np.abs(Aeq @ x0 - beq)
            if np.any(res > self._row_tol(Aeq, beq, x0)):
                return self._result(prob, x0, QPStatus.INFEASIBLE,
                                    message=f"inconsistent equalities, residual {res.max():.3e}")
        else:
            x0 = np.zeros(n)

        # --- minimizer on the equality working set ---
        Z_eq, _ = null_space_basis(Aeq, n, cfg.rank_tol)
        d, kind = reduced_step(Q, Q @ x0 + p, Z_eq, cfg.eig_tol)
        if not np.all(np.isfinite(d)):
            return self._result(prob, x0, QPStatus.NUMERICAL_ERROR, message="non-finite step")

        if kind == STEP:
            x_eq = x0 + d
            self.last_x = x_eq
            if m == 0 or np.all(A @ x_eq - b >= -self._row_tol(A, b, x_eq)):
                nu = multipliers(Aeq, Q @ x_eq + p, cfg.rank_tol)
                return self._result(prob, x_eq, QPStatus.SOLVED, nu=nu)
        elif m == 0:
            return self._result(prob, x0, QPStatus.UNBOUNDED,
                                message="cost unbounded below on the equality subspace")

        # --- feasible start ---
        x_start, status = self._phase1(A, b, Aeq, beq)
        if status is not None:
            return self._result(prob, self.last_x, status, phase1=True,
                                message=f"phase-1 LP ended with {status.name}")
        if meq:
            # snap onto Aeq x = beq: every later step lies in null(Aeq)
            x_start = x_start - min_norm_solution(Aeq, Aeq @ x_start - beq, cfg.rank_tol)
        self.last_x = x_start
        return self._active_set_loop(prob, Q, x_start)

    def _phase1(self, A, b, Aeq, beq) -> Tuple[np.ndarray, Optional[QPStatus]]:
        """Feasible point of {A x ≥ b, Aeq x = beq} via a zero-cost LP."""
        n = A.shape[1]
        lp = linprog(
            np.zeros(n),
            A_ub=-A,
            b_ub=-b,
            A_eq=Aeq if Aeq.shape[0] else None,
            b_eq=beq if beq.shape[0] else None,
            bounds=[(None, None)] * n,
            method=self.cfg.phase1_method,
        )
        if self.cfg.verbose:
            logging.debug(f"[ActiveSet] phase-1 status={lp.status} ({lp.message})")
        if lp.status == _LP_OK and lp.x is not None:
            return np.asarray(lp.x, float), None
        if lp.status == _LP_INFEASIBLE:
            return None, QPStatus.INFEASIBLE
        if lp.status == _LP_ITER_LIMIT:
            return None, QPStatus.ITERATION_LIMIT
        return None, QPStatus.NUMERICAL_ERROR

    def _ratio_test(
        self, A, b, x, d, active: List[int]
    ) -> Tuple[float, Optional[int]]:
        """Largest α with A_i (x + α d) ≥ b_i for every inactive row; first blocking row."""
        cfg = self.cfg
        inactive = np.setdiff1d(np.arange(A.shape[0]), np.asarray(active, int))
        if inactive.size == 0:
            return np.inf, None
        Ai = A[inactive]
        Ad = Ai @ d
        dec = Ad < -cfg.ratio_tol * np.maximum(1.0, norm(Ai, axis=1) * norm(d))
        if not np.any(dec):
            return np.inf, None
        rows = inactive[dec]
        slack = np.maximum(Ai[dec] @ x - b[rows], 0.0)
        alphas = slack / (-Ad[dec])
        a_min = float(alphas.min())
        # smallest row index among (near-)ties
        ties = alphas <= a_min + cfg.ratio_tol * max(1.0, a_min)
        return a_min, int(rows[ties][0])

    def _active_set_loop(self, prob: QPProblem, Q: np.ndarray, x: np.ndarray) -> QPResult:
        cfg = self.cfg
        p, A, b, Aeq = prob.p, prob.A, prob.b, prob.Aeq
        n, meq, m = prob.size, prob.num_eq, prob.num_ineq
        active: List[int] = []

        for it in range(1, cfg.max_iter + 1):
            g = Q @ x + p
            W = np.vstack([Aeq, A[active]]) if active else Aeq
            Z, _ = null_space_basis(W, n, cfg.rank_tol)
            d, kind = reduced_step(Q, g, Z, cfg.eig_tol)
            if not np.all(np.isfinite(d)):
                return self._result(prob, x, QPStatus.NUMERICAL_ERROR, iterations=it,
                                    active=active, phase1=True, message="non-finite step")

            if kind == RAY or norm(d) > cfg.step_tol * max(1.0, norm(x)):
                alpha_max = 1.0 if kind == STEP else np.inf
                alpha, block = self._ratio_test(A, b, x, d, active)
                if block is not None and alpha < alpha_max:
                    x = x + alpha * d
                    self.last_x = x
                    active.append(block)
                    active.sort()
                    if cfg.verbose:
                        logging.debug(f"[ActiveSet] it={it} add row {block} (α={alpha:.3e})")
                    continue
                if kind == RAY:
                    return self._result(prob, x, QPStatus.UNBOUNDED, iterations=it,
                                        active=active, phase1=True,
                                        message="descent ray not blocked by any inequality")
                x = x + d
                self.last_x = x
                g = Q @ x + p

            # x minimizes over W: check multiplier signs
            y = multipliers(W, g, cfg.rank_tol)
            nu, lam_act = y[:meq], y[meq:]
            mtol = cfg.mult_tol * max(1.0, norm(g))
            if not active or float(lam_act.min()) >= -mtol:
                lam = np.zeros(m)
                lam[active] = np.maximum(lam_act, 0.0)
                return self._result(prob, x, QPStatus.SOLVED, lam=lam, nu=nu,
                                    iterations=it, active=active, phase1=True)
            # most negative multiplier leaves, smallest row index among (near-)ties
            k = int(np.flatnonzero(lam_act <= float(lam_act.min()) + mtol)[0])
            row = active.pop(k)
            if cfg.verbose:
                logging.debug(f"[ActiveSet] it={it} drop row {row} (λ={lam_act[k]:.3e})")

        return self._result(prob, x, QPStatus.ITERATION_LIMIT, iterations=cfg.max_iter,
                            active=active, phase1=True,
                            message=f"no convergence in {cfg.max_iter} iterations")
