# qp_solver.py
# Per-step QP orchestration for inverse control:
# - assemble (Q, p, A, b, Aeq, beq) from the model's cost/constraint terms
# - pick the solver entry point from the constraint classes present
# - report non-SOLVED outcomes and still hand back the best iterate
# - optional one-shot timing + text dump of the problem for regression replay
from __future__ import annotations

import logging
import time
from typing import Optional, Sequence

import numpy as np

from .assemble import QPAssembler
from .blocks.aux import QPConfig, QPProblem, QPResult, QPStatus
from .blocks.qp import ActiveSetSolver
from .dump import write_qp
from .terms import QPConstraintTerm, QPCostTerm


class QPSolver:
    """
    Solves the quadratic program

        min  ½ xᵀQx + xᵀp
        s.t. A x ≥ b
             Aeq x = beq

    whose data is assembled from cost terms (Q, p) and constraint terms
    (inequality terms → A, b; equality terms → Aeq, beq).

    One instance per simulation; it is reused across time steps and is not
    meant to be shared between threads.
    """

    def __init__(self, config: QPConfig | None = None):
        self.cfg = config if config is not None else QPConfig()
        self.assembler = QPAssembler(self.cfg)
        self.solver = ActiveSetSolver(self.cfg)

        # diagnostics
        self.solve_count = 0
        self.last_result: Optional[QPResult] = None
        self.last_problem: Optional[QPProblem] = None
        self.last_solve_time: Optional[float] = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------
    def solve(
        self,
        cost_terms: Sequence[QPCostTerm],
        constraint_terms: Optional[Sequence[QPConstraintTerm]],
        size: int,
        t0: float,
        t1: float,
    ) -> np.ndarray:
        """
        Assemble and solve the program for the step [t0, t1]; return x (length `size`).

        Wiring errors in the terms raise (TermContractError / ValueError).
        Numerical failures do not: they are logged and the best available
        iterate is returned so the caller can keep stepping.
        """
        prob = self.assembler.assemble(cost_terms, constraint_terms, size, t0, t1)
        self.last_problem = prob

        timed = self._dump_armed()
        start = time.perf_counter() if timed else 0.0

        if prob.num_eq == 0:
            res = self.solver.solve_ineq(prob.Q, prob.p, prob.A, prob.b)
        else:
            res = self.solver.solve(prob.Q, prob.p, prob.A, prob.b, prob.Aeq, prob.beq)

        if timed:
            self.last_solve_time = time.perf_counter() - start
            logging.info(f"inverse solve time: {1e3 * self.last_solve_time:.3f} ms")
            write_qp(self.cfg.dump_file, prob.Q, prob.p, prob.A, prob.b, res.x,
                     fmt=self.cfg.dump_fmt)
        self.solve_count += 1

        if res.status is not QPStatus.SOLVED:
            self._report(res, prob, t0, t1)

        self.last_result = res
        return res.x

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------
    def _dump_armed(self) -> bool:
        return self.cfg.dump_file is not None and self.solve_count == self.cfg.dump_trigger

    def _report(self, res: QPResult, prob: QPProblem, t0: float, t1: float) -> None:
        msg = f"InverseSolve failed: solver status = {res.status.name}"
        ctx = (
            f" (t=[{t0:g}, {t1:g}], size={prob.size}, eq={prob.num_eq}, "
            f"ineq={prob.num_ineq}, iterations={res.iterations})"
        )
        if res.message:
            ctx += f": {res.message}"
        logging.warning(msg + ctx)
