"""
Two-pass assembly of the dense QP from cost and constraint terms.

Pass 1 sizes the equality and inequality systems from the enabled constraint
terms (in order); pass 2 allocates zeroed buffers and lets every enabled term
write its block. A constraint term sees only the row views of its declared
span, and the row span it occupies is fixed by the cumulative row count of the
enabled terms of the same class before it.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np

from .blocks.aux import QPConfig, QPProblem, TermContractError, TermKind
from .blocks.reg import _sym, asymmetry
from .terms import QPConstraintTerm, QPCostTerm


class QPAssembler:
    """
    Builds (Q, p, A, b, Aeq, beq) for a problem of size n.

    Holds no per-call state: every call allocates fresh buffers, so enabling
    or disabling terms between calls can never leave a stale, wrongly sized
    system behind.
    """

    def __init__(self, cfg: QPConfig | None = None):
        self.cfg = cfg if cfg is not None else QPConfig()

    # ------------------------------ pass 1 ------------------------------
    def count_rows(
        self, constraint_terms: Optional[Iterable[QPConstraintTerm]], n: int
    ) -> Tuple[int, int, List[Tuple[QPConstraintTerm, int]]]:
        """
        Return (num_eq, num_ineq, layout) where layout pairs each enabled,
        non-empty constraint term with its declared row count, in order.
        """
        num_eq = num_ineq = 0
        layout: List[Tuple[QPConstraintTerm, int]] = []
        for term in constraint_terms or ():
            if not term.enabled:
                continue
            if term.kind not in (TermKind.EQUALITY, TermKind.INEQUALITY):
                raise TermContractError(f"{term!r} is not a constraint term")
            k = term.row_count(n)
            if not isinstance(k, (int, np.integer)) or k < 0:
                raise TermContractError(f"{term!r} declared an invalid row count {k!r}")
            k = int(k)
            if k == 0:
                continue
            if term.kind is TermKind.EQUALITY:
                num_eq += k
            else:
                num_ineq += k
            layout.append((term, k))
        return num_eq, num_ineq, layout

    # ------------------------------ pass 2 ------------------------------
    def assemble(
        self,
        cost_terms: Sequence[QPCostTerm],
        constraint_terms: Optional[Sequence[QPConstraintTerm]],
        n: int,
        t0: float,
        t1: float,
    ) -> QPProblem:
        if cost_terms is None:
            raise ValueError("cost_terms is required (may be empty)")
        if n < 0:
            raise ValueError(f"problem size must be non-negative, got {n}")

        num_eq, num_ineq, layout = self.count_rows(constraint_terms, n)

        Q = np.zeros((n, n))
        p = np.zeros(n)
        A = np.zeros((num_ineq, n))
        b = np.zeros(num_ineq)
        Aeq = np.zeros((num_eq, n))
        beq = np.zeros(num_eq)

        for term in cost_terms:
            if not term.enabled:
                continue
            if term.kind is not TermKind.COST:
                raise TermContractError(f"{term!r} in the cost list is not a cost term")
            term.contribute(Q, p, t0, t1)

        asym = asymmetry(Q)
        if asym > self.cfg.sym_tol:
            raise TermContractError(f"assembled cost matrix is not symmetric (rel. asymmetry {asym:.3e})")
        Q = _sym(Q)

        row_eq = row_ineq = 0
        for term, k in layout:
            if term.kind is TermKind.EQUALITY:
                M, v, r0 = Aeq, beq, row_eq
            else:
                M, v, r0 = A, b, row_ineq
            written = term.contribute(M[r0:r0 + k], v[r0:r0 + k], t0, t1)
            if written != k:
                raise TermContractError(f"{term!r} declared {k} rows but wrote {written}")
            if term.kind is TermKind.EQUALITY:
                row_eq += k
            else:
                row_ineq += k

        if self.cfg.verbose:
            logging.debug(f"[Assembler] n={n} num_eq={num_eq} num_ineq={num_ineq} terms={len(layout)}")
        return QPProblem(Q=Q, p=p, A=A, b=b, Aeq=Aeq, beq=beq)
