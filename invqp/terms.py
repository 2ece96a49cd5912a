"""
QP terms: pluggable cost and constraint contributions.

A term is owned by the physical/control model, lives across many solves and
may be enabled, disabled or re-parameterized between them. The assembler only
ever talks to the small interface below:

    QPCostTerm
        kind = TermKind.COST
        contribute(Q, p, t0, t1)            -> None   (adds into Q, p)

    QPConstraintTerm
        kind ∈ {TermKind.EQUALITY, TermKind.INEQUALITY}
        row_count(n)                        -> int
        contribute(A_rows, b_rows, t0, t1)  -> int    (rows written)

Constraint terms receive views covering exactly the rows they declared, so a
term can never write into another term's block. Inequality rows read A x ≥ b.

Array-valued parameters of the concrete terms may also be callables
`f(t0, t1)`, evaluated on every contribution.
"""

from __future__ import annotations

from typing import Callable, Optional, Union

import numpy as np

from .blocks.aux import TermKind

ArrayOrFn = Union[np.ndarray, Callable[[float, float], np.ndarray]]


def _eval(v, t0: float, t1: float) -> np.ndarray:
    return np.asarray(v(t0, t1) if callable(v) else v, float)


# ======================================
# Base classes
# ======================================
class QPTerm:
    """Common state: an enabled flag, a kind tag and an optional name."""

    kind: TermKind = TermKind.COST

    def __init__(self, name: Optional[str] = None, enabled: bool = True):
        self.name = name if name is not None else type(self).__name__
        self.enabled = enabled

    def is_enabled(self) -> bool:
        return self.enabled

    def set_enabled(self, enable: bool) -> None:
        self.enabled = bool(enable)

    def __repr__(self) -> str:
        state = "on" if self.enabled else "off"
        return f"{type(self).__name__}({self.name!r}, {self.kind.value}, {state})"


class QPCostTerm(QPTerm):
    kind = TermKind.COST

    def contribute(self, Q: np.ndarray, p: np.ndarray, t0: float, t1: float) -> None:
        """Add this term's symmetric PSD block to Q and its linear part to p."""
        raise NotImplementedError


class QPConstraintTerm(QPTerm):
    def __init__(self, kind: TermKind = TermKind.INEQUALITY,
                 name: Optional[str] = None, enabled: bool = True):
        if kind not in (TermKind.EQUALITY, TermKind.INEQUALITY):
            raise ValueError(f"constraint term kind must be EQUALITY or INEQUALITY, got {kind}")
        super().__init__(name, enabled)
        self.kind = kind

    def row_count(self, n: int) -> int:
        raise NotImplementedError

    def contribute(self, A_rows: np.ndarray, b_rows: np.ndarray, t0: float, t1: float) -> int:
        """Write the term's rows into the given views; return the number written."""
        raise NotImplementedError


# ======================================
# Cost terms
# ======================================
class QuadraticCostTerm(QPCostTerm):
    """Fixed contribution ½xᵀHx + xᵀf."""

    def __init__(self, H: ArrayOrFn, f: Optional[ArrayOrFn] = None, weight: float = 1.0,
                 name: Optional[str] = None, enabled: bool = True):
        super().__init__(name, enabled)
        self.H = H
        self.f = f
        self.weight = weight

    def contribute(self, Q, p, t0, t1):
        Q += self.weight * _eval(self.H, t0, t1)
        if self.f is not None:
            p += self.weight * _eval(self.f, t0, t1).ravel()


class LeastSquaresCostTerm(QPCostTerm):
    """
    Tracking term  (w/2)·||H x - f||²  →  Q += w HᵀH,  p -= w Hᵀf.

    H maps the unknowns (e.g. excitations) to a tracked quantity (e.g. a
    velocity), f is the target for the current step.
    """

    def __init__(self, H: ArrayOrFn, f: ArrayOrFn, weight: float = 1.0,
                 name: Optional[str] = None, enabled: bool = True):
        super().__init__(name, enabled)
        self.H = H
        self.f = f
        self.weight = weight

    def contribute(self, Q, p, t0, t1):
        H = np.atleast_2d(_eval(self.H, t0, t1))
        f = _eval(self.f, t0, t1).ravel()
        Q += self.weight * (H.T @ H)
        p -= self.weight * (H.T @ f)


class L2RegularizationTerm(QPCostTerm):
    """(w/2)·||x||²."""

    def __init__(self, weight: float = 1e-4, name: Optional[str] = None, enabled: bool = True):
        super().__init__(name, enabled)
        self.weight = weight

    def contribute(self, Q, p, t0, t1):
        Q[np.diag_indices_from(Q)] += self.weight


class DampingTerm(QPCostTerm):
    """
    (w/2)·||x - x_prev||², penalizing change from the previous solution.
    The model sets `x_prev` between steps; None means "no history yet".
    """

    def __init__(self, weight: float = 1e-2, name: Optional[str] = None, enabled: bool = True):
        super().__init__(name, enabled)
        self.weight = weight
        self.x_prev: Optional[np.ndarray] = None

    def contribute(self, Q, p, t0, t1):
        Q[np.diag_indices_from(Q)] += self.weight
        if self.x_prev is not None:
            p -= self.weight * np.asarray(self.x_prev, float).ravel()


# ======================================
# Constraint terms
# ======================================
class LinearConstraintTerm(QPConstraintTerm):
    """
    Rows  A x = b  (EQUALITY) or  A x ≥ b  (INEQUALITY).

    When A is a callable the row count cannot be read off the data and must be
    given as `rows`.
    """

    def __init__(self, A: ArrayOrFn, b: ArrayOrFn, kind: TermKind = TermKind.INEQUALITY,
                 rows: Optional[int] = None, name: Optional[str] = None, enabled: bool = True):
        super().__init__(kind, name, enabled)
        self.A = A
        self.b = b
        if rows is None:
            if callable(A):
                raise ValueError(f"{self.name}: callable rows need an explicit `rows` count")
            rows = np.atleast_2d(np.asarray(A, float)).shape[0]
        self.rows = int(rows)

    def row_count(self, n):
        return self.rows

    def contribute(self, A_rows, b_rows, t0, t1):
        A = np.atleast_2d(_eval(self.A, t0, t1))
        b = _eval(self.b, t0, t1).ravel()
        k = A.shape[0]
        A_rows[:k] = A
        b_rows[:k] = b
        return k


class BoundsTerm(QPConstraintTerm):
    """
    Per-unknown bounds  lower ≤ x ≤ upper  as inequality rows.

    One row per finite bound:  e_iᵀx ≥ lower_i  and  -e_iᵀx ≥ -upper_i.
    Scalar bounds broadcast to the problem size; ±inf disables a side.
    """

    def __init__(self, lower: Union[float, np.ndarray] = 0.0,
                 upper: Union[float, np.ndarray] = 1.0,
                 name: Optional[str] = None, enabled: bool = True):
        super().__init__(TermKind.INEQUALITY, name, enabled)
        self.lower = lower
        self.upper = upper

    def _bounds(self, n: int):
        lo = np.broadcast_to(np.asarray(self.lower, float), (n,))
        hi = np.broadcast_to(np.asarray(self.upper, float), (n,))
        return lo, hi

    def row_count(self, n):
        lo, hi = self._bounds(n)
        return int(np.isfinite(lo).sum() + np.isfinite(hi).sum())

    def contribute(self, A_rows, b_rows, t0, t1):
        n = A_rows.shape[1]
        lo, hi = self._bounds(n)
        il = np.flatnonzero(np.isfinite(lo))
        iu = np.flatnonzero(np.isfinite(hi))
        r = np.arange(il.size)
        A_rows[r, il] = 1.0
        b_rows[r] = lo[il]
        r = il.size + np.arange(iu.size)
        A_rows[r, iu] = -1.0
        b_rows[r] = -hi[iu]
        return il.size + iu.size
