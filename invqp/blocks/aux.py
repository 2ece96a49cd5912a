# qp_aux.py
# Shared configuration, status enums and result containers for the
# term-based inverse-control QP.

from __future__ import annotations

# =========================
# Standard library
# =========================
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

# =========================
# Third-party
# =========================
import numpy as np


# ======================================
# Enums
# ======================================
class TermKind(Enum):
    """Contribution class of a QP term."""

    COST = "cost"
    EQUALITY = "equality"
    INEQUALITY = "inequality"


class QPStatus(Enum):
    """Outcome of a single QP solve."""

    SOLVED = "solved"
    INFEASIBLE = "infeasible"
    UNBOUNDED = "unbounded"
    ITERATION_LIMIT = "iteration_limit"
    NUMERICAL_ERROR = "numerical_error"


# ======================================
# Errors
# ======================================
class TermContractError(ValueError):
    """A term broke its row-count or symmetry contract (wiring bug, fatal)."""


# ======================================
# Global configuration
# ======================================
@dataclass
class QPConfig:
    """
    Configuration for the assembler, the active-set solver and the orchestrator.

    Notes
    -----
    • Tolerances named *_tol are relative: they are scaled by the magnitude of
      the quantities they compare (row norms, largest singular value, ...).
    • Diagnostics are off unless `dump_file` is set.
    """

    # ---------------- Active set ----------------
    max_iter: int = 200
    feas_tol: float = 1e-9
    mult_tol: float = 1e-10
    step_tol: float = 1e-12
    ratio_tol: float = 1e-12

    # ---------------- Linear algebra ----------------
    rank_tol: float = 1e-10  # singular value cutoff for null spaces
    eig_tol: float = 1e-10   # zero-curvature cutoff in the reduced Hessian
    sym_tol: float = 1e-10   # accepted asymmetry of assembled Q

    # ---------------- Phase 1 (feasible start) ----------------
    phase1_method: str = "highs"

    # ---------------- Diagnostics ----------------
    dump_file: Optional[str] = None
    dump_trigger: int = 200
    dump_fmt: str = "%g"
    verbose: bool = False


# ======================================
# Problem / result containers
# ======================================
@dataclass
class QPProblem:
    """Dense QP  min ½xᵀQx + xᵀp  s.t.  A x ≥ b,  Aeq x = beq."""

    Q: np.ndarray
    p: np.ndarray
    A: np.ndarray
    b: np.ndarray
    Aeq: np.ndarray
    beq: np.ndarray

    @property
    def size(self) -> int:
        return int(self.p.size)

    @property
    def num_ineq(self) -> int:
        return int(self.A.shape[0])

    @property
    def num_eq(self) -> int:
        return int(self.Aeq.shape[0])


@dataclass
class QPResult:
    x: np.ndarray
    status: QPStatus
    lam: np.ndarray = field(default_factory=lambda: np.zeros(0))
    nu: np.ndarray = field(default_factory=lambda: np.zeros(0))
    iterations: int = 0
    active: List[int] = field(default_factory=list)
    phase1: bool = False
    message: str = ""

    @property
    def solved(self) -> bool:
        return self.status is QPStatus.SOLVED
