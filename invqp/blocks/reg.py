"""
Dense linear-algebra helpers for the active-set QP.

Features:
- Symmetry enforcement
- Null-space basis of a working set via SVD (handles rank-deficient rows)
- Reduced-Hessian step with a fixed policy for singular curvature:
    * positive definite ZᵀQZ      : Cholesky solve
    * zero / negative curvature    : descent ray if the reduced gradient sees it
    * consistent singular system   : minimum-norm (pseudo-inverse) step
- Least-squares multiplier recovery
"""

from __future__ import annotations

from typing import Tuple

import numpy as np
import scipy.linalg as la
from numpy.linalg import lstsq, norm

STEP = "step"  # finite step to the subproblem minimizer
RAY = "ray"    # descent direction with no finite minimizer along it


def _sym(A: np.ndarray) -> np.ndarray:
    return 0.5 * (A + A.T)


def asymmetry(Q: np.ndarray) -> float:
    """Largest |Q_ij - Q_ji| relative to max(1, max|Q|)."""
    if Q.size == 0:
        return 0.0
    scale = max(1.0, float(np.max(np.abs(Q))))
    return float(np.max(np.abs(Q - Q.T))) / scale


def null_space_basis(W: np.ndarray, n: int, rank_tol: float) -> Tuple[np.ndarray, int]:
    """
    Orthonormal basis Z (n x n-r) of {d : W d = 0} and the numerical rank r of W.
    """
    if W.shape[0] == 0:
        return np.eye(n), 0
    _, s, Vt = la.svd(W, full_matrices=True, check_finite=False)
    if s.size == 0 or s[0] == 0.0:
        return np.eye(n), 0
    r = int(np.sum(s > rank_tol * s[0]))
    return Vt[r:].T.copy(), r


def reduced_step(
    Q: np.ndarray, g: np.ndarray, Z: np.ndarray, eig_tol: float
) -> Tuple[np.ndarray, str]:
    """
    Minimize ½dᵀQd + gᵀd over d = Z y.

    Returns (d, kind) where kind is STEP (d reaches the subproblem minimizer)
    or RAY (d is a descent direction along which the subproblem is unbounded).
    Raises numpy.linalg.LinAlgError if the factorizations fail.
    """
    n = g.size
    if Z.shape[1] == 0:
        return np.zeros(n), STEP

    H = _sym(Z.T @ Q @ Z)
    gz = Z.T @ g
    h_scale = max(1.0, float(np.max(np.abs(H))))

    try:
        L = la.cholesky(H, lower=True, check_finite=False)
        if float(np.min(np.diag(L))) ** 2 > eig_tol * h_scale:
            y = -la.cho_solve((L, True), gz, check_finite=False)
            return Z @ y, STEP
    except la.LinAlgError:
        pass

    w, V = la.eigh(H, check_finite=False)
    tol = eig_tol * max(h_scale, float(np.max(np.abs(w))))

    # negative curvature: either sign of the eigenvector decreases the cost
    if w[0] < -tol:
        y = V[:, 0]
        if gz @ y > 0:
            y = -y
        return Z @ y, RAY

    flat = np.abs(w) <= tol
    if np.any(flat):
        Vf = V[:, flat]
        g_flat = Vf.T @ gz
        # gradient seen by a flat direction: the cost decreases linearly forever
        if norm(g_flat) > np.sqrt(eig_tol) * max(1.0, norm(gz)):
            return Z @ (-(Vf @ g_flat)), RAY

    curved = ~flat
    Vc = V[:, curved]
    y = -(Vc @ ((Vc.T @ gz) / w[curved]))
    return Z @ y, STEP


def min_norm_solution(M: np.ndarray, r: np.ndarray, rank_tol: float) -> np.ndarray:
    """Minimum-norm least-squares solution of M z = r."""
    if M.shape[0] == 0 or M.shape[1] == 0:
        return np.zeros(M.shape[1])
    z, *_ = lstsq(M, r, rcond=rank_tol)
    return z


def multipliers(W: np.ndarray, g: np.ndarray, rank_tol: float) -> np.ndarray:
    """Solve Wᵀ y ≈ g (stationarity on the working set) for the multipliers y."""
    return min_norm_solution(W.T, g, rank_tol)
