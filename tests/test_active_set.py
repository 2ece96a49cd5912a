import numpy as np
import pytest
from numpy.testing import assert_allclose

from invqp.blocks.aux import QPConfig, QPStatus
from invqp.blocks.qp import ActiveSetSolver


def _spd(rng, n):
    M = rng.standard_normal((n, n))
    return M @ M.T + n * np.eye(n)


def _kkt_residual(Q, p, A, b, Aeq, beq, res):
    x = res.x
    r = Q @ x + p
    if Aeq is not None:
        r = r - Aeq.T @ res.nu
    if A is not None:
        r = r - A.T @ res.lam
    return np.linalg.norm(r)


@pytest.mark.parametrize("n", [1, 3, 8])
def test_unconstrained_matches_direct_solve(n):
    rng = np.random.default_rng(n)
    Q = _spd(rng, n)
    p = rng.standard_normal(n)

    res = ActiveSetSolver().solve_ineq(Q, p)

    assert res.status is QPStatus.SOLVED
    assert_allclose(res.x, -np.linalg.solve(Q, p), atol=1e-10)
    assert not res.phase1


def test_empty_problem():
    res = ActiveSetSolver().solve_ineq(np.zeros((0, 0)), np.zeros(0))
    assert res.status is QPStatus.SOLVED
    assert res.x.shape == (0,)


def test_identity_cost_zero_vector():
    res = ActiveSetSolver().solve_ineq(np.eye(2), np.zeros(2))
    assert res.status is QPStatus.SOLVED
    assert_allclose(res.x, [0.0, 0.0], atol=1e-14)


def test_single_upper_bound_becomes_active():
    # x0 <= 1 written as -x0 >= -1
    A = np.array([[-1.0, 0.0]])
    b = np.array([-1.0])

    res = ActiveSetSolver().solve_ineq(np.eye(2), np.array([-2.0, -2.0]), A, b)

    assert res.status is QPStatus.SOLVED
    assert_allclose(res.x, [1.0, 2.0], atol=1e-8)
    assert res.active == [0]
    assert res.lam[0] > 0
    assert res.lam[0] == pytest.approx(1.0, abs=1e-8)


def test_inactive_inequality_short_circuits():
    A = np.array([[1.0, 0.0]])
    b = np.array([-5.0])
    res = ActiveSetSolver().solve_ineq(np.eye(2), np.array([-2.0, -2.0]), A, b)

    assert res.status is QPStatus.SOLVED
    assert_allclose(res.x, [2.0, 2.0])
    assert_allclose(res.lam, [0.0])
    assert res.active == []


def test_contradictory_equalities_are_infeasible():
    Aeq = np.array([[1.0, 0.0], [1.0, 0.0]])
    beq = np.array([1.0, 2.0])

    res = ActiveSetSolver().solve_eq(np.eye(2), np.zeros(2), Aeq, beq)

    assert res.status is QPStatus.INFEASIBLE
    assert res.x.shape == (2,)


def test_redundant_consistent_equalities_are_solved():
    Aeq = np.array([[1.0, 0.0], [2.0, 0.0]])
    beq = np.array([1.0, 2.0])
    res = ActiveSetSolver().solve_eq(np.eye(2), np.array([0.0, -3.0]), Aeq, beq)

    assert res.status is QPStatus.SOLVED
    assert_allclose(res.x, [1.0, 3.0], atol=1e-10)


def test_infeasible_inequalities():
    # x0 >= 1 and x0 <= 0
    A = np.array([[1.0, 0.0], [-1.0, 0.0]])
    b = np.array([1.0, 0.0])
    res = ActiveSetSolver().solve_ineq(np.eye(2), np.zeros(2), A, b)
    assert res.status is QPStatus.INFEASIBLE


def test_equality_only_matches_kkt_solve():
    rng = np.random.default_rng(7)
    n, meq = 6, 2
    Q = _spd(rng, n)
    p = rng.standard_normal(n)
    Aeq = rng.standard_normal((meq, n))
    beq = rng.standard_normal(meq)

    res = ActiveSetSolver().solve_eq(Q, p, Aeq, beq)

    K = np.block([[Q, Aeq.T], [Aeq, np.zeros((meq, meq))]])
    ref = np.linalg.solve(K, np.concatenate([-p, beq]))[:n]
    assert res.status is QPStatus.SOLVED
    assert_allclose(Aeq @ res.x, beq, atol=1e-9)
    assert_allclose(res.x, ref, atol=1e-8)
    assert _kkt_residual(Q, p, None, None, Aeq, beq, res) < 1e-8


@pytest.mark.parametrize("seed", [0, 1, 2, 3])
def test_mixed_problem_kkt_conditions(seed):
    rng = np.random.default_rng(seed)
    n, meq, m = 8, 2, 10
    Q = _spd(rng, n)
    p = 5.0 * rng.standard_normal(n)
    Aeq = rng.standard_normal((meq, n))
    A = rng.standard_normal((m, n))
    x_feas = rng.standard_normal(n)
    beq = Aeq @ x_feas
    b = A @ x_feas - rng.uniform(0.0, 0.5, m)

    res = ActiveSetSolver().solve(Q, p, A, b, Aeq, beq)

    assert res.status is QPStatus.SOLVED
    slack = A @ res.x - b
    assert_allclose(Aeq @ res.x, beq, atol=1e-7)
    assert np.all(slack >= -1e-7)
    assert np.all(res.lam >= 0.0)
    assert_allclose(res.lam * slack, 0.0, atol=1e-7)
    inactive = np.setdiff1d(np.arange(m), res.active)
    assert_allclose(res.lam[inactive], 0.0)
    assert _kkt_residual(Q, p, A, b, Aeq, beq, res) < 1e-7


def test_box_constrained_excitations():
    # tracking target outside [0, 1] for two of three actuators
    Q = np.eye(3)
    p = -np.array([1.5, 0.25, -0.5])
    A = np.vstack([np.eye(3), -np.eye(3)])
    b = np.concatenate([np.zeros(3), -np.ones(3)])

    res = ActiveSetSolver().solve_ineq(Q, p, A, b)

    assert res.status is QPStatus.SOLVED
    assert_allclose(res.x, [1.0, 0.25, 0.0], atol=1e-8)
    assert res.active == [2, 3]


def test_tied_ratio_test_prefers_lowest_row():
    A = np.array([[-1.0, 0.0], [-1.0, 0.0]])
    b = np.array([-1.0, -1.0])
    res = ActiveSetSolver().solve_ineq(np.eye(2), np.array([-2.0, -2.0]), A, b)

    assert res.status is QPStatus.SOLVED
    assert_allclose(res.x, [1.0, 2.0], atol=1e-8)
    assert res.active == [0]
    assert res.lam[1] == 0.0


def test_repeated_solves_are_identical():
    rng = np.random.default_rng(11)
    n, m = 5, 6
    Q = _spd(rng, n)
    p = 4.0 * rng.standard_normal(n)
    A = rng.standard_normal((m, n))
    b = A @ rng.standard_normal(n) - 0.1

    solver = ActiveSetSolver()
    r1 = solver.solve_ineq(Q, p, A, b)
    r2 = solver.solve_ineq(Q, p, A, b)

    assert r1.status is r2.status
    assert np.array_equal(r1.x, r2.x)
    assert r1.active == r2.active


def test_unbounded_without_constraints():
    res = ActiveSetSolver().solve_ineq(np.zeros((2, 2)), np.array([1.0, 0.0]))
    assert res.status is QPStatus.UNBOUNDED


def test_unbounded_when_ray_not_blocked():
    A = np.array([[0.0, 1.0]])
    b = np.array([0.0])
    res = ActiveSetSolver().solve_ineq(np.zeros((2, 2)), np.array([1.0, 0.0]), A, b)
    assert res.status is QPStatus.UNBOUNDED


def test_singular_cost_bounded_by_inequality():
    A = np.array([[1.0, 0.0]])
    b = np.array([0.0])
    res = ActiveSetSolver().solve_ineq(np.zeros((2, 2)), np.array([1.0, 0.0]), A, b)

    assert res.status is QPStatus.SOLVED
    assert res.x[0] == pytest.approx(0.0, abs=1e-8)
    assert res.lam[0] == pytest.approx(1.0, abs=1e-8)


def test_singular_cost_takes_minimum_norm_minimizer():
    # cost only sees x0; x1 is free and stays at the minimum-norm value 0
    Q = np.diag([1.0, 0.0])
    res = ActiveSetSolver().solve_ineq(Q, np.array([-1.0, 0.0]))

    assert res.status is QPStatus.SOLVED
    assert_allclose(res.x, [1.0, 0.0], atol=1e-12)


def test_iteration_limit_returns_last_iterate():
    A = np.array([[-1.0, 0.0]])
    b = np.array([-1.0])
    solver = ActiveSetSolver(QPConfig(max_iter=1))

    res = solver.solve_ineq(np.eye(2), np.array([-2.0, -2.0]), A, b)

    assert res.status is QPStatus.ITERATION_LIMIT
    assert res.x[0] == pytest.approx(1.0, abs=1e-8)


def test_non_finite_data_is_numerical_error():
    Q = np.eye(2)
    Q[0, 0] = np.nan
    res = ActiveSetSolver().solve_ineq(Q, np.zeros(2))
    assert res.status is QPStatus.NUMERICAL_ERROR
    assert res.x.shape == (2,)


def test_shape_mismatch_raises():
    with pytest.raises(ValueError):
        ActiveSetSolver().solve_ineq(np.eye(3), np.zeros(2))
    with pytest.raises(ValueError):
        ActiveSetSolver().solve_ineq(np.eye(2), np.zeros(2), np.ones((1, 3)), np.zeros(1))
