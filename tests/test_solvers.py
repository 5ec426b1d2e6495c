import pyomo.environ as pyo
import cvxpy as cp
import pytest
from lmp_errors import SolverUnavailable
from lmp_problem import LinearExpression, OptimizationProblem, Sense, SolveStatus
from lmp_solvers import (
    CvxpySolver,
    PyomoSolver,
    cvxpy_status,
    make_solver,
    pyomo_status,
)


def single_variable(lower=0.0, upper=None) -> OptimizationProblem:
    problem = OptimizationProblem()
    problem.add_variable("x", lower=lower, upper=upper)
    return problem


def test_equality_dual_convention(solver):
    # min 2x s.t. x == 3: d(objective)/d(rhs) == 2, reported as -2
    problem = single_variable()
    problem.set_objective(LinearExpression.of([("x", 2.0)]))
    problem.add_constraint("c", LinearExpression.of([("x", 1.0)]), Sense.EQ, 3.0)
    solution = solver.solve(problem)
    assert solution.status is SolveStatus.OPTIMAL
    assert solution.values["x"] == pytest.approx(3.0, abs=1e-6)
    assert solution.objective == pytest.approx(6.0, abs=1e-6)
    assert solution.duals["c"] == pytest.approx(-2.0, abs=1e-6)


def test_inequality_dual_is_non_negative(solver):
    # min -x s.t. x <= 4: relaxing the bound lowers the objective by 1 per unit
    problem = single_variable()
    problem.set_objective(LinearExpression.of([("x", -1.0)]))
    problem.add_constraint("c", LinearExpression.of([("x", 1.0)]), Sense.LE, 4.0)
    solution = solver.solve(problem)
    assert solution.status is SolveStatus.OPTIMAL
    assert solution.objective == pytest.approx(-4.0, abs=1e-6)
    assert solution.duals["c"] == pytest.approx(1.0, abs=1e-6)


def test_inactive_inequality_has_zero_dual(solver):
    problem = single_variable()
    problem.set_objective(LinearExpression.of([("x", 1.0)]))
    problem.add_constraint("c", LinearExpression.of([("x", 1.0)]), Sense.LE, 4.0)
    solution = solver.solve(problem)
    assert solution.values["x"] == pytest.approx(0.0, abs=1e-6)
    assert solution.duals["c"] == pytest.approx(0.0, abs=1e-6)


def test_infeasible(solver):
    problem = single_variable(upper=1.0)
    problem.set_objective(LinearExpression.of([("x", 1.0)]))
    problem.add_constraint("c", LinearExpression.of([("x", 1.0)]), Sense.EQ, 3.0)
    solution = solver.solve(problem)
    assert solution.status is SolveStatus.INFEASIBLE
    assert not solution.optimal
    assert solution.values == {}
    assert solution.message


def test_unbounded(solver):
    problem = single_variable()
    problem.add_variable("y", lower=0.0)
    problem.add_constraint("c", LinearExpression.of([("x", 1.0)]), Sense.EQ, 1.0)
    problem.set_objective(LinearExpression.of([("y", -1.0)]))
    solution = solver.solve(problem)
    # Presolve may report "infeasible or unbounded" without telling them apart
    assert solution.status in (SolveStatus.UNBOUNDED, SolveStatus.INFEASIBLE)
    assert not solution.optimal


def test_unavailable_solvers():
    problem = single_variable()
    problem.set_objective(LinearExpression.of([("x", 1.0)]))
    with pytest.raises(SolverUnavailable):
        PyomoSolver("no_such_solver").solve(problem)
    with pytest.raises(SolverUnavailable):
        CvxpySolver("NO_SUCH_SOLVER").solve(problem)


@pytest.mark.parametrize(
    "condition, status",
    [
        (pyo.TerminationCondition.optimal, SolveStatus.OPTIMAL),
        (pyo.TerminationCondition.infeasible, SolveStatus.INFEASIBLE),
        (pyo.TerminationCondition.unbounded, SolveStatus.UNBOUNDED),
        (pyo.TerminationCondition.maxTimeLimit, SolveStatus.TIMEOUT),
        (pyo.TerminationCondition.solverFailure, SolveStatus.NUMERICAL_ISSUE),
        (pyo.TerminationCondition.maxIterations, SolveStatus.UNKNOWN),
    ],
)
def test_pyomo_status(condition, status):
    assert pyomo_status(condition) is status


@pytest.mark.parametrize(
    "status, deadline, expected",
    [
        (cp.OPTIMAL, False, SolveStatus.OPTIMAL),
        (cp.OPTIMAL_INACCURATE, False, SolveStatus.NUMERICAL_ISSUE),
        (cp.INFEASIBLE, False, SolveStatus.INFEASIBLE),
        (cp.UNBOUNDED, False, SolveStatus.UNBOUNDED),
        (cp.USER_LIMIT, True, SolveStatus.TIMEOUT),
        (cp.USER_LIMIT, False, SolveStatus.UNKNOWN),
    ],
)
def test_cvxpy_status(status, deadline, expected):
    assert cvxpy_status(status, deadline=deadline) is expected


def test_make_solver():
    assert isinstance(make_solver("highs"), PyomoSolver)
    assert make_solver("pyomo:glpk").name == "glpk"
    cvx = make_solver("cvxpy", time_limit=5.0)
    assert isinstance(cvx, CvxpySolver)
    assert cvx.name == "CLARABEL"
    assert cvx.time_limit == 5.0
    assert make_solver("cvxpy:scs").name == "SCS"


@pytest.mark.parametrize("name", ["clarabel", "CLARABEL", "ecos", "scs"])
def test_make_solver_recognizes_cvxpy_solver_names(name):
    solver = make_solver(name, time_limit=2.0)
    assert isinstance(solver, CvxpySolver)
    assert solver.name == name.upper()
    assert solver.time_limit == 2.0
