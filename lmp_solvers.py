"""
Solver adapters: translate an OptimizationProblem for a backend, run a single
blocking solve and translate the outcome back into a Solution.

Both adapters report duals as -d(objective)/d(rhs) (see lmp_problem).
"""

import contextlib
import logging
import math
from typing import Iterator, Optional, Protocol
import numpy as np
import cvxpy as cp
import pyomo.environ as pyo
from pyomo.common.errors import ApplicationError, PyomoException
from lmp_errors import SolverUnavailable
from lmp_problem import LinearExpression, OptimizationProblem, Sense, Solution, SolveStatus

logger = logging.getLogger(__name__)


class Solver(Protocol):
    name: str

    def solve(self, problem: OptimizationProblem) -> Solution: ...


##############################################################################
# Pyomo
##############################################################################

_pyomo_status = {
    pyo.TerminationCondition.optimal: SolveStatus.OPTIMAL,
    pyo.TerminationCondition.globallyOptimal: SolveStatus.OPTIMAL,
    pyo.TerminationCondition.locallyOptimal: SolveStatus.OPTIMAL,
    pyo.TerminationCondition.infeasible: SolveStatus.INFEASIBLE,
    pyo.TerminationCondition.infeasibleOrUnbounded: SolveStatus.INFEASIBLE,
    pyo.TerminationCondition.unbounded: SolveStatus.UNBOUNDED,
    pyo.TerminationCondition.maxTimeLimit: SolveStatus.TIMEOUT,
    pyo.TerminationCondition.error: SolveStatus.NUMERICAL_ISSUE,
    pyo.TerminationCondition.solverFailure: SolveStatus.NUMERICAL_ISSUE,
    pyo.TerminationCondition.internalSolverError: SolveStatus.NUMERICAL_ISSUE,
}


def pyomo_status(condition) -> SolveStatus:
    return _pyomo_status.get(condition, SolveStatus.UNKNOWN)


def pyomo_model(problem: OptimizationProblem) -> pyo.ConcreteModel:
    """Translate problem into a Pyomo model with a dual import suffix."""

    model = pyo.ConcreteModel()
    model.Variables = pyo.Set(initialize=list(problem.variables))
    model.Constraints = pyo.Set(initialize=list(problem.constraints))

    def bounds(model: pyo.ConcreteModel, name: str):
        variable = problem.variables[name]
        return (variable.lower, variable.upper)

    model.x = pyo.Var(model.Variables, bounds=bounds, doc="decision variable")

    # For objective sensitivity to constraint right-hand sides
    model.dual = pyo.Suffix(direction=pyo.Suffix.IMPORT)

    def affine(expression: LinearExpression):
        return (
            sum(c * model.x[name] for name, c in expression.terms.items())
            + expression.constant
        )

    model.obj = pyo.Objective(expr=affine(problem.objective), sense=pyo.minimize)

    def constraint_rule(model: pyo.ConcreteModel, name: str):
        constraint = problem.constraints[name]
        body = affine(constraint.expression)
        if constraint.sense is Sense.EQ:
            return body == constraint.rhs
        return body <= constraint.rhs

    # NB: Bounds on flows are general constraints because
    # some solvers do not support sensitivity analysis on Var bounds
    model.c = pyo.Constraint(model.Constraints, rule=constraint_rule)
    return model


class PyomoSolver:
    """LP solve through pyo.SolverFactory (HiGHS by default)."""

    def __init__(
        self, name: str = "highs", time_limit: Optional[float] = None, tee: bool = False
    ) -> None:
        self.name = name
        self.time_limit = time_limit
        self.tee = tee

    @contextlib.contextmanager
    def session(self) -> Iterator:
        solver = pyo.SolverFactory(self.name)
        if solver is None or not solver.available(exception_flag=False):
            raise SolverUnavailable(f"pyomo solver {self.name!r} is not available")
        try:
            yield solver
        finally:
            # Releases licenses/environments held by e.g. the Gurobi interfaces
            close = getattr(solver, "close", None)
            if callable(close):
                close()
            logger.debug("released pyomo solver %s", self.name)

    def solve(self, problem: OptimizationProblem) -> Solution:
        model = pyomo_model(problem)
        with self.session() as solver:
            if self.time_limit is not None:
                solver.options["time_limit"] = self.time_limit
            try:
                results = solver.solve(model, tee=self.tee, load_solutions=False)
            except (ApplicationError, PyomoException, RuntimeError) as error:
                logger.error("pyomo solver %s failed: %s", self.name, error)
                return Solution(status=SolveStatus.NUMERICAL_ISSUE, message=str(error))

            condition = results.solver.termination_condition
            status = pyomo_status(condition)
            message = str(getattr(results.solver, "message", None) or condition)
            logger.info("pyomo solver %s terminated: %s", self.name, condition)
            if status is not SolveStatus.OPTIMAL:
                return Solution(status=status, message=message)

            model.solutions.load_from(results)

        return Solution(
            status=status,
            message=message,
            values={name: pyo.value(model.x[name]) for name in problem.variables},
            duals={
                name: -model.dual.get(model.c[name], math.nan)
                for name in problem.constraints
            },
            objective=pyo.value(model.obj),
        )


##############################################################################
# CVXPY
##############################################################################

# Name of the wall-clock limit option of some conic/LP backends
_time_limit_option = {
    "CLARABEL": "time_limit",
    "HIGHS": "time_limit",
    "OSQP": "time_limit",
    "SCS": "time_limit_secs",
    "GUROBI": "TimeLimit",
}

_cvxpy_status = {
    cp.OPTIMAL: SolveStatus.OPTIMAL,
    cp.INFEASIBLE: SolveStatus.INFEASIBLE,
    cp.UNBOUNDED: SolveStatus.UNBOUNDED,
    cp.OPTIMAL_INACCURATE: SolveStatus.NUMERICAL_ISSUE,
    cp.INFEASIBLE_INACCURATE: SolveStatus.NUMERICAL_ISSUE,
    cp.UNBOUNDED_INACCURATE: SolveStatus.NUMERICAL_ISSUE,
    cp.SOLVER_ERROR: SolveStatus.NUMERICAL_ISSUE,
    "infeasible_or_unbounded": SolveStatus.INFEASIBLE,
}


def cvxpy_status(status: str, deadline: bool = False) -> SolveStatus:
    if status == cp.USER_LIMIT:
        return SolveStatus.TIMEOUT if deadline else SolveStatus.UNKNOWN
    return _cvxpy_status.get(status, SolveStatus.UNKNOWN)


class CvxpySolver:
    """LP solve through cvxpy, dense in the decision variables."""

    def __init__(
        self,
        name: str = "CLARABEL",
        time_limit: Optional[float] = None,
        verbose: bool = False,
        **options,
    ) -> None:
        self.name = name.upper()
        self.time_limit = time_limit
        self.verbose = verbose
        self.options = options

    @contextlib.contextmanager
    def session(self) -> Iterator[str]:
        if self.name not in cp.installed_solvers():
            raise SolverUnavailable(f"cvxpy solver {self.name!r} is not installed")
        try:
            yield self.name
        finally:
            logger.debug("released cvxpy solver %s", self.name)

    def _options(self) -> dict:
        options = dict(self.options)
        if self.time_limit is not None:
            if (key := _time_limit_option.get(self.name)) is None:
                logger.warning("%s has no known time limit option; ignored", self.name)
            else:
                options[key] = self.time_limit
        return options

    def solve(self, problem: OptimizationProblem) -> Solution:
        names = list(problem.variables)
        index = {name: i for i, name in enumerate(names)}
        x = cp.Variable(len(names), name="x")

        def row(expression: LinearExpression) -> np.ndarray:
            a = np.zeros(len(names))
            for name, c in expression.terms.items():
                a[index[name]] += c
            return a

        named: dict[str, cp.Constraint] = {}
        for name, constraint in problem.constraints.items():
            body = row(constraint.expression) @ x + constraint.expression.constant
            named[name] = (
                body == constraint.rhs
                if constraint.sense is Sense.EQ
                else body <= constraint.rhs
            )

        bounds: list[cp.Constraint] = []
        variables = problem.variables.values()
        lower = [(index[v.name], v.lower) for v in variables if v.lower is not None]
        upper = [(index[v.name], v.upper) for v in variables if v.upper is not None]
        if lower:
            i, value = zip(*lower)
            bounds.append(x[list(i)] >= np.array(value))
        if upper:
            i, value = zip(*upper)
            bounds.append(x[list(i)] <= np.array(value))

        objective = cp.Minimize(row(problem.objective) @ x + problem.objective.constant)
        program = cp.Problem(objective, [*named.values(), *bounds])

        with self.session() as solver:
            try:
                program.solve(solver=solver, verbose=self.verbose, **self._options())
            except cp.error.SolverError as error:
                logger.error("cvxpy solver %s failed: %s", solver, error)
                return Solution(status=SolveStatus.NUMERICAL_ISSUE, message=str(error))

        status = cvxpy_status(program.status, deadline=self.time_limit is not None)
        logger.info("cvxpy solver %s terminated: %s", self.name, program.status)
        if status is not SolveStatus.OPTIMAL:
            return Solution(status=status, message=str(program.status))

        return Solution(
            status=status,
            message=str(program.status),
            values={name: float(x.value[index[name]]) for name in names},
            duals={
                name: float(np.asarray(constraint.dual_value))
                for name, constraint in named.items()
            },
            objective=float(program.value),
        )


# Solvers only reachable through cvxpy; "highs" and the like go to pyomo
CVXPY_SOLVERS = ("CLARABEL", "ECOS", "SCS", "OSQP")


def make_solver(name: str = "highs", time_limit: Optional[float] = None) -> Solver:
    """
    Select an adapter by name:
    "cvxpy", "cvxpy:<SOLVER>" or a name in CVXPY_SOLVERS -> CvxpySolver,
    "pyomo:<solver>" or any other name -> PyomoSolver.
    """
    if name.upper() in CVXPY_SOLVERS:
        return CvxpySolver(name, time_limit=time_limit)
    backend, _, solver = name.partition(":")
    if backend.lower() == "cvxpy":
        return CvxpySolver(solver or "CLARABEL", time_limit=time_limit)
    if backend.lower() == "pyomo":
        return PyomoSolver(solver or "highs", time_limit=time_limit)
    return PyomoSolver(name, time_limit=time_limit)
