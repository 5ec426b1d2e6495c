"""
Solver-neutral linear program.

Variables and constraints are addressed by name only. Dual values in a
Solution follow one convention regardless of the backend that produced them:

    dual[c] == -d(objective) / d(rhs[c])

so that the dual of a binding "<=" constraint is non-negative and the
marginal price of an equality "expression == load" is -dual.
"""

import dataclasses
import enum
from typing import Iterable, Mapping, Optional
from lmp_errors import FormulationError


@dataclasses.dataclass(frozen=True, slots=True)
class LinearExpression:
    terms: Mapping[str, float] = dataclasses.field(default_factory=dict)
    constant: float = 0.0

    @classmethod
    def of(cls, pairs: Iterable[tuple[str, float]], constant: float = 0.0):
        """Sum of coefficient * variable pairs; repeated variables are merged."""
        terms: dict[str, float] = {}
        for name, coefficient in pairs:
            terms[name] = terms.get(name, 0.0) + float(coefficient)
        return cls(terms=terms, constant=constant)

    def __neg__(self) -> "LinearExpression":
        return LinearExpression(
            terms={name: -c for name, c in self.terms.items()},
            constant=-self.constant,
        )

    def evaluate(self, values: Mapping[str, float]) -> float:
        return self.constant + sum(c * values[name] for name, c in self.terms.items())


class Sense(enum.Enum):
    EQ = "=="
    LE = "<="


@dataclasses.dataclass(frozen=True, slots=True)
class Variable:
    name: str
    lower: Optional[float] = None
    upper: Optional[float] = None


@dataclasses.dataclass(frozen=True, slots=True)
class Constraint:
    name: str
    expression: LinearExpression
    sense: Sense
    rhs: float

    def __str__(self) -> str:
        body = " ".join(f"{c:+g}*{name}" for name, c in self.expression.terms.items())
        return f"{self.name}: {body} {self.expression.constant:+g} {self.sense.value} {self.rhs:g}"


@dataclasses.dataclass(slots=True)
class OptimizationProblem:
    """Minimize objective subject to named linear constraints."""

    variables: dict[str, Variable] = dataclasses.field(default_factory=dict)
    constraints: dict[str, Constraint] = dataclasses.field(default_factory=dict)
    objective: LinearExpression = dataclasses.field(default_factory=LinearExpression)

    def add_variable(
        self, name: str, lower: Optional[float] = None, upper: Optional[float] = None
    ) -> Variable:
        if name in self.variables:
            raise FormulationError(f"variable {name!r} declared twice")
        if lower is not None and upper is not None and lower > upper:
            raise FormulationError(f"variable {name!r}: bounds {lower} > {upper}")
        self.variables[name] = variable = Variable(name, lower, upper)
        return variable

    def add_constraint(
        self, name: str, expression: LinearExpression, sense: Sense, rhs: float
    ) -> Constraint:
        if name in self.constraints:
            raise FormulationError(f"constraint {name!r} declared twice")
        self._check(name, expression)
        if not expression.terms:
            raise FormulationError(f"constraint {name!r} contains no variable")
        self.constraints[name] = constraint = Constraint(
            name, expression, sense, float(rhs)
        )
        return constraint

    def set_objective(self, expression: LinearExpression) -> None:
        self._check("objective", expression)
        self.objective = expression

    def _check(self, owner: str, expression: LinearExpression) -> None:
        if unknown := [name for name in expression.terms if name not in self.variables]:
            raise FormulationError(f"{owner} references undeclared variable(s) {unknown}")


class SolveStatus(enum.Enum):
    OPTIMAL = "optimal"
    INFEASIBLE = "infeasible"
    UNBOUNDED = "unbounded"
    NUMERICAL_ISSUE = "numerical_issue"
    UNKNOWN = "unknown"
    TIMEOUT = "timeout"


@dataclasses.dataclass(frozen=True, slots=True)
class Solution:
    status: SolveStatus
    message: str = ""
    values: Mapping[str, float] = dataclasses.field(default_factory=dict)
    duals: Mapping[str, float] = dataclasses.field(default_factory=dict)
    objective: Optional[float] = None

    @property
    def optimal(self) -> bool:
        return self.status is SolveStatus.OPTIMAL
