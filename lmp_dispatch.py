import dataclasses
import logging
from typing import Optional
from lmp_datastructures import DispatchResult, Network
from lmp_errors import DispatchFailed
from lmp_extraction import ACTIVITY_TOLERANCE, BALANCE_TOLERANCE, extract
from lmp_formulation import formulate
from lmp_solvers import Solver, make_solver

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True, slots=True)
class Settings:
    solver: str = "highs"
    time_limit: Optional[float] = None  # [s], None: no deadline
    balance_tolerance: float = BALANCE_TOLERANCE  # [MW]
    activity_tolerance: float = ACTIVITY_TOLERANCE


def dispatch(
    network: Network,
    settings: Settings = Settings(),
    solver: Optional[Solver] = None,
) -> DispatchResult:
    """
    Run one dispatch study: formulate, solve once, extract.
    Raises DispatchFailed for any non-optimal termination (never retried).
    """
    formulation = formulate(network)
    if solver is None:
        solver = make_solver(settings.solver, time_limit=settings.time_limit)

    solution = solver.solve(formulation.problem)
    if not solution.optimal:
        logger.error(
            "dispatch study failed (%s): %s", solution.status.value, solution.message
        )
        raise DispatchFailed(solution.status, solution.message)

    result = extract(
        formulation,
        solution,
        balance_tolerance=settings.balance_tolerance,
        activity_tolerance=settings.activity_tolerance,
    )
    logger.info("optimal dispatch cost: $%.2f / h", result.total_cost)
    return result
