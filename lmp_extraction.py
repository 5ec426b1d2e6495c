import logging
import math
import warnings
import numpy as np
from lmp_datastructures import BalanceCheck, DispatchResult, Line
from lmp_errors import BalanceViolation, ConversionError, DispatchFailed
from lmp_formulation import Formulation
from lmp_incidence import free_buses, generator_bus, line_bus, shift_factors, susceptances
from lmp_problem import OptimizationProblem, Sense, Solution

logger = logging.getLogger(__name__)

BALANCE_TOLERANCE = 1e-4  # [MW]
ACTIVITY_TOLERANCE = 1e-6  # [$/MWh] and [MW]


def line_current(flow: float, voltage_kv: float, power_factor: float = 1.0) -> float:
    """
    Three-phase current [A] carried by a line with the given active power flow [MW]:
    I[kA] = |P| / (sqrt(3) * V_LL[kV] * pf).
    """
    if not voltage_kv > 0.0:
        raise ConversionError(f"nominal voltage must be > 0 kV, got {voltage_kv}")
    if not power_factor > 0.0:
        raise ConversionError(f"power factor must be > 0, got {power_factor}")
    kiloamperes = abs(flow) / (math.sqrt(3) * voltage_kv * power_factor)
    return 1e3 * kiloamperes


def congestion_rent(fwd: float, rev: float, tolerance: float = ACTIVITY_TOLERANCE) -> float:
    """
    Shadow price of a line's flow limit: -d(cost)/d(limit).

    The limit is the right-hand side of both direction constraints, so this is
    fwd + rev. At most one of them is active unless the limit is 0, where
    the solver may split the multiplier between the two.
    """
    rent = fwd + rev
    return rent if abs(rent) > tolerance else 0.0


def max_violation(
    problem: OptimizationProblem,
    values: dict[str, float],
    tolerance: float = BALANCE_TOLERANCE,
) -> float:
    """Largest constraint violation at the given point; logged above tolerance."""
    worst, culprit = 0.0, None
    for constraint in problem.constraints.values():
        excess = constraint.expression.evaluate(values) - constraint.rhs
        violation = abs(excess) if constraint.sense is Sense.EQ else max(excess, 0.0)
        if violation > worst:
            worst, culprit = violation, constraint
    if worst > tolerance:
        logger.warning("solution violates %s by %.3g", culprit, worst)
    return worst


def check_balance(
    generation: float, load: float, tolerance: float = BALANCE_TOLERANCE
) -> BalanceCheck:
    """Compare total generation with total load; warn (only) on a mismatch."""
    check = BalanceCheck(generation=generation, load=load, tolerance=tolerance)
    if not check.balanced:
        message = (
            f"generation {generation:.6f} MW != load {load:.6f} MW"
            f" (mismatch {check.mismatch:+.3g} MW, tolerance {tolerance:g} MW)"
        )
        logger.warning(message)
        warnings.warn(message, BalanceViolation, stacklevel=2)
    return check


def extract(
    formulation: Formulation,
    solution: Solution,
    balance_tolerance: float = BALANCE_TOLERANCE,
    activity_tolerance: float = ACTIVITY_TOLERANCE,
) -> DispatchResult:
    """Convert the optimal primal/dual solution into prices, flows and settlements."""

    if not solution.optimal:
        raise DispatchFailed(solution.status, solution.message)

    network = formulation.network
    values, duals = solution.values, solution.duals

    # Optimal decision values
    dispatch = {
        gen.id: values[formulation.dispatch[gen.id]] for gen in network.generators
    }
    angle = {
        bus.id: values[formulation.angle[bus.id]] if bus.id in formulation.angle else 0.0
        for bus in network.buses
    }

    # Marginal prices: the balance constraint reads "generation - ... == load";
    # an unconnected bus without load has no balance row and no price
    price = {
        bus.id: -duals[name] if (name := formulation.balance.get(bus.id)) else math.nan
        for bus in network.buses
    }

    theta = np.array([angle[bus.id] for bus in network.buses])
    line_flow = susceptances(network) * (line_bus(network) @ theta)
    flow = {line.id: float(f) for line, f in zip(network.lines, line_flow)}

    max_violation(formulation.problem, values, balance_tolerance)
    check_shift_factors(formulation, dispatch, line_flow)

    rent: dict[str, float] = {}
    congested: dict[str, bool] = {}
    for line in network.lines:
        if line.id in formulation.flow_limits:
            fwd, rev = formulation.flow_limits[line.id]
            rent[line.id] = congestion_rent(duals[fwd], duals[rev], activity_tolerance)
            at_limit = abs(abs(flow[line.id]) - line.limit) <= activity_tolerance
            congested[line.id] = rent[line.id] != 0.0 or at_limit
        else:
            rent[line.id] = 0.0
            congested[line.id] = False

    current, conversion_errors = line_currents(network.lines, flow)

    revenue = {gen.id: dispatch[gen.id] * price[gen.bus_id] for gen in network.generators}
    load_payment = {
        bus.id: bus.load * price[bus.id] if bus.id in formulation.balance else 0.0
        for bus in network.buses
    }

    balance = check_balance(
        generation=sum(dispatch.values()),
        load=network.total_load,
        tolerance=balance_tolerance,
    )

    return DispatchResult(
        network=network,
        total_cost=solution.objective,
        price=price,
        angle=angle,
        dispatch=dispatch,
        revenue=revenue,
        load_payment=load_payment,
        flow=flow,
        current=current,
        congestion_rent=rent,
        congested=congested,
        balance=balance,
        conversion_errors=conversion_errors,
    )


def line_currents(
    lines: tuple[Line, ...], flow: dict[str, float]
) -> tuple[dict[str, float | None], dict[str, str]]:
    """Currents [A] per line; a failed conversion leaves None and a message."""
    current: dict[str, float | None] = {}
    errors: dict[str, str] = {}
    for line in lines:
        try:
            current[line.id] = line_current(
                flow[line.id], line.voltage_kv, line.power_factor
            )
        except ConversionError as error:
            logger.warning("line %s: current not available: %s", line.id, error)
            current[line.id] = None
            errors[line.id] = str(error)
    return current, errors


def check_shift_factors(
    formulation: Formulation,
    dispatch: dict[str, float],
    line_flow: np.ndarray,
) -> bool:
    """Sanity check: flows must equal shift factors times nodal injections."""
    network = formulation.network
    if not network.lines:
        return True
    quantity = np.array([dispatch[gen.id] for gen in network.generators])
    load = np.array([bus.load for bus in network.buses])
    injections = quantity @ generator_bus(network) - load
    try:
        SF = shift_factors(network)
    except np.linalg.LinAlgError:
        logger.info("network is not connected; shift-factor check skipped")
        return True
    consistent = np.allclose(SF @ injections[free_buses(network)], line_flow, atol=1e-3)
    if not consistent:
        logger.warning("line flows are inconsistent with nodal injections")
    return consistent
