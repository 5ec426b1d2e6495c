import dataclasses
import logging
from lmp_datastructures import Network
from lmp_errors import FormulationError
from lmp_incidence import bus_susceptance, reference_index
from lmp_problem import LinearExpression, OptimizationProblem, Sense

logger = logging.getLogger(__name__)


def dispatch_variable(generator_id: str) -> str:
    return f"p:{generator_id}"


def angle_variable(bus_id: str) -> str:
    return f"theta:{bus_id}"


def balance_constraint(bus_id: str) -> str:
    return f"balance:{bus_id}"


def flow_constraints(line_id: str) -> tuple[str, str]:
    return f"flow_fwd:{line_id}", f"flow_rev:{line_id}"


@dataclasses.dataclass(frozen=True, slots=True)
class Formulation:
    """An optimization problem together with the names that tie it to its network."""

    network: Network
    problem: OptimizationProblem
    dispatch: dict[str, str]  # generator id -> variable
    angle: dict[str, str]  # connected non-reference bus id -> variable
    balance: dict[str, str]  # bus id -> constraint, except unconnected empty buses
    flow_limits: dict[str, tuple[str, str]]  # limited line id -> (fwd, rev) constraints

    def line_flow(self, line_id: str) -> LinearExpression:
        """b * (theta_from - theta_to), omitting the reference angle."""
        line = next(line for line in self.network.lines if line.id == line_id)
        return LinearExpression.of(
            (self.angle[bus_id], sign * line.susceptance)
            for bus_id, sign in [(line.from_bus_id, +1), (line.to_bus_id, -1)]
            if bus_id in self.angle
        )


def formulate(network: Network) -> Formulation:
    """Formulate the DC-OPF problem for the given power system data."""

    problem = OptimizationProblem()
    bus_ids = network.bus_ids
    reference = network.reference_bus.id

    # Decision variables & bounds
    dispatch: dict[str, str] = {}
    for gen in network.generators:
        if gen.bus_id not in bus_ids:
            raise FormulationError(f"generator {gen.id}: missing bus {gen.bus_id!r}")
        dispatch[gen.id] = problem.add_variable(
            dispatch_variable(gen.id), lower=gen.min_output, upper=gen.max_output
        ).name

    # The reference angle is the constant 0, not a variable;
    # buses without lines have no angle in any constraint and stay at 0
    ends = {end for line in network.lines for end in (line.from_bus_id, line.to_bus_id)}
    angle = {
        bus_id: problem.add_variable(angle_variable(bus_id)).name
        for bus_id in bus_ids
        if bus_id != reference and bus_id in ends
    }

    if not problem.variables:
        raise FormulationError("network yields no decision variables")

    for line in network.lines:
        for end in (line.from_bus_id, line.to_bus_id):
            if end not in bus_ids:
                raise FormulationError(f"line {line.id}: missing bus {end!r}")

    # Objective function
    problem.set_objective(
        LinearExpression.of((dispatch[gen.id], gen.cost) for gen in network.generators)
    )

    # Power balance @ bus: generation - B @ theta == load
    B = bus_susceptance(network)
    ref = reference_index(network)
    balance: dict[str, str] = {}
    for b, bus in enumerate(network.buses):
        expression = LinearExpression.of(
            [(dispatch[gen.id], 1.0) for gen in network.generators_at(bus.id)]
            + [
                (angle[bus_ids[k]], -beta)
                for k in range(len(bus_ids))
                if k != ref and (beta := B[b, k]) != 0
            ]
        )
        if not expression.terms:
            # An unconnected bus balances only as 0 == 0
            if bus.load != 0.0:
                raise FormulationError(
                    f"bus {bus.id} has neither generators nor lines but {bus.load} MW load"
                )
            logger.info("bus %s is unconnected and has no load; no balance row", bus.id)
            continue
        balance[bus.id] = problem.add_constraint(
            balance_constraint(bus.id), expression, Sense.EQ, bus.load
        ).name

    formulation = Formulation(
        network=network,
        problem=problem,
        dispatch=dispatch,
        angle=angle,
        balance=balance,
        flow_limits={},
    )

    # Flow limits @ line, one pair per limited line
    for line in network.lines:
        if line.limit is None:
            continue
        fwd, rev = flow_constraints(line.id)
        flow = formulation.line_flow(line.id)
        problem.add_constraint(fwd, flow, Sense.LE, line.limit)
        problem.add_constraint(rev, -flow, Sense.LE, line.limit)
        formulation.flow_limits[line.id] = (fwd, rev)

    logger.debug(
        "formulated %d variables, %d constraints",
        len(problem.variables),
        len(problem.constraints),
    )
    return formulation
