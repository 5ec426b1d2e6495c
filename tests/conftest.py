import pathlib
import pytest
from lmp_datastructures import Bus, Generator, Line, Network
from lmp_errors import SolverUnavailable
from lmp_solvers import CvxpySolver, PyomoSolver

CASES = pathlib.Path(__file__).parent.parent / "cases"


def three_bus(limit_13: float | None = None) -> Network:
    """Three buses, bus 1 reference, unit susceptances; optional limit on line 1-3."""
    return Network(
        buses=[
            Bus("1", load=80.0, reference=True),
            Bus("2", load=0.0),
            Bus("3", load=100.0),
        ],
        generators=[
            Generator("G1", "1", cost=10.0, max_output=1200.0),
            Generator("G2", "2", cost=20.0, max_output=1200.0),
            Generator("G3", "3", cost=100.0),
        ],
        lines=[
            Line("1-2", "1", "2", susceptance=1.0),
            Line("1-3", "1", "3", susceptance=1.0, limit=limit_13),
            Line("2-3", "2", "3", susceptance=1.0),
        ],
    )


@pytest.fixture
def uncongested() -> Network:
    return three_bus()


@pytest.fixture
def congested() -> Network:
    return three_bus(limit_13=10.0)


def _available(solver) -> bool:
    try:
        with solver.session():
            return True
    except SolverUnavailable:
        return False


@pytest.fixture(params=["highs", "cvxpy"])
def solver(request):
    solver = PyomoSolver("highs") if request.param == "highs" else CvxpySolver()
    if not _available(solver):
        pytest.skip(f"{request.param} backend not installed")
    return solver
