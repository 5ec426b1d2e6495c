import numpy as np
from numpy.typing import NDArray
from lmp_datastructures import Network


def line_bus(network: Network) -> NDArray[np.int8]:
    """Line-bus incidence matrix: +1 at the from-bus, -1 at the to-bus."""

    def incidence(ell: int, b: int) -> int:
        line = network.lines[ell]
        bus_id = network.buses[b].id
        if bus_id == line.from_bus_id:
            return +1
        if bus_id == line.to_bus_id:
            return -1
        return 0

    return np.array(
        [
            [incidence(ell, b) for b in range(len(network.buses))]
            for ell in range(len(network.lines))
        ],
        dtype=np.int8,
    ).reshape(len(network.lines), len(network.buses))


def generator_bus(network: Network) -> NDArray[np.bool_]:
    """Generator-bus incidence matrix."""
    return np.array(
        [[gen.bus_id == bus.id for bus in network.buses] for gen in network.generators],
        dtype=np.bool_,
    ).reshape(len(network.generators), len(network.buses))


def susceptances(network: Network) -> NDArray[np.float64]:
    return np.array([line.susceptance for line in network.lines], dtype=float)


def bus_susceptance(network: Network) -> NDArray[np.float64]:
    """
    Nodal susceptance matrix B = A^T diag(b) A, so that the net injection
    at bus i is (B @ theta)[i] = sum over incident lines of b * (theta_i - theta_j).
    """
    A = line_bus(network)
    return A.T @ np.diag(susceptances(network)) @ A


def reference_index(network: Network) -> int:
    return network.bus_ids.index(network.reference_bus.id)


def free_buses(network: Network) -> list[int]:
    reference = reference_index(network)
    return [b for b in range(len(network.buses)) if b != reference]


def shift_factors(network: Network) -> NDArray[np.float64]:
    """
    Injection shift factors (PTDF) w.r.t. the reference bus:
    line_flow == SF @ injections[free_buses].
    Requires a connected network.
    """
    free = free_buses(network)
    K = line_bus(network)[:, free]
    KtB = K.T @ np.diag(susceptances(network))
    return np.linalg.solve(KtB @ K, KtB).T
