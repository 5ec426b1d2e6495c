import argparse
import logging
import pathlib
import sys
import polars as pl
from lmp_datastructures import load
from lmp_dispatch import Settings, dispatch
from lmp_errors import DispatchFailed, FormulationError, InvalidNetwork, SolverUnavailable
from lmp_extraction import BALANCE_TOLERANCE

logger = logging.getLogger("lmp_driver")

# Exit codes
OK = 0
NOT_OPTIMAL = 1
BAD_INPUT = 2


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run a DC-OPF dispatch study")
    parser.add_argument(
        "--network",
        type=pathlib.Path,
        required=True,
        help="directory holding buses.csv, generators.csv and lines.csv",
    )
    parser.add_argument("--out", type=pathlib.Path, required=True)
    parser.add_argument(
        "--solver", default="highs", help='e.g. "highs" or "cvxpy:CLARABEL"'
    )
    parser.add_argument("--time-limit", type=float, default=None, help="[s]")
    parser.add_argument(
        "--tolerance", type=float, default=BALANCE_TOLERANCE, help="balance [MW]"
    )
    parser.add_argument("--verbose", action="store_true")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s | %(message)s",
    )
    settings = Settings(
        solver=args.solver,
        time_limit=args.time_limit,
        balance_tolerance=args.tolerance,
    )

    try:
        network = load(args.network)
        result = dispatch(network, settings)
    except (InvalidNetwork, FormulationError, SolverUnavailable) as error:
        logger.error("%s", error)
        return BAD_INPUT
    except DispatchFailed as error:
        logger.error("status: %s (%s)", error.status.value, error.reason)
        return NOT_OPTIMAL

    pl.Config.set_tbl_rows(-1)  # "unlimited rows"
    buses = result.bus_table()
    lines = result.line_table()
    generators = result.generator_table()
    print("buses -", buses)
    print("lines -", lines)
    print("generators -", generators)
    for key, value in result.summary().items():
        print(f"{key:>20}: ${value:.2f}/h")
    balance = result.balance
    print(
        f"Supply meets demand? load = {balance.load:.2f} MW,"
        f" gen = {balance.generation:.2f} MW"
    )

    args.out.mkdir(parents=True, exist_ok=True)
    buses.write_csv(args.out / "bus_voltage.csv")
    lines.write_csv(args.out / "line_flows_currents.csv")
    generators.write_csv(args.out / "generator_dispatch.csv")
    logger.info('CSV exported to "%s"', args.out.resolve())
    return OK


if __name__ == "__main__":
    sys.exit(main())
