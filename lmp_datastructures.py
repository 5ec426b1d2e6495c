import dataclasses
import math
import pathlib
import textwrap
from typing import Callable, Iterable, Iterator, Optional, Self
import numpy as np
import polars as pl
from lmp_errors import InvalidNetwork
from lmp_schema import (
    buses_schema,
    coerce,
    generators_optional_schema,
    generators_schema,
    lines_optional_schema,
    lines_schema,
    validate,
    validate_optional,
)

DEFAULT_VOLTAGE_KV = 230.0  # [kV] line-to-line
DEFAULT_POWER_FACTOR = 1.0


@dataclasses.dataclass(frozen=True, repr=False, slots=True)
class Serialization:
    """Multi-line rendering of records that hold tuples of components or per-id maps."""

    def _fields(self, render: Callable[[object], str], sep: str) -> Iterator[str]:
        for field in dataclasses.fields(self):
            value = getattr(self, field.name)
            if isinstance(value, tuple) and value:
                items = "\n".join(f"{render(item)}," for item in value)
                yield f"{field.name}{sep}(\n{_indent(items)}\n)"
            elif isinstance(value, dict) and value:
                items = "\n".join(f"{key!r}: {render(v)}," for key, v in value.items())
                yield f"{field.name}{sep}{{\n{_indent(items)}\n}}"
            else:
                yield f"{field.name}{sep}{render(value)}"

    def __repr__(self) -> str:
        body = ",\n".join(self._fields(repr, "="))
        return f"{type(self).__name__}(\n{_indent(body)}\n)"

    def __str__(self) -> str:
        body = "\n".join(self._fields(str, ": "))
        return f"{type(self).__name__}\n{_indent(body)}"


def _indent(text: str) -> str:
    return textwrap.indent(text, " " * 4)


@dataclasses.dataclass(frozen=True, slots=True)
class Bus:
    id: str
    load: float = 0.0  # [MW]
    reference: bool = False


@dataclasses.dataclass(frozen=True, slots=True)
class Generator:
    id: str
    bus_id: str
    cost: float  # [$/MWh]
    min_output: float = 0.0  # [MW]
    max_output: Optional[float] = None  # [MW], None: unbounded above


@dataclasses.dataclass(frozen=True, slots=True)
class Line:
    id: str
    from_bus_id: str
    to_bus_id: str
    susceptance: float  # [p.u.]
    limit: Optional[float] = None  # [MW], symmetric; None: unconstrained
    voltage_kv: float = DEFAULT_VOLTAGE_KV
    power_factor: float = DEFAULT_POWER_FACTOR


def _duplicates(ids: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    return [id_ for id_ in ids if id_ in seen or seen.add(id_)]


@dataclasses.dataclass(frozen=True, repr=False, slots=True)
class Network(Serialization):
    """
    Immutable description of buses, generators and lines.
    Raises InvalidNetwork on construction if the data are inconsistent.
    """

    buses: tuple[Bus, ...]
    generators: tuple[Generator, ...] = ()
    lines: tuple[Line, ...] = ()

    def __post_init__(self) -> None:
        """Normalize sequences to tuples and validate."""
        for name in ("buses", "generators", "lines"):
            object.__setattr__(self, name, tuple(getattr(self, name)))
        self._validate()

    def _validate(self) -> None:
        bus_ids = {bus.id for bus in self.buses}

        if not self.buses:
            raise InvalidNetwork("network has no buses")
        for kind, items in [
            ("bus", self.buses),
            ("generator", self.generators),
            ("line", self.lines),
        ]:
            if duplicated := _duplicates(item.id for item in items):
                raise InvalidNetwork(f"duplicate {kind} id(s): {duplicated}")

        references = [bus.id for bus in self.buses if bus.reference]
        if len(references) != 1:
            raise InvalidNetwork(
                f"expected exactly one reference bus, found {len(references)}"
                + (f": {references}" if references else "")
            )
        for bus in self.buses:
            if not bus.load >= 0.0:
                raise InvalidNetwork(f"bus {bus.id}: load must be >= 0, got {bus.load}")

        for gen in self.generators:
            if gen.bus_id not in bus_ids:
                raise InvalidNetwork(f"generator {gen.id}: unknown bus {gen.bus_id!r}")
            if not math.isfinite(gen.cost):
                raise InvalidNetwork(f"generator {gen.id}: cost must be finite")
            if not gen.min_output >= 0.0:
                raise InvalidNetwork(
                    f"generator {gen.id}: min_output must be >= 0, got {gen.min_output}"
                )
            if gen.max_output is not None and not gen.min_output <= gen.max_output:
                raise InvalidNetwork(
                    f"generator {gen.id}: min_output {gen.min_output}"
                    f" exceeds max_output {gen.max_output}"
                )

        for line in self.lines:
            for end in (line.from_bus_id, line.to_bus_id):
                if end not in bus_ids:
                    raise InvalidNetwork(f"line {line.id}: unknown bus {end!r}")
            if line.from_bus_id == line.to_bus_id:
                raise InvalidNetwork(f"line {line.id}: endpoints must differ")
            if not line.susceptance > 0.0:
                raise InvalidNetwork(
                    f"line {line.id}: susceptance must be > 0, got {line.susceptance}"
                )
            if line.limit is not None and not line.limit >= 0.0:
                raise InvalidNetwork(
                    f"line {line.id}: limit must be >= 0, got {line.limit}"
                )

        connected = {gen.bus_id for gen in self.generators} | {
            end for line in self.lines for end in (line.from_bus_id, line.to_bus_id)
        }
        for bus in self.buses:
            if bus.load > 0.0 and bus.id not in connected:
                raise InvalidNetwork(
                    f"bus {bus.id}: load {bus.load} MW cannot be served"
                    " (no generators and no lines)"
                )

    @property
    def reference_bus(self) -> Bus:
        return next(bus for bus in self.buses if bus.reference)

    @property
    def bus_ids(self) -> list[str]:
        return [bus.id for bus in self.buses]

    @property
    def total_load(self) -> float:
        return sum(bus.load for bus in self.buses)

    def bus(self, id_: str) -> Bus:
        for bus in self.buses:
            if bus.id == id_:
                return bus
        raise KeyError(id_)

    def generators_at(self, bus_id: str) -> list[Generator]:
        return [gen for gen in self.generators if gen.bus_id == bus_id]

    def without_limits(self) -> Self:
        """Copy of the network with every line limit removed."""
        return dataclasses.replace(
            self,
            lines=tuple(dataclasses.replace(line, limit=None) for line in self.lines),
        )

    @classmethod
    def from_tables(
        cls,
        buses: pl.DataFrame,
        generators: pl.DataFrame,
        lines: pl.DataFrame,
    ) -> Self:
        """Initialize from dataframes."""

        tables = {}
        for name, table, schema, optional in [
            ("buses", buses, buses_schema, {}),
            ("generators", generators, generators_schema, generators_optional_schema),
            ("lines", lines, lines_schema, lines_optional_schema),
        ]:
            try:
                tables[name] = table = coerce(table, schema | optional)
            except (
                pl.exceptions.InvalidOperationError,
                pl.exceptions.ComputeError,
            ) as error:
                raise InvalidNetwork(f"{name} table: {error}") from error
            if not (validate(table, schema) and validate_optional(table, optional)):
                raise InvalidNetwork(
                    f"{name} table: expected columns {schema | optional},"
                    f" got {dict(table.schema)}"
                )
            required = table.select(list(schema)).null_count().row(0, named=True)
            if missing := [column for column, count in required.items() if count]:
                raise InvalidNetwork(f"{name} table: null values in {missing}")

        def optional(row: dict, key: str, default):
            value = row.get(key)
            return default if value is None else value

        return cls(
            buses=tuple(
                Bus(id=row["id"], load=row["load"], reference=row["reference"])
                for row in tables["buses"].iter_rows(named=True)
            ),
            generators=tuple(
                Generator(
                    id=row["id"],
                    bus_id=row["bus_id"],
                    cost=row["cost"],
                    min_output=optional(row, "min_output", 0.0),
                    max_output=row.get("max_output"),
                )
                for row in tables["generators"].iter_rows(named=True)
            ),
            lines=tuple(
                Line(
                    id=optional(
                        row, "id", f"{row['from_bus_id']}-{row['to_bus_id']}"
                    ),
                    from_bus_id=row["from_bus_id"],
                    to_bus_id=row["to_bus_id"],
                    susceptance=row["susceptance"],
                    limit=row.get("limit"),
                    voltage_kv=optional(row, "voltage_kv", DEFAULT_VOLTAGE_KV),
                    power_factor=optional(row, "power_factor", DEFAULT_POWER_FACTOR),
                )
                for row in tables["lines"].iter_rows(named=True)
            ),
        )


def load(directory: str | pathlib.Path) -> Network:
    """Read buses.csv, generators.csv and lines.csv from directory."""
    directory = pathlib.Path(directory)
    if not directory.is_dir():
        raise InvalidNetwork(f'"{directory.resolve()}" is not a directory')
    tables = {}
    for name in ("buses", "generators", "lines"):
        path = directory / f"{name}.csv"
        if not path.exists():
            raise InvalidNetwork(f'"{path.resolve()}" does not exist')
        tables[name] = pl.read_csv(path)
    return Network.from_tables(**tables)


@dataclasses.dataclass(frozen=True, repr=False, slots=True)
class BalanceCheck(Serialization):
    generation: float  # [MW]
    load: float  # [MW]
    tolerance: float  # [MW]

    @property
    def mismatch(self) -> float:
        return self.generation - self.load

    @property
    def balanced(self) -> bool:
        return abs(self.mismatch) <= self.tolerance


@dataclasses.dataclass(frozen=True, repr=False, slots=True)
class DispatchResult(Serialization):
    network: Network
    total_cost: float  # [$/h]
    price: dict[str, float]  # LMP @ bus [$/MWh]
    angle: dict[str, float]  # voltage angle @ bus [rad]
    dispatch: dict[str, float]  # output @ generator [MW]
    revenue: dict[str, float]  # payment to generator [$/h]
    load_payment: dict[str, float]  # payment by load @ bus [$/h]
    flow: dict[str, float]  # flow @ line, from -> to [MW]
    current: dict[str, Optional[float]]  # current @ line [A]
    congestion_rent: dict[str, float]  # shadow price @ limited line [$/MWh]
    congested: dict[str, bool]
    balance: BalanceCheck
    conversion_errors: dict[str, str] = dataclasses.field(default_factory=dict)

    @property
    def angle_deg(self) -> dict[str, float]:
        return {b: float(np.rad2deg(theta)) for b, theta in self.angle.items()}

    def summary(self) -> dict[str, float]:
        """Settlement totals; the congestion surplus is what loads pay beyond generators."""
        paid_by_load = sum(self.load_payment.values())
        paid_to_generators = sum(self.revenue.values())
        return {
            "total_cost": self.total_cost,
            "load_payment": paid_by_load,
            "generator_revenue": paid_to_generators,
            "congestion_surplus": paid_by_load - paid_to_generators,
        }

    def bus_table(self) -> pl.DataFrame:
        buses = self.network.buses
        return pl.DataFrame(
            {
                "id": [bus.id for bus in buses],
                "load": [bus.load for bus in buses],
                "price": [self.price[bus.id] for bus in buses],
                "payment": [self.load_payment[bus.id] for bus in buses],
                "vmag_pu": [1.0 for _ in buses],
                "vang_rad": [self.angle[bus.id] for bus in buses],
                "vang_deg": [self.angle_deg[bus.id] for bus in buses],
            }
        )

    def line_table(self) -> pl.DataFrame:
        lines = self.network.lines
        current = [self.current[line.id] for line in lines]
        return pl.DataFrame(
            {
                "id": [line.id for line in lines],
                "from_bus_id": [line.from_bus_id for line in lines],
                "to_bus_id": [line.to_bus_id for line in lines],
                "v_ll_kv": [line.voltage_kv for line in lines],
                "flow": [self.flow[line.id] for line in lines],
                "limit": [line.limit for line in lines],
                "current_pu": [self.flow[line.id] for line in lines],
                "current_ka": [None if i is None else i / 1e3 for i in current],
                "current_a": current,
                "congestion_rent": [self.congestion_rent[line.id] for line in lines],
                "congested": [self.congested[line.id] for line in lines],
            },
            schema_overrides={
                "limit": pl.Float64,
                "current_ka": pl.Float64,
                "current_a": pl.Float64,
            },
        ).with_columns(  # utilization of each limited line
            (pl.col("flow").abs() / pl.col("limit") * 100).alias("utilization")
        )

    def generator_table(self) -> pl.DataFrame:
        generators = self.network.generators
        return pl.DataFrame(
            {
                "id": [gen.id for gen in generators],
                "bus_id": [gen.bus_id for gen in generators],
                "cost": [gen.cost for gen in generators],
                "dispatch": [self.dispatch[gen.id] for gen in generators],
                "revenue": [self.revenue[gen.id] for gen in generators],
            }
        )
