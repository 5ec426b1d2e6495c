import dataclasses
import polars as pl
import pytest
from conftest import CASES, three_bus
from lmp_datastructures import Bus, Generator, Line, Network, load
from lmp_errors import InvalidNetwork


def test_valid_network():
    network = three_bus()
    assert network.reference_bus.id == "1"
    assert network.bus_ids == ["1", "2", "3"]
    assert network.total_load == pytest.approx(180.0)
    assert [gen.id for gen in network.generators_at("1")] == ["G1"]
    assert network.bus("3").load == 100.0
    with pytest.raises(KeyError):
        network.bus("4")


def test_network_is_immutable():
    network = three_bus()
    assert isinstance(network.buses, tuple)
    with pytest.raises(dataclasses.FrozenInstanceError):
        network.buses = ()


def test_without_limits():
    network = three_bus(limit_13=10.0)
    relaxed = network.without_limits()
    assert all(line.limit is None for line in relaxed.lines)
    assert network.lines[1].limit == 10.0


@pytest.mark.parametrize(
    "buses",
    [
        [Bus("1"), Bus("2")],
        [Bus("1", reference=True), Bus("2", reference=True)],
    ],
)
def test_reference_bus_count(buses):
    with pytest.raises(InvalidNetwork, match="reference"):
        Network(buses=buses)


def test_duplicate_ids():
    with pytest.raises(InvalidNetwork, match="duplicate bus"):
        Network(buses=[Bus("1", reference=True), Bus("1")])


def test_negative_load():
    with pytest.raises(InvalidNetwork, match="load"):
        Network(buses=[Bus("1", load=-1.0, reference=True)])


def test_load_at_unconnected_bus():
    with pytest.raises(InvalidNetwork, match="cannot be served"):
        Network(
            buses=[Bus("1", reference=True), Bus("2", load=10.0)],
            generators=[Generator("G", "1", cost=1.0)],
        )
    # Without load the same bus is harmless
    Network(
        buses=[Bus("1", reference=True), Bus("2")],
        generators=[Generator("G", "1", cost=1.0)],
    )


@pytest.mark.parametrize(
    "generator, match",
    [
        (Generator("G", "9", cost=1.0), "unknown bus"),
        (Generator("G", "1", cost=1.0, min_output=-1.0), "min_output"),
        (Generator("G", "1", cost=1.0, min_output=5.0, max_output=4.0), "exceeds"),
        (Generator("G", "1", cost=float("nan")), "cost"),
    ],
)
def test_invalid_generator(generator, match):
    with pytest.raises(InvalidNetwork, match=match):
        Network(buses=[Bus("1", reference=True)], generators=[generator])


def test_fixed_generator_is_valid():
    network = Network(
        buses=[Bus("1", reference=True)],
        generators=[Generator("G", "1", cost=1.0, min_output=5.0, max_output=5.0)],
    )
    assert network.generators[0].min_output == network.generators[0].max_output


@pytest.mark.parametrize(
    "line, match",
    [
        (Line("L", "1", "9", susceptance=1.0), "unknown bus"),
        (Line("L", "1", "1", susceptance=1.0), "differ"),
        (Line("L", "1", "2", susceptance=0.0), "susceptance"),
        (Line("L", "1", "2", susceptance=-2.0), "susceptance"),
        (Line("L", "1", "2", susceptance=1.0, limit=-1.0), "limit"),
    ],
)
def test_invalid_line(line, match):
    with pytest.raises(InvalidNetwork, match=match):
        Network(buses=[Bus("1", reference=True), Bus("2")], lines=[line])


def test_non_positive_voltage_is_not_a_network_error():
    network = Network(
        buses=[Bus("1", reference=True), Bus("2")],
        lines=[Line("L", "1", "2", susceptance=1.0, voltage_kv=0.0)],
    )
    assert network.lines[0].voltage_kv == 0.0


def test_from_tables_defaults():
    network = Network.from_tables(
        buses=pl.DataFrame(
            {"id": ["A", "B"], "load": [0.0, 50.0], "reference": [True, False]}
        ),
        generators=pl.DataFrame({"id": ["G"], "bus_id": ["A"], "cost": [12]}),
        lines=pl.DataFrame(
            {"from_bus_id": ["A"], "to_bus_id": ["B"], "susceptance": [2.0]}
        ),
    )
    (gen,) = network.generators
    assert gen.cost == 12.0
    assert gen.min_output == 0.0
    assert gen.max_output is None
    (line,) = network.lines
    assert line.id == "A-B"
    assert line.limit is None
    assert line.voltage_kv == 230.0
    assert line.power_factor == 1.0


def test_from_tables_missing_column():
    with pytest.raises(InvalidNetwork, match="buses table"):
        Network.from_tables(
            buses=pl.DataFrame({"id": ["A"], "load": [0.0]}),
            generators=pl.DataFrame({"id": ["G"], "bus_id": ["A"], "cost": [1.0]}),
            lines=pl.DataFrame(
                {"from_bus_id": [], "to_bus_id": [], "susceptance": []},
                schema={"from_bus_id": pl.String, "to_bus_id": pl.String, "susceptance": pl.Float64},
            ),
        )


def tables(generators: dict | None = None, lines: dict | None = None) -> dict:
    return dict(
        buses=pl.DataFrame(
            {"id": ["A", "B"], "load": [0.0, 50.0], "reference": [True, False]}
        ),
        generators=pl.DataFrame(
            {"id": ["G"], "bus_id": ["A"], "cost": [12.0]} | (generators or {})
        ),
        lines=pl.DataFrame(
            {"from_bus_id": ["A"], "to_bus_id": ["B"], "susceptance": [2.0]}
            | (lines or {})
        ),
    )


def test_from_tables_parses_numeric_text():
    network = Network.from_tables(
        **tables(generators={"max_output": ["1200"]}, lines={"limit": ["10.5"]})
    )
    assert network.generators[0].max_output == 1200.0
    assert network.lines[0].limit == 10.5


@pytest.mark.parametrize(
    "generators, lines, match",
    [
        ({"max_output": ["1,200"]}, None, "generators table"),
        (None, {"limit": ["ten"]}, "lines table"),
        ({"cost": ["cheap"]}, None, "generators table"),
        (None, {"voltage_kv": ["230 kV"]}, "lines table"),
    ],
)
def test_from_tables_rejects_unparsable_values(generators, lines, match):
    with pytest.raises(InvalidNetwork, match=match):
        Network.from_tables(**tables(generators, lines))


def test_load_rejects_unparsable_limit(tmp_path):
    for name in ("buses", "generators"):
        (tmp_path / f"{name}.csv").write_text((CASES / "three_bus" / f"{name}.csv").read_text())
    (tmp_path / "lines.csv").write_text(
        "id,from_bus_id,to_bus_id,susceptance,limit\n"
        "1-2,1,2,1.0,\n"
        "1-3,1,3,1.0,ten\n"
        "2-3,2,3,1.0,\n"
    )
    with pytest.raises(InvalidNetwork, match="lines table"):
        load(tmp_path)


def test_load_case_directory():
    network = load(CASES / "three_bus_congested")
    assert network == three_bus(limit_13=10.0)


def test_load_missing_directory(tmp_path):
    with pytest.raises(InvalidNetwork):
        load(tmp_path / "nowhere")


def test_rendering():
    network = three_bus(limit_13=10.0)
    text = repr(network)
    assert text.startswith("Network(\n    buses=(\n")
    assert "        Bus(id='1', load=80.0, reference=True)," in text
    assert "limit=10.0" in text
    assert str(network).splitlines()[:2] == ["Network", "    buses: ("]
