import polars as pl

# Units of measure
Id = pl.String
MW = pl.Float64
PU = pl.Float64
KV = pl.Float64
USDPerMWh = pl.Float64
Flag = pl.Boolean

buses_schema = {"id": Id, "load": MW, "reference": Flag}
generators_schema = {"id": Id, "bus_id": Id, "cost": USDPerMWh}
lines_schema = {"from_bus_id": Id, "to_bus_id": Id, "susceptance": PU}

# Optional columns and the dtype they must have when present
generators_optional_schema = {"min_output": MW, "max_output": MW}
lines_optional_schema = {
    "id": Id,
    "limit": MW,
    "voltage_kv": KV,
    "power_factor": PU,
}


def validate(dataframe: pl.DataFrame, schema: dict) -> bool:
    """Validate the schema of a DataFrame."""
    return schema.items() <= dataframe.schema.items()


def validate_optional(dataframe: pl.DataFrame, schema: dict) -> bool:
    """Validate the dtypes of those optional columns that are present."""
    present = {k: v for k, v in schema.items() if k in dataframe.columns}
    return validate(dataframe, present)


def coerce(dataframe: pl.DataFrame, schema: dict) -> pl.DataFrame:
    """
    Cast present columns to their schema dtypes (CSV integers -> floats).
    A value that does not parse raises polars' InvalidOperationError.
    """
    return dataframe.with_columns(
        [
            pl.col(name).cast(dtype, strict=True)
            for name, dtype in schema.items()
            if name in dataframe.columns and dataframe.schema[name] != dtype
        ]
    )
