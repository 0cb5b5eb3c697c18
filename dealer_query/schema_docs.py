"""
Schema documentation for the dealership reporting database.

This module exposes structured metadata about the SQL Server tables the
assistant may query.  It backs the static schema description sent to the LLM
when no live snapshot is available, and the identifier check in the validator.
"""

from dataclasses import dataclass, field
from typing import Dict, List

from dealer_query.models import ColumnInfo, SchemaSnapshot


PRIMARY_SALES_TABLE = "SalesReport_Form_Input"
INVENTORY_TABLE = "Common_Group_401_Vehicle_Inventory"
WARRANTY_TABLE = "SaleWarranty_RVAC_CONTRACTS"


@dataclass(frozen=True)
class TableSpec:
    """Declarative table description used by prompt builders."""

    name: str
    description: str
    columns: List[str]
    primary_keys: List[str] = field(default_factory=list)
    sample_filters: List[str] = field(default_factory=list)


_TABLES: Dict[str, TableSpec] = {
    PRIMARY_SALES_TABLE: TableSpec(
        name=PRIMARY_SALES_TABLE,
        description="One row per reported vehicle deal (sales report form).",
        columns=[
            "ID",
            "LEAD_ID",
            "LAST_NAME",
            "FIRST_NAME",
            "DIVISION",
            "DEALER_LOCATION",
            "STOCK",
            "VEHICLE_TYPE",
            "CAR_STATUS",
            "MAKE_YEAR",
            "MAKE",
            "MODEL",
            "FRONT_COST",
            "FI_COST",
            "ADMIN_COST",
            "TOTAL_COST",
            "LEAD_SOURCE",
            "LEAD_OWNER",
            "CLOSER",
            "LENDER",
            "DATE_REPORTED",
            "WEEK_REPORTED",
            "YEAR_REPORTED",
            "MONTH_REPORTED",
            "SOLD_FROM",
            "DATE_FUNDED",
            "DATE_POSTED",
            "DATE_RECEIVED",
            "DATE_CREATED",
            "PBS_DATA",
            "TeamName",
            "isCarryOver",
            "isDeleted",
            "isPending",
            "isCounted",
            "isDeliverd",
            "HasLien",
        ],
        primary_keys=["ID"],
        sample_filters=[
            "isDeleted = 0 AND isCarryOver = 0",
            "MONTH_REPORTED = 'October' AND YEAR_REPORTED = '2025'",
        ],
    ),
    INVENTORY_TABLE: TableSpec(
        name=INVENTORY_TABLE,
        description="Vehicle inventory snapshot for the 401 group.",
        columns=[
            "ID",
            "vId",
            "VehicleId",
            "StockNumber",
            "VIN",
            "VehicleType",
            "VehicleTrim",
            "VehicleStatus",
            "VehicleMake",
            "VehicleModel",
            "VehicleYear",
            "Inventory",
            "TotalCost",
            "Retail",
            "isHold",
            "isSold",
            "isAvailable",
            "isDeleted",
            "DATE_CREATED",
            "Odometer",
            "Lot",
            "IsCertified",
            "MSR",
            "BaseMSR",
            "InternetPrice",
            "Category",
        ],
        primary_keys=["ID"],
        sample_filters=["isSold = 0 AND isDeleted = 0", "isAvailable = 1"],
    ),
    WARRANTY_TABLE: TableSpec(
        name=WARRANTY_TABLE,
        description="RVAC warranty / service contracts sold with vehicles.",
        columns=[
            "WarrantyID",
            "SalesRep",
            "DealerLocation",
            "VehicleCondition",
            "FirstName",
            "LastName",
            "StockNumber",
            "VIN",
            "VehicleYear",
            "Make",
            "Model",
            "VehiclePrice",
            "Model_Type",
            "WarantyPlan",
            "WarrantyPrice",
            "WarrantyCost",
            "YEAR_REPORTED",
            "MONTH_REPORTED",
            "isDeleted",
        ],
        primary_keys=["WarrantyID"],
        sample_filters=["isDeleted = 0"],
    ),
}


def list_tables() -> List[str]:
    """Return the ordered list of table names we expose."""
    return list(_TABLES.keys())


def get_table(name: str) -> TableSpec:
    return _TABLES[name]


def static_snapshot() -> SchemaSnapshot:
    """The compiled-in schema as a SchemaSnapshot (data types unknown)."""
    return SchemaSnapshot(
        database=None,
        tables={
            name: [ColumnInfo(column=column) for column in spec.columns]
            for name, spec in _TABLES.items()
        },
    )


def render_schema_description(snapshot: SchemaSnapshot = None) -> str:
    """
    Compact per-table column listing for the LLM system prompt.  Known tables
    also get their key and typical filters.

    Falls back to the static table list when no snapshot is given.
    """
    lines = ["Tables:"]
    if snapshot is None or not snapshot.tables:
        listing = [(spec.name, spec.columns) for spec in _TABLES.values()]
    else:
        listing = [
            (table, [c.column for c in columns])
            for table, columns in snapshot.tables.items()
        ]

    for table, columns in listing:
        lines.append(f"- {table}: {', '.join(columns)}")
        spec = _TABLES.get(table)
        if spec is None:
            continue
        if spec.primary_keys:
            lines.append(f"  Key: {', '.join(spec.primary_keys)}")
        if spec.sample_filters:
            lines.append(f"  Typical filters: {'; '.join(spec.sample_filters)}")
    return "\n".join(lines)
