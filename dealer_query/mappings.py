"""
Business concept mappings used by the prompt analyzer.

Each table and column concept is a frozen record: synonyms are matched as
case-insensitive substrings, patterns are regular expressions.  The tuples are
built once at import and treated as read-only configuration.
"""

from dataclasses import dataclass
from typing import Optional, Tuple

from dealer_query.schema_docs import (
    INVENTORY_TABLE,
    PRIMARY_SALES_TABLE,
    WARRANTY_TABLE,
)


@dataclass(frozen=True)
class TableMapping:
    """Natural language phrases that point at one physical table."""

    key: str
    table: str
    synonyms: Tuple[str, ...]
    patterns: Tuple[str, ...] = ()
    description: str = ""

    def __post_init__(self):
        if not self.synonyms:
            raise ValueError(f"TableMapping {self.key!r} needs at least one synonym")


@dataclass(frozen=True)
class ColumnMapping:
    """
    A business concept mapped to a column or SQL expression.

    When ``function`` is set the concept is an aggregate and never a filter.
    """

    key: str
    column: str
    synonyms: Tuple[str, ...]
    patterns: Tuple[str, ...] = ()
    function: Optional[str] = None
    alias: Optional[str] = None

    def __post_init__(self):
        if not self.synonyms:
            raise ValueError(f"ColumnMapping {self.key!r} needs at least one synonym")
        if self.function and not self.alias:
            raise ValueError(f"Aggregate concept {self.key!r} needs an alias")

    @property
    def is_aggregate(self) -> bool:
        return self.function is not None


MONTH_NAMES = (
    "january",
    "february",
    "march",
    "april",
    "may",
    "june",
    "july",
    "august",
    "september",
    "october",
    "november",
    "december",
)

MONTH_ABBREVIATIONS = {
    "jan": "january",
    "feb": "february",
    "mar": "march",
    "apr": "april",
    "jun": "june",
    "jul": "july",
    "aug": "august",
    "sep": "september",
    "sept": "september",
    "oct": "october",
    "nov": "november",
    "dec": "december",
}

MONTH_REGEX = (
    "("
    + "|".join(MONTH_NAMES)
    + "|sept|jan|feb|mar|apr|jun|jul|aug|sep|oct|nov|dec)"
)

YEAR_REGEX = r"((?:19|20)\d{2})"


# Evaluation order matters: ties keep the earlier entry.
TABLE_MAPPINGS: Tuple[TableMapping, ...] = (
    TableMapping(
        key="sales",
        table=PRIMARY_SALES_TABLE,
        synonyms=("sales", "sales deal", "deal", "sold", "gross"),
        patterns=(
            r"\bsales?\b(?!\s+inventory)",
            r"\bdeals?\b",
            r"\bsold\b",
            r"\bgross\b",
        ),
        description="Reported vehicle deals, gross and deal counts.",
    ),
    TableMapping(
        key="inventory",
        table=INVENTORY_TABLE,
        synonyms=(
            "inventory",
            "sales inventory",
            "in stock",
            "on the lot",
            "stock on hand",
            "available units",
        ),
        patterns=(
            r"\binventor(?:y|ies)\b",
            r"\bsales\s+inventory\b",
            r"\b(?:in\s+stock|on\s+the\s+lot|on\s+hand)\b",
        ),
        description="Vehicle inventory: holds, availability, cost and retail.",
    ),
    TableMapping(
        key="warranty",
        table=WARRANTY_TABLE,
        synonyms=(
            "rvac",
            "rvac contract",
            "warranty",
            "warranties",
            "warranty sales",
            "service contract",
        ),
        patterns=(
            r"\brvac\b",
            r"\bwarrant(?:y|ies)\b",
            r"\bwarranty\s+(?:sales|revenue|price|cost)\b",
            r"\bservice\s+contracts?\b",
        ),
        description="RVAC warranty contracts sold with vehicles.",
    ),
)

PRIMARY_TABLE_KEY = "sales"

# Baseline confidence the primary sales table starts with.
PRIMARY_TABLE_BASELINE = 0.5
SYNONYM_WEIGHT = 0.3
PATTERN_WEIGHT = 0.5


COLUMN_MAPPINGS: Tuple[ColumnMapping, ...] = (
    ColumnMapping(
        key="dealership",
        column="DEALER_LOCATION",
        synonyms=("dealership", "dealer location", "dealer", "location", "store"),
        patterns=(
            r"\b(?:at|for)\s+(?:the\s+)?([a-z0-9]+)\s+(?:dealership|location|store)\b",
        ),
    ),
    ColumnMapping(
        key="gross",
        column="TOTAL_COST",
        function="SUM",
        alias="TotalGross",
        synonyms=("gross", "total cost"),
        patterns=(
            r"\btotal\s+gross\b",
            r"\bgross\s+(?:profit|amount|total)\b",
            r"\bsum\s+of\s+(?:the\s+)?gross\b",
        ),
    ),
    ColumnMapping(
        key="average_gross",
        column="TOTAL_COST",
        function="AVG",
        alias="AverageGross",
        synonyms=("average gross", "avg gross", "gross per deal"),
        patterns=(r"\b(?:average|avg|mean)\s+gross\b",),
    ),
    ColumnMapping(
        key="deal_count",
        column="ID",
        function="COUNT",
        alias="TotalDeals",
        synonyms=("deal count", "number of deals", "how many deals", "total deals"),
        patterns=(
            r"\bhow\s+many\s+(?:deals|sales)\b",
            r"\bnumber\s+of\s+(?:deals|sales)\b",
            r"\b(?:deal|sales)\s+count\b",
        ),
    ),
    ColumnMapping(
        key="vehicle_type",
        column="VEHICLE_TYPE",
        synonyms=("vehicle type", "marine", "auto"),
        patterns=(r"\b(auto|rv|marine)s?\b",),
    ),
    ColumnMapping(
        key="car_status",
        column="CAR_STATUS",
        synonyms=("car status", "pre-owned", "preowned"),
        patterns=(
            r"\b(new|used)\s+(?:cars?|vehicles?|units?|rvs?|boats?|deals?|sales|inventory)\b",
            r"\bcar\s+status\s+(?:is\s+|=\s*)?(new|used)\b",
        ),
    ),
    ColumnMapping(
        key="division",
        column="DIVISION",
        synonyms=("division", "franchise"),
        patterns=(
            r"\b(401\s+retail|franchise)\b",
            r"\bdivision\s+(401)\b",
            r"\b(401)\s+division\b",
        ),
    ),
    ColumnMapping(
        key="make",
        column="MAKE",
        synonyms=("make", "brand", "manufacturer"),
    ),
    ColumnMapping(
        key="model",
        column="MODEL",
        synonyms=("model",),
    ),
    ColumnMapping(
        key="closer",
        column="CLOSER",
        synonyms=("closer", "salesperson", "sales person", "sales rep"),
        patterns=(r"\bclosed\s+by\s+([a-z]+)\b",),
    ),
    ColumnMapping(
        key="lead_source",
        column="LEAD_SOURCE",
        synonyms=("lead source",),
        patterns=(r"\bfrom\s+([a-z]+)\s+leads?\b",),
    ),
    ColumnMapping(
        key="lender",
        column="LENDER",
        synonyms=("lender", "financed by"),
    ),
    ColumnMapping(
        key="month",
        column="MONTH_REPORTED",
        synonyms=("month",),
        patterns=(r"\b" + MONTH_REGEX + r"\b(?=\s*,?\s*(?:of\s+)?(?:19|20)\d{2}\b)",),
    ),
    ColumnMapping(
        key="year",
        column="YEAR_REPORTED",
        synonyms=("year",),
        patterns=(r"\b" + YEAR_REGEX + r"\b",),
    ),
    ColumnMapping(
        key="quarter",
        column="DATEPART(QUARTER, CAST(DATE_REPORTED AS DATE))",
        synonyms=("quarter",),
        patterns=(r"\bq([1-4])\b",),
    ),
    ColumnMapping(
        key="week",
        column="WEEK_REPORTED",
        synonyms=("week",),
    ),
    ColumnMapping(
        key="inventory_cost",
        column="TotalCost",
        function="SUM",
        alias="TotalInventoryCost",
        synonyms=("inventory cost", "inventory value", "cost of inventory"),
        patterns=(r"\b(?:total|sum\s+of)\s+inventory\s+(?:cost|value)\b",),
    ),
    ColumnMapping(
        key="inventory_units",
        column="ID",
        function="COUNT",
        alias="TotalUnits",
        synonyms=("units in stock", "vehicles in stock", "units on the lot"),
        patterns=(
            r"\bhow\s+many\s+(?:units|vehicles|cars|rvs|boats)\s+(?:are\s+)?(?:in\s+stock|on\s+the\s+lot|available)\b",
        ),
    ),
    ColumnMapping(
        key="average_retail",
        column="Retail",
        function="AVG",
        alias="AverageRetail",
        synonyms=("average retail", "avg retail", "average asking price"),
    ),
    ColumnMapping(
        key="warranty_revenue",
        column="WarrantyPrice",
        function="SUM",
        alias="TotalWarrantyPrice",
        synonyms=("warranty price", "warranty revenue", "warranty sales"),
        patterns=(r"\btotal\s+warranty\s+(?:price|revenue|sales)\b",),
    ),
    ColumnMapping(
        key="warranty_cost",
        column="WarrantyCost",
        function="SUM",
        alias="TotalWarrantyCost",
        synonyms=("warranty cost",),
    ),
    ColumnMapping(
        key="warranty_plan",
        column="WarantyPlan",
        synonyms=("warranty plan", "coverage plan"),
    ),
)


# Ordered: first match wins.
GROUP_BY_RULES: Tuple[Tuple[str, str], ...] = (
    (r"\b(?:by|per|each)\s+(?:dealership|dealer|location|store)s?\b", "DEALER_LOCATION"),
    (r"\b(?:by|per|each)\s+month\b|\bmonthly\b|\bmonth\s+over\s+month\b", "MONTH_REPORTED"),
    (
        r"\b(?:by|per|each)\s+quarter\b|\bquarterly\b",
        "DATEPART(QUARTER, CAST(DATE_REPORTED AS DATE))",
    ),
    (
        r"\b(?:by|per|each)\s+week\b|\bweekly\b",
        "DATEPART(WEEK, CAST(DATE_REPORTED AS DATE))",
    ),
    (r"\b(?:by|per|each)\s+day\b|\bdaily\b", "CAST(DATE_REPORTED AS DATE)"),
    (r"\b(?:by|per|each)\s+year\b|\byearly\b|\bannually\b", "YEAR_REPORTED"),
    (r"\b(?:by|per|each)\s+division\b", "DIVISION"),
    (r"\b(?:by|per|each)\s+vehicle\s+type\b", "VEHICLE_TYPE"),
    (r"\b(?:by|per|each)\s+(?:closer|salesperson|sales\s+rep)s?\b", "CLOSER"),
    (r"\b(?:by|per|each)\s+(?:make|brand)\b", "MAKE"),
)

TABULAR_PATTERN = r"\b(?:table\s+format|tabular|grid|spreadsheet)\b"

CHART_FORMAT_RULES: Tuple[Tuple[str, str], ...] = (
    (r"\b(?:bar\s*chart|barchart|bar\s*graph)\b", "bar"),
    (r"\b(?:line\s*chart|linechart|line\s*graph)\b", "line"),
    (r"\b(?:pie\s*chart|piechart|pie\s*graph)\b", "pie"),
)

VALUE_STOPWORDS = frozenset({"for", "in", "by", "with", "and", "the", "a", "an"})


def normalize_month(token: str) -> Optional[str]:
    """Map a month name or abbreviation to its full lowercase name."""
    if not token:
        return None
    lowered = token.lower().rstrip(".")
    if lowered in MONTH_NAMES:
        return lowered
    return MONTH_ABBREVIATIONS.get(lowered)


def get_table_mapping(key: str) -> TableMapping:
    for mapping in TABLE_MAPPINGS:
        if mapping.key == key:
            return mapping
    raise KeyError(key)
