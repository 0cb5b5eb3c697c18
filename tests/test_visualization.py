from decimal import Decimal

import pytest

from dealer_query.visualization import (
    DEFAULT_VISUALIZATION,
    choose_visualization,
    explicit_chart_type,
    is_numeric_value,
)


def test_month_with_numeric_value_is_line():
    rows = [{"MONTH_REPORTED": "October", "TotalGross": 12500.0}]
    assert choose_visualization("gross by month", rows) == "line"


def test_small_numeric_result_is_bar():
    rows = [{"DEALER_LOCATION": "Tampa", "TotalDeals": 42}]
    assert choose_visualization("deals by dealership", rows) == "bar"


def test_wide_result_is_table():
    rows = [{"FIRST_NAME": "Ana", "LAST_NAME": "Diaz", "MAKE": "Ford", "TOTAL_COST": 100}]
    assert choose_visualization("list deals", rows) == "table"


def test_non_numeric_result_is_table():
    rows = [{"DEALER_LOCATION": "Tampa", "CLOSER": "Maria"}]
    assert choose_visualization("closers", rows) == "table"


def test_no_rows_defaults_to_table():
    assert choose_visualization("gross by month", []) == DEFAULT_VISUALIZATION


@pytest.mark.parametrize(
    "prompt, expected",
    [
        ("gross by dealership as a pie chart", "pie"),
        ("deals by month bar graph", "bar"),
        ("show it as a linechart", "line"),
        ("give me a data table of deals", "table"),
    ],
)
def test_explicit_request_wins(prompt, expected):
    rows = [{"MONTH_REPORTED": "October", "TotalGross": 12500.0}]
    assert explicit_chart_type(prompt) == expected
    assert choose_visualization(prompt, rows) == expected


@pytest.mark.parametrize(
    "value, expected",
    [
        (42, True),
        (12.5, True),
        (Decimal("99.10"), True),
        ("2025", True),
        ("12.50", True),
        (True, False),
        ("Tampa", False),
        (None, False),
        ("-5", False),
    ],
)
def test_is_numeric_value(value, expected):
    assert is_numeric_value(value) is expected
