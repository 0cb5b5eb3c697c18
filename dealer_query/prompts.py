"""
Prompt Engineering Module for LLM Integration

This module contains all prompts sent to the chat completion endpoint:
- SQL generation (system rules + analyzer hints + user message)
- Free-form question answering (/ask)
- Tabular data analysis (/analyze)
- Text analysis (/analyze-text)
"""

from textwrap import dedent
from typing import List, Optional

from dealer_query.models import AnalysisResult, ChatMessage
from dealer_query.schema_docs import (
    INVENTORY_TABLE,
    PRIMARY_SALES_TABLE,
    WARRANTY_TABLE,
)
from dealer_query.sql_validator import FALLBACK_SQL


# ==============================================================================
# SQL GENERATION PROMPTS
# ==============================================================================

SQL_RULES = dedent(
    f"""\
    Rules:
    1. Only return a single T-SQL SELECT or WITH query. Do NOT return DDL/DML or any explanation.
    2. Use table and column names exactly as shown in the schema.
    3. Map requests to tables:
       - "sales", "sales deal", "sold" or anything about deals -> {PRIMARY_SALES_TABLE}
       - "inventory", "sales inventory", "in stock" -> {INVENTORY_TABLE}
       - "rvac", "rvac contract", "warranty" -> {WARRANTY_TABLE}
    4. Map natural language to columns:
       - "dealership" -> DEALER_LOCATION (always compare with '=')
       - "gross" or "total cost" -> TOTAL_COST
       - VEHICLE_TYPE values: auto, rv, marine
       - CAR_STATUS values: new, used
       - DIVISION values: 401, franchise, 401 retail
    5. When querying {PRIMARY_SALES_TABLE}:
       - Always exclude rows where isCarryOver = 1 OR isDeleted = 1.
       - When counting deals, include only rows with isCounted = 1.
       - When aggregating gross, include rows regardless of isCounted.
    6. When querying {WARRANTY_TABLE}, exclude rows where isDeleted = 1.
    7. MONTH_REPORTED holds the month name and must always be paired with YEAR_REPORTED;
       if no year is given use the current year.
    8. Cast DATE_REPORTED to DATE before comparing dates.
    9. When summing numeric columns stored as text, clean and cast them:
       SUM(CAST(REPLACE(REPLACE(ColumnName, ',', ''), ' ', '') AS DECIMAL(13,2)))
    10. If the request cannot be answered with the available columns, return:
        {FALLBACK_SQL}
    11. Return ONLY the SQL query in valid T-SQL format, without markdown or comments.
    """
)


def _format_hints(analysis: AnalysisResult) -> str:
    """Render analyzer output as a compact hint block."""
    lines = [f"- Likely table: {analysis.table.table}"]

    if analysis.filters:
        rendered = []
        for hint in analysis.filters:
            if hint.value:
                rendered.append(f"{hint.column} ~ '{hint.value}'")
            else:
                rendered.append(hint.column)
        lines.append(f"- Filter columns: {', '.join(rendered)}")

    if analysis.aggregates:
        lines.append(
            "- Aggregates: " + ", ".join(agg.render() for agg in analysis.aggregates)
        )

    time_range = analysis.time_range
    if not time_range.is_none:
        lines.append(
            f"- Time range ({time_range.kind.value}): {time_range.predicate}"
        )

    if analysis.presentation.group_by:
        lines.append(f"- Group by: {analysis.presentation.group_by}")

    return "\n".join(lines)


def get_sql_system_prompt(
    schema_description: str,
    analysis: Optional[AnalysisResult] = None,
    extra_rules: str = "",
) -> str:
    """
    Build the system prompt for SQL generation.

    Args:
        schema_description: "Tables:" listing from the schema registry
        analysis: Optional analyzer hints for the current request
        extra_rules: Additional deployment-specific rules

    Returns:
        System prompt text
    """
    prompt = (
        "You are a helpful assistant that strictly returns a single valid SQL Server "
        "SELECT query (no explanation).\n"
        "The database schema is described as:\n"
        f"{schema_description.strip()}\n\n"
        f"{SQL_RULES}"
    )
    if analysis is not None:
        prompt += (
            "\nHints from the request (use them when they fit the question):\n"
            f"{_format_hints(analysis)}\n"
        )
    if extra_rules:
        prompt += f"\n{extra_rules.strip()}\n"
    return prompt


def get_sql_user_message(prompt: str) -> str:
    return f'User request: "{prompt}"\nReturn only the SQL query.'


def build_sql_messages(
    prompt: str,
    schema_description: str,
    analysis: Optional[AnalysisResult] = None,
) -> List[ChatMessage]:
    return [
        ChatMessage(
            role="system",
            content=get_sql_system_prompt(schema_description, analysis),
        ),
        ChatMessage(role="user", content=get_sql_user_message(prompt)),
    ]


# ==============================================================================
# ANALYSIS PROMPTS
# ==============================================================================

ASK_SYSTEM_PROMPT = (
    "You are a helpful assistant for a car, RV and marine dealership group. "
    "Answer clearly and concisely."
)

DATA_ANALYSIS_SYSTEM_PROMPT = (
    "You are a data analyst for a dealership group. Analyze the data provided and "
    "answer the question. Cite concrete numbers from the data and call out trends, "
    "outliers and totals where relevant. If the data cannot answer the question, say so."
)

TEXT_ANALYSIS_INSTRUCTIONS = {
    "summary": "Summarize the following text in a few sentences.",
    "sentiment": (
        "Classify the sentiment of the following text as positive, negative or "
        "neutral, and explain briefly."
    ),
    "keywords": "Extract the most important keywords from the following text as a list.",
    "entities": (
        "Extract the named entities (people, organizations, locations, vehicles, "
        "dates, amounts) from the following text, grouped by type."
    ),
    "general": "Analyze the following text and describe its key points.",
}

TEXT_ANALYSIS_TYPES = tuple(TEXT_ANALYSIS_INSTRUCTIONS)


def get_data_analysis_user_message(
    question: str, rendered_data: str, data_type: str, rows_shown: int, total_rows: int
) -> str:
    truncated = (
        f" (showing the first {rows_shown} of {total_rows} rows)"
        if rows_shown < total_rows
        else ""
    )
    return (
        f"Question: {question}\n\n"
        f"Data ({data_type}){truncated}:\n"
        f"{rendered_data}"
    )


def get_text_analysis_messages(text: str, analysis_type: str) -> List[ChatMessage]:
    instruction = TEXT_ANALYSIS_INSTRUCTIONS.get(
        analysis_type, TEXT_ANALYSIS_INSTRUCTIONS["general"]
    )
    return [
        ChatMessage(
            role="system",
            content="You are a careful text analyst. Be accurate and concise.",
        ),
        ChatMessage(role="user", content=f"{instruction}\n\nText:\n{text}"),
    ]
