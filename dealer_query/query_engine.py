"""
Query Engine - SQL Server access through pyodbc.

This is the data layer - keep it simple and focused.
"""

import logging
import time
from collections import OrderedDict
from typing import Callable, List, Optional

import pandas as pd
import pyodbc

from dealer_query.config import Config, get_config
from dealer_query.models import ColumnInfo, QueryResult, SchemaSnapshot

logger = logging.getLogger(__name__)

SCHEMA_QUERY = """
SELECT TABLE_SCHEMA, TABLE_NAME, COLUMN_NAME, DATA_TYPE
FROM INFORMATION_SCHEMA.COLUMNS
WHERE TABLE_CATALOG = ?
ORDER BY TABLE_NAME, ORDINAL_POSITION
"""


class DatabaseNotConfiguredError(RuntimeError):
    """Raised when DB_HOST / DB_NAME are missing."""


class QueryEngine:
    """
    Simple SQL Server query engine.

    Responsibilities:
    - Open a connection per call
    - Execute already-validated SQL
    - Return pandas DataFrames wrapped in QueryResult
    - Read INFORMATION_SCHEMA for the schema registry

    NOT responsible for:
    - SQL generation (that's sql_generator.py)
    - SQL safety checks (that's sql_validator.py)
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        connect_fn: Optional[Callable] = None,
    ):
        self.config = config or get_config()
        self._connect_fn = connect_fn or pyodbc.connect

    def _connect(self):
        if not self.config.database_configured:
            raise DatabaseNotConfiguredError(
                "Database not configured - set DB_HOST and DB_NAME"
            )
        try:
            conn = self._connect_fn(self.config.odbc_connection_string())
        except Exception as e:
            logger.error(f"Failed to connect to SQL Server: {e}")
            raise
        if self.config.db_query_timeout:
            conn.timeout = self.config.db_query_timeout
        return conn

    def execute(self, sql: str) -> QueryResult:
        """
        Execute SQL and return results.

        Args:
            sql: Validated SQL query string

        Returns:
            QueryResult with a pandas DataFrame

        Raises:
            Exception: If connection or query fails
        """
        start_time = time.time()
        conn = self._connect()
        try:
            logger.debug(f"Executing SQL: {sql[:100]}...")
            cursor = conn.cursor()
            cursor.execute(sql)
            if cursor.description is None:
                columns: List[str] = []
                frame = pd.DataFrame()
            else:
                columns = [column[0] for column in cursor.description]
                rows = [tuple(row) for row in cursor.fetchall()]
                frame = pd.DataFrame.from_records(rows, columns=columns)
        except Exception as e:
            logger.error(f"Query failed: {e}")
            logger.error(f"SQL: {sql}")
            raise
        finally:
            conn.close()

        elapsed = time.time() - start_time
        logger.info(f"Query returned {len(frame)} rows in {elapsed:.3f}s")
        return QueryResult(
            data=frame,
            row_count=len(frame),
            columns=columns,
            execution_time_seconds=elapsed,
            sql_executed=sql,
        )

    def fetch_schema(self) -> SchemaSnapshot:
        """Read table/column metadata for the configured database."""
        conn = self._connect()
        try:
            cursor = conn.cursor()
            cursor.execute(SCHEMA_QUERY, self.config.db_name)
            tables: "OrderedDict[str, List[ColumnInfo]]" = OrderedDict()
            for row in cursor.fetchall():
                _, table_name, column_name, data_type = tuple(row)
                tables.setdefault(table_name, []).append(
                    ColumnInfo(column=column_name, data_type=data_type)
                )
        finally:
            conn.close()

        logger.info(f"Fetched schema for {self.config.db_name}: {len(tables)} tables")
        return SchemaSnapshot(database=self.config.db_name, tables=dict(tables))

