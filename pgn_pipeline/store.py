"""
Storage/query seam over DuckDB database files.

Every per-source store is one .duckdb file holding a `games` table. The helpers here
open stores, attach a second store under an alias and copy tables out as partitioned
parquet; DuckDB errors are re-raised as pipeline errors naming the path involved.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable

import duckdb

from .config import PipelineConfig
from .errors import ExportWriteError, StoreAccessError
from .utils import sql_path

logger = logging.getLogger(__name__)

GAMES_TABLE = "games"


def connect(path: str | Path, config: PipelineConfig, read_only: bool = False) -> duckdb.DuckDBPyConnection:
    path = Path(path)
    if read_only and not path.exists():
        raise StoreAccessError(f"Store not found: {path}")
    try:
        return duckdb.connect(str(path), read_only=read_only, config=config.duckdb_config())
    except duckdb.Error as e:
        raise StoreAccessError(f"Could not open store {path}: {e}") from e


def attach(con: duckdb.DuckDBPyConnection, path: str | Path, alias: str, read_only: bool = True) -> None:
    if not Path(path).exists():
        raise StoreAccessError(f"Store not found: {path}")
    mode = " (READ_ONLY)" if read_only else ""
    try:
        con.execute(f"ATTACH '{sql_path(path)}' AS {alias}{mode};")
    except duckdb.Error as e:
        raise StoreAccessError(f"Could not attach store {path}: {e}") from e


def detach(con: duckdb.DuckDBPyConnection, alias: str) -> None:
    con.execute(f"DETACH {alias};")


def table_columns(con: duckdb.DuckDBPyConnection, table: str, database: str | None = None) -> list[str]:
    """Column names of `table` (in `database` if given), empty when the table is absent."""
    sql = "SELECT column_name FROM duckdb_columns() WHERE table_name = ?"
    params = [table]
    if database is not None:
        sql += " AND database_name = ?"
        params.append(database)
    sql += " ORDER BY column_index"
    return [row[0] for row in con.execute(sql, params).fetchall()]


def missing_columns(present: Iterable[str], required: Iterable[str]) -> list[str]:
    # DuckDB identifiers are case-insensitive
    have = {c.lower() for c in present}
    return [c for c in required if c.lower() not in have]


def count_rows(con: duckdb.DuckDBPyConnection, table: str, where: str | None = None) -> int:
    sql = f"SELECT COUNT(*) FROM {table}"
    if where:
        sql += f" WHERE {where}"
    return con.execute(sql).fetchone()[0]


def copy_partitioned(
    con: duckdb.DuckDBPyConnection,
    table: str,
    out_dir: str | Path,
    partition_by: Iterable[str],
) -> None:
    cols = ", ".join(partition_by)
    sql = f"COPY {table} TO '{sql_path(out_dir)}' (FORMAT PARQUET, PARTITION_BY ({cols}));"
    try:
        con.execute(sql)
    except duckdb.Error as e:
        raise ExportWriteError(f"Could not write partitioned export to {out_dir}: {e}") from e


def remove_store(path: str | Path) -> None:
    """Delete a store file together with its write-ahead log, if present."""
    path = Path(path)
    for p in (path, path.with_name(path.name + ".wal")):
        if p.exists():
            os.remove(p)
