#!/usr/bin/env python3
"""
Combine enriched game stores into one table and export it as parquet partitioned by
DataSource / year / month.

The output directory and the working database are removed and recreated on every run,
so the export never mixes partitions from a previous run with the new ones.

Usage example:
python -m pgn_pipeline.export_to_parquet --inDir out/enriched --outDir out/parquet --outDb out/combined.duckdb
"""

from __future__ import annotations

import argparse
import logging
import shutil
from pathlib import Path

import duckdb
import pyarrow.parquet as pq

from .config import DEFAULT_PARAMS_PATH, PipelineConfig
from .errors import ExportWriteError, NoInputFoundError, PipelineError, StoreAccessError, StoreSchemaError
from .store import (
    GAMES_TABLE,
    attach,
    connect,
    copy_partitioned,
    count_rows,
    detach,
    missing_columns,
    remove_store,
    table_columns,
)
from .utils import list_files_by_extension, sql_string_literal

logger = logging.getLogger(__name__)

STORE_EXT = ".duckdb"
COMBINED_TABLE = "combined"
SOURCE_ALIAS = "src"
MIN_YEAR = 1500
PARTITION_BY = ("DataSource", "year", "month")

FIELDS = [
    "Event",
    "Site",
    "White",
    "Black",
    "Result",
    "WhiteTitle",
    "BlackTitle",
    "WhiteElo",
    "BlackElo",
    "UTCDate",
    "UTCTime",
    "ECO",
    "Opening",
    "Termination",
    "TimeControl",
    "Source",
    "movetext",
    "clean_movetext",
]


def required_columns(data_source: str | None) -> list[str]:
    cols = FIELDS + ["parse_error"]
    if data_source is None:
        cols.append("DataSource")
    return cols


def select_sql(data_source: str | None, alias: str = SOURCE_ALIAS) -> str:
    """Projection of one attached store: fixed fields, provenance and partition keys."""
    if data_source is not None:
        source_col = f"  CAST('{sql_string_literal(data_source)}' AS VARCHAR) AS DataSource,"
    else:
        source_col = "  DataSource,"
    return "\n".join(
        ["SELECT"]
        + [f"  {f}," for f in FIELDS]
        + [
            source_col,
            "  year(UTCDate) AS year,",
            "  strftime(UTCDate, '%m') AS month",
            f"FROM {alias}.{GAMES_TABLE}",
            "WHERE UTCDate IS NOT NULL",
            f"AND year(UTCDate) >= {MIN_YEAR}",
            "AND parse_error IS NULL",
        ]
    )


def append_store(
    con: duckdb.DuckDBPyConnection,
    db_path: Path,
    first: bool,
    data_source: str | None,
) -> int:
    attach(con, db_path, SOURCE_ALIAS)
    try:
        cols = table_columns(con, GAMES_TABLE, database=SOURCE_ALIAS)
        missing = missing_columns(cols, required_columns(data_source))
        if not cols:
            raise StoreSchemaError(f"{db_path}: no '{GAMES_TABLE}' table")
        if missing:
            raise StoreSchemaError(f"{db_path}: missing required field(s) {', '.join(missing)}")

        before = 0 if first else count_rows(con, COMBINED_TABLE)
        head = f"CREATE TABLE {COMBINED_TABLE} AS" if first else f"INSERT INTO {COMBINED_TABLE}"
        try:
            con.execute(head + "\n" + select_sql(data_source) + ";")
        except duckdb.Error as e:
            raise StoreAccessError(f"Could not merge {db_path}: {e}") from e
        return count_rows(con, COMBINED_TABLE) - before
    finally:
        detach(con, SOURCE_ALIAS)


def partition_summary(out_dir: str | Path) -> dict[tuple[str, str, str], int]:
    """
    Row counts per (DataSource, year, month) partition directory, read from the
    parquet footers of an export.
    """
    out_dir = Path(out_dir)
    counts: dict[tuple[str, str, str], int] = {}
    for f in sorted(out_dir.rglob("*.parquet")):
        parts = dict(
            part.split("=", 1) for part in f.parent.relative_to(out_dir).parts if "=" in part
        )
        key = tuple(parts.get(k, "") for k in PARTITION_BY)
        counts[key] = counts.get(key, 0) + pq.ParquetFile(f).metadata.num_rows
    return counts


def _clean_slate(out_dir: Path, out_db: Path) -> None:
    try:
        if out_dir.exists():
            shutil.rmtree(out_dir)
        out_dir.mkdir(parents=True, exist_ok=True)
        remove_store(out_db)
        out_db.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ExportWriteError(f"Could not reset output locations {out_dir}, {out_db}: {e}") from e


def consolidate(
    in_dir: str | Path,
    out_dir: str | Path,
    out_db: str | Path,
    config: PipelineConfig,
    data_source: str | None = None,
) -> dict[tuple[str, str, str], int]:
    in_dir, out_dir, out_db = Path(in_dir), Path(out_dir), Path(out_db)
    if not in_dir.is_dir():
        raise NoInputFoundError(f"Input directory not found: {in_dir}")
    dbs = list_files_by_extension(in_dir, STORE_EXT)
    if not dbs:
        raise NoInputFoundError(f"No {STORE_EXT} files found under {in_dir}")

    logger.info("Exporting %d DuckDB file(s) from %s to %s", len(dbs), in_dir, out_dir)
    _clean_slate(out_dir, out_db)

    try:
        con = connect(out_db, config)
        try:
            for i, db in enumerate(dbs):
                added = append_store(con, db, first=(i == 0), data_source=data_source)
                logger.info("[%d/%d] %s: %d rows", i + 1, len(dbs), db, added)

            total = count_rows(con, COMBINED_TABLE)
            logger.info("Combined rows: %d", total)
            copy_partitioned(con, COMBINED_TABLE, out_dir, PARTITION_BY)
        finally:
            con.close()
    except (PipelineError, duckdb.Error) as e:
        logger.error("Export failed, removing %s and %s", out_dir, out_db)
        shutil.rmtree(out_dir, ignore_errors=True)
        remove_store(out_db)
        if isinstance(e, duckdb.Error):
            raise ExportWriteError(f"Could not export {in_dir} to {out_dir}: {e}") from e
        raise

    summary = partition_summary(out_dir)
    for (source, year, month), rows in sorted(summary.items()):
        logger.info("  DataSource=%s year=%s month=%s: %d rows", source, year, month, rows)
    logger.info("Done. %d partition(s), %d rows written to %s", len(summary), sum(summary.values()), out_dir)
    return summary


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Combine DuckDB game stores into partitioned parquet")
    p.add_argument("--inDir", required=True, help="directory of enriched .duckdb game stores")
    p.add_argument("--outDir", required=True, help="output directory for the partitioned parquet")
    p.add_argument("--outDb", required=True, help="working DuckDB file for the combined table")
    p.add_argument("--dataSource", default=None, help="label every exported row with this DataSource")
    p.add_argument("--key", default=None, help="fallback for --dataSource")
    p.add_argument("--params", default=DEFAULT_PARAMS_PATH, help="params.yaml used for DuckDB settings")
    p.add_argument("--verbose", action="store_true", help="enable verbose logging")
    args = p.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s: %(message)s",
    )

    config = PipelineConfig.from_environment(args.params)
    data_source = args.dataSource if args.dataSource is not None else args.key
    try:
        consolidate(args.inDir, args.outDir, args.outDb, config, data_source=data_source)
    except PipelineError as e:
        logger.error("%s", e)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
