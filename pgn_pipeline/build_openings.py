#!/usr/bin/env python3
"""
Build the openings DuckDB used for classification from lichess chess-openings TSV files
(a.tsv ... e.tsv with eco/name/pgn columns).

Usage example:
python -m pgn_pipeline.build_openings --source data/chess-openings --outDb data/openings.duckdb
"""

from __future__ import annotations

import argparse
import logging
from pathlib import Path

import duckdb
import pandas as pd

from .config import DEFAULT_PARAMS_PATH, PipelineConfig
from .errors import MissingCatalogueError, NoInputFoundError, PipelineError, StoreAccessError
from .movetext import canonical_movetext, uci_line
from .openings import OPENINGS_TABLE
from .store import connect, count_rows, remove_store

logger = logging.getLogger(__name__)


def read_openings_tsv(tsv_path: str | Path) -> pd.DataFrame:
    df = pd.read_csv(tsv_path, sep="\t", dtype=str, keep_default_na=False)
    missing = {"eco", "name", "pgn"} - set(df.columns)
    if missing:
        raise MissingCatalogueError(f"{tsv_path} is missing column(s): {', '.join(sorted(missing))}")

    rows = []
    for eco, name, pgn in zip(df["eco"], df["name"], df["pgn"]):
        if not eco or not name or not pgn:
            continue
        try:
            rows.append({"eco": eco.strip(), "name": name.strip(), "pgn": canonical_movetext(pgn), "uci": uci_line(pgn)})
        except ValueError as e:
            logger.warning("Skipping %s %r: %s", eco, name, e)
    return pd.DataFrame(rows, columns=["eco", "name", "pgn", "uci"])


def build_openings(source: str | Path, out_db: str | Path, config: PipelineConfig) -> int:
    source, out_db = Path(source), Path(out_db)
    if source.is_dir():
        tsv_files = sorted(source.glob("*.tsv"))
    elif source.exists():
        tsv_files = [source]
    else:
        tsv_files = []
    if not tsv_files:
        raise NoInputFoundError(f"No TSV files found in {source}")

    frames = []
    for tsv_path in tsv_files:
        df = read_openings_tsv(tsv_path)
        logger.info("%s: %d openings", tsv_path, len(df))
        frames.append(df)
    openings_df = pd.concat(frames, ignore_index=True)

    remove_store(out_db)
    out_db.parent.mkdir(parents=True, exist_ok=True)
    con = connect(out_db, config)
    try:
        con.register("openings_df", openings_df)
        con.execute(
            f"CREATE TABLE {OPENINGS_TABLE} AS "
            "SELECT CAST(eco AS VARCHAR) AS eco, CAST(name AS VARCHAR) AS name, "
            "CAST(pgn AS VARCHAR) AS pgn, CAST(uci AS VARCHAR) AS uci FROM openings_df"
        )
        con.unregister("openings_df")
        total = count_rows(con, OPENINGS_TABLE)
    except duckdb.Error as e:
        raise StoreAccessError(f"Could not write {out_db}: {e}") from e
    finally:
        con.close()

    logger.info("Done. %d openings written to %s", total, out_db)
    return total


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Build an openings DuckDB from chess-openings TSV files")
    p.add_argument("--source", required=True, help="TSV file or directory of TSV files")
    p.add_argument("--outDb", required=True, help="DuckDB file to create")
    p.add_argument("--params", default=DEFAULT_PARAMS_PATH, help="params.yaml used for DuckDB settings")
    p.add_argument("--verbose", action="store_true", help="enable verbose logging")
    args = p.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s: %(message)s",
    )

    try:
        build_openings(args.source, args.outDb, PipelineConfig.from_environment(args.params))
    except PipelineError as e:
        logger.error("%s", e)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
