#!/usr/bin/env python3
"""
Tag every game store with its data source and fill in missing openings.

Each .duckdb store under --inDir is copied to the same relative path under --outDir
and enriched there; the input stores are never modified. A store only appears under
its final name once enrichment of that store has completed.

Usage example:
python -m pgn_pipeline.find_openings --inDir out/games --outDir out/enriched --openingsDb data/openings.duckdb --dataSource lumbras_otb_2020_2024
"""

from __future__ import annotations

import argparse
import logging
import os
import shutil
from concurrent.futures import ProcessPoolExecutor
from pathlib import Path

import duckdb
import pandas as pd

from .config import DEFAULT_PARAMS_PATH, PipelineConfig
from .errors import NoInputFoundError, PipelineError, StoreAccessError, StoreSchemaError
from .openings import ClassificationStats, OpeningCatalogue, OpeningIndex
from .store import GAMES_TABLE, connect, missing_columns, table_columns
from .utils import list_files_by_extension

logger = logging.getLogger(__name__)

STORE_EXT = ".duckdb"
PARTIAL_SUFFIX = ".partial"
REQUIRED_COLUMNS = ("clean_movetext", "parse_error")


def classify_frame(df: pd.DataFrame, index: OpeningIndex, stats: ClassificationStats) -> pd.DataFrame:
    """
    Classify a frame of (game_id, clean_movetext) rows.
    Returns (game_id, eco, name) for the games that matched a catalogue line.
    """
    matches = []
    for game_id, movetext in zip(df["game_id"], df["clean_movetext"]):
        if pd.isna(movetext):
            stats.unmatched += 1
            continue
        result = index.match(movetext)
        if result.entry is None:
            stats.unmatched += 1
            continue
        if result.tied:
            stats.ambiguous += 1
            logger.debug(
                "Game %s: %d openings tie at ply %d, using %s",
                game_id, len(result.tied), result.entry.ply, result.entry.name,
            )
        matches.append({"game_id": int(game_id), "eco": result.entry.eco, "name": result.entry.name})
        stats.classified += 1
    return pd.DataFrame(matches, columns=["game_id", "eco", "name"])


def enrich_store(
    db_path: str | Path,
    catalogue: OpeningCatalogue,
    data_source: str,
    config: PipelineConfig,
    anchored: bool = False,
    index: OpeningIndex | None = None,
) -> ClassificationStats:
    """
    Enrich one store in place: set DataSource on every row, then classify the rows
    whose Opening is still NULL. All changes are applied in a single transaction.
    """
    if index is None:
        index = OpeningIndex(catalogue, anchored=anchored)
    stats = ClassificationStats()

    con = connect(db_path, config)
    try:
        cols = table_columns(con, GAMES_TABLE)
        missing = missing_columns(cols, REQUIRED_COLUMNS)
        if not cols or missing:
            raise StoreSchemaError(f"{db_path}: games table missing column(s) {', '.join(missing) or GAMES_TABLE}")

        con.begin()
        con.execute(f"ALTER TABLE {GAMES_TABLE} ADD COLUMN IF NOT EXISTS DataSource VARCHAR;")
        con.execute(f"ALTER TABLE {GAMES_TABLE} ADD COLUMN IF NOT EXISTS ECO VARCHAR;")
        con.execute(f"ALTER TABLE {GAMES_TABLE} ADD COLUMN IF NOT EXISTS Opening VARCHAR;")
        con.execute(f"UPDATE {GAMES_TABLE} SET DataSource = ?;", [data_source])

        stats.total = con.execute(f"SELECT COUNT(*) FROM {GAMES_TABLE}").fetchone()[0]
        targets = con.execute(
            f"SELECT rowid AS game_id, clean_movetext FROM {GAMES_TABLE} "
            "WHERE Opening IS NULL AND parse_error IS NULL ORDER BY rowid"
        ).fetchdf()
        stats.candidates = len(targets)

        matches = classify_frame(targets, index, stats)
        if len(matches):
            con.register("matched_openings", matches)
            con.execute(
                f"UPDATE {GAMES_TABLE} g SET ECO = m.eco, Opening = m.name "
                "FROM matched_openings m "
                "WHERE g.rowid = m.game_id;"
            )
            con.unregister("matched_openings")
        con.commit()
        con.execute("CHECKPOINT;")
    except duckdb.Error as e:
        raise StoreAccessError(f"Could not enrich {db_path}: {e}") from e
    finally:
        con.close()

    logger.info(
        "%s: %d games, %d unclassified, %d classified, %d no match (%d ties)",
        db_path, stats.total, stats.candidates, stats.classified, stats.unmatched, stats.ambiguous,
    )
    return stats


def enrich_copy(
    src_db: Path,
    dst_db: Path,
    catalogue: OpeningCatalogue,
    data_source: str,
    config: PipelineConfig,
    anchored: bool = False,
) -> ClassificationStats:
    """Copy `src_db` next to `dst_db`, enrich the copy and move it into place."""
    dst_db.parent.mkdir(parents=True, exist_ok=True)
    partial = dst_db.with_name(dst_db.name + PARTIAL_SUFFIX)
    wal = partial.with_name(partial.name + ".wal")
    try:
        shutil.copyfile(src_db, partial)
        stats = enrich_store(partial, catalogue, data_source, config, anchored=anchored)
        os.replace(partial, dst_db)
    except OSError as e:
        raise StoreAccessError(f"Could not write {dst_db}: {e}") from e
    finally:
        for p in (partial, wal):
            if p.exists():
                os.remove(p)
    return stats


def _enrich_job(job: tuple) -> ClassificationStats:
    return enrich_copy(*job)


def enrich_directory(
    in_dir: str | Path,
    out_dir: str | Path,
    openings_db: str | Path,
    data_source: str,
    config: PipelineConfig,
    workers: int = 1,
    anchored: bool = False,
) -> ClassificationStats:
    in_dir, out_dir = Path(in_dir), Path(out_dir)
    if not in_dir.is_dir():
        raise NoInputFoundError(f"Input directory not found: {in_dir}")
    dbs = list_files_by_extension(in_dir, STORE_EXT)
    if not dbs:
        raise NoInputFoundError(f"No {STORE_EXT} files found under {in_dir}")

    catalogue = OpeningCatalogue.load(openings_db, config)
    out_dir.mkdir(parents=True, exist_ok=True)
    logger.info("Enriching %d DuckDB file(s) from %s to %s", len(dbs), in_dir, out_dir)

    jobs = [
        (src, out_dir / src.relative_to(in_dir), catalogue, data_source, config, anchored)
        for src in dbs
    ]
    totals = ClassificationStats()
    if workers > 1:
        with ProcessPoolExecutor(max_workers=workers) as pool:
            results = list(pool.map(_enrich_job, jobs))
    else:
        results = [_enrich_job(job) for job in jobs]

    for stats in results:
        totals.total += stats.total
        totals.candidates += stats.candidates
        totals.classified += stats.classified
        totals.unmatched += stats.unmatched
        totals.ambiguous += stats.ambiguous

    logger.info("Done. %s", totals.as_dict())
    return totals


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Tag data source and classify openings in DuckDB game stores")
    p.add_argument("--inDir", required=True, help="directory of .duckdb game stores")
    p.add_argument("--outDir", required=True, help="directory for the enriched copies")
    p.add_argument("--openingsDb", required=True, help="DuckDB file with an openings(eco, name, pgn, uci) table")
    p.add_argument("--dataSource", required=True, help="label written to the DataSource column")
    p.add_argument("--workers", type=int, default=1, help="enrich this many stores in parallel")
    p.add_argument("--anchored", action="store_true", help="only match opening lines at the start of the game")
    p.add_argument("--params", default=DEFAULT_PARAMS_PATH, help="params.yaml used for DuckDB settings")
    p.add_argument("--verbose", action="store_true", help="enable verbose logging")
    args = p.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s: %(message)s",
    )

    config = PipelineConfig.from_environment(args.params)
    try:
        enrich_directory(
            args.inDir,
            args.outDir,
            args.openingsDb,
            args.dataSource,
            config,
            workers=args.workers,
            anchored=args.anchored,
        )
    except PipelineError as e:
        logger.error("%s", e)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
