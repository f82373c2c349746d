#!/usr/bin/env python3
"""
Stream .pgn / .pgn.zst files and write one DuckDB game store per input file.

Each store holds a `games` table with the PGN headers, the raw movetext, the canonical
`clean_movetext` and `parse_error` (NULL unless python-chess reported problems).
The store name is the input's relative path with separators replaced by `__`.

Usage example:
python -m pgn_pipeline.read_pgn --inDir in/lumbras --outDir out/games --chunkGames 200000
"""

from __future__ import annotations

import argparse
import io
import logging
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, TextIO

import chess.pgn
import duckdb
import pandas as pd
import zstandard as zstd

from .config import DEFAULT_PARAMS_PATH, PipelineConfig
from .errors import NoInputFoundError, PipelineError, StoreAccessError
from .movetext import game_movetext
from .store import GAMES_TABLE, connect, count_rows
from .utils import list_files_by_extension, output_stem

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_GAMES = 100_000
PARTIAL_SUFFIX = ".partial"
INPUT_EXTS = (".pgn.zst", ".pgn")

HEADERS = [
    "Event", "Site", "White", "Black", "Result", "WhiteTitle", "BlackTitle",
    "WhiteElo", "BlackElo", "UTCDate", "UTCTime", "ECO", "Opening",
    "Termination", "TimeControl", "Source",
]

# Typed projection of a chunk of raw rows; every value arrives as a string or None.
GAMES_SELECT = """
SELECT
  NULLIF(CAST(Event AS VARCHAR), '') AS Event,
  NULLIF(CAST(Site AS VARCHAR), '') AS Site,
  NULLIF(CAST(White AS VARCHAR), '') AS White,
  NULLIF(CAST(Black AS VARCHAR), '') AS Black,
  NULLIF(CAST(Result AS VARCHAR), '') AS Result,
  NULLIF(CAST(WhiteTitle AS VARCHAR), '') AS WhiteTitle,
  NULLIF(CAST(BlackTitle AS VARCHAR), '') AS BlackTitle,
  TRY_CAST(NULLIF(CAST(WhiteElo AS VARCHAR), '') AS INTEGER) AS WhiteElo,
  TRY_CAST(NULLIF(CAST(BlackElo AS VARCHAR), '') AS INTEGER) AS BlackElo,
  CAST(TRY_STRPTIME(CAST(UTCDate AS VARCHAR), '%Y.%m.%d') AS DATE) AS UTCDate,
  NULLIF(CAST(UTCTime AS VARCHAR), '') AS UTCTime,
  NULLIF(CAST(ECO AS VARCHAR), '') AS ECO,
  NULLIF(CAST(Opening AS VARCHAR), '') AS Opening,
  NULLIF(CAST(Termination AS VARCHAR), '') AS Termination,
  NULLIF(CAST(TimeControl AS VARCHAR), '') AS TimeControl,
  NULLIF(CAST(Source AS VARCHAR), '') AS Source,
  CAST(movetext AS VARCHAR) AS movetext,
  CAST(parse_error AS VARCHAR) AS parse_error,
  CAST(clean_movetext AS VARCHAR) AS clean_movetext
FROM chunk_df
"""


def process_game(game: chess.pgn.Game, exporter: chess.pgn.StringExporter, game_index: int | None = None) -> dict:
    """One row for `game`: headers, raw movetext, canonical movetext and parse errors."""
    h = game.headers
    row = {k: h.get(k, "") for k in HEADERS}
    row["UTCDate"] = h.get("UTCDate", h.get("Date", ""))

    errors = [str(e) for e in game.errors]
    try:
        row["movetext"] = game.accept(exporter)
        row["clean_movetext"] = game_movetext(game)
    except (ValueError, AssertionError) as e:
        logger.warning("Could not render moves at idx=%s: %s", game_index, e)
        row["movetext"] = None
        row["clean_movetext"] = None
        errors.append(str(e))
    row["parse_error"] = "; ".join(errors) if errors else None
    return row


@contextmanager
def open_pgn(path: str | Path) -> Iterator[TextIO]:
    """Text handle over a plain or zstandard-compressed PGN file."""
    path = Path(path)
    if path.name.lower().endswith(".zst"):
        ctx = zstd.ZstdDecompressor()
        with open(path, "rb") as fh, ctx.stream_reader(fh) as reader, \
             io.TextIOWrapper(reader, encoding="utf-8", errors="replace", newline="\n") as text:
            yield text
    else:
        with open(path, "r", encoding="utf-8", errors="replace", newline="\n") as text:
            yield text


def _flush(con: duckdb.DuckDBPyConnection, buf: list[dict], first: bool) -> None:
    chunk_df = pd.DataFrame(buf, columns=HEADERS + ["movetext", "parse_error", "clean_movetext"])
    con.register("chunk_df", chunk_df)
    head = f"CREATE TABLE {GAMES_TABLE} AS" if first else f"INSERT INTO {GAMES_TABLE}"
    con.execute(head + GAMES_SELECT)
    con.unregister("chunk_df")


def _remove_partial(partial: Path) -> None:
    for p in (partial, partial.with_name(partial.name + ".wal")):
        if p.exists():
            os.remove(p)


def store_path_for(in_dir: str | Path, pgn_path: str | Path, out_dir: str | Path) -> Path:
    name = Path(pgn_path).name.lower()
    ext = next(e for e in INPUT_EXTS if name.endswith(e))
    return Path(out_dir) / f"{output_stem(in_dir, pgn_path, ext)}.duckdb"


def read_one_pgn(
    in_dir: str | Path,
    pgn_path: str | Path,
    out_dir: str | Path,
    config: PipelineConfig,
    chunk_games: int = DEFAULT_CHUNK_GAMES,
    sample_games: int | None = None,
) -> Path:
    out_db = store_path_for(in_dir, pgn_path, out_dir)
    if out_db.exists():
        logger.info("Skipping %s, %s already exists", pgn_path, out_db)
        return out_db

    out_db.parent.mkdir(parents=True, exist_ok=True)
    partial = out_db.with_name(out_db.name + PARTIAL_SUFFIX)
    _remove_partial(partial)

    exporter = chess.pgn.StringExporter(headers=False, variations=False, comments=True)
    buf: list[dict] = []
    count = 0
    first = True

    logger.info("Reading %s -> %s", pgn_path, out_db)
    complete = False
    con = connect(partial, config)
    try:
        with open_pgn(pgn_path) as text:
            while True:
                game = chess.pgn.read_game(text)
                if game is None:
                    break
                buf.append(process_game(game, exporter, count))
                count += 1

                if count % 10000 == 0:
                    logger.info("Processed %d games... buffer size %d", count, len(buf))

                if len(buf) >= chunk_games:
                    _flush(con, buf, first)
                    first = False
                    buf = []

                if sample_games and count >= sample_games:
                    logger.info("Reached sample_games limit (%d). Stopping early.", sample_games)
                    break

        if buf or first:
            _flush(con, buf, first)

        games = count_rows(con, GAMES_TABLE)
        errors = count_rows(con, GAMES_TABLE, "parse_error IS NOT NULL")
        logger.info("%s: %d games, %d with parse errors", out_db.name, games, errors)
        if errors:
            logger.debug(
                "Games with parse errors:\n%s",
                con.execute(f"SELECT Event, Site, White, Black, parse_error FROM {GAMES_TABLE} "
                            "WHERE parse_error IS NOT NULL LIMIT 20").fetchdf(),
            )
        con.execute("CHECKPOINT;")
        complete = True
    except duckdb.Error as e:
        raise StoreAccessError(f"Could not write {out_db}: {e}") from e
    finally:
        con.close()
        if not complete:
            _remove_partial(partial)

    os.replace(partial, out_db)
    return out_db


def read_directory(
    in_dir: str | Path,
    out_dir: str | Path,
    config: PipelineConfig,
    chunk_games: int = DEFAULT_CHUNK_GAMES,
    sample_games: int | None = None,
) -> list[Path]:
    in_dir, out_dir = Path(in_dir), Path(out_dir)
    if not in_dir.is_dir():
        raise NoInputFoundError(f"Input directory not found: {in_dir}")
    pgns = list_files_by_extension(in_dir, ".pgn") + list_files_by_extension(in_dir, ".pgn.zst")
    pgns.sort(key=lambda p: p.as_posix())
    if not pgns:
        raise NoInputFoundError(f"No .pgn or .pgn.zst files found under {in_dir}")

    out_dir.mkdir(parents=True, exist_ok=True)
    logger.info("Reading %d PGN(s) from %s to %s", len(pgns), in_dir, out_dir)
    return [
        read_one_pgn(in_dir, pgn, out_dir, config, chunk_games=chunk_games, sample_games=sample_games)
        for pgn in pgns
    ]


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Stream PGN archives into per-file DuckDB game stores")
    p.add_argument("--inDir", required=True, help="directory searched recursively for .pgn / .pgn.zst")
    p.add_argument("--outDir", required=True, help="output directory for the .duckdb stores")
    p.add_argument("--chunkGames", type=int, default=DEFAULT_CHUNK_GAMES, help="flush to DuckDB every N games")
    p.add_argument("--sampleGames", type=int, default=None, help="stop after N games per file (for quick tests)")
    p.add_argument("--params", default=DEFAULT_PARAMS_PATH, help="params.yaml used for DuckDB settings")
    p.add_argument("--verbose", action="store_true", help="enable verbose logging")
    args = p.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s: %(message)s",
    )

    config = PipelineConfig.from_environment(args.params)
    try:
        read_directory(args.inDir, args.outDir, config, args.chunkGames, args.sampleGames)
    except PipelineError as e:
        logger.error("%s", e)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
