"""
Shared fixtures for the pipeline tests.

Game stores and opening catalogues are small DuckDB files created in tmp_path, with
the same table layout the ingestion and catalogue builder steps produce.
"""

from pathlib import Path

import duckdb
import pandas as pd
import pytest

from pgn_pipeline.config import PipelineConfig
from pgn_pipeline.openings import OpeningCatalogue


RUY_LOPEZ_GAME = "1. e4 e5 2. Nf3 Nc6 3. Bb5 a6 4. Ba4 Nf6"
ITALIAN_GAME = "1. e4 e5 2. Nf3 Nc6 3. Bc4 Bc5 4. c3 Nf6"
SICILIAN_GAME = "1. e4 c5 2. Nf3 d6 3. d4 cxd4"
ENGLISH_GAME = "1. c4 e5 2. Nc3 Nf6"

OPENINGS = [
    ("C20", "King's Pawn Game", "1. e4 e5", "e2e4 e7e5"),
    ("C40", "King's Knight Opening", "1. e4 e5 2. Nf3", "e2e4 e7e5 g1f3"),
    ("C44", "King's Knight Opening: Normal Variation", "1. e4 e5 2. Nf3 Nc6", "e2e4 e7e5 g1f3 b8c6"),
    ("C60", "Ruy Lopez", "1. e4 e5 2. Nf3 Nc6 3. Bb5", "e2e4 e7e5 g1f3 b8c6 f1b5"),
    ("B20", "Sicilian Defense", "1. e4 c5", "e2e4 c7c5"),
    ("A40", "Queen's Pawn Game", "1. d4", "d2d4"),
]

GAME_COLUMNS = [
    "Event", "Site", "White", "Black", "Result", "WhiteTitle", "BlackTitle",
    "WhiteElo", "BlackElo", "UTCDate", "UTCTime", "ECO", "Opening",
    "Termination", "TimeControl", "Source", "movetext", "clean_movetext", "parse_error",
]


def game_row(**overrides) -> dict:
    row = {
        "Event": "Rated Blitz game",
        "Site": "https://lichess.org/abcdefgh",
        "White": "alice",
        "Black": "bob",
        "Result": "1-0",
        "WhiteTitle": None,
        "BlackTitle": None,
        "WhiteElo": 2100,
        "BlackElo": 2050,
        "UTCDate": "2020-01-15",
        "UTCTime": "12:00:00",
        "ECO": None,
        "Opening": None,
        "Termination": "Normal",
        "TimeControl": "180+0",
        "Source": None,
        "movetext": RUY_LOPEZ_GAME + " 1-0",
        "clean_movetext": RUY_LOPEZ_GAME,
        "parse_error": None,
    }
    row.update(overrides)
    return row


def write_store(path: Path, rows: list[dict], data_source: str | None = None, drop: tuple = ()) -> Path:
    """Create a .duckdb file with a typed `games` table holding `rows`."""
    path.parent.mkdir(parents=True, exist_ok=True)
    df = pd.DataFrame(rows, columns=GAME_COLUMNS)
    casts = {
        "WhiteElo": "CAST(WhiteElo AS INTEGER)",
        "BlackElo": "CAST(BlackElo AS INTEGER)",
        "UTCDate": "CAST(CAST(UTCDate AS VARCHAR) AS DATE)",
    }
    select = [f"{casts.get(c, f'CAST({c} AS VARCHAR)')} AS {c}" for c in GAME_COLUMNS if c not in drop]
    if data_source is not None:
        select.append(f"CAST('{data_source}' AS VARCHAR) AS DataSource")

    con = duckdb.connect(str(path))
    con.register("rows_df", df)
    con.execute(f"CREATE TABLE games AS SELECT {', '.join(select)} FROM rows_df")
    con.close()
    return path


def read_games(path: Path, columns: str = "*") -> pd.DataFrame:
    con = duckdb.connect(str(path), read_only=True)
    try:
        return con.execute(f"SELECT {columns} FROM games ORDER BY rowid").fetchdf()
    finally:
        con.close()


def write_openings_db(path: Path, openings=OPENINGS, with_uci: bool = True) -> Path:
    con = duckdb.connect(str(path))
    if with_uci:
        con.execute("CREATE TABLE openings (eco VARCHAR, name VARCHAR, pgn VARCHAR, uci VARCHAR)")
        con.executemany("INSERT INTO openings VALUES (?, ?, ?, ?)", [list(o) for o in openings])
    else:
        con.execute("CREATE TABLE openings (eco VARCHAR, name VARCHAR, pgn VARCHAR)")
        con.executemany("INSERT INTO openings VALUES (?, ?, ?)", [list(o[:3]) for o in openings])
    con.close()
    return path


@pytest.fixture
def config():
    return PipelineConfig()


@pytest.fixture
def catalogue():
    return OpeningCatalogue.from_rows(OPENINGS)


@pytest.fixture
def openings_db(tmp_path):
    return write_openings_db(tmp_path / "openings.duckdb")
