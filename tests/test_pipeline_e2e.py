"""
End-to-end run: PGN files -> game stores -> enriched stores -> partitioned parquet.
"""

from conftest import read_games, write_openings_db
from pgn_pipeline.export_to_parquet import consolidate
from pgn_pipeline.find_openings import enrich_directory
from pgn_pipeline.read_pgn import read_directory


OTB_PGN = """[Event "Open"]
[Site "Linares"]
[Date "2019.02.03"]
[White "a"]
[Black "b"]
[Result "1-0"]

1. e4 e5 2. Nf3 Nc6 3. Bb5 a6 4. Ba4 Nf6 1-0

[Event "Open"]
[Site "Linares"]
[Date "2019.03.04"]
[White "c"]
[Black "d"]
[Result "0-1"]

1. c4 e5 2. Nc3 Nf6 0-1

[Event "Historic"]
[Site "Unknown"]
[Date "1475.01.01"]
[White "e"]
[Black "f"]
[Result "1-0"]

1. e4 c5 1-0

"""


def test_full_pipeline(tmp_path, config):
    pgn_dir = tmp_path / "pgn"
    pgn_dir.mkdir()
    (pgn_dir / "otb.pgn").write_text(OTB_PGN, encoding="utf-8")
    openings_db = write_openings_db(tmp_path / "openings.duckdb")

    read_directory(pgn_dir, tmp_path / "games", config)
    totals = enrich_directory(tmp_path / "games", tmp_path / "enriched", openings_db, "lumbras_otb", config)
    assert totals.classified == 2
    assert totals.unmatched == 1

    df = read_games(tmp_path / "enriched" / "otb.duckdb", "Opening")
    assert list(df["Opening"].fillna("-")) == ["Ruy Lopez", "-", "Sicilian Defense"]

    summary = consolidate(tmp_path / "enriched", tmp_path / "parquet", tmp_path / "combined.duckdb", config)
    assert summary == {
        ("lumbras_otb", "2019", "02"): 1,
        ("lumbras_otb", "2019", "03"): 1,
    }
