"""Tests for building the openings store from chess-openings TSV files."""

import duckdb
import pytest

from pgn_pipeline.build_openings import build_openings, read_openings_tsv
from pgn_pipeline.errors import MissingCatalogueError, NoInputFoundError
from pgn_pipeline.openings import OpeningCatalogue


A_TSV = "eco\tname\tpgn\nA40\tQueen's Pawn Game\t1. d4\nA00\tBroken Line\t1. d4 d4\n"
C_TSV = (
    "eco\tname\tpgn\n"
    "C20\tKing's Pawn Game\t1. e4 e5\n"
    "C60\tRuy Lopez\t1.e4 e5 2.Nf3 Nc6 3.Bb5\n"
)


@pytest.fixture
def tsv_dir(tmp_path):
    root = tmp_path / "chess-openings"
    root.mkdir()
    (root / "c.tsv").write_text(C_TSV, encoding="utf-8")
    (root / "a.tsv").write_text(A_TSV, encoding="utf-8")
    return root


class TestBuildOpenings:
    def test_table_in_file_order(self, tsv_dir, tmp_path, config):
        out_db = tmp_path / "openings.duckdb"
        assert build_openings(tsv_dir, out_db, config) == 3

        con = duckdb.connect(str(out_db), read_only=True)
        rows = con.execute("SELECT eco, pgn, uci FROM openings ORDER BY rowid").fetchall()
        con.close()
        assert rows == [
            ("A40", "1. d4", "d2d4"),
            ("C20", "1. e4 e5", "e2e4 e7e5"),
            ("C60", "1. e4 e5 2. Nf3 Nc6 3. Bb5", "e2e4 e7e5 g1f3 b8c6 f1b5"),
        ]

    def test_loads_as_catalogue(self, tsv_dir, tmp_path, config):
        out_db = tmp_path / "openings.duckdb"
        build_openings(tsv_dir, out_db, config)
        catalogue = OpeningCatalogue.load(out_db, config)
        assert catalogue.entries[-1].ply == 5

    def test_rebuild_replaces_store(self, tsv_dir, tmp_path, config):
        out_db = tmp_path / "openings.duckdb"
        build_openings(tsv_dir, out_db, config)
        assert build_openings(tsv_dir / "a.tsv", out_db, config) == 1

    def test_no_tsv_files(self, tmp_path, config):
        with pytest.raises(NoInputFoundError):
            build_openings(tmp_path, tmp_path / "openings.duckdb", config)

    def test_missing_columns(self, tmp_path):
        path = tmp_path / "bad.tsv"
        path.write_text("code\ttitle\nA00\tx\n", encoding="utf-8")
        with pytest.raises(MissingCatalogueError):
            read_openings_tsv(path)
