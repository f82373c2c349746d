"""Tests for the canonical move-sequence encoder."""

import chess
import pytest

from pgn_pipeline.movetext import canonical_movetext, render_moves, uci_line


class TestCanonicalMovetext:
    def test_already_canonical_text_is_unchanged(self):
        assert canonical_movetext("1. e4 e5 2. Nf3 Nc6") == "1. e4 e5 2. Nf3 Nc6"

    def test_strips_comments_result_and_spacing(self):
        text = "1.e4   e5 {main line} 2.Nf3 $1 Nc6 1-0"
        assert canonical_movetext(text) == "1. e4 e5 2. Nf3 Nc6"

    def test_keeps_check_and_mate_markers(self):
        text = "1. e4 e5 2. Bc4 Nc6 3. Qh5 Nf6 4. Qxf7#"
        assert canonical_movetext(text) == text

    def test_empty_text(self):
        assert canonical_movetext("") == ""

    def test_illegal_move_raises(self):
        with pytest.raises(ValueError):
            canonical_movetext("1. e4 e4")


class TestRenderMoves:
    def test_black_to_move_start(self):
        """A line starting with Black to move is numbered N..."""
        board = chess.Board()
        board.push_san("e4")
        scratch = board.copy()
        moves = [scratch.push_san("e5"), scratch.push_san("Nf3")]
        assert render_moves(board, moves) == "1... e5 2. Nf3"

    def test_board_is_not_modified(self):
        board = chess.Board()
        render_moves(board, [chess.Move.from_uci("e2e4")])
        assert board.fen() == chess.STARTING_FEN


class TestUciLine:
    def test_uci_rendering(self):
        assert uci_line("1. e4 e5 2. Nf3") == "e2e4 e7e5 g1f3"

    def test_castling(self):
        text = "1. e4 e5 2. Nf3 Nc6 3. Bc4 Bc5 4. O-O"
        assert uci_line(text).split()[-1] == "e1g1"
