"""
Canonical move-sequence encoder.

Both the ingestion step (games) and the catalogue loader (opening lines) render
moves through these functions, so the textual containment test used for opening
classification never depends on incidental formatting of the source files.

Canonical form: SAN tokens with move numbers, single spaces, no comments/NAGs/result:
    1. e4 e5 2. Nf3 Nc6 3. Bb5
A line that starts with Black to move begins with ``N...``:
    12... Nf6 13. Qe2
"""

from __future__ import annotations

import io
from typing import Iterable

import chess
import chess.pgn


def render_moves(board: chess.Board, moves: Iterable[chess.Move]) -> str:
    """Render `moves` played from `board` (not modified) in canonical form."""
    board = board.copy(stack=False)
    tokens: list[str] = []
    for mv in moves:
        if board.turn == chess.WHITE:
            tokens.append(f"{board.fullmove_number}.")
        elif not tokens:
            tokens.append(f"{board.fullmove_number}...")
        tokens.append(board.san(mv))
        board.push(mv)
    return " ".join(tokens)


def game_movetext(game: chess.pgn.Game) -> str:
    return render_moves(game.board(), game.mainline_moves())


def _read_line(text: str) -> chess.pgn.Game | None:
    game = chess.pgn.read_game(io.StringIO(text))
    if game is not None and game.errors:
        raise ValueError(f"Illegal move text {text!r}: {game.errors[0]}")
    return game


def canonical_movetext(text: str) -> str:
    """
    Re-render free-form PGN move text canonically.

    >>> canonical_movetext("1.e4 e5 {book} 2.Nf3 1-0")
    '1. e4 e5 2. Nf3'
    """
    game = _read_line(text)
    if game is None:
        return ""
    return game_movetext(game)


def uci_line(text: str) -> str:
    """Space-separated UCI moves of PGN move text: ``1. e4 e5`` -> ``e2e4 e7e5``."""
    game = _read_line(text)
    if game is None:
        return ""
    return " ".join(mv.uci() for mv in game.mainline_moves())
