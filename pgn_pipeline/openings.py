"""
Opening catalogue and classifier.

A catalogue line matches a game when the line's canonical `pgn` text is contained
in the game's `clean_movetext`. Among all matching lines the one with the greatest
ply (half-move count of its `uci` line) wins; lines of equal ply are resolved by
catalogue order, first one wins.

`OpeningCatalogue.best_match` is the straightforward reference: every line is
tested against every game. `OpeningIndex` gives the same answers through a token
trie so only lines sharing the game's move tokens are visited.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Iterable, Iterator, Optional

import duckdb

from .config import PipelineConfig
from .errors import MissingCatalogueError, StoreAccessError
from .movetext import canonical_movetext, uci_line
from .store import connect, missing_columns, table_columns

logger = logging.getLogger(__name__)

OPENINGS_TABLE = "openings"
REQUIRED_COLUMNS = ("eco", "name", "pgn")


@dataclass(frozen=True)
class OpeningEntry:
    eco: str
    name: str
    pgn: str
    uci: str
    ply: int


def line_matches(pgn: str, movetext: str, anchored: bool = False) -> bool:
    if anchored:
        return movetext.startswith(pgn)
    return pgn in movetext


class OpeningCatalogue:
    """Read-only, ordered collection of opening lines."""

    def __init__(self, entries: Iterable[OpeningEntry]):
        self.entries = tuple(entries)

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[OpeningEntry]:
        return iter(self.entries)

    @classmethod
    def from_rows(cls, rows: Iterable[tuple], canonicalize: bool = True) -> "OpeningCatalogue":
        """
        Build entries from (eco, name, pgn, uci) rows, in order.

        With `canonicalize` the pgn is re-rendered by the shared move encoder; a line
        that does not parse keeps its whitespace-collapsed text. `uci` may be None,
        in which case it is derived from the pgn. Lines with an empty pgn are dropped
        since they would match every game.
        """
        entries = []
        dropped = 0
        for eco, name, pgn, uci in rows:
            raw = " ".join((pgn or "").split())
            text = raw
            if canonicalize and raw:
                try:
                    text = canonical_movetext(raw)
                except ValueError as e:
                    logger.warning("Keeping opening %s %r as-is: %s", eco, name, e)
            if not text:
                dropped += 1
                continue
            if not uci:
                try:
                    uci = uci_line(raw)
                except ValueError:
                    uci = ""
            ply = len(uci.split()) if uci else 0
            entries.append(OpeningEntry(eco=eco, name=name, pgn=text, uci=uci, ply=ply))
        if dropped:
            logger.warning("Dropped %d opening(s) with empty move text", dropped)
        return cls(entries)

    @classmethod
    def load(cls, path: str | Path, config: PipelineConfig) -> "OpeningCatalogue":
        path = Path(path)
        if not path.exists():
            raise MissingCatalogueError(f"Openings database not found: {path}")
        try:
            con = connect(path, config, read_only=True)
        except StoreAccessError as e:
            raise MissingCatalogueError(str(e)) from e
        try:
            cols = table_columns(con, OPENINGS_TABLE)
            missing = missing_columns(cols, REQUIRED_COLUMNS)
            if not cols or missing:
                raise MissingCatalogueError(
                    f"{path} has no usable '{OPENINGS_TABLE}' table (missing: {', '.join(missing)})"
                )
            uci = "uci" if "uci" in {c.lower() for c in cols} else "NULL"
            rows = con.execute(
                f"SELECT eco, name, pgn, {uci} FROM {OPENINGS_TABLE} ORDER BY rowid"
            ).fetchall()
        except duckdb.Error as e:
            raise MissingCatalogueError(f"Could not read openings from {path}: {e}") from e
        finally:
            con.close()

        catalogue = cls.from_rows(rows)
        logger.info("Loaded %d openings from %s", len(catalogue), path)
        return catalogue

    def best_match(self, movetext: Optional[str], anchored: bool = False) -> Optional[OpeningEntry]:
        if not movetext:
            return None
        best = None
        for entry in self.entries:
            if line_matches(entry.pgn, movetext, anchored) and (best is None or entry.ply > best.ply):
                best = entry
        return best


class _Node:
    __slots__ = ("children", "ends")

    def __init__(self):
        self.children: dict[str, _Node] = {}
        # last token of a line -> catalogue positions of lines ending here
        self.ends: dict[str, list[int]] = {}


@dataclass
class ClassificationStats:
    total: int = 0
    candidates: int = 0
    classified: int = 0
    unmatched: int = 0
    ambiguous: int = 0

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class MatchResult:
    entry: Optional[OpeningEntry]
    tied: list[OpeningEntry] = field(default_factory=list)


class OpeningIndex:
    """
    Token trie over the catalogue's move text.

    Both catalogue and game text are split on single spaces. A line of tokens
    t1..tk occurs inside the game tokens g1..gn iff for some i, g[i] ends with t1,
    g[i+1..i+k-2] equal t2..t(k-1) and g[i+k-1] starts with tk. Lines of one token
    contain no space and are tested directly. This gives exactly the results of
    `str.__contains__` (or `str.startswith` when anchored).
    """

    def __init__(self, catalogue: OpeningCatalogue, anchored: bool = False):
        self.catalogue = catalogue
        self.anchored = anchored
        self._roots: dict[str, _Node] = {}
        self._single: list[int] = []
        for pos, entry in enumerate(catalogue.entries):
            tokens = entry.pgn.split(" ")
            if len(tokens) == 1:
                self._single.append(pos)
                continue
            node = self._roots.setdefault(tokens[0], _Node())
            for tok in tokens[1:-1]:
                node = node.children.setdefault(tok, _Node())
            node.ends.setdefault(tokens[-1], []).append(pos)

    def _walk(self, node: _Node, tokens: list[str], j: int, hits: list[int]) -> None:
        while j < len(tokens):
            tok = tokens[j]
            if node.ends:
                for p in range(len(tok) + 1):
                    found = node.ends.get(tok[:p])
                    if found:
                        hits.extend(found)
            node = node.children.get(tok)
            if node is None:
                return
            j += 1

    def candidates(self, movetext: str) -> list[int]:
        """Catalogue positions of every line contained in `movetext`."""
        entries = self.catalogue.entries
        hits = [pos for pos in self._single if line_matches(entries[pos].pgn, movetext, self.anchored)]
        tokens = movetext.split(" ")
        for i, tok in enumerate(tokens):
            if self.anchored:
                if i > 0:
                    break
                starts = [tok]
            else:
                starts = [tok[s:] for s in range(len(tok) + 1)]
            for start in starts:
                node = self._roots.get(start)
                if node is not None:
                    self._walk(node, tokens, i + 1, hits)
        return hits

    def match(self, movetext: Optional[str]) -> MatchResult:
        if not movetext:
            return MatchResult(None)
        entries = self.catalogue.entries
        best_pos = None
        tied: list[int] = []
        for pos in set(self.candidates(movetext)):
            if best_pos is None:
                best_pos, tied = pos, [pos]
                continue
            ply, best_ply = entries[pos].ply, entries[best_pos].ply
            if ply > best_ply:
                best_pos, tied = pos, [pos]
            elif ply == best_ply:
                tied.append(pos)
                best_pos = min(best_pos, pos)
        if best_pos is None:
            return MatchResult(None)
        return MatchResult(entries[best_pos], [entries[p] for p in sorted(tied)] if len(tied) > 1 else [])

    def best_match(self, movetext: Optional[str]) -> Optional[OpeningEntry]:
        return self.match(movetext).entry
