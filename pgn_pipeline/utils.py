from __future__ import annotations

import os
import re
from pathlib import Path


def sql_string_literal(s: str) -> str:
    # DuckDB string literal escaping
    return s.replace("'", "''")


def sql_path(p: str | Path) -> str:
    return sql_string_literal(str(p).replace("\\", "/"))


def list_files_by_extension(root: str | Path, ext: str) -> list[Path]:
    """
    Recursively collect files under `root` whose name ends with `ext` (case-insensitive).
    Returned in lexicographic order of their path so repeated runs see the same sequence.
    """
    ext = ext.lower()
    out = []
    for dirpath, _dirnames, filenames in os.walk(root):
        for name in filenames:
            if name.lower().endswith(ext):
                out.append(Path(dirpath) / name)
    return sorted(out, key=lambda p: p.as_posix())


def output_stem(root: str | Path, path: str | Path, strip_ext: str) -> str:
    """`a/b/games.pgn.zst` under root -> `a__b__games` when stripping `.pgn.zst`."""
    rel = Path(path).relative_to(root).as_posix()
    rel = re.sub(re.escape(strip_ext) + "$", "", rel, flags=re.IGNORECASE)
    return rel.replace("/", "__")
