"""Enrich per-archive DuckDB game stores with openings and export them as partitioned parquet."""

__version__ = "0.1.0"
