"""Ingestion module for bank statement rows and CSV exports."""

from .normalizer import NormalizedRow, RowNormalizer, compute_dedup_key
from .csv_reader import CsvDialectConfig, CsvStatementReader, RELAXBANKING
from .importer import ImportIngestor

__all__ = [
    "NormalizedRow",
    "RowNormalizer",
    "compute_dedup_key",
    "CsvDialectConfig",
    "CsvStatementReader",
    "RELAXBANKING",
    "ImportIngestor",
]
