"""
Delimited-text statement reader.

Turns CSV content exported by home-banking portals into the raw row
mappings accepted by ImportIngestor. Bank-specific dialects are expressed
as a CsvDialectConfig; RELAXBANKING is the default layout.
"""

import csv
import io
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Union

import structlog

from ..errors import ParseError

logger = structlog.get_logger()

Column = Union[int, str]


@dataclass
class CsvDialectConfig:
    """Layout of a bank's CSV export."""
    delimiter: str = ";"
    has_header: bool = True
    decimal_separator: str = ","
    thousand_separator: str = "."
    # Target field -> column index or header name
    column_mapping: Dict[str, Column] = field(default_factory=dict)


# Data contabile | Data valuta | Importo | Descrizione | Note
RELAXBANKING = CsvDialectConfig(
    delimiter=";",
    has_header=True,
    decimal_separator=",",
    thousand_separator=".",
    column_mapping={
        "transaction_date": 0,
        "value_date": 1,
        "amount": 2,
        "description": 3,
    },
)

AMOUNT_FIELDS = ("amount", "balance")


class CsvStatementReader:
    """
    Reader for CSV bank statements.

    Args:
        config: Dialect to read with (defaults to RELAXBANKING)
    """

    def __init__(self, config: Optional[CsvDialectConfig] = None):
        self.config = config or RELAXBANKING

    def with_options(
        self,
        delimiter: Optional[str] = None,
        has_header: Optional[bool] = None,
    ) -> "CsvStatementReader":
        """Copy of this reader with a different delimiter or header flag."""
        changes = {}
        if delimiter is not None:
            changes["delimiter"] = delimiter
        if has_header is not None:
            changes["has_header"] = has_header
        return CsvStatementReader(replace(self.config, **changes))

    def read(self, content: Union[str, bytes]) -> List[Dict[str, str]]:
        """
        Parse CSV content into raw rows.

        Blank lines are skipped. Cells referenced by the mapping but missing
        from a short line come back as empty strings, which the row
        normalizer reports per row.

        Raises:
            ParseError: the content is empty or not decodable
        """
        if isinstance(content, bytes):
            try:
                content = content.decode("utf-8-sig")
            except UnicodeDecodeError as e:
                raise ParseError(f"CSV content is not UTF-8: {e}") from e

        lines = [
            [cell.strip() for cell in line]
            for line in csv.reader(io.StringIO(content), delimiter=self.config.delimiter)
        ]
        lines = [line for line in lines if any(cell for cell in line)]
        if not lines:
            raise ParseError("CSV content is empty")

        headers: Optional[List[str]] = None
        if self.config.has_header:
            headers = [h.lower() for h in lines[0]]
            lines = lines[1:]

        rows = []
        for line in lines:
            row = {}
            for target, column in self.config.column_mapping.items():
                value = self._cell(line, headers, column)
                if target in AMOUNT_FIELDS:
                    value = self._canonical_amount(value)
                row[target] = value
            rows.append(row)

        logger.debug("CSV statement read", rows=len(rows), delimiter=self.config.delimiter)
        return rows

    def _cell(self, line: List[str], headers: Optional[List[str]], column: Column) -> str:
        if isinstance(column, int):
            return line[column] if column < len(line) else ""
        if headers is not None:
            name = column.lower().strip()
            if name in headers:
                idx = headers.index(name)
                return line[idx] if idx < len(line) else ""
        return ""

    def _canonical_amount(self, value: str) -> str:
        """Rewrite a dialect amount with '.' decimals so it parses unambiguously."""
        if not value:
            return value
        text = value
        if self.config.thousand_separator:
            text = text.replace(self.config.thousand_separator, "")
        if self.config.decimal_separator != ".":
            text = text.replace(self.config.decimal_separator, ".")
        return text
