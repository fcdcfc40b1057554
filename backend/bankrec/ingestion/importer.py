"""
Import ingestor.

Normalizes raw statement rows, drops the ones already known for the venue
and stores the rest as PENDING transactions together with their batch
record. A bad row is reported and skipped; it never aborts the batch.
"""

import hashlib
import json
from typing import Any, List, Mapping, Optional, Sequence

import structlog

from ..config import Settings, get_settings
from ..errors import ParseError, ReconciliationError, ValidationError
from ..models import (
    AuditAction,
    BankTransaction,
    ImportBatch,
    ImportResult,
    ImportSource,
    ReconciliationStatus,
    RowError,
    utcnow,
)
from ..storage import InMemoryTransactionStore
from ..utils import AuditLogger
from .normalizer import RowNormalizer

logger = structlog.get_logger()


def _canonical(value: Any) -> Any:
    """Stringify mapping keys so rows with mixed key types still serialize."""
    if isinstance(value, Mapping):
        return {str(k): _canonical(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_canonical(v) for v in value]
    return value


def batch_fingerprint(raw_rows: Sequence[Any]) -> str:
    """SHA-256 of the canonical JSON form of the submitted rows."""
    canonical = json.dumps(
        [_canonical(raw) for raw in raw_rows],
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def parse_source(source_tag: Any) -> ImportSource:
    if isinstance(source_tag, ImportSource):
        return source_tag
    try:
        return ImportSource(str(source_tag).strip().upper())
    except ValueError:
        raise ValidationError(
            f"Unknown import source: {source_tag}",
            field="source",
            value=str(source_tag),
        ) from None


class ImportIngestor:
    """
    Turns raw statement rows into stored, de-duplicated transactions.

    Args:
        store: Transaction store
        audit: Audit trail
        settings: Optional settings override
    """

    def __init__(
        self,
        store: InMemoryTransactionStore,
        audit: Optional[AuditLogger] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.store = store
        self.audit = audit or AuditLogger()
        self.normalizer = RowNormalizer()

    def import_batch(
        self,
        venue_id: str,
        source_tag: Any,
        raw_rows: Sequence[Any],
        filename: Optional[str] = None,
        imported_by: Optional[str] = None,
    ) -> ImportResult:
        """
        Import one batch of raw rows.

        Args:
            venue_id: Venue owning the bank account
            source_tag: ImportSource value (e.g. "CSV")
            raw_rows: Row mappings in submission order
            filename: Original file name, when the rows came from a file
            imported_by: Importing user

        Returns:
            ImportResult with counts and per-row errors

        Raises:
            ValidationError: missing venue, unknown source or rows not a list
        """
        if not venue_id:
            raise ValidationError("venue_id is required", field="venue_id")
        source = parse_source(source_tag)
        if isinstance(raw_rows, (str, bytes)) or not isinstance(raw_rows, Sequence):
            raise ValidationError("rows must be a list of records", field="rows")

        fingerprint = batch_fingerprint(raw_rows)
        previous = self.store.find_batch_by_fingerprint(venue_id, fingerprint)

        logger.info(
            "Importing batch",
            venue_id=venue_id,
            source=source.value,
            rows=len(raw_rows),
            replay=previous is not None,
        )

        imported_at = utcnow()
        errors: List[RowError] = []
        candidates: List[BankTransaction] = []

        for index, raw in enumerate(raw_rows):
            try:
                row = self.normalizer.normalize(raw, index)
            except ReconciliationError as e:
                errors.append(RowError(
                    row=index,
                    reason=e.message,
                    kind="parse" if isinstance(e, ParseError) else "validation",
                    field=e.details.get("field"),
                    value=e.details.get("value"),
                ))
                continue

            candidates.append(BankTransaction(
                venue_id=venue_id,
                transaction_date=row.transaction_date,
                value_date=row.value_date,
                amount_cents=row.amount_cents,
                description=row.description,
                bank_reference=row.bank_reference,
                balance_after_cents=row.balance_after_cents,
                import_source=source,
                imported_at=imported_at,
                dedup_key=row.dedup_key,
                status=ReconciliationStatus.PENDING,
            ))

        batch = ImportBatch(
            venue_id=venue_id,
            source=source,
            fingerprint=fingerprint,
            filename=filename,
            imported_by=imported_by,
            imported_at=imported_at,
            error_count=len(errors),
        )
        inserted, duplicates = self.store.insert_batch(batch, candidates)

        result = ImportResult(
            batch_id=batch.id,
            imported=len(inserted),
            duplicates_skipped=len(duplicates),
            errors=errors,
            replay_of_batch_id=previous.id if previous else None,
        )

        self.audit.record(
            AuditAction.BATCH_REPLAYED if previous else AuditAction.BATCH_IMPORTED,
            f"Imported {result.imported} rows from {source.value}",
            venue_id=venue_id,
            transaction_ids=[t.id for t in inserted],
            user_id=imported_by,
            details={
                "batch_id": batch.id,
                "filename": filename,
                "duplicates_skipped": result.duplicates_skipped,
                "errors": len(errors),
                "replay_of_batch_id": result.replay_of_batch_id,
            },
        )

        if errors:
            logger.warning(
                "Rows rejected during import",
                batch_id=batch.id,
                errors=len(errors),
                first_error=errors[0].reason,
            )

        logger.info(
            "Batch imported",
            batch_id=batch.id,
            imported=result.imported,
            duplicates=result.duplicates_skipped,
            errors=len(errors),
        )
        return result
