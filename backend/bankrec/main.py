"""
FastAPI application for the bank reconciliation engine.
Exposes import, matching runs, the review workflow and dashboard queries.
"""

import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Header
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
import structlog

from . import __version__
from .config import get_settings
from .errors import ReconciliationError
from .models import BankTransaction, utcnow
from .reconciliation import ReconciliationService

logger = structlog.get_logger()
settings = get_settings()

HTTP_STATUS_BY_CODE = {
    "NOT_FOUND": 404,
    "CONFLICT": 409,
    "INVALID_STATE": 409,
    "VALIDATION_ERROR": 422,
    "PARSE_ERROR": 400,
}


def setup_logging():
    """Configure structlog on top of standard logging (console, optional file)."""
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if settings.log_dir is not None:
        settings.log_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(settings.log_dir / "bankrec.log", encoding="utf-8"))

    logging.basicConfig(
        level=settings.app_log_level.upper(),
        format="%(message)s",
        handlers=handlers,
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processor=structlog.dev.ConsoleRenderer(colors=False)
        if settings.app_debug
        else structlog.processors.JSONRenderer(),
    )
    for handler in handlers:
        handler.setFormatter(formatter)


setup_logging()

# Process-wide service (in-memory store and ledger)
_service: Optional[ReconciliationService] = None


def get_service() -> ReconciliationService:
    """Dependency returning the shared reconciliation service."""
    global _service
    if _service is None:
        _service = ReconciliationService(settings=settings)
    return _service


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting bank reconciliation API", env=settings.app_env, version=__version__)
    yield
    logger.info("Shutting down bank reconciliation API")


app = FastAPI(
    title="Bank Reconciliation Engine",
    description="Matches bank statement lines against ledger journal entries",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ReconciliationError)
async def reconciliation_error_handler(request, exc: ReconciliationError):
    status_code = HTTP_STATUS_BY_CODE.get(exc.code, 400)
    logger.info(
        "Request rejected",
        path=request.url.path,
        code=exc.code,
        status_code=status_code,
        error=exc.message,
    )
    return JSONResponse(status_code=status_code, content=exc.to_dict())


# Request/Response models
class ImportRequest(BaseModel):
    source: str
    rows: List[Any]
    filename: Optional[str] = None


class CsvImportRequest(BaseModel):
    content: str
    source: str = "CSV"
    filename: Optional[str] = None
    delimiter: Optional[str] = Field(default=None, min_length=1, max_length=1)
    has_header: Optional[bool] = None


class ManualMatchRequest(BaseModel):
    entry_id: str


class RowErrorResponse(BaseModel):
    row: int
    reason: str
    kind: str
    field: Optional[str] = None
    value: Optional[str] = None


class ImportResponse(BaseModel):
    batch_id: str
    imported: int
    duplicates_skipped: int
    errors: List[RowErrorResponse]
    replay_of_batch_id: Optional[str] = None


class RunResponse(BaseModel):
    venue_id: str
    matched: int
    to_review: int
    unmatched: int
    conflicts: int
    started_at: datetime
    completed_at: Optional[datetime] = None


class AgingAlertResponse(BaseModel):
    transaction_id: str
    transaction_date: date
    amount_cents: int
    description: str
    status: str
    age_days: int


class SummaryResponse(BaseModel):
    venue_id: str
    counts_by_status: Dict[str, int]
    total_transactions: int
    total_imported: float
    total_matched: float
    total_imported_cents: int
    total_matched_cents: int
    percent_reconciled: float
    bank_balance_cents: Optional[int] = None
    aging_alerts: List[AgingAlertResponse]


class TransactionResponse(BaseModel):
    id: str
    venue_id: str
    transaction_date: Optional[date] = None
    value_date: Optional[date] = None
    amount_cents: int
    amount: float
    description: str
    bank_reference: Optional[str] = None
    balance_after_cents: Optional[int] = None
    import_source: str
    import_batch_id: Optional[str] = None
    imported_at: datetime
    status: str
    matched_entry_id: Optional[str] = None
    match_confidence: Optional[float] = None
    reconciled_at: Optional[datetime] = None
    reconciled_by: Optional[str] = None
    version: int


class CandidateResponse(BaseModel):
    transaction_id: str
    entry_id: str
    score: float
    amount_score: float
    date_score: float
    description_score: float
    amount_difference_cents: int
    days_apart: int


class TransactionDetailResponse(BaseModel):
    transaction: TransactionResponse
    candidates: List[CandidateResponse]


def _transaction_response(txn: BankTransaction) -> TransactionResponse:
    return TransactionResponse.model_validate(txn.to_dict())


# API Endpoints
@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": __version__, "timestamp": utcnow().isoformat()}


@app.post("/api/venues/{venue_id}/imports", response_model=ImportResponse)
async def import_rows(
    venue_id: str,
    request: ImportRequest,
    x_user_id: Optional[str] = Header(default=None),
    service: ReconciliationService = Depends(get_service),
):
    """Import already-parsed statement rows."""
    result = await asyncio.to_thread(
        service.import_batch,
        venue_id,
        request.source,
        request.rows,
        filename=request.filename,
        imported_by=x_user_id,
    )
    return ImportResponse.model_validate(result.to_dict())


@app.post("/api/venues/{venue_id}/imports/csv", response_model=ImportResponse)
async def import_csv(
    venue_id: str,
    request: CsvImportRequest,
    x_user_id: Optional[str] = Header(default=None),
    service: ReconciliationService = Depends(get_service),
):
    """Import a CSV statement export (RelaxBanking layout unless overridden)."""
    result = await asyncio.to_thread(
        service.import_csv,
        venue_id,
        request.content,
        source_tag=request.source,
        filename=request.filename,
        delimiter=request.delimiter,
        has_header=request.has_header,
        imported_by=x_user_id,
    )
    return ImportResponse.model_validate(result.to_dict())


@app.post("/api/venues/{venue_id}/reconciliation/run", response_model=RunResponse)
async def run_reconciliation(
    venue_id: str,
    service: ReconciliationService = Depends(get_service),
):
    """Run the matching engine over the venue's open transactions."""
    result = await asyncio.to_thread(service.run_reconciliation, venue_id)
    return RunResponse.model_validate(result.to_dict())


@app.get("/api/venues/{venue_id}/reconciliation/summary", response_model=SummaryResponse)
async def get_summary(
    venue_id: str,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    service: ReconciliationService = Depends(get_service),
):
    """Dashboard summary for a venue."""
    summary = await asyncio.to_thread(
        service.get_summary, venue_id, date_from=date_from, date_to=date_to
    )
    return SummaryResponse.model_validate(summary.to_dict())


@app.get("/api/venues/{venue_id}/transactions", response_model=List[TransactionResponse])
async def list_transactions(
    venue_id: str,
    status: Optional[str] = None,
    limit: Optional[int] = None,
    offset: int = 0,
    service: ReconciliationService = Depends(get_service),
):
    """List transactions; status accepts a comma-separated list."""
    status_filter = [s for s in status.split(",") if s.strip()] if status else None
    rows = await asyncio.to_thread(
        service.list_transactions, venue_id, status_filter, limit=limit, offset=offset
    )
    return [_transaction_response(t) for t in rows]


@app.get("/api/transactions/{transaction_id}", response_model=TransactionDetailResponse)
async def get_transaction(
    transaction_id: str,
    service: ReconciliationService = Depends(get_service),
):
    """Transaction detail with scored candidates while it is unresolved."""
    txn = await asyncio.to_thread(service.get_transaction, transaction_id)
    candidates = await asyncio.to_thread(service.find_candidates, transaction_id)
    return TransactionDetailResponse(
        transaction=_transaction_response(txn),
        candidates=[CandidateResponse.model_validate(c.to_dict()) for c in candidates],
    )


@app.post("/api/transactions/{transaction_id}/confirm", response_model=TransactionResponse)
async def confirm_match(
    transaction_id: str,
    x_user_id: Optional[str] = Header(default=None),
    service: ReconciliationService = Depends(get_service),
):
    txn = await asyncio.to_thread(service.confirm, transaction_id, user_id=x_user_id)
    return _transaction_response(txn)


@app.post("/api/transactions/{transaction_id}/match", response_model=TransactionResponse)
async def manual_match(
    transaction_id: str,
    request: ManualMatchRequest,
    x_user_id: Optional[str] = Header(default=None),
    service: ReconciliationService = Depends(get_service),
):
    txn = await asyncio.to_thread(
        service.manual_match, transaction_id, request.entry_id, user_id=x_user_id
    )
    return _transaction_response(txn)


@app.post("/api/transactions/{transaction_id}/unmatch", response_model=TransactionResponse)
async def unmatch(
    transaction_id: str,
    x_user_id: Optional[str] = Header(default=None),
    service: ReconciliationService = Depends(get_service),
):
    txn = await asyncio.to_thread(service.unmatch, transaction_id, user_id=x_user_id)
    return _transaction_response(txn)


@app.post("/api/transactions/{transaction_id}/ignore", response_model=TransactionResponse)
async def ignore(
    transaction_id: str,
    x_user_id: Optional[str] = Header(default=None),
    service: ReconciliationService = Depends(get_service),
):
    txn = await asyncio.to_thread(service.ignore, transaction_id, user_id=x_user_id)
    return _transaction_response(txn)


@app.post("/api/transactions/{transaction_id}/reject", response_model=TransactionResponse)
async def reject_proposal(
    transaction_id: str,
    x_user_id: Optional[str] = Header(default=None),
    service: ReconciliationService = Depends(get_service),
):
    txn = await asyncio.to_thread(service.reject_proposal, transaction_id, user_id=x_user_id)
    return _transaction_response(txn)
