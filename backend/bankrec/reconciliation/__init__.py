"""Reconciliation engine components."""

from .candidate_index import CandidateIndex
from .scoring import MatchScorer
from .engine import MatchingEngine
from .workflow import MatchWorkflow
from .summary import SummaryAggregator
from .orchestrator import ReconciliationService

__all__ = [
    "CandidateIndex",
    "MatchScorer",
    "MatchingEngine",
    "MatchWorkflow",
    "SummaryAggregator",
    "ReconciliationService",
]
