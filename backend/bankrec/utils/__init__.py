"""Utility modules."""

from .text_similarity import TextSimilarityEngine
from .audit_logger import AuditLogger

__all__ = ["TextSimilarityEngine", "AuditLogger"]
