"""Orchestrator package - coordinates multipart upload workflows."""
from .core import MultipartUploadOrchestrator
from .progress import ProgressAggregator
from .scheduler import AdaptiveWorkerPool, ConcurrencyState

__all__ = ["MultipartUploadOrchestrator", "ProgressAggregator", "AdaptiveWorkerPool", "ConcurrencyState"]
