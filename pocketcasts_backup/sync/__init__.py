"""Reconciliation of the remote account into the backup store."""

from .history import HistoryDeduplicator, HistoryEntry, HistoryMerger, HistoryMergeResult
from .reconciler import (
    EpisodeReconciler,
    EpisodeSyncResult,
    ReconcileResult,
    SnapshotReconciler,
)

__all__ = [
    "EpisodeReconciler",
    "EpisodeSyncResult",
    "HistoryDeduplicator",
    "HistoryEntry",
    "HistoryMergeResult",
    "HistoryMerger",
    "ReconcileResult",
    "SnapshotReconciler",
]
