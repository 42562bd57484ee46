"""Transcript reconciliation and history storage."""

from localchat.session.reconciler import SessionReconciler, derive_title
from localchat.session.store import HistoryStore, InMemoryHistoryStore, SQLiteHistoryStore

__all__ = [
    "HistoryStore",
    "InMemoryHistoryStore",
    "SQLiteHistoryStore",
    "SessionReconciler",
    "derive_title",
]
