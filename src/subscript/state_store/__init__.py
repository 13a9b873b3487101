"""State store module for persistent tracking."""

from .sqlite_store import (
    DomainRecord,
    PendingImportRecord,
    PendingStatus,
    ReceiptRecord,
    StateStore,
    StoreSession,
    SubscriptionRecord,
    SyncLogRecord,
    SyncStatus,
)
from .targets import (
    StoreRouter,
    StoreTarget,
    is_test_subject,
    resolve_message_target,
)

__all__ = [
    "DomainRecord",
    "PendingImportRecord",
    "PendingStatus",
    "ReceiptRecord",
    "StateStore",
    "StoreRouter",
    "StoreSession",
    "StoreTarget",
    "SubscriptionRecord",
    "SyncLogRecord",
    "SyncStatus",
    "is_test_subject",
    "resolve_message_target",
]
