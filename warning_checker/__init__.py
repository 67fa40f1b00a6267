"""
JMA Warning Checker

Monitors municipal weather warnings published in the JMA XML feed:
- Streaming parsers for the extra.xml feed and VPWW54 bulletins
- Reconciliation of warning state against stored reports
- Email notification on new or changed warnings
- SQLite persistence with soft-deleted history
- Scheduled checks and retention cleanup
- REST API for status and active reports
"""

from .config import Config, ConfigError
from .database import Database, CityReport, StoreError
from .fetcher import JMAFetcher, FeedDocument, FetchError, NOT_MODIFIED
from .parser import (
    BulletinParser,
    FeedEntryParser,
    ParseError,
    WarningObservation,
    NO_WARNINGS_STATUS,
)
from .reconciler import ReconciliationEngine, ReconcileOutcome, ReconcileError, Transition
from .notifier import EmailNotifier, NotifyError
from .checker import WarningChecker, CheckResult

__version__ = "1.0.0"

__all__ = [
    "Config",
    "ConfigError",
    "Database",
    "CityReport",
    "StoreError",
    "JMAFetcher",
    "FeedDocument",
    "FetchError",
    "NOT_MODIFIED",
    "BulletinParser",
    "FeedEntryParser",
    "ParseError",
    "WarningObservation",
    "NO_WARNINGS_STATUS",
    "ReconciliationEngine",
    "ReconcileOutcome",
    "ReconcileError",
    "Transition",
    "EmailNotifier",
    "NotifyError",
    "WarningChecker",
    "CheckResult",
]
