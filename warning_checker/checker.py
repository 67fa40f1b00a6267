"""
Warning check module for the JMA Warning Checker.

One check walks the monitored publishers in order:
feed -> latest bulletin pointer -> bulletin -> reconciliation.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from .cleanup import Cleanup
from .database import Database, StoreError
from .fetcher import JMAFetcher, FetchError, NOT_MODIFIED
from .parser import (
    BulletinParser,
    FeedBulletinPointer,
    FeedEntryParser,
    ParseError,
    latest_pointer,
)
from .reconciler import ReconcileError, ReconcileOutcome, ReconciliationEngine

logger = logging.getLogger(__name__)


@dataclass
class CheckResult:
    """Result of one check over all monitored publishers."""
    success: bool
    started_at: str
    duration_ms: int = 0
    feed_modified: bool = False
    outcomes: List[ReconcileOutcome] = field(default_factory=list)
    error_message: Optional[str] = None

    @property
    def notifications_sent(self) -> int:
        return sum(
            1 for outcome in self.outcomes for n in outcome.notifications if n.delivered
        )


class WarningChecker:
    """Runs the feed-to-store pipeline for each monitored publisher."""

    def __init__(
        self,
        database: Database,
        fetcher: JMAFetcher,
        notifier,
        cleanup: Cleanup,
        monitored_regions: Dict[str, List[str]]
    ):
        self.database = database
        self.fetcher = fetcher
        self.monitored_regions = monitored_regions
        self.feed_parser = FeedEntryParser()
        self.bulletin_parser = BulletinParser()
        self.engine = ReconciliationEngine(
            database, notifier, retire_documents=cleanup.retire_documents
        )
        self._last_result: Optional[CheckResult] = None

    @property
    def last_result(self) -> Optional[CheckResult]:
        return self._last_result

    def run_check(self) -> CheckResult:
        """Check every monitored publisher; stops at the first store failure."""
        start = datetime.utcnow()
        result = CheckResult(success=False, started_at=start.isoformat())
        logger.info("Starting weather check...")

        try:
            pointers, result.feed_modified = self.load_pointers()
            for lmo, cities in self.monitored_regions.items():
                result.outcomes.append(self.check_region(lmo, cities, pointers))
            result.success = True
        except ReconcileError as e:
            result.outcomes.append(e.outcome)
            result.error_message = str(e)
            logger.error(f"Weather check aborted: {e}")
        except (FetchError, ParseError, StoreError) as e:
            result.error_message = str(e)
            logger.error(f"Weather check failed: {e}")

        result.duration_ms = int((datetime.utcnow() - start).total_seconds() * 1000)
        if result.success:
            logger.info(
                f"Weather check completed in {result.duration_ms}ms: "
                f"{result.notifications_sent} notifications sent"
            )
        self._last_result = result
        return result

    def load_pointers(self):
        """
        Fetch (or reuse) the feed and parse it.

        Returns:
            Tuple of (pointers newest first, whether the feed was downloaded)
        """
        cached = self.fetcher.read_cached_feed()
        last_modified = self.database.get_feed_last_modified() if cached is not None else None

        document = self.fetcher.fetch_feed_document(last_modified)
        if document is NOT_MODIFIED:
            logger.debug("Feed not modified, using cached copy")
            return self.feed_parser.parse(cached), False

        pointers = self.feed_parser.parse(document.content)
        self.fetcher.store_feed(document.content)
        if document.last_modified:
            self.database.set_feed_last_modified(document.last_modified)
        return pointers, True

    def check_region(
        self,
        lmo: str,
        cities: List[str],
        pointers: List[FeedBulletinPointer]
    ) -> ReconcileOutcome:
        logger.debug(f"Checking warnings for {lmo} - {cities}")

        pointer = latest_pointer(pointers, lmo)
        if pointer is None:
            return self.engine.reconcile_absent(lmo)

        try:
            content = self.fetcher.fetch_bulletin_document(pointer.document_url, pointer.document_name)
            document = self.bulletin_parser.parse(content)
        except (FetchError, ParseError) as e:
            logger.error(f"Skipping {lmo} bulletin {pointer.document_name}: {e}")
            return ReconcileOutcome(lmo=lmo, xml_file=pointer.document_name, skipped=str(e))

        if document is None:
            return ReconcileOutcome(
                lmo=lmo, xml_file=pointer.document_name, skipped="bulletin has no Control/Head block"
            )

        return self.engine.reconcile(
            lmo,
            cities,
            document.warnings(),
            pointer.document_name,
            document.control.issued_at,
        )
