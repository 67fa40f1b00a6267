"""
Warning reconciliation for the JMA Warning Checker.

Compares the warnings of a publisher's latest bulletin with the stored
reports and decides, per (publisher, city, warning kind):
- whether to notify the operator (new warning or status change)
- how to mutate the stored report (insert, update, soft-delete)

Store failures abort the publisher and are raised as ReconcileError with
the side effects performed so far. Notification failures are recorded
and do not stop the store mutation.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Iterable, List, Optional

from .database import CityReport, Database, StoreError
from .notifier import NotifyError
from .parser import NO_WARNINGS_STATUS, WarningObservation

logger = logging.getLogger(__name__)


class Transition(Enum):
    ABSENT = "absent"
    QUIET = "quiet"
    ALL_CLEAR = "all_clear"
    DROPPED = "dropped"
    NEW = "new"
    CHANGED = "changed"
    TOUCHED = "touched"
    UNCHANGED = "unchanged"


@dataclass
class TransitionRecord:
    city: str
    warning_kind: str
    transition: Transition
    status: str = ""


@dataclass
class NotificationEvent:
    """A notification attempt and whether it was delivered."""
    city: str
    warning_kind: str
    status: str
    lmo: str
    issued_at: datetime
    delivered: bool = True
    error: Optional[str] = None


@dataclass
class ReconcileOutcome:
    """Side effects of reconciling one publisher."""
    lmo: str
    xml_file: Optional[str] = None
    transitions: List[TransitionRecord] = field(default_factory=list)
    notifications: List[NotificationEvent] = field(default_factory=list)
    reports_inserted: int = 0
    reports_updated: int = 0
    reports_deleted: int = 0
    references_added: int = 0
    references_deleted: List[str] = field(default_factory=list)
    skipped: Optional[str] = None

    @property
    def notify_failures(self) -> List[NotificationEvent]:
        return [n for n in self.notifications if not n.delivered]

    def count(self, transition: Transition) -> int:
        return sum(1 for t in self.transitions if t.transition is transition)


class ReconcileError(Exception):
    """A store failure while reconciling; carries the partial outcome."""

    def __init__(self, message: str, outcome: ReconcileOutcome):
        super().__init__(message)
        self.outcome = outcome


class ReconciliationEngine:
    """
    Applies bulletin observations to the report store.

    `notifier` needs a notify(city, warning_kind, status, lmo, issued_at)
    method. `retire_documents` receives the file names of references
    dropped when a publisher leaves the feed.
    """

    def __init__(
        self,
        store: Database,
        notifier,
        retire_documents: Optional[Callable[[List[str]], None]] = None
    ):
        self.store = store
        self.notifier = notifier
        self.retire_documents = retire_documents

    def reconcile_absent(self, lmo: str) -> ReconcileOutcome:
        """The publisher has no entry in the feed: retire everything it owns."""
        outcome = ReconcileOutcome(lmo=lmo)
        try:
            outcome.reports_deleted = self.store.soft_delete_reports(lmo)
            outcome.references_deleted = self.store.soft_delete_references(lmo)
        except StoreError as e:
            raise ReconcileError(f"{lmo}: {e}", outcome) from e

        outcome.transitions.append(TransitionRecord(city="", warning_kind="", transition=Transition.ABSENT))
        logger.info(
            f"No feed entry for {lmo}: {outcome.reports_deleted} reports and "
            f"{len(outcome.references_deleted)} bulletin references retired"
        )

        if outcome.references_deleted and self.retire_documents is not None:
            self.retire_documents(outcome.references_deleted)
        return outcome

    def reconcile(
        self,
        lmo: str,
        cities: Iterable[str],
        observations: List[WarningObservation],
        xml_file: str,
        issued_at: datetime
    ) -> ReconcileOutcome:
        """Reconcile one bulletin's observations for the monitored cities."""
        outcome = ReconcileOutcome(lmo=lmo, xml_file=xml_file)

        if not observations:
            outcome.transitions.append(TransitionRecord(city="", warning_kind="", transition=Transition.QUIET))
            logger.debug(f"No warnings in {xml_file} for {lmo}")
            return outcome

        monitored = set(cities)
        try:
            for observation in observations:
                if observation.city not in monitored:
                    continue
                self._apply(lmo, observation, xml_file, issued_at, outcome)
        except StoreError as e:
            raise ReconcileError(f"{lmo}: {e}", outcome) from e

        return outcome

    def _apply(
        self,
        lmo: str,
        observation: WarningObservation,
        xml_file: str,
        issued_at: datetime,
        outcome: ReconcileOutcome
    ) -> None:
        city = observation.city
        kind = observation.warning_kind
        status = observation.status

        if not kind:
            if status == NO_WARNINGS_STATUS:
                deleted = self.store.soft_delete_reports(lmo, city=city)
                outcome.reports_deleted += deleted
                outcome.transitions.append(TransitionRecord(city, kind, Transition.ALL_CLEAR, status))
                logger.info(f"No active warnings for {lmo} - {city}, {deleted} reports cleared")
            else:
                outcome.transitions.append(TransitionRecord(city, kind, Transition.DROPPED, status))
                logger.debug(f"Ignoring kind-less status {status!r} for {city}")
            return

        record = self.store.find_active_report(lmo, city, kind)

        if record is None:
            logger.info(f"New warning for {city} - {kind}: {status}")
            self._notify(lmo, city, kind, status, issued_at, outcome)
            self.store.insert_report(CityReport(
                lmo=lmo, city=city, warning_kind=kind, status=status, xml_file=xml_file,
            ))
            outcome.reports_inserted += 1
            self._register(lmo, xml_file, outcome)
            outcome.transitions.append(TransitionRecord(city, kind, Transition.NEW, status))

        elif record.status != status:
            logger.info(f"Warning status changed for {city} - {kind}: {record.status} -> {status}")
            self._notify(lmo, city, kind, status, issued_at, outcome)
            self.store.update_report(record.id, xml_file, status)
            outcome.reports_updated += 1
            if record.xml_file != xml_file:
                self._register(lmo, xml_file, outcome)
            outcome.transitions.append(TransitionRecord(city, kind, Transition.CHANGED, status))

        elif record.xml_file != xml_file:
            logger.debug(f"Bulletin changed for {city} - {kind} (status unchanged: {status})")
            self.store.update_report(record.id, xml_file, record.status)
            outcome.reports_updated += 1
            self._register(lmo, xml_file, outcome)
            outcome.transitions.append(TransitionRecord(city, kind, Transition.TOUCHED, status))

        else:
            logger.debug(f"No changes for {city} - {kind}: {status} (already published)")
            outcome.transitions.append(TransitionRecord(city, kind, Transition.UNCHANGED, status))

    def _register(self, lmo: str, xml_file: str, outcome: ReconcileOutcome) -> None:
        if self.store.insert_reference(lmo, xml_file):
            outcome.references_added += 1

    def _notify(
        self,
        lmo: str,
        city: str,
        kind: str,
        status: str,
        issued_at: datetime,
        outcome: ReconcileOutcome
    ) -> None:
        event = NotificationEvent(city=city, warning_kind=kind, status=status, lmo=lmo, issued_at=issued_at)
        try:
            self.notifier.notify(city, kind, status, lmo, issued_at)
        except NotifyError as e:
            event.delivered = False
            event.error = str(e)
            logger.error(f"Notification failed for {city} - {kind}: {e}")
        outcome.notifications.append(event)
