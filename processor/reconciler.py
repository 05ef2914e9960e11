"""Reconciler applying normalized events to storage with upsert semantics."""
import logging
from typing import Callable, List, Sequence

from botocore.exceptions import BotoCoreError, ClientError

from processor.models import EventRecord, ReconcileResult
from storage.event_store import DuplicateEventError, EventStore

logger = logging.getLogger(__name__)

UPDATE_POLICIES = {
    'color': ('color',),
    'all': EventStore.MUTABLE_FIELDS,
}


class ReconcileError(Exception):
    """Raised when a single record could not be reconciled with storage."""


class Reconciler:
    """
    Matches normalized events against storage and inserts or updates them.

    Records are matched on their (title, start, end) identity key. A matched
    record has the fields selected by the update policy refreshed; an
    unmatched one is inserted. Reconciling the same batch repeatedly never
    creates more than one stored event per identity key.
    """

    def __init__(self, store: EventStore, update_policy: str = 'color'):
        """
        Initialize the reconciler.

        Args:
            store: Event storage
            update_policy: 'color' to refresh only the color of matched
                events, 'all' to refresh color, description and location
        """
        if update_policy not in UPDATE_POLICIES:
            raise ValueError(
                f"Unknown update policy '{update_policy}', expected one of "
                f"{sorted(UPDATE_POLICIES)}"
            )
        self.store = store
        self.update_policy = update_policy
        self.update_fields = UPDATE_POLICIES[update_policy]
        self._completion_hooks: List[Callable[[ReconcileResult], None]] = []

    def add_completion_hook(self, hook: Callable[[ReconcileResult], None]) -> None:
        """Register a callable invoked after every reconciled batch."""
        self._completion_hooks.append(hook)

    def reconcile(self, records: Sequence[EventRecord]) -> ReconcileResult:
        """
        Insert or update every record in the batch.

        A failure on one record is logged and collected in the result; the
        remaining records are still processed.

        Args:
            records: Normalized events

        Returns:
            ReconcileResult with counts of added and updated events
        """
        logger.info(f"Reconciling {len(records)} events")
        result = ReconcileResult()

        for record in records:
            try:
                if self._reconcile_record(record):
                    result.added += 1
                else:
                    result.updated += 1
            except ReconcileError as e:
                logger.error(str(e))
                result.errors.append(str(e))

        logger.info(
            f"Reconcile complete: {result.added} added, {result.updated} updated, "
            f"{len(result.errors)} errors"
        )
        self._run_completion_hooks(result)
        return result

    def _reconcile_record(self, record: EventRecord) -> bool:
        """
        Reconcile one record.

        Returns:
            True if the record was inserted, False if an existing event was updated

        Raises:
            ReconcileError: If a storage operation failed
        """
        try:
            existing = self.store.find_by_identity(record)
            if existing is None:
                try:
                    self.store.insert(record)
                    return True
                except DuplicateEventError:
                    # Inserted concurrently by an overlapping pass
                    logger.debug(f"Lost insert race for '{record.title}', updating")

            self.store.update(record, self.update_fields)
            return False

        except (ClientError, BotoCoreError) as e:
            raise ReconcileError(
                f"Failed to reconcile event '{record.title}' "
                f"({record.start} - {record.end}): {e}"
            ) from e

    def _run_completion_hooks(self, result: ReconcileResult) -> None:
        for hook in self._completion_hooks:
            try:
                hook(result)
            except Exception:
                logger.exception("Reconcile completion hook failed")
