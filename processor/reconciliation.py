"""Merge ingested events into the store without undoing moderation."""
import logging
from typing import Any, Dict, Iterable, Optional

from processor.models import (
    EventStatus,
    ExternalEvent,
    ReconcileResult,
    SyncStatus,
)

logger = logging.getLogger(__name__)

EVENT_FIELDS = (
    'title', 'description', 'country_code', 'city', 'place',
    'start_at', 'end_at', 'lat', 'lng',
    'source', 'source_id', 'source_url', 'raw_payload',
)

# Only cosmetic metadata may be refreshed on approved/rejected events.
LOCKED_UPDATE_FIELDS = ('source_url', 'description', 'raw_payload')


def event_fields(event: ExternalEvent) -> Dict[str, Any]:
    return {name: getattr(event, name) for name in EVENT_FIELDS}


class ReconciliationEngine:
    """
    Upsert a batch of ExternalEvents and finalize its SyncRun.

    Args:
        store: Event store (find_by_natural_key / upsert / create_draft)
        ledger: SyncRun ledger (finalize_sync_run)
    """

    def __init__(self, store, ledger):
        self.store = store
        self.ledger = ledger

    def reconcile(self, events: Iterable[ExternalEvent], run_id: str,
                  fetched: int, skipped: int) -> ReconcileResult:
        """
        Merge events into the store and close the run.

        Args:
            events: Accepted events of one adapter invocation
            run_id: SyncRun to finalize
            fetched: Items scanned by the adapter before filtering
            skipped: Adapter skips plus filter exclusions

        Returns:
            ReconcileResult with created/updated counts

        Raises:
            Any store error, after the run is finalized as failed
        """
        created = 0
        updated = 0

        try:
            for event in events:
                stored = self.merge(event)
                if stored.was_created:
                    created += 1
                else:
                    updated += 1
        except Exception as e:
            logger.error(f"Reconciliation of run {run_id} failed: {e}", exc_info=True)
            self.ledger.finalize_sync_run(
                run_id, SyncStatus.FAILED, fetched=fetched, created=created,
                updated=updated, skipped=skipped, error_message=str(e)
            )
            raise

        self.ledger.finalize_sync_run(
            run_id, SyncStatus.SUCCESS, fetched=fetched, created=created,
            updated=updated, skipped=skipped
        )
        logger.info(f"Run {run_id} reconciled: created={created} updated={updated}")
        return ReconcileResult(created=created, updated=updated)

    def merge(self, event: ExternalEvent):
        """Apply the lock-aware merge policy to a single event."""
        fields = event_fields(event)

        if event.natural_key is None:
            # manual entry without external identity
            return self.store.create_draft(fields)

        existing = self.store.find_by_natural_key(event.source, event.source_id)

        if existing is not None and existing.is_locked:
            logger.debug(f"{event.natural_key} is {existing.status.value}; refreshing metadata only")
            update_fields = {name: fields[name] for name in LOCKED_UPDATE_FIELDS}
        else:
            update_fields = fields

        create_fields = dict(fields)
        create_fields['status'] = EventStatus.PENDING
        return self.store.upsert(event.natural_key, create_fields, update_fields)

    def fail_run(self, run_id: str, error: BaseException, fetched: int = 0,
                 skipped: int = 0, error_message: Optional[str] = None) -> None:
        """Finalize a run whose adapter failed before reconciliation."""
        self.ledger.finalize_sync_run(
            run_id, SyncStatus.FAILED, fetched=fetched, skipped=skipped,
            error_message=error_message or f"{type(error).__name__}: {error}"
        )
