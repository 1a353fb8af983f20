"""Operator moderation actions on stored events."""
import logging
from datetime import datetime, tzinfo
from typing import Any, Dict, Mapping

from processor.errors import EventNotFoundError, InvalidTransitionError, ValidationError
from processor.field_mapping import as_datetime
from processor.models import EventStatus, StoredEvent
from processor.text_signals import DEFAULT_TZ

logger = logging.getLogger(__name__)

EDITABLE_STATUSES = frozenset({EventStatus.DRAFT, EventStatus.PENDING})
EDITABLE_FIELDS = ('title', 'place', 'start_at', 'end_at')


class ModerationService:
    """Approve, reject, edit and delete events by id."""

    def __init__(self, store, tz: tzinfo = DEFAULT_TZ):
        self.store = store
        self.tz = tz

    def approve(self, event_id: str) -> StoredEvent:
        return self._transition(event_id, EventStatus.APPROVED)

    def reject(self, event_id: str) -> StoredEvent:
        return self._transition(event_id, EventStatus.REJECTED)

    def edit(self, event_id: str, changes: Mapping[str, Any]) -> StoredEvent:
        """
        Edit title, place and timing of an unmoderated event.

        Args:
            event_id: Stored event id
            changes: Subset of title, place, start_at, end_at. A None or
                empty end_at clears it; a None or empty place clears it.

        Returns:
            Updated StoredEvent

        Raises:
            EventNotFoundError: Unknown id
            InvalidTransitionError: Event already approved or rejected
            ValidationError: Empty title, bad timestamps, end before start
        """
        current = self._get(event_id)
        if current.status not in EDITABLE_STATUSES:
            raise InvalidTransitionError(f"cannot edit event in status {current.status.value}")

        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(f"fields not editable: {', '.join(sorted(unknown))}")

        data: Dict[str, Any] = {}

        if 'title' in changes:
            title = (changes['title'] or '').strip()
            if not title:
                raise ValidationError("title is required")
            data['title'] = title

        if 'place' in changes:
            place = changes['place']
            if place is not None:
                place = str(place).strip() or None
            data['place'] = place

        next_start = current.start_at
        next_end = current.end_at

        if 'start_at' in changes:
            if not changes['start_at']:
                raise ValidationError("start_at is required")
            next_start = self._parse(changes['start_at'], 'start_at')
            data['start_at'] = next_start

        if 'end_at' in changes:
            if changes['end_at'] in (None, ''):
                next_end = None
            else:
                next_end = self._parse(changes['end_at'], 'end_at')
            data['end_at'] = next_end

        if next_end is not None and next_end <= next_start:
            raise ValidationError("end_at must be after start_at")

        if not data:
            raise ValidationError("no fields to update")

        logger.info(f"Editing event {event_id}: {sorted(data)}")
        return self.store.update_event(event_id, data)

    def delete(self, event_id: str) -> None:
        if not self.store.delete_event(event_id):
            raise EventNotFoundError(f"Event {event_id} not found")

    def _transition(self, event_id: str, status: EventStatus) -> StoredEvent:
        current = self._get(event_id)
        if current.status not in EDITABLE_STATUSES:
            raise InvalidTransitionError(f"cannot change status from {current.status.value}")
        logger.info(f"Event {event_id}: {current.status.value} -> {status.value}")
        return self.store.update_event(event_id, {'status': status})

    def _get(self, event_id: str) -> StoredEvent:
        current = self.store.get_event(event_id)
        if current is None:
            raise EventNotFoundError(f"Event {event_id} not found")
        return current

    def _parse(self, value: Any, name: str) -> datetime:
        if isinstance(value, (int, float)):
            raise ValidationError(f"{name} is invalid")
        parsed = as_datetime(value, self.tz)
        if parsed is None:
            raise ValidationError(f"{name} is invalid")
        return parsed
