"""DynamoDB manager for event storage operations."""
import json
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Mapping, Optional

import boto3
from boto3.dynamodb.conditions import Key
from botocore.exceptions import ClientError

from processor.errors import EventNotFoundError
from processor.models import EventSource, EventStatus, StoredEvent, natural_key_of

logger = logging.getLogger(__name__)

EVENT_ID_INDEX = 'event-id-index'

DATETIME_FIELDS = ('start_at', 'end_at', 'created_at', 'updated_at')


def serialize_fields(fields: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Convert event fields to DynamoDB-compatible attribute values.

    Datetimes become ISO-8601 strings, enums their values and
    raw_payload JSON text.
    """
    item = {}
    for name, value in fields.items():
        if name == 'raw_payload':
            item[name] = None if value is None else json.dumps(value, default=str, ensure_ascii=False)
        elif isinstance(value, datetime):
            item[name] = value.isoformat()
        elif isinstance(value, (EventSource, EventStatus)):
            item[name] = value.value
        else:
            item[name] = value
    return item


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value)


def _parse_payload(value: Optional[str]) -> Any:
    if value is None:
        return None
    try:
        return json.loads(value)
    except (TypeError, ValueError):
        return value


class DynamoDBManager:
    """
    Event store on a DynamoDB table keyed by natural key.

    The hash key is "<source>#<source_id>", which makes the natural key
    unique by construction; the generated event_id is reachable through
    the event-id-index GSI.
    """

    def __init__(self, table_name: str, dynamodb=None, region_name: Optional[str] = None):
        """
        Initialize DynamoDB client and table reference.

        Args:
            table_name: Name of the DynamoDB table
            dynamodb: Optional boto3 DynamoDB resource
            region_name: AWS region when no resource is passed
        """
        self.table_name = table_name
        self.dynamodb = dynamodb or boto3.resource('dynamodb', region_name=region_name)
        self.table = self.dynamodb.Table(table_name)
        logger.info(f"Initialized DynamoDBManager for table: {table_name}")

    def find_by_natural_key(self, source: EventSource, source_id: str) -> Optional[StoredEvent]:
        """Look up an event by (source, source_id)."""
        key = natural_key_of(source, source_id)
        response = self.table.get_item(Key={'natural_key': key})
        item = response.get('Item')
        return self._item_to_stored_event(item) if item else None

    def get_event(self, event_id: str) -> Optional[StoredEvent]:
        """Look up an event by its generated id."""
        response = self.table.query(
            IndexName=EVENT_ID_INDEX,
            KeyConditionExpression=Key('event_id').eq(event_id)
        )
        items = response.get('Items', [])
        return self._item_to_stored_event(items[0]) if items else None

    def upsert(self, natural_key: str, create_fields: Mapping[str, Any],
               update_fields: Mapping[str, Any]) -> StoredEvent:
        """
        Insert a new event or update an existing one.

        Args:
            natural_key: "<source>#<source_id>"
            create_fields: Full field set (including status) for a new record
            update_fields: Fields written when the record already exists

        Returns:
            The stored event after the write. created_at == updated_at
            only when this call created it.
        """
        existing = self.table.get_item(Key={'natural_key': natural_key}).get('Item')

        if existing is None:
            now = self._now().isoformat()
            item = serialize_fields(create_fields)
            item.update({
                'natural_key': natural_key,
                'event_id': str(uuid.uuid4()),
                'created_at': now,
                'updated_at': now,
            })
            try:
                self.table.put_item(
                    Item=item,
                    ConditionExpression='attribute_not_exists(natural_key)'
                )
                logger.debug(f"Created event {natural_key}")
                return self._item_to_stored_event(item)
            except ClientError as e:
                if e.response['Error']['Code'] != 'ConditionalCheckFailedException':
                    logger.error(f"Error creating event {natural_key}: {e}")
                    raise
                logger.info(f"Event {natural_key} created concurrently; updating instead")
                existing = self.table.get_item(Key={'natural_key': natural_key}).get('Item')

        return self._update_item(existing, update_fields)

    def create_draft(self, fields: Mapping[str, Any]) -> StoredEvent:
        """Create a manual event without external identity as a draft."""
        source_id = f"draft:{uuid.uuid4()}"
        create_fields = dict(fields)
        create_fields.update({
            'source': EventSource.MANUAL,
            'source_id': source_id,
            'status': EventStatus.DRAFT,
        })
        key = natural_key_of(EventSource.MANUAL, source_id)
        return self.upsert(key, create_fields, {})

    def update_event(self, event_id: str, fields: Mapping[str, Any]) -> StoredEvent:
        """
        Update fields of an existing event by id.

        Raises:
            EventNotFoundError: If no event has this id
        """
        current = self.get_event(event_id)
        if current is None:
            raise EventNotFoundError(f"Event {event_id} not found")
        existing = self.table.get_item(Key={'natural_key': current.natural_key}).get('Item')
        return self._update_item(existing, fields)

    def delete_event(self, event_id: str) -> bool:
        current = self.get_event(event_id)
        if current is None:
            return False
        self.table.delete_item(Key={'natural_key': current.natural_key})
        logger.info(f"Deleted event {event_id}")
        return True

    def get_all_events(self) -> Dict[str, StoredEvent]:
        """
        Retrieve all events from DynamoDB using Scan operation.

        Returns:
            Dictionary mapping natural_key to StoredEvent objects
        """
        logger.info("Scanning DynamoDB table for all events")
        events = {}

        try:
            response = self.table.scan()
            items = response.get('Items', [])

            while 'LastEvaluatedKey' in response:
                response = self.table.scan(
                    ExclusiveStartKey=response['LastEvaluatedKey']
                )
                items.extend(response.get('Items', []))

            for item in items:
                event = self._item_to_stored_event(item)
                if event:
                    events[event.natural_key] = event

            logger.info(f"Retrieved {len(events)} events from DynamoDB")
            return events

        except ClientError as e:
            logger.error(f"Error scanning DynamoDB table: {e}")
            raise

    def _update_item(self, existing: Dict[str, Any], fields: Mapping[str, Any]) -> StoredEvent:
        values = serialize_fields(fields)
        for reserved in ('natural_key', 'event_id', 'created_at', 'updated_at'):
            values.pop(reserved, None)
        values['updated_at'] = self._next_timestamp(existing['created_at']).isoformat()

        names = {}
        attribute_values = {}
        assignments = []
        for i, (name, value) in enumerate(values.items()):
            names[f"#f{i}"] = name
            attribute_values[f":v{i}"] = value
            assignments.append(f"#f{i} = :v{i}")

        try:
            response = self.table.update_item(
                Key={'natural_key': existing['natural_key']},
                UpdateExpression='SET ' + ', '.join(assignments),
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=attribute_values,
                ConditionExpression='attribute_exists(natural_key)',
                ReturnValues='ALL_NEW'
            )
        except ClientError as e:
            logger.error(f"Error updating event {existing['natural_key']}: {e}")
            raise

        return self._item_to_stored_event(response['Attributes'])

    def _next_timestamp(self, created_at: str) -> datetime:
        # an update must never look like a creation
        now = self._now()
        created = datetime.fromisoformat(created_at)
        if now <= created:
            now = created + timedelta(microseconds=1)
        return now

    @staticmethod
    def _now() -> datetime:
        return datetime.now(timezone.utc)

    def _item_to_stored_event(self, item: dict) -> Optional[StoredEvent]:
        """
        Convert DynamoDB item to StoredEvent object.

        Args:
            item: DynamoDB item dictionary

        Returns:
            StoredEvent object or None if conversion fails
        """
        try:
            return StoredEvent(
                event_id=item['event_id'],
                status=EventStatus(item['status']),
                created_at=_parse_datetime(item['created_at']),
                updated_at=_parse_datetime(item['updated_at']),
                title=item['title'],
                country_code=item['country_code'],
                city=item['city'],
                start_at=_parse_datetime(item['start_at']),
                lat=item['lat'],
                lng=item['lng'],
                source=EventSource(item['source']),
                source_id=item['source_id'],
                description=item.get('description'),
                place=item.get('place'),
                end_at=_parse_datetime(item.get('end_at')),
                source_url=item.get('source_url'),
                raw_payload=_parse_payload(item.get('raw_payload')),
            )
        except (KeyError, ValueError) as e:
            logger.warning(f"Failed to convert item to StoredEvent: {e}")
            return None
