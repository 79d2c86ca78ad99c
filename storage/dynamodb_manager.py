"""DynamoDB manager for the events table."""
import logging
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

import boto3
from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import ClientError

from processor.event_filter import normalize_event_types
from processor.models import EventRecord

logger = logging.getLogger(__name__)

ORDER_FIELDS = ('start_time', 'date')


class EventStore:
    """Manager for event table operations."""

    DATE_INDEX = 'date-index'

    def __init__(self, table_name: str):
        """
        Initialize DynamoDB resource and table reference.

        Args:
            table_name: Name of the DynamoDB table
        """
        self.table_name = table_name
        self.dynamodb = boto3.resource('dynamodb')
        self.table = self.dynamodb.Table(table_name)
        logger.info(f"Initialized EventStore for table: {table_name}")

    def list_events(self, order_by: str = 'start_time') -> List[EventRecord]:
        """
        Retrieve all events using a paginated Scan.

        Args:
            order_by: "start_time" or "date", ascending

        Returns:
            List of EventRecord objects
        """
        if order_by not in ORDER_FIELDS:
            raise ValueError(f"Cannot order events by {order_by}")

        logger.info("Scanning events table")

        try:
            response = self.table.scan()
            items = response.get('Items', [])

            while 'LastEvaluatedKey' in response:
                response = self.table.scan(
                    ExclusiveStartKey=response['LastEvaluatedKey']
                )
                items.extend(response.get('Items', []))

        except ClientError as e:
            logger.error(f"Error scanning events table: {e}")
            raise

        events = self._items_to_records(items)
        if order_by == 'date':
            events.sort(key=lambda event: (event.date, event.start_time or '~'))
        else:
            events.sort(key=lambda event: (event.start_time is None, event.start_time or ''))

        logger.info(f"Retrieved {len(events)} events")
        return events

    def list_events_by_date(self, day: date) -> List[EventRecord]:
        """
        Retrieve the events of one day, ascending by start time.

        Args:
            day: Calendar day to query

        Returns:
            List of EventRecord objects
        """
        logger.info(f"Querying events for {day.isoformat()}")

        try:
            query = {
                'IndexName': self.DATE_INDEX,
                'KeyConditionExpression': Key('date').eq(day.isoformat()),
            }
            response = self.table.query(**query)
            items = response.get('Items', [])

            while 'LastEvaluatedKey' in response:
                response = self.table.query(
                    ExclusiveStartKey=response['LastEvaluatedKey'], **query
                )
                items.extend(response.get('Items', []))

        except ClientError as e:
            logger.error(f"Error querying events for {day.isoformat()}: {e}")
            raise

        events = self._items_to_records(items)
        logger.info(f"Retrieved {len(events)} events for {day.isoformat()}")
        return events

    def get_event(self, event_id: str) -> Optional[EventRecord]:
        """
        Fetch a single event.

        Returns:
            EventRecord, or None if no such event exists
        """
        try:
            response = self.table.get_item(Key={'event_id': event_id})
        except ClientError as e:
            logger.error(f"Error fetching event {event_id}: {e}")
            raise

        item = response.get('Item')
        if not item:
            return None
        return self._item_to_record(item)

    def get_password(self, event_id: str) -> Optional[str]:
        """
        Fetch only the stored edit password of an event.

        Raises:
            KeyError: If the event does not exist
        """
        try:
            response = self.table.get_item(
                Key={'event_id': event_id},
                ProjectionExpression='#pw',
                ExpressionAttributeNames={'#pw': 'password'}
            )
        except ClientError as e:
            logger.error(f"Error fetching password for event {event_id}: {e}")
            raise

        if 'Item' not in response:
            raise KeyError(event_id)
        return response['Item'].get('password')

    def insert_event(self, record: EventRecord) -> EventRecord:
        """
        Insert a new event. The store assigns event_id and created_at.

        Args:
            record: Event to insert, event_id is ignored

        Returns:
            The stored EventRecord
        """
        record.event_id = str(uuid.uuid4())
        record.created_at = datetime.now(timezone.utc).isoformat()
        item = self._record_to_item(record)

        try:
            self.table.put_item(
                Item=item,
                ConditionExpression=Attr('event_id').not_exists()
            )
        except ClientError as e:
            logger.error(f"Error inserting event '{record.title}': {e}")
            raise

        logger.info(f"Inserted event {record.event_id}")
        return record

    def update_event(self, event_id: str, changes: Dict[str, Any]) -> None:
        """
        Set the given fields on an existing event, leaving the rest untouched.

        Args:
            event_id: Event to update
            changes: Field name to new value, None removes the attribute
        """
        changes = {name: value for name, value in changes.items() if name != 'event_id'}
        if not changes:
            logger.info(f"No changes for event {event_id}")
            return

        set_parts = []
        remove_parts = []
        names = {}
        values = {}

        for index, (name, value) in enumerate(sorted(changes.items())):
            names[f"#f{index}"] = name
            if value is None:
                remove_parts.append(f"#f{index}")
            else:
                set_parts.append(f"#f{index} = :u{index}")
                values[f":u{index}"] = self._to_dynamo(value)

        expression = []
        if set_parts:
            expression.append('SET ' + ', '.join(set_parts))
        if remove_parts:
            expression.append('REMOVE ' + ', '.join(remove_parts))

        update = {
            'Key': {'event_id': event_id},
            'UpdateExpression': ' '.join(expression),
            'ExpressionAttributeNames': names,
            'ConditionExpression': Attr('event_id').exists(),
        }
        if values:
            update['ExpressionAttributeValues'] = values

        try:
            self.table.update_item(**update)
        except ClientError as e:
            logger.error(f"Error updating event {event_id}: {e}")
            raise

        logger.info(f"Updated event {event_id}: {', '.join(sorted(changes))}")

    def _items_to_records(self, items: List[dict]) -> List[EventRecord]:
        records = []
        for item in items:
            record = self._item_to_record(item)
            if record:
                records.append(record)
        return records

    def _item_to_record(self, item: dict) -> Optional[EventRecord]:
        """
        Convert DynamoDB item to EventRecord.

        Args:
            item: DynamoDB item dictionary

        Returns:
            EventRecord object or None if conversion fails
        """
        try:
            return EventRecord(
                event_id=item['event_id'],
                title=item['title'],
                description=item.get('description', ''),
                email=item.get('email', ''),
                organizer_name=item.get('organizer_name', ''),
                date=item['date'],
                start_time=item.get('start_time'),
                end_time=item.get('end_time'),
                location=item.get('location', ''),
                event_type=normalize_event_types(item.get('event_type')),
                max_participants=int(item.get('max_participants', 0)),
                current_participants=int(item.get('current_participants', 0)),
                rsvp_link=item.get('rsvp_link', ''),
                password=item.get('password'),
                image_url=item.get('image_url') or None,
                latitude=self._to_float(item.get('latitude')),
                longitude=self._to_float(item.get('longitude')),
                created_at=item.get('created_at')
            )
        except (KeyError, ValueError, TypeError) as e:
            logger.warning(f"Failed to convert item to EventRecord: {e}")
            return None

    def _record_to_item(self, record: EventRecord) -> dict:
        """
        Convert EventRecord to DynamoDB item.

        Args:
            record: EventRecord object

        Returns:
            DynamoDB item dictionary
        """
        item = {
            'event_id': record.event_id,
            'title': record.title,
            'description': record.description,
            'email': record.email,
            'organizer_name': record.organizer_name,
            'date': record.date,
            'location': record.location,
            'event_type': list(record.event_type),
            'max_participants': record.max_participants,
            'current_participants': record.current_participants,
            'rsvp_link': record.rsvp_link,
        }

        optional = {
            'start_time': record.start_time,
            'end_time': record.end_time,
            'password': record.password,
            'image_url': record.image_url,
            'latitude': record.latitude,
            'longitude': record.longitude,
            'created_at': record.created_at,
        }
        for name, value in optional.items():
            if value is not None and value != '':
                item[name] = value

        return {name: self._to_dynamo(value) for name, value in item.items()}

    @staticmethod
    def _to_dynamo(value: Any) -> Any:
        # DynamoDB rejects float, numbers travel as Decimal
        if isinstance(value, float):
            return Decimal(str(value))
        if isinstance(value, tuple):
            return list(value)
        return value

    @staticmethod
    def _to_float(value: Any) -> Optional[float]:
        if value is None or value == '':
            return None
        return float(value)
