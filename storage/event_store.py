"""DynamoDB-backed store for calendar events."""
import hashlib
import logging
import threading
from typing import Dict, Iterable, List, Optional

import boto3
from boto3.dynamodb.conditions import Attr
from botocore.exceptions import ClientError

from processor.feed_normalizer import parse_timestamp
from processor.models import EventRecord, StoredEvent

logger = logging.getLogger(__name__)


class DuplicateEventError(Exception):
    """Raised when inserting an event whose identity key is already stored."""


class EventStore:
    """Storage for event records keyed on their identity triple."""

    COUNTER_KEY = '#event-id-counter'
    MUTABLE_FIELDS = ('color', 'description', 'location')

    def __init__(
        self,
        table_name: str,
        region_name: Optional[str] = None,
        endpoint_url: Optional[str] = None
    ):
        """
        Initialize storage settings.

        boto3 resources are not thread-safe, so each thread lazily gets its
        own session, resource and table reference.

        Args:
            table_name: Name of the DynamoDB table
            region_name: AWS region of the table
            endpoint_url: Alternative endpoint, e.g. a local DynamoDB
        """
        self.table_name = table_name
        self.region_name = region_name
        self.endpoint_url = endpoint_url
        self._local = threading.local()
        logger.info(f"Initialized EventStore for table: {table_name}")

    @property
    def dynamodb(self):
        """DynamoDB resource owned by the calling thread."""
        resource = getattr(self._local, 'dynamodb', None)
        if resource is None:
            session = boto3.session.Session()
            resource = session.resource(
                'dynamodb',
                region_name=self.region_name,
                endpoint_url=self.endpoint_url
            )
            self._local.dynamodb = resource
        return resource

    @property
    def table(self):
        """Table reference owned by the calling thread."""
        table = getattr(self._local, 'table', None)
        if table is None:
            table = self.dynamodb.Table(self.table_name)
            self._local.table = table
        return table

    def create_table(self) -> None:
        """Create the events table if it does not exist yet."""
        try:
            table = self.dynamodb.create_table(
                TableName=self.table_name,
                KeySchema=[
                    {'AttributeName': 'identity_key', 'KeyType': 'HASH'}
                ],
                AttributeDefinitions=[
                    {'AttributeName': 'identity_key', 'AttributeType': 'S'}
                ],
                BillingMode='PAY_PER_REQUEST'
            )
            table.wait_until_exists()
            logger.info(f"Created table: {self.table_name}")
        except ClientError as e:
            if e.response['Error']['Code'] != 'ResourceInUseException':
                raise
            logger.info(f"Table already exists: {self.table_name}")

    @staticmethod
    def identity_key(record: EventRecord) -> str:
        """
        Generate the storage key for an event from its title, start and end.

        Returns:
            SHA256 hex digest of the identity triple
        """
        composite = '|'.join(record.identity_key)
        return hashlib.sha256(composite.encode('utf-8')).hexdigest()

    def find_by_identity(self, record: EventRecord) -> Optional[StoredEvent]:
        """
        Look up the stored event matching a record's identity key.

        Returns:
            StoredEvent or None if no event is stored under the key
        """
        response = self.table.get_item(
            Key={'identity_key': self.identity_key(record)},
            ConsistentRead=True
        )
        item = response.get('Item')
        if item is None:
            return None
        return self._item_to_stored_event(item)

    def insert(self, record: EventRecord) -> StoredEvent:
        """
        Insert a new event with the next surrogate id.

        Raises:
            DuplicateEventError: If the identity key is already stored
        """
        event_id = self._next_id()
        item = self._record_to_item(record, event_id)

        try:
            self.table.put_item(
                Item=item,
                ConditionExpression='attribute_not_exists(identity_key)'
            )
        except ClientError as e:
            if e.response['Error']['Code'] == 'ConditionalCheckFailedException':
                raise DuplicateEventError(
                    f"Event already stored: {record.title} "
                    f"({record.start} - {record.end})"
                ) from e
            raise

        return self._item_to_stored_event(item)

    def update(self, record: EventRecord, fields: Iterable[str]) -> None:
        """
        Overwrite mutable fields of a stored event with the record's values.

        Args:
            record: Record carrying the new values
            fields: Names of the fields to update
        """
        fields = list(fields)
        unknown = set(fields) - set(self.MUTABLE_FIELDS)
        if unknown:
            raise ValueError(f"Fields cannot be updated: {sorted(unknown)}")
        if not fields:
            return

        names = {f'#{name}': name for name in fields}
        values = {f':{name}': getattr(record, name) for name in fields}
        assignments = ', '.join(f'#{name} = :{name}' for name in fields)

        self.table.update_item(
            Key={'identity_key': self.identity_key(record)},
            UpdateExpression=f'SET {assignments}',
            ConditionExpression='attribute_exists(identity_key)',
            ExpressionAttributeNames=names,
            ExpressionAttributeValues=values
        )

    def scan_range(self, start_ts: int, end_ts: int) -> List[StoredEvent]:
        """
        Retrieve events that start at or after start_ts and end at or before end_ts.

        Args:
            start_ts: Lower bound as a Unix timestamp
            end_ts: Upper bound as a Unix timestamp

        Returns:
            Matching events ordered by start time, then id
        """
        filter_expression = Attr('start_ts').gte(start_ts) & Attr('end_ts').lte(end_ts)

        response = self.table.scan(FilterExpression=filter_expression)
        items = response.get('Items', [])

        # Handle pagination
        while 'LastEvaluatedKey' in response:
            response = self.table.scan(
                FilterExpression=filter_expression,
                ExclusiveStartKey=response['LastEvaluatedKey']
            )
            items.extend(response.get('Items', []))

        items.sort(key=lambda item: (int(item['start_ts']), int(item['id'])))
        logger.debug(f"Range scan matched {len(items)} events")
        return [self._item_to_stored_event(item) for item in items]

    def _next_id(self) -> int:
        """Allocate a monotonic surrogate id from the counter item."""
        response = self.table.update_item(
            Key={'identity_key': self.COUNTER_KEY},
            UpdateExpression='ADD next_id :one',
            ExpressionAttributeValues={':one': 1},
            ReturnValues='UPDATED_NEW'
        )
        return int(response['Attributes']['next_id'])

    def _record_to_item(self, record: EventRecord, event_id: int) -> Dict:
        return {
            'identity_key': self.identity_key(record),
            'id': event_id,
            'title': record.title,
            'start': record.start,
            'end': record.end,
            'start_ts': int(parse_timestamp(record.start).timestamp()),
            'end_ts': int(parse_timestamp(record.end).timestamp()),
            'color': record.color,
            'description': record.description,
            'location': record.location
        }

    @staticmethod
    def _item_to_stored_event(item: Dict) -> StoredEvent:
        return StoredEvent(
            id=int(item['id']),
            title=item['title'],
            start=item['start'],
            end=item['end'],
            color=item['color'],
            description=item.get('description', ''),
            location=item.get('location', '')
        )
