"""
DynamoDB record store used by the lifecycle engine.

Every table is keyed by a string ``id``. The store offers row-level CRUD with
equality / ``in`` / missing filters and OR groups, counted queries, single-row
conditional updates (the only real concurrency primitive) and a
begin/commit/rollback marker trio. DynamoDB has no client-driven
multi-statement transaction, so the markers only delimit a unit of work for
logging; atomicity across rows comes from compensation (see transactions.py).
"""
import uuid
from decimal import Decimal
from functools import reduce
from typing import Any, Dict, List, Optional

import boto3
from boto3.dynamodb.conditions import Attr
from botocore.exceptions import ClientError

from .config import config
from .exceptions import Conflict, NotFound, StoreError
from .logging import logger

# DynamoDB caps the number of operands of an IN comparison
MAX_IN_VALUES = 100


def to_dynamo(value: Any) -> Any:
    """Convert floats (not accepted by DynamoDB) to Decimal, recursively."""
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: to_dynamo(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_dynamo(v) for v in value]
    return value


def _field_condition(field: str, value: Any):
    if value is None:
        return Attr(field).not_exists() | Attr(field).eq(None)
    if isinstance(value, (list, tuple, set, frozenset)):
        return Attr(field).is_in(list(value))
    return Attr(field).eq(to_dynamo(value))


def build_condition(filters: Optional[Dict[str, Any]] = None,
                    any_of: Optional[List[Dict[str, Any]]] = None):
    """
    Build a boto3 condition from AND-ed filters and OR-ed filter groups.

    Returns None when there is nothing to filter on.
    """
    parts = []
    if filters:
        parts.extend(_field_condition(f, v) for f, v in filters.items())
    if any_of:
        groups = [build_condition(group) for group in any_of if group]
        groups = [g for g in groups if g is not None]
        if groups:
            parts.append(reduce(lambda a, b: a | b, groups))
    if not parts:
        return None
    return reduce(lambda a, b: a & b, parts)


def _has_empty_in(filters: Optional[Dict[str, Any]]) -> bool:
    return any(
        isinstance(v, (list, tuple, set, frozenset)) and len(v) == 0
        for v in (filters or {}).values()
    )


class RecordStore:
    """Table-oriented CRUD over DynamoDB."""

    def __init__(self, resource=None, table_names: Optional[Dict[str, str]] = None):
        self._resource = resource
        self._table_names = table_names or config.TABLES

    @property
    def resource(self):
        if self._resource is None:
            self._resource = boto3.resource('dynamodb', region_name=config.AWS_REGION)
        return self._resource

    def table(self, name: str):
        return self.resource.Table(self._table_names.get(name, name))

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get(self, table_name: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Get a single row by id."""
        try:
            response = self.table(table_name).get_item(Key={'id': record_id})
            return response.get('Item')
        except ClientError as e:
            logger.error(f"Error getting {record_id} from {table_name}: {e}")
            raise StoreError(f"Failed to read {table_name}: {e}") from e

    def select(
        self,
        table_name: str,
        filters: Optional[Dict[str, Any]] = None,
        any_of: Optional[List[Dict[str, Any]]] = None,
    ) -> List[Dict[str, Any]]:
        """
        Return all rows matching the filters.

        Args:
            table_name: Logical table name
            filters: {field: value}; a list value means IN, None means missing
            any_of: Filter groups of which at least one must match

        Returns:
            Matching rows
        """
        if _has_empty_in(filters):
            return []

        # Split oversized IN lists into several scans
        for field, value in (filters or {}).items():
            if isinstance(value, (list, tuple, set, frozenset)) and len(value) > MAX_IN_VALUES:
                values = list(value)
                rows = {}
                for i in range(0, len(values), MAX_IN_VALUES):
                    chunk_filters = dict(filters, **{field: values[i:i + MAX_IN_VALUES]})
                    for row in self.select(table_name, chunk_filters, any_of):
                        rows[row['id']] = row
                return list(rows.values())

        params = {}
        condition = build_condition(filters, any_of)
        if condition is not None:
            params['FilterExpression'] = condition

        try:
            table = self.table(table_name)
            items = []
            while True:
                response = table.scan(**params)
                items.extend(response.get('Items', []))
                last_key = response.get('LastEvaluatedKey')
                if not last_key:
                    return items
                params['ExclusiveStartKey'] = last_key
        except ClientError as e:
            logger.error(f"Error scanning {table_name}: {e}")
            raise StoreError(f"Failed to query {table_name}: {e}") from e

    def count(
        self,
        table_name: str,
        filters: Optional[Dict[str, Any]] = None,
        any_of: Optional[List[Dict[str, Any]]] = None,
    ) -> int:
        """Count rows matching the filters without returning them."""
        if _has_empty_in(filters):
            return 0

        params = {'Select': 'COUNT'}
        condition = build_condition(filters, any_of)
        if condition is not None:
            params['FilterExpression'] = condition

        try:
            table = self.table(table_name)
            total = 0
            while True:
                response = table.scan(**params)
                total += int(response.get('Count', 0))
                last_key = response.get('LastEvaluatedKey')
                if not last_key:
                    return total
                params['ExclusiveStartKey'] = last_key
        except ClientError as e:
            logger.error(f"Error counting {table_name}: {e}")
            raise StoreError(f"Failed to count {table_name}: {e}") from e

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def insert(self, table_name: str, item: Dict[str, Any]) -> Dict[str, Any]:
        """
        Insert a row; fails with Conflict if a row with the same id exists.
        """
        try:
            self.table(table_name).put_item(
                Item=to_dynamo(item),
                ConditionExpression='attribute_not_exists(id)'
            )
            return item
        except ClientError as e:
            if e.response['Error']['Code'] == 'ConditionalCheckFailedException':
                raise Conflict(f"{table_name} row {item.get('id')} already exists") from e
            logger.error(f"Error inserting into {table_name}: {e}")
            raise StoreError(f"Failed to insert into {table_name}: {e}") from e

    def insert_many(self, table_name: str, items: List[Dict[str, Any]]) -> int:
        """
        Write multiple rows using batch_write_item.
        Handles batching (max 25 items per batch) automatically.
        """
        try:
            table = self.table(table_name)

            with table.batch_writer() as batch:
                for item in items:
                    batch.put_item(Item=to_dynamo(item))

            logger.info(f"Successfully wrote {len(items)} items to {table_name}")
            return len(items)

        except ClientError as e:
            logger.error(f"Error batch writing to {table_name}: {e}")
            raise StoreError(f"Failed to write to {table_name}: {e}") from e

    def update(
        self,
        table_name: str,
        record_id: str,
        values: Dict[str, Any],
        expected: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Update a row, optionally conditioned on its current values.

        Args:
            table_name: Logical table name
            record_id: Row id
            values: Attributes to SET
            expected: {field: value} the row must currently hold; a list value
                means "one of", None means the attribute is missing or null

        Returns:
            The updated row

        Raises:
            NotFound: the row does not exist
            Conflict: the row exists but did not match `expected`
        """
        names = {}
        attr_values = {}
        set_parts = []
        for i, (field, value) in enumerate(values.items()):
            names[f'#u{i}'] = field
            attr_values[f':u{i}'] = to_dynamo(value)
            set_parts.append(f'#u{i} = :u{i}')

        conditions = ['attribute_exists(id)']
        for i, (field, value) in enumerate((expected or {}).items()):
            names[f'#c{i}'] = field
            if value is None:
                attr_values[f':c{i}'] = None
                conditions.append(f'(attribute_not_exists(#c{i}) OR #c{i} = :c{i})')
            elif isinstance(value, (list, tuple, set, frozenset)):
                placeholders = []
                for j, option in enumerate(value):
                    attr_values[f':c{i}_{j}'] = to_dynamo(option)
                    placeholders.append(f':c{i}_{j}')
                conditions.append(f"#c{i} IN ({', '.join(placeholders)})")
            else:
                attr_values[f':c{i}'] = to_dynamo(value)
                conditions.append(f'#c{i} = :c{i}')

        params = {
            'Key': {'id': record_id},
            'UpdateExpression': 'SET ' + ', '.join(set_parts),
            'ConditionExpression': ' AND '.join(conditions),
            'ExpressionAttributeNames': names,
            'ExpressionAttributeValues': attr_values,
            'ReturnValues': 'ALL_NEW'
        }

        try:
            response = self.table(table_name).update_item(**params)
            return response.get('Attributes', {})
        except ClientError as e:
            if e.response['Error']['Code'] != 'ConditionalCheckFailedException':
                logger.error(f"Error updating {record_id} in {table_name}: {e}")
                raise StoreError(f"Failed to update {table_name}: {e}") from e

        if self.get(table_name, record_id) is None:
            raise NotFound(f"{table_name} row {record_id} not found")
        raise Conflict(f"{table_name} row {record_id} was modified concurrently")

    def delete(self, table_name: str, record_id: str) -> bool:
        """Delete a row. Returns True if a row was removed."""
        try:
            response = self.table(table_name).delete_item(
                Key={'id': record_id},
                ReturnValues='ALL_OLD'
            )
            return bool(response.get('Attributes'))
        except ClientError as e:
            logger.error(f"Error deleting {record_id} from {table_name}: {e}")
            raise StoreError(f"Failed to delete from {table_name}: {e}") from e

    def delete_where(self, table_name: str, filters: Dict[str, Any]) -> List[str]:
        """Delete all rows matching the filters. Returns the deleted ids."""
        rows = self.select(table_name, filters)
        if not rows:
            return []

        try:
            with self.table(table_name).batch_writer() as batch:
                for row in rows:
                    batch.delete_item(Key={'id': row['id']})
        except ClientError as e:
            logger.error(f"Error deleting from {table_name}: {e}")
            raise StoreError(f"Failed to delete from {table_name}: {e}") from e

        return [row['id'] for row in rows]

    # -------------------------------------------------------------------------
    # Transaction markers
    # -------------------------------------------------------------------------

    def begin_transaction(self) -> str:
        token = str(uuid.uuid4())
        logger.debug(f"Transaction {token} started")
        return token

    def commit_transaction(self, token: str) -> None:
        logger.debug(f"Transaction {token} committed")

    def rollback_transaction(self, token: str) -> None:
        logger.info(f"Transaction {token} rolled back")
