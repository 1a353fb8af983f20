"""Geocoding cache stored in DynamoDB."""
import json
import logging
from typing import Any, Optional

import boto3
from botocore.exceptions import ClientError

from processor.models import GeoCacheEntry

logger = logging.getLogger(__name__)


class DynamoDBGeoCache:
    """
    Geocode cache keyed by query text.

    Forward lookups use the trimmed query; reverse lookups use the
    synthetic "rev:<lat>,<lng>" / "revcc:<lat>,<lng>" keys. Entries
    without lat/lng record a failed lookup.
    """

    def __init__(self, table_name: str, dynamodb=None, region_name: Optional[str] = None):
        self.table_name = table_name
        self.dynamodb = dynamodb or boto3.resource('dynamodb', region_name=region_name)
        self.table = self.dynamodb.Table(table_name)

    def get(self, query: str) -> Optional[GeoCacheEntry]:
        try:
            item = self.table.get_item(Key={'query': query}).get('Item')
        except ClientError as e:
            logger.error(f"Error reading geocode cache for {query!r}: {e}")
            raise
        if not item:
            return None

        raw = item.get('raw')
        if isinstance(raw, str):
            try:
                raw = json.loads(raw)
            except ValueError:
                pass
        return GeoCacheEntry(
            query=item['query'],
            lat=item.get('lat'),
            lng=item.get('lng'),
            raw=raw,
        )

    def put(self, query: str, lat: Optional[str], lng: Optional[str], raw: Any = None) -> None:
        item = {
            'query': query,
            'raw': json.dumps(raw, default=str, ensure_ascii=False),
        }
        if lat is not None and lng is not None:
            item['lat'] = lat
            item['lng'] = lng
        try:
            self.table.put_item(Item=item)
        except ClientError as e:
            logger.error(f"Error writing geocode cache for {query!r}: {e}")
            raise
