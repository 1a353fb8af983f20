"""Shared fixtures: mocked DynamoDB tables and a scripted geocoder."""
import os
from typing import Dict, Optional
from unittest.mock import patch

import boto3
import pytest
from moto import mock_aws

from processor.models import GeoCacheEntry, GeoDetails, GeoPoint, ReverseGeocode
from storage.dynamodb_manager import DynamoDBManager
from storage.geo_cache import DynamoDBGeoCache
from storage.sync_run_ledger import SyncRunLedger

EVENTS_TABLE = 'test-map-events'
SYNC_RUNS_TABLE = 'test-map-events-sync-runs'
GEO_CACHE_TABLE = 'test-map-events-geo-cache'


@pytest.fixture(autouse=True)
def aws_credentials():
    """Fake AWS credentials so boto3 never reaches a real account."""
    env_vars = {
        'AWS_ACCESS_KEY_ID': 'testing',
        'AWS_SECRET_ACCESS_KEY': 'testing',
        'AWS_SECURITY_TOKEN': 'testing',
        'AWS_SESSION_TOKEN': 'testing',
        'AWS_DEFAULT_REGION': 'us-east-1',
    }
    with patch.dict(os.environ, env_vars):
        yield env_vars


def create_tables(dynamodb) -> None:
    dynamodb.create_table(
        TableName=EVENTS_TABLE,
        KeySchema=[
            {'AttributeName': 'natural_key', 'KeyType': 'HASH'}
        ],
        AttributeDefinitions=[
            {'AttributeName': 'natural_key', 'AttributeType': 'S'},
            {'AttributeName': 'event_id', 'AttributeType': 'S'}
        ],
        GlobalSecondaryIndexes=[
            {
                'IndexName': 'event-id-index',
                'KeySchema': [
                    {'AttributeName': 'event_id', 'KeyType': 'HASH'}
                ],
                'Projection': {'ProjectionType': 'ALL'}
            }
        ],
        BillingMode='PAY_PER_REQUEST'
    )
    dynamodb.create_table(
        TableName=SYNC_RUNS_TABLE,
        KeySchema=[{'AttributeName': 'run_id', 'KeyType': 'HASH'}],
        AttributeDefinitions=[{'AttributeName': 'run_id', 'AttributeType': 'S'}],
        BillingMode='PAY_PER_REQUEST'
    )
    dynamodb.create_table(
        TableName=GEO_CACHE_TABLE,
        KeySchema=[{'AttributeName': 'query', 'KeyType': 'HASH'}],
        AttributeDefinitions=[{'AttributeName': 'query', 'AttributeType': 'S'}],
        BillingMode='PAY_PER_REQUEST'
    )


@pytest.fixture
def dynamodb():
    """Mocked DynamoDB resource with the events, sync-run and geo-cache tables."""
    with mock_aws():
        resource = boto3.resource('dynamodb', region_name='us-east-1')
        create_tables(resource)
        yield resource


@pytest.fixture
def event_store(dynamodb):
    return DynamoDBManager(EVENTS_TABLE, dynamodb=dynamodb)


@pytest.fixture
def sync_ledger(dynamodb):
    return SyncRunLedger(SYNC_RUNS_TABLE, dynamodb=dynamodb)


@pytest.fixture
def geo_cache(dynamodb):
    return DynamoDBGeoCache(GEO_CACHE_TABLE, dynamodb=dynamodb)


class InMemoryGeoCache:
    """Dict-backed cache with the DynamoDBGeoCache interface."""

    def __init__(self):
        self.entries: Dict[str, GeoCacheEntry] = {}

    def get(self, query: str) -> Optional[GeoCacheEntry]:
        return self.entries.get(query)

    def put(self, query, lat, lng, raw=None) -> None:
        self.entries[query] = GeoCacheEntry(query=query, lat=lat, lng=lng, raw=raw)


class ScriptedGeocoder:
    """
    Geocoder answering from fixed tables and recording every call.

    forward maps query -> (lat, lng, address dict, city_level);
    reverse maps rounded (lat, lng) -> (city, country_code).
    """

    def __init__(self, forward=None, reverse=None):
        self.forward_table = dict(forward or {})
        self.reverse_table = dict(reverse or {})
        self.forward_calls = []
        self.reverse_calls = []

    def forward_detailed(self, query: str) -> Optional[GeoDetails]:
        self.forward_calls.append(query)
        hit = self.forward_table.get(query)
        if hit is None:
            return None
        lat, lng, address, city_level = hit
        return GeoDetails(lat=lat, lng=lng, city_level=city_level, address=address)

    def forward(self, query: str) -> Optional[GeoPoint]:
        details = self.forward_detailed(query)
        return GeoPoint(details.lat, details.lng) if details else None

    def reverse(self, lat: float, lng: float) -> Optional[ReverseGeocode]:
        self.reverse_calls.append((lat, lng))
        hit = self.reverse_table.get((round(lat, 4), round(lng, 4)))
        return ReverseGeocode(*hit) if hit else None

    def reverse_city(self, lat: float, lng: float) -> Optional[str]:
        hit = self.reverse(lat, lng)
        return hit.city if hit else None


@pytest.fixture
def in_memory_cache():
    return InMemoryGeoCache()


@pytest.fixture
def geocoder():
    return ScriptedGeocoder(
        forward={
            'Teatr Powszechny, Radom, Poland': (51.4027, 21.1471, {'city': 'Radom', 'country_code': 'pl'}, False),
            'ul. Żeromskiego 53, Radom, Poland': (51.4016, 21.1526, {'city': 'Radom', 'country_code': 'pl'}, False),
            'Radom, Poland': (51.4025, 21.1471, {'city': 'Radom', 'country_code': 'pl'}, True),
            'Filharmonia Narodowa, Warszawa': (52.2335, 21.0089, {'city': 'Warszawa', 'country_code': 'pl'}, False),
            'Messe Berlin': (52.5050, 13.2780, {'city': 'Berlin', 'country_code': 'de'}, False),
            'Klub Stodoła': (52.2121, 21.0052, {'city': 'Warszawa', 'country_code': 'pl'}, False),
        },
        reverse={
            (52.2297, 21.0122): ('Warszawa', 'PL'),
            (50.0647, 19.945): ('Kraków', 'PL'),
        },
    )


@pytest.fixture
def make_geocoder():
    """Factory for geocoders with custom lookup tables."""
    return ScriptedGeocoder
