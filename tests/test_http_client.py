"""Unit tests for the HTTP client."""
import pytest
import requests
import responses

from processor.errors import UpstreamFetchError
from scraper.http_client import HttpClient

URL = 'https://feeds.example.com/events.ics'


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def client(sleeps):
    return HttpClient(timeout=5, max_retries=3, base_delay=1, sleep=sleeps.append)


@responses.activate
def test_get_text_success(client):
    responses.add(responses.GET, URL, body='BEGIN:VCALENDAR', status=200)

    assert client.get_text(URL) == 'BEGIN:VCALENDAR'
    assert 'Mozilla' in responses.calls[0].request.headers['User-Agent']


@responses.activate
def test_retries_server_errors_with_backoff(client, sleeps):
    responses.add(responses.GET, URL, status=503)
    responses.add(responses.GET, URL, status=502)
    responses.add(responses.GET, URL, body='ok', status=200)

    assert client.get_text(URL) == 'ok'
    assert len(responses.calls) == 3
    assert sleeps == [1, 2]


@responses.activate
def test_retries_rate_limit(client, sleeps):
    responses.add(responses.GET, URL, status=429)
    responses.add(responses.GET, URL, body='ok', status=200)

    assert client.get_text(URL) == 'ok'
    assert sleeps == [1]


@responses.activate
def test_client_error_fails_immediately(client, sleeps):
    responses.add(responses.GET, URL, status=404, body='not here')

    with pytest.raises(UpstreamFetchError) as exc_info:
        client.get(URL)

    assert exc_info.value.status_code == 404
    assert exc_info.value.url == URL
    assert len(responses.calls) == 1
    assert sleeps == []


@responses.activate
def test_gives_up_after_max_retries(client, sleeps):
    for _ in range(3):
        responses.add(responses.GET, URL, status=500)

    with pytest.raises(UpstreamFetchError) as exc_info:
        client.get(URL)

    assert exc_info.value.status_code == 500
    assert len(responses.calls) == 3
    assert sleeps == [1, 2]


@responses.activate
def test_network_error_is_retried(client, sleeps):
    responses.add(responses.GET, URL, body=requests.ConnectionError('connection reset'))
    responses.add(responses.GET, URL, body='ok', status=200)

    assert client.get_text(URL) == 'ok'
    assert sleeps == [1]


@responses.activate
def test_get_json_invalid_body(client):
    responses.add(responses.GET, URL, body='<html>', status=200)

    with pytest.raises(UpstreamFetchError, match='Invalid JSON'):
        client.get_json(URL)


@responses.activate
def test_post_json(client):
    responses.add(responses.POST, 'https://api.example.com/run', json=[{'id': '1'}], status=201)

    result = client.post_json('https://api.example.com/run', {'q': 'x'}, params={'token': 't'})

    assert result == [{'id': '1'}]
    assert responses.calls[0].request.body == b'{"q": "x"}'
    assert 'token=t' in responses.calls[0].request.url
