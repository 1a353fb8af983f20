"""AWS Lambda handler for event source sync runs and moderation."""
import base64
import binascii
import json
import logging
import time
from dataclasses import asdict
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlparse

from pipeline.settings import load_settings
from pipeline.sync import SyncPipeline
from processor.errors import ConfigurationError, EventNotFoundError, InvalidTransitionError, ValidationError
from processor.models import RunSummary
from processor.moderation import ModerationService


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def _response(status_code: int, body: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'statusCode': status_code,
        'body': json.dumps(body, default=str)
    }


def _error_response(status_code: int, message: str, error: Exception) -> Dict[str, Any]:
    return _response(status_code, {
        'message': message,
        'error': str(error),
        'error_type': type(error).__name__
    })


def _int_field(payload: Dict[str, Any], name: str, default: Optional[int]) -> Optional[int]:
    raw = payload.get(name)
    if raw is None or raw == '':
        return default
    if isinstance(raw, bool):
        raise ValidationError(f"{name} must be an integer, got {raw!r}")
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be an integer, got {raw!r}")
    if value < 0:
        raise ValidationError(f"{name} must not be negative")
    return value


def _limit(payload: Dict[str, Any], default: Optional[int]) -> Optional[int]:
    return _int_field(payload, 'limit', default)


def _required_text(payload: Dict[str, Any], name: str) -> str:
    value = str(payload.get(name) or '').strip()
    if not value:
        raise ValidationError(f"Missing {name}")
    return value


def _country_filter(payload: Dict[str, Any]) -> Any:
    return payload.get('countryFilter', payload.get('country_filter'))


def _http_url(raw: str) -> str:
    parsed = urlparse(raw)
    if parsed.scheme not in ('http', 'https') or not parsed.netloc:
        raise ValidationError("URL must start with http:// or https://")
    return raw


def _run_search(pipeline: SyncPipeline, payload: Dict[str, Any]) -> RunSummary:
    return pipeline.run_search_snippet_sync(
        _required_text(payload, 'query'), _limit(payload, 10), _country_filter(payload)
    )


def _run_ics(pipeline: SyncPipeline, payload: Dict[str, Any]) -> RunSummary:
    url = str(payload.get('url') or '').strip()
    future_only = payload.get('futureOnly', payload.get('future_only'))
    return pipeline.run_ics_sync(
        _http_url(url) if url else None,
        _limit(payload, None),
        None if future_only is None else bool(future_only),
        _country_filter(payload),
    )


def _run_spreadsheet(pipeline: SyncPipeline, payload: Dict[str, Any]) -> RunSummary:
    try:
        content = base64.b64decode(_required_text(payload, 'content'), validate=True)
    except binascii.Error:
        raise ValidationError("content must be base64-encoded")
    return pipeline.run_spreadsheet_sync(content, payload.get('filename'), _limit(payload, 500))


def _run_scraper(pipeline: SyncPipeline, payload: Dict[str, Any]) -> RunSummary:
    return pipeline.run_graph_or_scraper_sync(
        _required_text(payload, 'query'), _limit(payload, 50), _country_filter(payload)
    )


def _run_graph(pipeline: SyncPipeline, payload: Dict[str, Any]) -> RunSummary:
    return pipeline.run_graph_page_sync(
        _limit(payload, 0), _country_filter(payload), _int_field(payload, 'maxPages', 10) or 10
    )


def _run_page(pipeline: SyncPipeline, payload: Dict[str, Any]) -> RunSummary:
    urls = payload.get('urls')
    if not isinstance(urls, list) or not urls:
        raise ValidationError("Missing urls")
    return pipeline.run_page_scrape_sync(
        [_http_url(str(u).strip()) for u in urls], _limit(payload, 0), _country_filter(payload)
    )


def _run_ndjson(pipeline: SyncPipeline, payload: Dict[str, Any]) -> RunSummary:
    lines = payload.get('lines')
    if lines is None:
        lines = _required_text(payload, 'content')
    return pipeline.run_ndjson_import(lines, _limit(payload, 0))


HANDLERS: Dict[str, Callable[[SyncPipeline, Dict[str, Any]], RunSummary]] = {
    'search': _run_search,
    'ics': _run_ics,
    'spreadsheet': _run_spreadsheet,
    'scraper': _run_scraper,
    'graph': _run_graph,
    'page': _run_page,
    'ndjson': _run_ndjson,
}

MODERATION_ACTIONS = ('approve', 'reject', 'edit', 'delete')


def _moderate(service: ModerationService, payload: Dict[str, Any]) -> Dict[str, Any]:
    """Apply one operator action; returns the response body."""
    action = _required_text(payload, 'action')
    event_id = _required_text(payload, 'eventId')

    if action == 'delete':
        service.delete(event_id)
        return {'message': 'Event deleted', 'event_id': event_id}

    if action == 'edit':
        changes = payload.get('changes')
        if not isinstance(changes, dict):
            raise ValidationError("changes must be an object")
        stored = service.edit(event_id, changes)
    elif action in ('approve', 'reject'):
        stored = getattr(service, action)(event_id)
    else:
        raise ValidationError(f"action must be one of {list(MODERATION_ACTIONS)}")

    return {'message': 'Event updated', 'event': asdict(stored)}


def handle_moderation(payload: Dict[str, Any], pipeline: SyncPipeline) -> Dict[str, Any]:
    """
    Run a moderation action against the events table.

    Args:
        payload: {"type": "moderate", "action", "eventId", "changes"}
        pipeline: Pipeline whose store and timezone are used

    Returns:
        Response dict; 404 for unknown ids, 409 for moderated events
    """
    logger = logging.getLogger(__name__)
    service = ModerationService(pipeline.store, pipeline.settings.tz)

    try:
        return _response(200, _moderate(service, payload))
    except ValidationError as e:
        logger.warning(f"Rejected moderation payload: {e}")
        return _error_response(400, 'Invalid request', e)
    except EventNotFoundError as e:
        logger.info(f"Moderation target missing: {e}")
        return _error_response(404, 'Event not found', e)
    except InvalidTransitionError as e:
        logger.warning(f"Moderation refused: {e}")
        return _error_response(409, 'Invalid transition', e)


def lambda_handler(event: Dict[str, Any], context: Any,
                   pipeline: Optional[SyncPipeline] = None) -> Dict[str, Any]:
    """
    Main Lambda handler function for event source syncs.

    Args:
        event: Invocation payload with a "type" selecting the source
        context: Lambda context object
        pipeline: Optional pre-built pipeline

    Returns:
        Response dict with statusCode and the run summary
    """
    start_time = time.time()
    logger = logging.getLogger(__name__)

    try:
        settings = load_settings()
    except ConfigurationError as e:
        setup_logging()
        logger.error(f"Invalid configuration: {e}")
        return _response(500, {
            'message': 'Invalid configuration',
            'error': str(e),
            'error_type': type(e).__name__
        })

    setup_logging(settings.log_level)

    payload = event if isinstance(event, dict) else {}
    sync_type = payload.get('type')
    if sync_type == 'moderate':
        return handle_moderation(payload, pipeline or SyncPipeline.from_settings(settings))

    handler = HANDLERS.get(sync_type)
    if handler is None:
        logger.warning(f"Unknown sync type: {sync_type!r}")
        return _response(400, {
            'message': 'Unknown sync type',
            'error': f"type must be one of {sorted([*HANDLERS, 'moderate'])}"
        })

    logger.info(f"Lambda execution started for sync type {sync_type}")

    try:
        pipeline = pipeline or SyncPipeline.from_settings(settings)
        summary = handler(pipeline, payload)

    except ValidationError as e:
        logger.warning(f"Rejected {sync_type} payload: {e}")
        return _response(400, {
            'message': 'Invalid request',
            'error': str(e),
            'error_type': type(e).__name__
        })

    except ConfigurationError as e:
        logger.error(f"Missing configuration for {sync_type} sync: {e}")
        return _response(500, {
            'message': 'Missing configuration',
            'error': str(e),
            'error_type': type(e).__name__
        })

    except Exception as e:
        duration = time.time() - start_time
        logger.error(
            f"Lambda execution failed: {str(e)}",
            extra={
                'duration_seconds': round(duration, 2),
                'error_type': type(e).__name__
            },
            exc_info=True
        )
        return _response(500, {
            'message': 'Sync failed',
            'error': str(e),
            'error_type': type(e).__name__,
            'duration_seconds': round(duration, 2)
        })

    duration = time.time() - start_time
    logger.info(
        f"Lambda execution completed",
        extra={
            'duration_seconds': round(duration, 2),
            'summary': summary.to_dict()
        }
    )

    return _response(200, {
        'message': 'Sync already running' if summary.status == 'already_running' else 'Sync completed',
        'summary': summary.to_dict(),
        'duration_seconds': round(duration, 2)
    })
