"""Pipeline entry points: one adapter run, reconciled into the store."""
import logging
import time
from typing import Any, Iterable, Optional, Union

from geocoding.nominatim import GeoResolver
from pipeline.settings import Settings, load_settings
from processor.errors import ValidationError
from processor.models import RunSummary
from processor.reconciliation import ReconciliationEngine
from scraper.apify_dataset import ApifyDatasetAdapter
from scraper.base import SourceAdapter
from scraper.graph_api import GraphAPIAdapter
from scraper.http_client import HttpClient
from scraper.ics_feed import ICSFeedAdapter
from scraper.ndjson_file import NDJSONFileAdapter
from scraper.page_scrape import PageScrapeAdapter
from scraper.search_snippet import SearchSnippetAdapter
from scraper.spreadsheet import SpreadsheetAdapter
from storage.dynamodb_manager import DynamoDBManager
from storage.geo_cache import DynamoDBGeoCache
from storage.sync_run_ledger import SyncRunLedger

logger = logging.getLogger(__name__)

ALREADY_RUNNING = 'already_running'


class SyncPipeline:
    """
    Wires adapters, geocoder, store and ledger together.

    Every run_* method checks configuration first, then the advisory
    running-run guard, then creates a SyncRun, runs the adapter and
    reconciles. Adapter failures finalize the run as failed and
    propagate.
    """

    def __init__(self, settings: Settings, store, ledger, geocoder, http: HttpClient):
        self.settings = settings
        self.store = store
        self.ledger = ledger
        self.geocoder = geocoder
        self.http = http
        self.engine = ReconciliationEngine(store, ledger)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> 'SyncPipeline':
        """Build the pipeline on DynamoDB tables and a Nominatim geocoder."""
        settings = settings or load_settings()
        cache = DynamoDBGeoCache(settings.geo_cache_table_name)
        geocoder = GeoResolver(
            cache,
            base_url=settings.geocoder_url,
            user_agent=settings.geocoder_user_agent,
            min_interval=settings.geocoder_min_interval_seconds,
            timeout=settings.timeout_seconds,
        )
        return cls(
            settings=settings,
            store=DynamoDBManager(settings.events_table_name),
            ledger=SyncRunLedger(settings.sync_runs_table_name),
            geocoder=geocoder,
            http=HttpClient(timeout=settings.timeout_seconds),
        )

    def _adapter_kwargs(self) -> dict:
        return {
            'tz': self.settings.tz,
            'default_country': self.settings.default_country,
            'default_country_code': self.settings.default_country_code,
        }

    def run_search_snippet_sync(self, query: str, limit: int = 10,
                                country_filter: Any = None) -> RunSummary:
        """Search-engine snippets of indexed event pages."""
        self.settings.require('serpapi_key')
        if not (query or '').strip():
            raise ValidationError("query is required")
        adapter = SearchSnippetAdapter(
            self.http, self.geocoder, api_key=self.settings.serpapi_key,
            max_scanned=self.settings.search_max_scanned,
            fetch_pages=self.settings.search_fetch_pages,
            **self._adapter_kwargs()
        )
        return self._execute(adapter, limit, country_filter, query=query.strip())

    def run_ics_sync(self, url: Optional[str] = None, limit: Optional[int] = None,
                     future_only: Optional[bool] = None, country_filter: Any = None) -> RunSummary:
        """
        Calendar feed sync. Without arguments the scheduled ICS_* settings
        are used.
        """
        url = url or self.settings.ics_url
        if not url:
            self.settings.require('ics_url')
        if limit is None:
            limit = self.settings.ics_job_fetch_limit
        if future_only is None:
            future_only = self.settings.ics_future_only
        adapter = ICSFeedAdapter(self.http, self.geocoder, **self._adapter_kwargs())
        return self._execute(adapter, limit, country_filter, url=url, future_only=future_only)

    def run_spreadsheet_sync(self, content: bytes, filename: Optional[str] = None,
                             limit: int = 0) -> RunSummary:
        """Uploaded workbook import; limit 0 means the 5000-row cap."""
        adapter = SpreadsheetAdapter(self.geocoder, **self._adapter_kwargs())
        return self._execute(adapter, limit, None, content=content, filename=filename)

    def run_graph_or_scraper_sync(self, query: str, limit: int = 10,
                                  country_filter: Any = None) -> RunSummary:
        """Third-party scraper dataset for a search query."""
        self.settings.require('apify_token')
        if not (query or '').strip():
            raise ValidationError("query is required")
        adapter = ApifyDatasetAdapter(
            self.http, self.geocoder, token=self.settings.apify_token,
            actor_id=self.settings.apify_facebook_actor_id,
            timeout_secs=self.settings.apify_timeout_secs,
            **self._adapter_kwargs()
        )
        return self._execute(adapter, limit, country_filter, query=query.strip())

    def run_graph_page_sync(self, limit: int = 0, country_filter: Any = None,
                            max_pages: int = 10) -> RunSummary:
        """Events of the configured Facebook Page via the Graph API."""
        self.settings.require('facebook_page_id', 'facebook_page_access_token')
        adapter = GraphAPIAdapter(
            self.http, self.geocoder,
            page_id=self.settings.facebook_page_id,
            access_token=self.settings.facebook_page_access_token,
            graph_version=self.settings.facebook_graph_version,
            **self._adapter_kwargs()
        )
        return self._execute(adapter, limit, country_filter, max_pages=max_pages)

    def run_page_scrape_sync(self, urls: Iterable[str], limit: int = 0,
                             country_filter: Any = None) -> RunSummary:
        """Scrape a list of event page URLs."""
        adapter = PageScrapeAdapter(self.http, self.geocoder, **self._adapter_kwargs())
        return self._execute(adapter, limit, country_filter, urls=list(urls))

    def run_ndjson_import(self, lines: Union[str, bytes, Iterable[Union[str, bytes]]],
                          limit: int = 0) -> RunSummary:
        """Import newline-delimited JSON records."""
        if isinstance(lines, bytes):
            lines = lines.decode('utf-8')
        if isinstance(lines, str):
            lines = lines.splitlines()
        adapter = NDJSONFileAdapter(**self._adapter_kwargs())
        return self._execute(adapter, limit, None, lines=lines)

    def _execute(self, adapter: SourceAdapter, limit: int, country_filter: Any,
                 **params) -> RunSummary:
        source = adapter.name
        running = self.ledger.find_running_sync_run(
            source, stale_after=self.settings.sync_run_stale_after
        )
        if running is not None:
            logger.warning(f"Sync for {source} already running as {running.run_id}; skipping")
            return RunSummary(source=source, status=ALREADY_RUNNING, run_id=running.run_id)

        run = self.ledger.create_sync_run(source)
        start_time = time.time()
        logger.info(f"Sync {source} started as run {run.run_id} (limit={limit})")

        try:
            result = adapter.run(limit=limit or 0, country_filter=country_filter, **params)
        except Exception as e:
            logger.error(f"Sync {source} failed: {e}", exc_info=True)
            self.engine.fail_run(run.run_id, e)
            raise

        stats = result.stats
        reconciled = self.engine.reconcile(
            result.results, run.run_id, fetched=stats.scanned, skipped=stats.skipped_total
        )

        duration = time.time() - start_time
        logger.info(
            f"Sync {source} finished in {duration:.2f}s: fetched={stats.scanned} "
            f"accepted={stats.accepted} created={reconciled.created} "
            f"updated={reconciled.updated} skipped={stats.skipped_total}"
        )
        return RunSummary(
            source=source,
            status='success',
            run_id=run.run_id,
            fetched=stats.scanned,
            accepted=stats.accepted,
            created=reconciled.created,
            updated=reconciled.updated,
            skipped=stats.skipped_total,
            skip_breakdown=stats.breakdown(),
        )
