"""Environment-driven settings."""
import os
from dataclasses import dataclass
from datetime import timedelta
from typing import Mapping, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from processor.errors import ConfigurationError

TRUE_VALUES = ('1', 'true', 'yes', 'on')


def _flag(value: Optional[str]) -> bool:
    return (value or '').strip().lower() in TRUE_VALUES


def _int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from e


def _float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from e


@dataclass(frozen=True)
class Settings:
    events_table_name: str = 'map-events'
    sync_runs_table_name: str = 'map-events-sync-runs'
    geo_cache_table_name: str = 'map-events-geo-cache'
    log_level: str = 'INFO'
    timeout_seconds: int = 30
    parser_timezone: str = 'Europe/Warsaw'
    default_country: str = 'Poland'
    default_country_code: str = 'PL'
    geocoder_url: str = 'https://nominatim.openstreetmap.org'
    geocoder_user_agent: str = 'MapEvents/1.0'
    geocoder_min_interval_seconds: float = 1.1
    serpapi_key: Optional[str] = None
    search_max_scanned: int = 300
    search_fetch_pages: bool = False
    apify_token: Optional[str] = None
    apify_facebook_actor_id: str = 'apify~facebook-events-scraper'
    apify_timeout_secs: int = 240
    facebook_page_id: Optional[str] = None
    facebook_page_access_token: Optional[str] = None
    facebook_graph_version: str = 'v24.0'
    ics_url: Optional[str] = None
    ics_job_fetch_limit: int = 0
    ics_future_only: bool = False
    sync_run_stale_after_seconds: int = 900

    @property
    def sync_run_stale_after(self) -> Optional[timedelta]:
        """Age after which a "running" SyncRun counts as abandoned (0 disables)."""
        if self.sync_run_stale_after_seconds <= 0:
            return None
        return timedelta(seconds=self.sync_run_stale_after_seconds)

    @property
    def tz(self) -> ZoneInfo:
        try:
            return ZoneInfo(self.parser_timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ConfigurationError(f"Unknown PARSER_TIMEZONE {self.parser_timezone!r}") from e

    def require(self, *names: str) -> None:
        """
        Raise ConfigurationError naming every unset setting.

        Args:
            *names: Settings attribute names, e.g. "serpapi_key"
        """
        missing = [n.upper() for n in names if not getattr(self, n)]
        if missing:
            raise ConfigurationError(f"Missing {', '.join(missing)}")


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """Read settings from environment variables (or a given mapping)."""
    env = os.environ if env is None else env
    defaults = Settings()
    return Settings(
        events_table_name=env.get('EVENTS_TABLE_NAME', defaults.events_table_name),
        sync_runs_table_name=env.get('SYNC_RUNS_TABLE_NAME', defaults.sync_runs_table_name),
        geo_cache_table_name=env.get('GEO_CACHE_TABLE_NAME', defaults.geo_cache_table_name),
        log_level=env.get('LOG_LEVEL', defaults.log_level),
        timeout_seconds=_int(env, 'TIMEOUT_SECONDS', defaults.timeout_seconds),
        parser_timezone=env.get('PARSER_TIMEZONE', defaults.parser_timezone),
        default_country=env.get('DEFAULT_COUNTRY', defaults.default_country),
        default_country_code=env.get('DEFAULT_COUNTRY_CODE', defaults.default_country_code).upper(),
        geocoder_url=env.get('GEOCODER_URL', defaults.geocoder_url),
        geocoder_user_agent=env.get('GEOCODER_USER_AGENT', defaults.geocoder_user_agent),
        geocoder_min_interval_seconds=_float(env, 'GEOCODER_MIN_INTERVAL_SECONDS',
                                             defaults.geocoder_min_interval_seconds),
        serpapi_key=env.get('SERPAPI_KEY') or None,
        search_max_scanned=_int(env, 'SEARCH_MAX_SCANNED', defaults.search_max_scanned),
        search_fetch_pages=_flag(env.get('SEARCH_FETCH_PAGES')),
        apify_token=env.get('APIFY_TOKEN') or None,
        apify_facebook_actor_id=env.get('APIFY_FACEBOOK_ACTOR_ID') or defaults.apify_facebook_actor_id,
        apify_timeout_secs=min(295, max(30, _int(env, 'APIFY_TIMEOUT_SECS', defaults.apify_timeout_secs))),
        facebook_page_id=env.get('FACEBOOK_PAGE_ID') or None,
        facebook_page_access_token=env.get('FACEBOOK_PAGE_ACCESS_TOKEN') or None,
        facebook_graph_version=env.get('FACEBOOK_GRAPH_VERSION') or defaults.facebook_graph_version,
        ics_url=env.get('ICS_URL') or None,
        ics_job_fetch_limit=_int(env, 'ICS_JOB_FETCH_LIMIT', defaults.ics_job_fetch_limit),
        ics_future_only=_flag(env.get('ICS_FUTURE_ONLY')),
        sync_run_stale_after_seconds=_int(env, 'SYNC_RUN_STALE_AFTER_SECONDS',
                                          defaults.sync_run_stale_after_seconds),
    )
