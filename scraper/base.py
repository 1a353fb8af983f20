"""Common adapter contract: fetch raw items, map them, count skips."""
import logging
from abc import ABC, abstractmethod
from datetime import tzinfo
from typing import Any, Iterable, Iterator, List, Optional, Set

from processor.models import AdapterResult, AdapterStats, ExternalEvent, SkipReason
from processor.text_signals import DEFAULT_COUNTRY, DEFAULT_COUNTRY_CODE, DEFAULT_TZ

logger = logging.getLogger(__name__)

_EXHAUSTED = object()


class SkipItem(Exception):
    """Raised by map_item to drop one source item under a skip reason."""

    def __init__(self, reason: SkipReason, detail: str = ''):
        super().__init__(detail or reason.value)
        self.reason = SkipReason(reason)
        self.detail = detail


def normalize_country_filter(country_filter: Any) -> Set[str]:
    """Accept "PL", "pl,de", ["PL", "DE"] or None."""
    if not country_filter:
        return set()
    if isinstance(country_filter, str):
        country_filter = country_filter.split(',')
    return {c.strip().upper() for c in country_filter if c and c.strip()}


def apply_country_filter(results: List[ExternalEvent], stats: AdapterStats,
                         country_filter: Any) -> List[ExternalEvent]:
    """
    Drop events outside the allowed countries.

    Filtered items count as skipped under "filtered" and are removed
    from the accepted count.
    """
    wanted = normalize_country_filter(country_filter)
    if not wanted:
        return results

    kept = [e for e in results if e.country_code in wanted]
    excluded = len(results) - len(kept)
    for _ in range(excluded):
        stats.record_skip(SkipReason.FILTERED)
    stats.accepted -= excluded
    if excluded:
        logger.info(f"Country filter {sorted(wanted)} excluded {excluded} event(s)")
    return kept


class SourceAdapter(ABC):
    """
    Base class of every source adapter.

    Subclasses yield raw items from fetch_items and turn one item into
    an ExternalEvent in map_item, raising SkipItem when the item cannot
    be used. Fetch errors propagate and fail the whole run.
    """

    name = 'source'

    def __init__(self, geocoder=None, tz: tzinfo = DEFAULT_TZ,
                 default_country: str = DEFAULT_COUNTRY,
                 default_country_code: str = DEFAULT_COUNTRY_CODE):
        self.geocoder = geocoder
        self.tz = tz
        self.default_country = default_country
        self.default_country_code = default_country_code

    @abstractmethod
    def fetch_items(self, limit: int = 0, **params) -> Iterable[Any]:
        """Yield raw source items in source order."""

    @abstractmethod
    def map_item(self, item: Any, seen: Set[str]) -> ExternalEvent:
        """Map one raw item; raise SkipItem to drop it."""

    def should_stop(self, stats: AdapterStats, results: List[ExternalEvent], limit: int) -> bool:
        """Stop once `limit` items were scanned (0 = unlimited)."""
        return bool(limit) and stats.scanned >= limit

    def run(self, limit: int = 0, country_filter: Any = None, **params) -> AdapterResult:
        """
        Fetch and map items of one source invocation.

        Args:
            limit: Adapter-specific cap (0 = unlimited)
            country_filter: Optional allowed country codes
            **params: Source-specific fetch parameters

        Returns:
            AdapterResult with accepted events and statistics
        """
        stats = AdapterStats()
        results: List[ExternalEvent] = []
        seen: Set[str] = set()

        items: Iterator[Any] = iter(self.fetch_items(limit=limit, **params))
        # checked before resuming the generator so a met limit never fetches another page
        while not self.should_stop(stats, results, limit):
            item = next(items, _EXHAUSTED)
            if item is _EXHAUSTED:
                break
            stats.scanned += 1
            try:
                event = self.map_item(item, seen)
            except SkipItem as skip:
                stats.record_skip(skip.reason)
                logger.debug(f"[{self.name}] skipped item ({skip.reason.value}): {skip.detail}")
                continue
            except (ValueError, TypeError, KeyError) as e:
                stats.record_skip(SkipReason.MALFORMED)
                logger.warning(f"[{self.name}] malformed item: {e}")
                continue
            results.append(event)

        stats.accepted = len(results)
        results = apply_country_filter(results, stats, country_filter)

        logger.info(
            f"[{self.name}] scanned={stats.scanned} accepted={stats.accepted} "
            f"skipped={stats.skipped_total} breakdown={stats.breakdown()}"
        )
        return AdapterResult(results, stats)

    @staticmethod
    def claim(seen: Set[str], source_id: str) -> None:
        """Register a source id for this invocation; duplicates are skipped."""
        if source_id in seen:
            raise SkipItem(SkipReason.DUPLICATE, source_id)
        seen.add(source_id)
