"""Heuristic extraction of dates, times and places from event text.

Every heuristic is an independent matcher returning an optional result.
The matchers are combined through ordered tuples (DATE_MATCHERS,
TIME_RANGE_MATCHERS, SINGLE_TIME_MATCHERS, PLACE_MATCHERS, CITY_MATCHERS)
with first-match-wins, so precedence is the tuple order.

English and Polish texts are supported. Nothing here guesses: when a
signal is absent the result is None and the caller decides what to skip.
"""
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Callable, Optional, Tuple
from zoneinfo import ZoneInfo

from dateutil import parser as date_parser

logger = logging.getLogger(__name__)

DEFAULT_TZ = ZoneInfo('Europe/Warsaw')
DEFAULT_COUNTRY = 'Poland'
DEFAULT_COUNTRY_CODE = 'PL'

# Local noon keeps the calendar day stable under timezone conversion.
NOON = time(12, 0)


@dataclass(frozen=True)
class DateMatch:
    """A calendar day found in text, possibly with a time attached."""
    day: date
    start: Optional[time] = None
    exact_start: Optional[datetime] = None
    exact_end: Optional[datetime] = None


@dataclass(frozen=True)
class TimeRange:
    start: time
    end: Optional[time] = None


@dataclass(frozen=True)
class DateTimeRange:
    """Resolved start/end; start_at is None when no date was found."""
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None

    @property
    def found(self) -> bool:
        return self.start_at is not None


@dataclass(frozen=True)
class PlaceSignal:
    """Best-effort geocoding query with its separated parts."""
    place_query: str
    city: str
    country_code: str
    precision: str
    place: Optional[str] = None


DateMatcher = Callable[[str, Optional[int]], Optional[DateMatch]]
TimeMatcher = Callable[[str], Optional[TimeRange]]


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------

_DASHES = re.compile('[\u2010-\u2015\u2212]')

_STRUCTURED_START = re.compile(r'"?startDate"?\s*[:=]\s*"([^"]+)"', re.IGNORECASE)
_STRUCTURED_END = re.compile(r'"?endDate"?\s*[:=]\s*"([^"]+)"', re.IGNORECASE)
_TIME_TAG = re.compile(r'<time\b[^>]*\bdatetime="([^"]+)"', re.IGNORECASE)

_NUMERIC_DMY = re.compile(r'(?<!\d)(\d{1,2})([./-])(\d{1,2})\2(20\d{2})(?!\d)')
_NUMERIC_YMD = re.compile(r'(?<!\d)(20\d{2})-(\d{1,2})-(\d{1,2})(?!\d)')
_NUMERIC_DM = re.compile(r'(?<![\d.:/-])(\d{1,2})\.(\d{1,2})(?!\.?\d|:)')
_TIME_MARKER_BEFORE = re.compile(r'(?:godz\.?|godzina|\bo|\bod|\bdo|\bstart|\bat)\s*$', re.IGNORECASE)

POLISH_MONTHS = {
    'stycznia': 1, 'lutego': 2, 'marca': 3, 'kwietnia': 4, 'maja': 5,
    'czerwca': 6, 'lipca': 7, 'sierpnia': 8, 'września': 9, 'wrzesnia': 9,
    'października': 10, 'pazdziernika': 10, 'listopada': 11, 'grudnia': 12,
    'sty': 1, 'lut': 2, 'mar': 3, 'kwi': 4, 'maj': 5, 'cze': 6,
    'lip': 7, 'sie': 8, 'wrz': 9, 'paź': 10, 'paz': 10, 'lis': 11, 'gru': 12,
}

_POLISH_MONTH_ALT = '|'.join(sorted(POLISH_MONTHS, key=len, reverse=True))
_POLISH_DATE = re.compile(
    r'(?<!\d)(\d{1,2})\s+(' + _POLISH_MONTH_ALT + r')(?![^\W\d_])\.?'
    r'(?:\s+(20\d{2})(?!\d))?',
    re.IGNORECASE
)

ENGLISH_MONTHS = {
    'jan': 1, 'feb': 2, 'mar': 3, 'apr': 4, 'may': 5, 'jun': 6,
    'jul': 7, 'aug': 8, 'sep': 9, 'oct': 10, 'nov': 11, 'dec': 12,
}

_ENGLISH_DATE = re.compile(
    r'\b(Jan(?:uary)?|Feb(?:ruary)?|Mar(?:ch)?|Apr(?:il)?|May|Jun(?:e)?|'
    r'Jul(?:y)?|Aug(?:ust)?|Sep(?:t(?:ember)?)?|Oct(?:ober)?|Nov(?:ember)?|'
    r'Dec(?:ember)?)\.?\s+(\d{1,2})(?:st|nd|rd|th)?(?![\d:])'
    r'(?:,?\s*(20\d{2})(?!\d))?'
    r'(?:,?\s+at\s+(\d{1,2})(?::(\d{2}))?\s*([AP]M))?',
    re.IGNORECASE
)

_YEAR = re.compile(r'(?<!\d)(20\d{2})(?!\d)')


def _safe_date(year: int, month: int, day: int) -> Optional[date]:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def _safe_time(hour: int, minute: int) -> Optional[time]:
    if 0 <= hour <= 23 and 0 <= minute <= 59:
        return time(hour, minute)
    return None


def to_24h(hour: int, meridiem: str) -> int:
    """12-hour clock to 24-hour: PM adds 12 unless 12, 12 AM is 0."""
    meridiem = meridiem.upper()
    if meridiem == 'PM' and hour != 12:
        return hour + 12
    if meridiem == 'AM' and hour == 12:
        return 0
    return hour


def extract_year_hint(text: Optional[str]) -> Optional[int]:
    """First four-digit 20xx year in a query string."""
    if not text:
        return None
    m = _YEAR.search(text)
    return int(m.group(1)) if m else None


def _parse_structured(value: str) -> Tuple[Optional[datetime], bool]:
    value = value.strip()
    try:
        parsed = date_parser.isoparse(value)
    except (ValueError, OverflowError):
        return None, False
    date_only = len(value) <= 10
    return parsed, date_only


def match_structured_date(text: str, year_hint: Optional[int] = None) -> Optional[DateMatch]:
    """Machine-readable dates: JSON-LD startDate/endDate or <time datetime>."""
    m = _STRUCTURED_START.search(text) or _TIME_TAG.search(text)
    if not m:
        return None
    start, date_only = _parse_structured(m.group(1))
    if start is None:
        return None
    if date_only:
        return DateMatch(day=start.date())

    end = None
    em = _STRUCTURED_END.search(text)
    if em:
        end, end_date_only = _parse_structured(em.group(1))
        if end_date_only:
            end = None
    return DateMatch(day=start.date(), exact_start=start, exact_end=end)


def match_numeric_date(text: str, year_hint: Optional[int] = None) -> Optional[DateMatch]:
    """dd.mm.yyyy, dd-mm-yyyy, dd/mm/yyyy or yyyy-mm-dd; earliest wins."""
    candidates = []
    for m in _NUMERIC_DMY.finditer(text):
        day = _safe_date(int(m.group(4)), int(m.group(3)), int(m.group(1)))
        if day:
            candidates.append((m.start(), day))
            break
    for m in _NUMERIC_YMD.finditer(text):
        day = _safe_date(int(m.group(1)), int(m.group(2)), int(m.group(3)))
        if day:
            candidates.append((m.start(), day))
            break
    if not candidates:
        return None
    return DateMatch(day=min(candidates)[1])


def match_numeric_date_with_hint(text: str, year_hint: Optional[int] = None) -> Optional[DateMatch]:
    """dd.mm without a year, completed from the year hint."""
    if not year_hint:
        return None
    for m in _NUMERIC_DM.finditer(text):
        if _TIME_MARKER_BEFORE.search(text[:m.start()]):
            continue
        day = _safe_date(year_hint, int(m.group(2)), int(m.group(1)))
        if day:
            return DateMatch(day=day)
    return None


def match_polish_date(text: str, year_hint: Optional[int] = None) -> Optional[DateMatch]:
    """"15 marca 2026", "3 lis." with the year falling back to the hint."""
    for m in _POLISH_DATE.finditer(text):
        year = int(m.group(3)) if m.group(3) else year_hint
        if not year:
            continue
        day = _safe_date(year, POLISH_MONTHS[m.group(2).lower()], int(m.group(1)))
        if day:
            return DateMatch(day=day)
    return None


def match_english_date(text: str, year_hint: Optional[int] = None) -> Optional[DateMatch]:
    """"March 20, 2026" with an optional "at 7:30 PM" suffix."""
    for m in _ENGLISH_DATE.finditer(text):
        year = int(m.group(3)) if m.group(3) else year_hint
        if not year:
            continue
        day = _safe_date(year, ENGLISH_MONTHS[m.group(1)[:3].lower()], int(m.group(2)))
        if not day:
            continue
        start = None
        if m.group(4):
            start = _safe_time(to_24h(int(m.group(4)), m.group(6)), int(m.group(5) or 0))
        return DateMatch(day=day, start=start)
    return None


DATE_MATCHERS: Tuple[DateMatcher, ...] = (
    match_structured_date,
    match_numeric_date,
    match_numeric_date_with_hint,
    match_polish_date,
    match_english_date,
)


def find_date(text: str, year_hint: Optional[int] = None) -> Optional[DateMatch]:
    for matcher in DATE_MATCHERS:
        found = matcher(text, year_hint)
        if found:
            logger.debug(f"Date matched by {matcher.__name__}: {found.day}")
            return found
    return None


# ---------------------------------------------------------------------------
# Times
# ---------------------------------------------------------------------------

_HM = r'(\d{1,2})[:.](\d{2})'

_RANGE_OD_DO = re.compile(r'\bod\s+(?:godz\.?\s*)?' + _HM + r'\s+do\s+(?:godz\.?\s*)?' + _HM + r'(?!\d)',
                          re.IGNORECASE)
_RANGE_W_GODZ = re.compile(r'\bw\s+godz(?:inach|\.)?\s*' + _HM + r'\s*-\s*' + _HM + r'(?!\d)',
                           re.IGNORECASE)
_RANGE_MERIDIEM = re.compile(
    r'(?<![\d:])(\d{1,2}):(\d{2})\s*([AP]M)\s*-\s*(\d{1,2}):(\d{2})\s*([AP]M)\b',
    re.IGNORECASE
)
_RANGE_PLAIN = re.compile(r'(?<![\d.:/])' + _HM + r'\s*-\s*' + _HM + r'(?![\d]|[.:/]\d)')

_SINGLE_GODZ = re.compile(r'\bgodz(?:ina|\.)?\s*' + _HM + r'(?!\d)', re.IGNORECASE)
_SINGLE_O = re.compile(r'\bo\s+' + _HM + r'(?!\d)', re.IGNORECASE)
_SINGLE_START = re.compile(r'\bstart\w*\s*:?\s*' + _HM + r'(?!\d)', re.IGNORECASE)
_SINGLE_AT_MERIDIEM = re.compile(r'\bat\s*(\d{1,2})(?::(\d{2}))?\s*([AP]M)\b', re.IGNORECASE)
_SINGLE_BARE = re.compile(r'(?<![\d.:])(\d{1,2}):(\d{2})(?![\d:])')


def _first_range(pattern, text: str) -> Optional[TimeRange]:
    for m in pattern.finditer(text):
        start = _safe_time(int(m.group(1)), int(m.group(2)))
        end = _safe_time(int(m.group(3)), int(m.group(4)))
        if start and end:
            return TimeRange(start, end)
    return None


def _first_single(pattern, text: str) -> Optional[TimeRange]:
    for m in pattern.finditer(text):
        start = _safe_time(int(m.group(1)), int(m.group(2)))
        if start:
            return TimeRange(start)
    return None


def match_od_do_range(text: str) -> Optional[TimeRange]:
    return _first_range(_RANGE_OD_DO, text)


def match_w_godz_range(text: str) -> Optional[TimeRange]:
    return _first_range(_RANGE_W_GODZ, text)


def match_meridiem_range(text: str) -> Optional[TimeRange]:
    for m in _RANGE_MERIDIEM.finditer(text):
        start = _safe_time(to_24h(int(m.group(1)), m.group(3)), int(m.group(2)))
        end = _safe_time(to_24h(int(m.group(4)), m.group(6)), int(m.group(5)))
        if start and end:
            return TimeRange(start, end)
    return None


def match_plain_range(text: str) -> Optional[TimeRange]:
    return _first_range(_RANGE_PLAIN, text)


def match_godz_time(text: str) -> Optional[TimeRange]:
    return _first_single(_SINGLE_GODZ, text)


def match_o_time(text: str) -> Optional[TimeRange]:
    return _first_single(_SINGLE_O, text)


def match_start_time(text: str) -> Optional[TimeRange]:
    return _first_single(_SINGLE_START, text)


def match_at_meridiem_time(text: str) -> Optional[TimeRange]:
    for m in _SINGLE_AT_MERIDIEM.finditer(text):
        start = _safe_time(to_24h(int(m.group(1)), m.group(3)), int(m.group(2) or 0))
        if start:
            return TimeRange(start)
    return None


def match_bare_time(text: str) -> Optional[TimeRange]:
    return _first_single(_SINGLE_BARE, text)


TIME_RANGE_MATCHERS: Tuple[TimeMatcher, ...] = (
    match_od_do_range,
    match_w_godz_range,
    match_meridiem_range,
    match_plain_range,
)

SINGLE_TIME_MATCHERS: Tuple[TimeMatcher, ...] = (
    match_godz_time,
    match_o_time,
    match_start_time,
    match_at_meridiem_time,
    match_bare_time,
)


def find_time_range(text: str) -> Optional[TimeRange]:
    for matcher in TIME_RANGE_MATCHERS:
        found = matcher(text)
        if found:
            return found
    return None


def find_single_time(text: str) -> Optional[TimeRange]:
    for matcher in SINGLE_TIME_MATCHERS:
        found = matcher(text)
        if found:
            return found
    return None


def _localize(value: datetime, tz: tzinfo) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=tz)
    return value


def extract_start_end(text: Optional[str], year_hint: Optional[int] = None,
                      tz: tzinfo = DEFAULT_TZ) -> DateTimeRange:
    """
    Resolve start/end timestamps from free text.

    Args:
        text: Title, snippet or description text (English or Polish)
        year_hint: Year used for dates written without one
        tz: Working timezone for wall-clock times

    Returns:
        DateTimeRange; start_at is None when no date could be parsed
    """
    t = _DASHES.sub('-', text or '')
    found = find_date(t, year_hint)
    if not found:
        return DateTimeRange()

    if found.exact_start is not None:
        start_at = _localize(found.exact_start, tz)
        end_at = _localize(found.exact_end, tz) if found.exact_end else None
        if end_at is not None and end_at <= start_at:
            end_at = None
        return DateTimeRange(start_at, end_at)

    span = find_time_range(t)
    if span is None and found.start is not None:
        span = TimeRange(found.start)
    if span is None:
        span = find_single_time(t)
    if span is None:
        return DateTimeRange(datetime.combine(found.day, NOON, tzinfo=tz), None)

    start_at = datetime.combine(found.day, span.start, tzinfo=tz)
    end_at = None
    if span.end is not None:
        end_at = datetime.combine(found.day, span.end, tzinfo=tz)
        if end_at <= start_at:
            # overnight range such as 22:00-02:00
            end_at += timedelta(days=1)
    return DateTimeRange(start_at, end_at)


# ---------------------------------------------------------------------------
# Places
# ---------------------------------------------------------------------------

_UI_CHROME = re.compile(r'\b(?:Public|Next week|This week|CEST|CET|UTC|GMT)\b', re.IGNORECASE)
_MERIDIEM_RANGE_TEXT = re.compile(r'\b\d{1,2}:\d{2}\s*(?:AM|PM)\s*-\s*\d{1,2}:\d{2}\s*(?:AM|PM)\b',
                                  re.IGNORECASE)
_AT_TIME_TEXT = re.compile(r'\bat\s*\d{1,2}(?::\d{2})?\s*(?:AM|PM)\b', re.IGNORECASE)
_WEEKDAYS = re.compile(
    r'\b(?:Monday|Tuesday|Wednesday|Thursday|Friday|Saturday|Sunday|'
    r'poniedziałek|wtorek|środa|czwartek|piątek|sobota|niedziela),?(?!\w)',
    re.IGNORECASE
)

_ADDRESS = re.compile(
    r'\b(?:ul\.|al\.|aleja|alei|pl\.|plac|placu|rynek)\s*'
    r"[^\W\d_](?:[^\W\d_]|[.'\- ]){1,60}?\s+\d+[A-Za-z]?(?:/\d+)?\b",
    re.IGNORECASE
)

VENUE_KEYWORDS = (
    'Dom Kultury', 'Klubokawiarnia', 'Filharmonia', 'Filharmonii', 'Teatr',
    'Centrum', 'Klub', 'Sala', 'Muzeum', 'Galeria', 'Kino', 'Opera', 'Hala',
    'Arena', 'Stadion', 'Orkiestra', 'Scena',
)

_VENUE = re.compile(
    r'(?:\b(?:' + '|'.join(re.escape(k) for k in VENUE_KEYWORDS) + r')\b'
    r'|(?-i:\b(?:MOK|ROK)\b))[^.;\n]{0,80}',
    re.IGNORECASE
)
_TRAILING_DATE = re.compile(r'[\s,]+\d{1,2}(?:[.:/].*)?$')

_LOOKS_LIKE_DATE = re.compile(
    r'\b(?:20\d{2}|jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec|january|february|march|april|'
    r'june|july|august|september|october|november|december)\b',
    re.IGNORECASE
)
_LOOKS_LIKE_TIME = re.compile(r'\b\d{1,2}:\d{2}\b')

_QUERY_HINT = re.compile(r'\(([^)]+)\)')
_TITLE_PREFIX = re.compile(r"^\s*([^\W\d_][^\W\d_'\-]*(?:[ \-][^\W\d_]+){0,3})\s*:")
_CITY_PHRASE = re.compile(r'\b(?:[wW]e?|[iI]n)\s+([A-ZĄĆĘŁŃÓŚŹŻ][a-ząćęłńóśźż\-]{2,})')
_CITY_BEFORE_COUNTRY = re.compile(r',\s*([^\W\d_][^\W\d_\- ]{2,}?)\s*,\s*(?:Poland|Polska|PL)\b',
                                  re.IGNORECASE)

COUNTRY_NAMES = {
    'PL': ('Poland', 'Polska'),
    'DE': ('Germany', 'Deutschland', 'Niemcy'),
    'CZ': ('Czechia', 'Czech Republic', 'Czechy'),
    'SK': ('Slovakia', 'Słowacja'),
    'LT': ('Lithuania', 'Litwa'),
    'UA': ('Ukraine', 'Ukraina'),
    'AT': ('Austria',),
    'GB': ('United Kingdom', 'Wielka Brytania'),
}

_COUNTRY_PATTERNS = [
    (code, re.compile(r'\b(?:' + '|'.join(re.escape(n) for n in names) + r')\b', re.IGNORECASE))
    for code, names in COUNTRY_NAMES.items()
]


def sanitize_snippet(text: str) -> str:
    """
    Remove UI chrome and time mentions that produce false place matches.

    Dates are kept; weekday names, timezone abbreviations, "Public" and
    "Next week" labels and AM/PM times are dropped.
    """
    t = _DASHES.sub('-', text or '')
    t = re.sub(r'\s+', ' ', t).strip()
    t = _UI_CHROME.sub('', t)
    t = _MERIDIEM_RANGE_TEXT.sub('', t)
    t = _AT_TIME_TEXT.sub('', t)
    t = _WEEKDAYS.sub('', t)
    t = re.sub(r'\s+\.\s+', '. ', t)
    t = re.sub(r'\s+,\s+', ', ', t)
    t = re.sub(r'\s+;\s+', ' ; ', t)
    return re.sub(r'\s{2,}', ' ', t).strip()


def looks_like_date_or_time(value: str) -> bool:
    return bool(_LOOKS_LIKE_DATE.search(value) or _LOOKS_LIKE_TIME.search(value))


def match_address(text: str) -> Optional[str]:
    """Polish street address: ul./al./pl./rynek + name + house number."""
    m = _ADDRESS.search(text)
    return m.group(0).strip() if m else None


def match_venue(text: str) -> Optional[str]:
    """Segment starting at a venue keyword such as Teatr or Filharmonia."""
    for m in _VENUE.finditer(text):
        segment = _TRAILING_DATE.sub('', m.group(0))
        segment = segment.strip(' ,-:')
        if len(segment) < 4 or looks_like_date_or_time(segment):
            continue
        return segment
    return None


PLACE_MATCHERS: Tuple[Tuple[str, Callable[[str], Optional[str]]], ...] = (
    ('address', match_address),
    ('venue', match_venue),
)


def city_from_query_hint(query: Optional[str] = None, title: Optional[str] = None,
                         snippet: Optional[str] = None) -> Optional[str]:
    """"site:facebook.com/events (Radom)" -> "Radom"."""
    if not query:
        return None
    m = _QUERY_HINT.search(query)
    if not m:
        return None
    city = re.split(r'\s+OR\s+', m.group(1).strip())[0].strip(' "\'')
    return city if len(city) >= 3 else None


def city_from_title_prefix(query: Optional[str] = None, title: Optional[str] = None,
                           snippet: Optional[str] = None) -> Optional[str]:
    """"Radom: Jazz Night" -> "Radom"."""
    if not title:
        return None
    m = _TITLE_PREFIX.match(title)
    if not m:
        return None
    city = m.group(1).strip()
    return city if 3 <= len(city) <= 40 else None


def city_from_phrase(query: Optional[str] = None, title: Optional[str] = None,
                     snippet: Optional[str] = None) -> Optional[str]:
    """"koncert w Radomiu" / "live in Warsaw"."""
    m = _CITY_PHRASE.search(snippet or '')
    return m.group(1) if m else None


def city_before_country(query: Optional[str] = None, title: Optional[str] = None,
                        snippet: Optional[str] = None) -> Optional[str]:
    """"..., Radom, Poland"."""
    m = _CITY_BEFORE_COUNTRY.search(snippet or '')
    return m.group(1).strip() if m else None


CITY_MATCHERS = (
    city_from_query_hint,
    city_from_title_prefix,
    city_from_phrase,
    city_before_country,
)


def find_city(query: Optional[str] = None, title: Optional[str] = None,
              snippet: Optional[str] = None) -> Optional[str]:
    for matcher in CITY_MATCHERS:
        city = matcher(query, title, snippet)
        if city:
            return city
    return None


def country_code_from_text(text: Optional[str]) -> Optional[str]:
    """ISO code of the first country name mentioned in text."""
    if not text:
        return None
    hits = []
    for code, pattern in _COUNTRY_PATTERNS:
        m = pattern.search(text)
        if m:
            hits.append((m.start(), code))
    return min(hits)[1] if hits else None


def country_code_from_value(value: Optional[str]) -> Optional[str]:
    """Accept either a 2-letter code or a known country name."""
    value = (value or '').strip()
    if len(value) == 2 and value.isalpha():
        return value.upper()
    for code, names in COUNTRY_NAMES.items():
        if value.lower() in (n.lower() for n in names):
            return code
    return None


def country_name(code: str, default_code: str = DEFAULT_COUNTRY_CODE,
                 default_country: str = DEFAULT_COUNTRY) -> str:
    if code == default_code:
        return default_country
    names = COUNTRY_NAMES.get(code)
    return names[0] if names else code


def extract_place(title: Optional[str] = None, snippet: Optional[str] = None,
                  query: Optional[str] = None, default_country: str = DEFAULT_COUNTRY,
                  default_country_code: str = DEFAULT_COUNTRY_CODE) -> PlaceSignal:
    """
    Build a geocoding query from title/snippet text.

    Precedence: street address, venue keyword, city hint, country alone.

    Args:
        title: Result or event title
        snippet: Result snippet / description
        query: Search query; a parenthesized part is read as a city hint
        default_country: Country name appended to queries
        default_country_code: Code used when the text names no country

    Returns:
        PlaceSignal with place_query, city ("Unknown" if unresolved),
        country_code and the precision level that produced it
    """
    raw = f"{title or ''}\n{snippet or ''}".strip()
    cleaned = sanitize_snippet(raw)

    city = find_city(query, title, snippet) or 'Unknown'
    code = country_code_from_text(raw) or default_country_code
    country = country_name(code, default_country_code, default_country)

    for precision, matcher in PLACE_MATCHERS:
        head = matcher(cleaned)
        if not head:
            continue
        parts = [head]
        if city != 'Unknown' and city.lower() not in head.lower():
            parts.append(city)
        parts.append(country)
        return PlaceSignal(', '.join(parts), city, code, precision, head)

    if city != 'Unknown':
        return PlaceSignal(f"{city}, {country}", city, code, 'city')

    return PlaceSignal(country, 'Unknown', code, 'country')
