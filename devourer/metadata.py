"""Metadata resolution against external catalogs.

`MetadataResolver.resolve()` runs one descriptor-driven lookup: build the
URL, fetch it through the provider's rate limiter, pick the best result and
map it into a `BookMetadata` or `MangaData` record. Lookups never raise for
network or payload problems; they return None and log a warning.

`resolve_book()` adds the book fallback chain on top of that.
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional, Union
from urllib.parse import quote

import requests
from pydantic import ValidationError

from .config import DevourerConfig
from .logging_config import get_logger
from .providers import ProviderDescriptor, ProviderRegistry, get_path
from .ratelimit import RateLimiterRegistry
from .records import BookMetadata, Identifier, MangaData, empty_book_metadata

logger = get_logger(__name__)

DEFAULT_BOOK_PROVIDER = "googlebooks"
FALLBACK_BOOK_PROVIDER = "openlibrary"
ISBN_COVER_URL = "https://covers.openlibrary.org/b/isbn/{isbn}-L.jpg"

_API_KEY = "{{apiKey}}"
_QUERY = "{{query}}"
# `name={{apiKey}}` plus the separator on its left, and the one on its right.
_API_KEY_PARAM = re.compile(r"([?&])[^?&#=]+=\{\{apiKey\}\}(&?)")

Record = Union[BookMetadata, MangaData]


def isbn_cover_url(isbn_13: str) -> str:
    return ISBN_COVER_URL.format(isbn=isbn_13)


def normalize_isbn(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    cleaned = re.sub(r"[\s-]", "", value)
    return cleaned or None


def _drop_api_key_param(template: str) -> str:
    # The rest of the template is left byte for byte as written.
    return _API_KEY_PARAM.sub(lambda m: m.group(1) if m.group(2) else "", template)


def build_url(template: str, query: str, api_key: Optional[str] = None) -> str:
    """Fill an endpoint template.

    A query parameter whose value is `{{apiKey}}` is dropped when no key is
    available, so keyless catalogs still get a valid request.

    Example:
        >>> build_url("https://x.test/s?q={{query}}&key={{apiKey}}", "a b")
        'https://x.test/s?q=a%20b'
    """
    if _API_KEY in template and not api_key:
        template = _drop_api_key_param(template)
    url = template.replace(_QUERY, quote(query, safe=""))
    if api_key:
        url = url.replace(_API_KEY, quote(api_key, safe=""))
    return url


def _matches(value: Any, query: str) -> bool:
    return isinstance(value, str) and value.strip().lower() == query


def filter_results(descriptor: ProviderDescriptor, results: List[Any]) -> List[Any]:
    """Drop results the descriptor's `exclude` rule rejects."""
    rule = descriptor.properties.exclude
    if rule is None:
        return results
    kept = []
    for item in results:
        value = get_path(item, rule.field)
        values = value if isinstance(value, list) else [value]
        if not any(v in rule.values for v in values):
            kept.append(item)
    return kept


def select_result(descriptor: ProviderDescriptor, results: List[Any], query: str) -> Any:
    """Pick the best result for `query`.

    Order: exact (case-insensitive) match on any alias in `search_array`,
    then on the `search_fallback` field, then the first result. Results
    missing a `match_requires` field never count as an exact match.
    """
    needle = query.strip().lower()
    props = descriptor.properties
    candidates = [
        item
        for item in results
        if all(get_path(item, f) for f in props.match_requires)
    ]

    if props.search_array is not None:
        for item in candidates:
            aliases = get_path(item, props.search_array.field) or []
            if not isinstance(aliases, list):
                aliases = [aliases]
            for alias in aliases:
                value = get_path(alias, props.search_array.key) if isinstance(alias, dict) else alias
                if _matches(value, needle):
                    return item

    if props.search_fallback:
        for item in candidates:
            if _matches(get_path(item, props.search_fallback), needle):
                return item

    return results[0]


def map_record(descriptor: ProviderDescriptor, item: Dict[str, Any]) -> Dict[str, Any]:
    """Apply the descriptor's parser rules and post-processing to one result."""
    record: Dict[str, Any] = {
        field: rule.apply(item) for field, rule in descriptor.parser.items()
    }

    for field, step in descriptor.post_processing.items():
        value = record.get(field)
        if step.action == "to_array":
            if value is None:
                record[field] = []
            elif not isinstance(value, list):
                record[field] = [value]
        elif step.action == "to_identifier":
            identifiers = list(record.get("identifiers") or [])
            values = value if isinstance(value, list) else [value]
            id_type = step.type or field.upper()
            for v in values:
                if v is None:
                    continue
                entry = {"type": id_type, "identifier": str(v)}
                if entry not in identifiers:
                    identifiers.append(entry)
            record["identifiers"] = identifiers
        elif step.action == "to_isbn":
            _split_isbns(record, field, value)
        elif step.action == "format":
            if value is not None:
                record[field] = step.template.format(value=value)

    return record


def _split_isbns(record: Dict[str, Any], field: str, value: Any) -> None:
    """Sort a mixed ISBN list into `isbn_13`/`isbn_10` by length.

    Only the first ISBN of each kind is kept; catalogs list every edition.
    """
    if field not in ("isbn_13", "isbn_10"):
        record.pop(field, None)
    values = value if isinstance(value, list) else [value]
    isbns = [normalize_isbn(str(v)) for v in values if v is not None]
    identifiers = list(record.get("identifiers") or [])
    for kind, length in (("isbn_13", 13), ("isbn_10", 10)):
        if isinstance(record.get(kind), str):
            continue
        record[kind] = next((i for i in isbns if i and len(i) == length), None)
        if record[kind]:
            identifiers.append({"type": kind.upper(), "identifier": record[kind]})
    record["identifiers"] = identifiers


def _finalize_book(record: BookMetadata, original_title: str) -> BookMetadata:
    record.original_title = original_title

    if not record.subtitle and record.title and ":" in record.title:
        title, _, subtitle = record.title.partition(":")
        record.title = title.strip()
        record.subtitle = subtitle.strip()

    if not record.isbn_13 or not record.isbn_10:
        for identifier in record.identifiers:
            if identifier.type == "ISBN_13" and not record.isbn_13:
                record.isbn_13 = identifier.identifier
            elif identifier.type == "ISBN_10" and not record.isbn_10:
                record.isbn_10 = identifier.identifier

    if not record.identifiers:
        identifiers = []
        if record.isbn_13:
            identifiers.append({"type": "ISBN_13", "identifier": record.isbn_13})
        if record.isbn_10:
            identifiers.append({"type": "ISBN_10", "identifier": record.isbn_10})
        record.identifiers = [Identifier(**i) for i in identifiers]

    return record


class MetadataResolver:
    def __init__(
        self,
        providers: ProviderRegistry,
        limiters: RateLimiterRegistry,
        timeout: float = 15.0,
        user_agent: str = "Devourer",
        google_books_api_key: str = "",
    ):
        self.providers = providers
        self.limiters = limiters
        self.timeout = timeout
        self.user_agent = user_agent
        self.google_books_api_key = google_books_api_key

    @classmethod
    def from_config(
        cls, config: DevourerConfig, limiters: Optional[RateLimiterRegistry] = None
    ) -> "MetadataResolver":
        return cls(
            ProviderRegistry(config.metadata.providers_dir),
            limiters or RateLimiterRegistry(),
            timeout=config.metadata.request_timeout,
            user_agent=config.metadata.user_agent,
            google_books_api_key=config.google_books_api_key,
        )

    def _get_json(self, url: str) -> Any:
        response = requests.get(
            url,
            headers={"User-Agent": self.user_agent, "Accept": "application/json"},
            timeout=self.timeout,
        )
        response.raise_for_status()
        return response.json()

    def fetch_results(
        self,
        descriptor: ProviderDescriptor,
        selector: str,
        query: str,
        api_key: Optional[str] = None,
    ) -> List[Any]:
        """Fetch and return the raw result list. Raises on network errors."""
        url = build_url(descriptor.endpoint(selector), query, api_key)
        payload = self.limiters.get(descriptor.key).call(self._get_json, url)
        results = get_path(payload, descriptor.properties.results_entity)
        # Lookups by id usually return a single object.
        if isinstance(results, dict):
            return [results]
        if not isinstance(results, list):
            return []
        return results

    def resolve(
        self,
        provider_key: str,
        selector: str,
        query: str,
        api_key: Optional[str] = None,
    ) -> Optional[Record]:
        """Look `query` up with one provider. None means "no metadata"."""
        descriptor = self.providers.get(provider_key)
        if descriptor is None:
            logger.warning(f"Unknown metadata provider: {provider_key}")
            return None
        if not query or not str(query).strip():
            return None

        try:
            results = self.fetch_results(descriptor, selector, str(query), api_key)
        except (requests.RequestException, ValueError) as exc:
            logger.warning(f"[{provider_key}] lookup failed for {query!r}: {exc}")
            return None

        results = filter_results(descriptor, results)
        if not results:
            logger.debug(f"[{provider_key}] no results for {query!r}")
            return None

        item = select_result(descriptor, results, str(query))
        if not isinstance(item, dict):
            return None

        record = map_record(descriptor, item)
        try:
            if descriptor.properties.library_type == "book":
                return BookMetadata.model_validate(record)
            return MangaData.model_validate(record)
        except ValidationError as exc:
            logger.warning(f"[{provider_key}] unusable result for {query!r}: {exc}")
            return None

    def resolve_book(
        self,
        query: str,
        isbn: Optional[str] = None,
        provider: Optional[str] = None,
        api_key: Optional[str] = None,
    ) -> BookMetadata:
        """Resolve a book, falling back to the open catalog.

        The library's provider (Google Books by default) is asked for an
        exact title first. Without a hit, Open Library is asked by ISBN-13,
        then ISBN-10, then by title with any parenthesised suffix removed.
        Always returns a record; an empty one carries only `original_title`
        and the known ISBN. A known ISBN also wins over the catalog's pick
        of edition, and fills the record when the catalog has none.
        """
        primary = provider or DEFAULT_BOOK_PROVIDER
        if primary == DEFAULT_BOOK_PROVIDER and not api_key:
            api_key = self.google_books_api_key or None

        record: Optional[BookMetadata] = None
        if primary != FALLBACK_BOOK_PROVIDER:
            found = self.resolve(primary, "title", query, api_key)
            if isinstance(found, BookMetadata) and found.title:
                record = found

        isbn = normalize_isbn(isbn)
        isbn_field = {13: "isbn_13", 10: "isbn_10"}.get(len(isbn or ""))
        by_isbn = False
        if record is None and isbn_field:
            record = self._fallback(isbn_field, isbn)
            by_isbn = record is not None
        if record is None:
            title = query.split("(")[0].strip() or query
            record = self._fallback("title", title)

        if record is None:
            logger.debug(f"No metadata found for {query!r}")
            record = empty_book_metadata(query)
            if isbn_field:
                setattr(record, isbn_field, isbn)
            return record

        if isbn_field and (by_isbn or not getattr(record, isbn_field)):
            setattr(record, isbn_field, isbn)
            known = Identifier(type=isbn_field.upper(), identifier=isbn)
            if record.identifiers and known not in record.identifiers:
                record.identifiers.insert(0, known)
        return _finalize_book(record, query)

    def _fallback(self, selector: str, query: str) -> Optional[BookMetadata]:
        found = self.resolve(FALLBACK_BOOK_PROVIDER, selector, query)
        if isinstance(found, BookMetadata) and found.title:
            return found
        return None

    def resolve_series(
        self,
        provider: Optional[str],
        title: str,
        api_key: Optional[str] = None,
        metadata_id: Optional[Union[int, str]] = None,
    ) -> Optional[MangaData]:
        """Resolve manga/comic series metadata, by id when one is known."""
        if not provider:
            return None
        if metadata_id:
            found = self.resolve(provider, "id", str(metadata_id), api_key)
        else:
            found = self.resolve(provider, "title", title, api_key)
        return found if isinstance(found, MangaData) else None
