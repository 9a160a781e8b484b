import json
from unittest.mock import Mock

import pytest
import requests
from pydantic import ValidationError

from devourer import metadata
from devourer.config import DEFAULT_PROVIDERS_DIR
from devourer.metadata import MetadataResolver, build_url
from devourer.providers import (
    DirectField,
    NestedProjection,
    ProviderDescriptor,
    ProviderRegistry,
    StaticValue,
    get_path,
)
from devourer.ratelimit import RateLimiterRegistry
from devourer.records import BookMetadata, MangaData


JIKAN_PAYLOAD = {
    "data": [
        {
            "mal_id": 1,
            "title": "Berserk: The Prototype",
            "titles": [{"type": "Default", "title": "Berserk: The Prototype"}],
        },
        {
            "mal_id": 2,
            "title": "Berserk",
            "titles": [
                {"type": "Default", "title": "Berserk"},
                {"type": "Japanese", "title": "ベルセルク"},
            ],
            "genres": [{"name": "Action"}, {"name": "Drama"}],
            "authors": [{"name": "Miura, Kentarou"}],
            "images": {"webp": {"large_image_url": "https://cdn.test/2.webp"}},
            "score": 9.47,
            "volumes": None,
            "published": {"from": "1989-08-25T00:00:00+00:00", "to": None},
        },
    ]
}


def _response(payload):
    response = Mock()
    response.json.return_value = payload
    return response


def _fake_get(routes):
    """requests.get stand-in: the first route whose prefix matches wins."""
    calls = []

    def fake(url, headers=None, timeout=None):
        calls.append(url)
        for prefix, payload in routes.items():
            if url.startswith(prefix):
                if isinstance(payload, Exception):
                    raise payload
                return _response(payload)
        return _response({})

    fake.calls = calls
    return fake


def _resolver(providers_dir=DEFAULT_PROVIDERS_DIR, api_key=""):
    return MetadataResolver(
        ProviderRegistry(providers_dir),
        RateLimiterRegistry(min_interval=0),
        google_books_api_key=api_key,
    )


# --- Descriptors ---


def test_parser_rules_become_tagged_models():
    descriptor = ProviderDescriptor.model_validate(
        {
            "key": "x",
            "type": "metadata",
            "properties": {"library_type": "manga"},
            "endpoints": {"title": "https://x.test/?q={{query}}"},
            "parser": {
                "title": "title",
                "genres": {"key": "genres", "value": "name"},
                "metadata_provider": {"key": "static", "value": "x"},
            },
        }
    )
    assert isinstance(descriptor.parser["title"], DirectField)
    assert isinstance(descriptor.parser["genres"], NestedProjection)
    assert isinstance(descriptor.parser["metadata_provider"], StaticValue)


def test_malformed_rule_is_rejected():
    with pytest.raises(ValidationError):
        ProviderDescriptor.model_validate(
            {
                "key": "x",
                "properties": {"library_type": "book"},
                "endpoints": {},
                "parser": {"title": {"key": "only-a-key"}},
            }
        )


def test_missing_endpoint_raises():
    descriptor = _resolver().providers.get("openlibrary")
    with pytest.raises(ValueError):
        descriptor.endpoint("id")


def test_shipped_descriptors_load():
    registry = ProviderRegistry(DEFAULT_PROVIDERS_DIR)
    assert {"googlebooks", "openlibrary", "myanimelist", "comicvine", "metron"} <= set(
        registry.all()
    )
    manga = {d.key for d in registry.for_library_type("manga")}
    assert {"myanimelist", "comicvine", "metron"} <= manga


def test_registry_skips_invalid_and_foreign_files(tmp_path):
    (tmp_path / "nested").mkdir()
    (tmp_path / "broken.json").write_text("{not json")
    (tmp_path / "theme.json").write_text(json.dumps({"key": "t", "type": "theme"}))
    (tmp_path / "nested" / "bad.json").write_text(
        json.dumps({"key": "bad", "type": "metadata", "properties": {}})
    )
    (tmp_path / "nested" / "good.json").write_text(
        json.dumps(
            {
                "key": "good",
                "type": "metadata",
                "properties": {"library_type": "book"},
                "endpoints": {"title": "https://good.test/?q={{query}}"},
                "parser": {"title": "name"},
            }
        )
    )

    registry = ProviderRegistry(tmp_path)
    assert list(registry.all()) == ["good"]


def test_get_path():
    data = {"a": {"b": [{"c": 1}]}}
    assert get_path(data, "a.b.0.c") == 1
    assert get_path(data, "a.x.c") is None
    assert get_path(data, "a.b.5.c") is None


def test_build_url_drops_missing_api_key():
    template = "https://x.test/s?q={{query}}&key={{apiKey}}"
    assert build_url(template, "a b") == "https://x.test/s?q=a%20b"
    assert build_url(template, "a b", "k1") == "https://x.test/s?q=a%20b&key=k1"


# --- Resolution ---


def test_resolve_series_maps_selected_result(monkeypatch):
    fake = _fake_get({"https://api.jikan.moe/": JIKAN_PAYLOAD})
    monkeypatch.setattr(metadata.requests, "get", fake)

    manga = _resolver().resolve_series("myanimelist", "berserk")

    assert isinstance(manga, MangaData)
    assert manga.metadata_id == 2
    assert manga.metadata_provider == "myanimelist"
    assert manga.genres == ["Action", "Drama"]
    assert manga.authors == ["Miura, Kentarou"]
    assert manga.cover_image == "https://cdn.test/2.webp"
    assert manga.titles == ["Berserk", "ベルセルク"]
    assert manga.total_volumes is None
    assert fake.calls == ["https://api.jikan.moe/v4/manga?q=berserk&limit=10"]


def test_alias_match_wins(monkeypatch):
    monkeypatch.setattr(
        metadata.requests, "get", _fake_get({"https://api.jikan.moe/": JIKAN_PAYLOAD})
    )
    manga = _resolver().resolve("myanimelist", "title", "ベルセルク")
    assert manga.metadata_id == 2


def test_first_result_when_nothing_matches(monkeypatch):
    monkeypatch.setattr(
        metadata.requests, "get", _fake_get({"https://api.jikan.moe/": JIKAN_PAYLOAD})
    )
    manga = _resolver().resolve("myanimelist", "title", "Vagabond")
    assert manga.metadata_id == 1


def test_lookup_by_id(monkeypatch):
    fake = _fake_get({"https://api.jikan.moe/": {"data": JIKAN_PAYLOAD["data"][1]}})
    monkeypatch.setattr(metadata.requests, "get", fake)

    manga = _resolver().resolve_series("myanimelist", "ignored", metadata_id=2)

    assert manga.title == "Berserk"
    assert fake.calls == ["https://api.jikan.moe/v4/manga/2"]


def test_unknown_provider_returns_none():
    assert _resolver().resolve("nope", "title", "Berserk") is None


def test_network_error_returns_none(monkeypatch):
    monkeypatch.setattr(
        metadata.requests,
        "get",
        _fake_get({"https://api.jikan.moe/": requests.ConnectionError("offline")}),
    )
    assert _resolver().resolve_series("myanimelist", "Berserk") is None


def test_http_error_returns_none(monkeypatch):
    response = Mock()
    response.raise_for_status.side_effect = requests.HTTPError("429 Too Many Requests")
    monkeypatch.setattr(metadata.requests, "get", Mock(return_value=response))
    assert _resolver().resolve_series("myanimelist", "Berserk") is None


def test_empty_results_return_none(monkeypatch):
    monkeypatch.setattr(
        metadata.requests, "get", _fake_get({"https://api.jikan.moe/": {"data": []}})
    )
    assert _resolver().resolve_series("myanimelist", "Berserk") is None


# --- Books ---


def test_book_from_google_splits_subtitle(monkeypatch):
    payload = {
        "items": [
            {
                "id": "g1",
                "volumeInfo": {
                    "title": "Dune: Deluxe Edition",
                    "authors": ["Frank Herbert"],
                    "publisher": "Ace",
                    "publishedDate": "1990",
                    "pageCount": "604",
                    "industryIdentifiers": [
                        {"type": "ISBN_13", "identifier": "9780441172719"},
                        {"type": "ISBN_10", "identifier": "0441172717"},
                    ],
                },
            }
        ]
    }
    fake = _fake_get({"https://www.googleapis.com/": payload})
    monkeypatch.setattr(metadata.requests, "get", fake)

    book = _resolver().resolve_book("Dune")

    assert book.title == "Dune"
    assert book.subtitle == "Deluxe Edition"
    assert book.original_title == "Dune"
    assert book.publishers == ["Ace"]
    assert book.number_of_pages == 604
    assert book.isbn_13 == "9780441172719"
    assert book.isbn_10 == "0441172717"
    assert book.provider == "googlebooks"
    # No key configured, so the key parameter is left out.
    assert "key=" not in fake.calls[0]


def test_book_falls_back_to_open_library_by_isbn(monkeypatch):
    fake = _fake_get(
        {
            "https://www.googleapis.com/": {"totalItems": 0},
            "https://openlibrary.org/search.json?isbn=9780441172719": {
                "docs": [
                    {
                        "title": "Dune",
                        "author_name": ["Frank Herbert"],
                        "first_publish_year": 1965,
                        "key": "/works/OL893415W",
                    }
                ]
            },
        }
    )
    monkeypatch.setattr(metadata.requests, "get", fake)

    book = _resolver().resolve_book("Dune (1965)", isbn="978-0-441-17271-9")

    assert book.title == "Dune"
    assert book.publish_date == "1965"
    assert book.work_key == "/works/OL893415W"
    assert book.provider == "openlibrary"
    assert book.original_title == "Dune (1965)"
    assert len(fake.calls) == 2
    assert fake.calls[1] == "https://openlibrary.org/search.json?isbn=9780441172719"


def test_book_title_fallback_strips_parenthesised_suffix(monkeypatch):
    fake = _fake_get(
        {
            "https://www.googleapis.com/": {"items": []},
            "https://openlibrary.org/search.json?title=Dune&": {"docs": [{"title": "Dune"}]},
        }
    )
    monkeypatch.setattr(metadata.requests, "get", fake)

    book = _resolver().resolve_book("Dune (Retail)")

    assert book.title == "Dune"
    assert fake.calls[-1] == "https://openlibrary.org/search.json?title=Dune&limit=10"


def test_book_without_any_match_gets_empty_record(monkeypatch):
    monkeypatch.setattr(metadata.requests, "get", _fake_get({}))
    book = _resolver().resolve_book("Unknown Thing")
    assert isinstance(book, BookMetadata)
    assert book.title is None
    assert book.original_title == "Unknown Thing"


def test_isbn_fields_promoted_to_identifiers(tmp_path, monkeypatch):
    (tmp_path / "isbnbooks.json").write_text(
        json.dumps(
            {
                "key": "isbnbooks",
                "type": "metadata",
                "properties": {"library_type": "book", "results_entity": "results"},
                "endpoints": {"title": "https://isbn.test/?q={{query}}"},
                "parser": {"title": "name", "isbn_13": "isbn13", "isbn_10": "isbn10"},
            }
        )
    )
    monkeypatch.setattr(
        metadata.requests,
        "get",
        _fake_get(
            {
                "https://isbn.test/": {
                    "results": [
                        {"name": "Emma", "isbn13": "9780141439587", "isbn10": "0141439580"}
                    ]
                }
            }
        ),
    )

    book = _resolver(tmp_path).resolve_book("Emma", provider="isbnbooks")

    assert [(i.type, i.identifier) for i in book.identifiers] == [
        ("ISBN_13", "9780141439587"),
        ("ISBN_10", "0141439580"),
    ]


def test_to_identifier_post_processing(tmp_path, monkeypatch):
    (tmp_path / "oclc.json").write_text(
        json.dumps(
            {
                "key": "oclc",
                "type": "metadata",
                "properties": {"library_type": "book", "results_entity": "results"},
                "endpoints": {"title": "https://oclc.test/?q={{query}}"},
                "parser": {"title": "name", "oclc_numbers": "oclc", "isbn13": "isbn"},
                "postProcessing": {
                    "oclc_numbers": {"action": "to_array"},
                    "isbn13": {"action": "to_identifier", "type": "ISBN_13"},
                },
            }
        )
    )
    monkeypatch.setattr(
        metadata.requests,
        "get",
        _fake_get(
            {
                "https://oclc.test/": {
                    "results": [{"name": "Emma", "oclc": 12345, "isbn": "9780141439587"}]
                }
            }
        ),
    )

    record = _resolver(tmp_path).resolve("oclc", "title", "Emma")
    assert record.oclc_numbers == ["12345"]
    assert [(i.type, i.identifier) for i in record.identifiers] == [
        ("ISBN_13", "9780141439587")
    ]


def test_build_url_leaves_encoded_template_alone():
    template = "https://x.test/s?q=intitle:{{query}}+lang%3Aen&key={{apiKey}}&max=5"
    assert build_url(template, "a") == "https://x.test/s?q=intitle:a+lang%3Aen&max=5"

    leading = "https://x.test/v/{{query}}?key={{apiKey}}&fields=a%2Cb"
    assert build_url(leading, "id1") == "https://x.test/v/id1?fields=a%2Cb"
    assert build_url("https://x.test/v/{{query}}?key={{apiKey}}", "id1") == "https://x.test/v/id1"


def test_format_post_processing_needs_template():
    with pytest.raises(ValidationError):
        ProviderDescriptor.model_validate(
            {
                "key": "bad",
                "properties": {"library_type": "book"},
                "endpoints": {"title": "https://bad.test/?q={{query}}"},
                "parser": {"cover": "cover_i"},
                "postProcessing": {"cover": {"action": "format"}},
            }
        )


def test_open_library_match_carries_isbns_and_cover(monkeypatch):
    fake = _fake_get(
        {
            "https://www.googleapis.com/": {"totalItems": 0},
            "https://openlibrary.org/search.json?isbn=": {
                "docs": [
                    {
                        "title": "Dune",
                        "isbn": ["0441172717", "9780441172719", "9780340960196"],
                        "cover_i": 12345,
                    }
                ]
            },
        }
    )
    monkeypatch.setattr(metadata.requests, "get", fake)

    book = _resolver().resolve_book("Dune", isbn="9780441172719")

    assert book.isbn_13 == "9780441172719"
    assert book.isbn_10 == "0441172717"
    assert [(i.type, i.identifier) for i in book.identifiers] == [
        ("ISBN_13", "9780441172719"),
        ("ISBN_10", "0441172717"),
    ]
    assert book.cover == "https://covers.openlibrary.org/b/id/12345-L.jpg"


def test_looked_up_isbn_wins_over_other_editions(monkeypatch):
    fake = _fake_get(
        {
            "https://www.googleapis.com/": {"totalItems": 0},
            "https://openlibrary.org/search.json?isbn=": {
                "docs": [{"title": "Dune", "isbn": ["9780340960196", "9780441172719"]}]
            },
        }
    )
    monkeypatch.setattr(metadata.requests, "get", fake)

    book = _resolver().resolve_book("Dune", isbn="9780441172719")

    assert book.isbn_13 == "9780441172719"
    assert book.identifiers[0].identifier == "9780441172719"


def test_known_isbn_fills_records_without_one(monkeypatch):
    fake = _fake_get(
        {
            "https://www.googleapis.com/": {"totalItems": 0},
            "https://openlibrary.org/search.json?isbn=": {"docs": []},
            "https://openlibrary.org/search.json?title=": {"docs": [{"title": "Dune"}]},
        }
    )
    monkeypatch.setattr(metadata.requests, "get", fake)

    book = _resolver().resolve_book("Dune", isbn="978-0-441-17271-9")
    assert book.title == "Dune"
    assert book.isbn_13 == "9780441172719"

    monkeypatch.setattr(metadata.requests, "get", _fake_get({}))
    empty = _resolver().resolve_book("Nobody Knows", isbn="0441172717")
    assert empty.title is None
    assert empty.isbn_10 == "0441172717"


def test_google_skips_comics_and_wants_description_for_exact_match(monkeypatch):
    payload = {
        "items": [
            {"id": "c1", "volumeInfo": {"title": "Dune", "categories": ["Comics & Graphic Novels"]}},
            {"id": "g1", "volumeInfo": {"title": "Dune Messiah", "description": "Sequel."}},
            {"id": "g2", "volumeInfo": {"title": "Dune"}},
            {"id": "g3", "volumeInfo": {"title": "DUNE", "description": "Arrakis."}},
        ]
    }
    monkeypatch.setattr(
        metadata.requests, "get", _fake_get({"https://www.googleapis.com/": payload})
    )

    book = _resolver().resolve_book("Dune")

    assert book.key == "g3"
    assert book.description == "Arrakis."


def test_only_comics_from_google_means_fallback(monkeypatch):
    comics = {
        "items": [
            {"id": "c1", "volumeInfo": {"title": "Dune", "categories": ["Comics & Graphic Novels"]}}
        ]
    }
    fake = _fake_get(
        {
            "https://www.googleapis.com/": comics,
            "https://openlibrary.org/search.json?title=": {"docs": [{"title": "Dune"}]},
        }
    )
    monkeypatch.setattr(metadata.requests, "get", fake)

    book = _resolver().resolve_book("Dune")

    assert book.provider == "openlibrary"
