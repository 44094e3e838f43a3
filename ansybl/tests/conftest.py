"""Shared fixtures for the ansybl test suite."""

import pytest

from ansybl.builder import DocumentBuilder
from ansybl.common_tools.schema_validator import FeedValidator
from ansybl.common_tools.signature import generate_key_pair
from ansybl.parser import FeedParser


@pytest.fixture(scope="session")
def validator():
    return FeedValidator()


@pytest.fixture
def builder(validator):
    return DocumentBuilder(validator=validator)


@pytest.fixture
def parser(validator):
    return FeedParser(validator=validator)


@pytest.fixture
def key_pair():
    return generate_key_pair()


@pytest.fixture
def other_key_pair():
    return generate_key_pair()


@pytest.fixture
def feed_metadata(key_pair):
    return {
        "title": "Field Notes",
        "home_page_url": "https://notes.example.com",
        "feed_url": "https://notes.example.com/feed.ansybl",
        "description": "Short notes from the field",
        "icon": "https://notes.example.com/icon.png",
        "language": "en",
        "author": {"name": "Robin Vale", "public_key": key_pair.public_key},
    }


@pytest.fixture
def item_data():
    return [
        {
            "id": "https://notes.example.com/posts/1",
            "url": "https://notes.example.com/posts/1",
            "title": "First light",
            "content_text": "The first note of the season.",
            "date_published": "2025-01-01T08:00:00Z",
            "tags": ["Nature", "morning"],
        },
        {
            "id": "https://notes.example.com/posts/2",
            "url": "https://notes.example.com/posts/2",
            "title": "Second light",
            "content_markdown": "# H",
            "date_published": "2025-03-01T08:00:00Z",
            "tags": ["morning"],
        },
        {
            "id": "https://notes.example.com/posts/3",
            "url": "https://notes.example.com/posts/3",
            "title": "Between",
            "content_html": "<p>Mid <strong>winter</strong></p>",
            "date_published": "2025-02-01T08:00:00Z",
        },
    ]


@pytest.fixture
def signed_feed(builder, feed_metadata, item_data, key_pair):
    """A complete, signed feed as a plain dictionary."""
    return builder.create_complete_feed(feed_metadata, item_data, key_pair.private_key).to_dict()


@pytest.fixture
def minimal_feed(key_pair):
    """A valid, unsigned feed with one item."""
    return {
        "version": "https://ansybl.org/version/1.0",
        "title": "Minimal",
        "home_page_url": "https://example.com",
        "feed_url": "https://example.com/feed.ansybl",
        "author": {"name": "Ada", "public_key": key_pair.public_key},
        "items": [
            {
                "id": "https://example.com/1",
                "url": "https://example.com/1",
                "title": "Hello",
                "content_text": "Hello world",
                "date_published": "2025-01-01T00:00:00Z",
            }
        ],
    }
