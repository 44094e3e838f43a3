"""
Data models for Ansybl documents.

Frozen pydantic models for feeds, items and their parts, used by the
document builder and available to callers that want typed access.
"""

from .feed_document import (
    AnsyblModel,
    Attachment,
    Author,
    ContentItem,
    FeedDocument,
    Interactions,
    MAX_TAGS,
)

__all__ = [
    "AnsyblModel",
    "Attachment",
    "Author",
    "ContentItem",
    "FeedDocument",
    "Interactions",
    "MAX_TAGS",
]
