"""
Construction and signing of Ansybl feed documents.

DocumentBuilder turns caller-supplied metadata and item data into frozen
FeedDocument values. Every feed it returns validates; every item it adds is
normalized, validated and signed. Documents grow immutably: add_item
returns a new feed and leaves its input untouched.
"""

import time
import uuid
from contextlib import contextmanager
from typing import Any, Dict, Iterable, Mapping, Optional, Union

from pydantic import ValidationError as ModelValidationError

from ..common_tools.canonicalizer import signable_content
from ..common_tools.content_tools import generate_summary, render_item_content
from ..common_tools.dates import utc_now_iso
from ..common_tools.diagnostics import ErrorCode, ValidationDiagnostic
from ..common_tools.errors import DocumentBuildError, InvalidKeyFormat
from ..common_tools.logging import get_logger, operation_context
from ..common_tools.metrics import PerformanceMetrics
from ..common_tools.models import ContentItem, FeedDocument
from ..common_tools.normalizers import ItemDataNormalizer
from ..common_tools.schema_validator import FeedValidator
from ..common_tools.signature import get_public_key_from_private, sign_content, validate_key_format
from ..config import BuilderConfig

FEED_REQUIRED_FIELDS = ("title", "home_page_url", "feed_url", "author")
FEED_OPTIONAL_FIELDS = ("description", "icon", "language")
AUTHOR_OPTIONAL_FIELDS = ("url", "avatar")
ITEM_PASSTHROUGH_FIELDS = ("date_modified", "in_reply_to")

FeedInput = Union[FeedDocument, Mapping[str, Any]]


def _extensions(data: Mapping[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in data.items() if isinstance(key, str) and key.startswith("_")}


def _missing(field: str, message: Optional[str] = None) -> ValidationDiagnostic:
    return ValidationDiagnostic(
        code=ErrorCode.MISSING_REQUIRED_FIELD,
        field=field,
        message=message or f"Missing required field: {field}",
        suggestions=[f"Add the required field: {field}"],
    )


def _require_private_key(private_key: Any) -> None:
    validation = validate_key_format(private_key, "private")
    if not validation.valid:
        raise InvalidKeyFormat(f"Invalid private key: {validation.error}", key_type="private")


class DocumentBuilder:
    """Builds, extends and signs feed documents."""

    def __init__(self, validator: Optional[FeedValidator] = None, config: Optional[BuilderConfig] = None):
        self.validator = validator or FeedValidator()
        self.config = config or BuilderConfig()
        self.metrics = PerformanceMetrics("builder")
        self.logger = get_logger("builder")

    @contextmanager
    def _tracked(self, operation: str):
        start = time.perf_counter()
        success = False
        try:
            yield
            success = True
        finally:
            self.metrics.record(operation, success, (time.perf_counter() - start) * 1000.0)

    # ------------------------------------------------------------------
    # Feeds
    # ------------------------------------------------------------------

    def create_feed(self, metadata: Mapping[str, Any]) -> FeedDocument:
        """
        Create an empty, unsigned feed.

        Args:
            metadata: title, home_page_url, feed_url and author{name, public_key},
                      plus optional version, description, icon, language and
                      `_` extension fields

        Raises:
            DocumentBuildError: If metadata is missing fields or does not validate
        """
        with self._tracked("create_feed"):
            if not isinstance(metadata, Mapping):
                raise DocumentBuildError(
                    "Feed metadata must be an object",
                    [ValidationDiagnostic(ErrorCode.INVALID_METADATA, "metadata",
                                          f"Expected an object, got {type(metadata).__name__}")],
                )

            problems = [_missing(name) for name in FEED_REQUIRED_FIELDS if not metadata.get(name)]
            author = metadata.get("author")
            if author and not isinstance(author, Mapping):
                problems.append(ValidationDiagnostic(ErrorCode.INVALID_TYPE, "author", "Field 'author' must be object"))
            elif author:
                problems.extend(
                    _missing(f"author.{name}", f"Author must have {name.replace('_', ' ')}")
                    for name in ("name", "public_key") if not author.get(name)
                )
            if problems:
                raise DocumentBuildError("Feed metadata is incomplete", problems)

            feed_data: Dict[str, Any] = {
                "version": metadata.get("version") or self.config.default_version,
                "title": metadata["title"],
                "home_page_url": metadata["home_page_url"],
                "feed_url": metadata["feed_url"],
            }
            for name in FEED_OPTIONAL_FIELDS:
                if metadata.get(name) is not None:
                    feed_data[name] = metadata[name]

            author_data = {"name": author["name"], "public_key": author["public_key"]}
            for name in AUTHOR_OPTIONAL_FIELDS:
                if author.get(name) is not None:
                    author_data[name] = author[name]
            author_data.update(_extensions(author))

            feed_data["author"] = author_data
            feed_data["items"] = []
            feed_data.update(_extensions(metadata))

            result = self.validator.validate_document(feed_data, include_warnings=False)
            if not result.valid:
                raise DocumentBuildError(
                    f"Invalid feed metadata: {', '.join(result.error_codes)}",
                    result.errors,
                )

            feed = FeedDocument.model_validate(feed_data)
            self.logger.info("Feed created", feed_url=feed.feed_url, operation="create_feed")
            return feed

    def sign_feed(self, feed: FeedInput, private_key: str) -> FeedDocument:
        """
        Sign the whole feed (items included) with `signature` excluded.

        Raises:
            InvalidKeyFormat: If the private key is malformed
            DocumentBuildError: If the feed does not validate
        """
        with self._tracked("sign_feed"):
            _require_private_key(private_key)
            feed = self._as_feed(feed)

            unsigned = feed.with_signature(None).to_dict()
            result = self.validator.validate_document(unsigned, include_warnings=False)
            if not result.valid:
                raise DocumentBuildError(
                    f"Cannot sign invalid feed: {', '.join(result.error_codes)}",
                    result.errors,
                )

            if get_public_key_from_private(private_key) != feed.author.public_key:
                self.logger.warning(
                    "Signing key does not match the feed author's public key",
                    feed_url=feed.feed_url,
                    operation="sign_feed",
                )

            signature = sign_content(signable_content(unsigned), private_key)
            return feed.with_signature(signature)

    def create_complete_feed(
        self,
        metadata: Mapping[str, Any],
        items: Iterable[Mapping[str, Any]],
        private_key: str
    ) -> FeedDocument:
        """Create a feed, add each item in order and sign the result."""
        feed_url = metadata.get("feed_url") if isinstance(metadata, Mapping) else None

        with operation_context(self.logger, "create_complete_feed", feed_url=feed_url):
            feed = self.create_feed(metadata)
            for item_data in items:
                feed = self.add_item(feed, item_data, private_key)
            feed = self.sign_feed(feed, private_key)

            self.logger.info(f"Complete feed built with {len(feed.items)} items")
            return feed

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    def add_item(self, feed: FeedInput, item_data: Mapping[str, Any], private_key: str) -> FeedDocument:
        """
        Return a new feed with a signed item appended.

        The input feed is never modified. Any existing feed signature is
        dropped because it no longer covers the items.

        Raises:
            InvalidKeyFormat: If the private key is malformed
            DocumentBuildError: If the item is incomplete, invalid or a duplicate
        """
        with self._tracked("add_item"):
            _require_private_key(private_key)
            feed = self._as_feed(feed)

            item = ContentItem.model_validate(self.prepare_item(item_data))
            if feed.get_item(item.id) is not None:
                raise DocumentBuildError(
                    f"Duplicate item ID: {item.id}",
                    [ValidationDiagnostic(
                        code=ErrorCode.DUPLICATE_ITEM_ID,
                        field=f"items[{len(feed.items)}].id",
                        message=f"Duplicate item ID found: {item.id}",
                        suggestions=["Ensure all item IDs are unique within the feed"],
                    )],
                )

            item = item.model_copy(update={"signature": self.sign_item(item, private_key)})
            self.logger.debug("Item added", feed_url=feed.feed_url, item_id=item.id, operation="add_item")
            return feed.with_item(item)

    def prepare_item(self, item_data: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Normalize item data and validate it as a content item.

        Returns:
            The unsigned item dictionary

        Raises:
            DocumentBuildError: If required fields are missing or the item is invalid
        """
        if not isinstance(item_data, Mapping):
            raise DocumentBuildError(
                "Item data must be an object",
                [ValidationDiagnostic(ErrorCode.INVALID_TYPE, "item",
                                      f"Expected an object, got {type(item_data).__name__}")],
            )

        problems = [_missing(name) for name in ("id", "url") if not item_data.get(name)]
        if problems:
            raise DocumentBuildError("Item data is incomplete", problems)

        item_id = item_data["id"]
        item: Dict[str, Any] = {
            "id": item_id,
            "url": item_data["url"],
            "uuid": item_data.get("uuid") or str(uuid.uuid5(uuid.NAMESPACE_URL, str(item_id))),
            "title": ItemDataNormalizer.normalize_text_field(item_data.get("title")),
            "date_published": item_data.get("date_published") or utc_now_iso(),
        }
        for name in ITEM_PASSTHROUGH_FIELDS:
            item[name] = item_data.get(name)

        item.update(render_item_content(
            content_text=item_data.get("content_text"),
            content_html=item_data.get("content_html"),
            content_markdown=item_data.get("content_markdown"),
        ))

        summary = item_data.get("summary")
        if summary is None and item["content_text"]:
            summary = generate_summary(item["content_text"], self.config.summary_max_length)
        item["summary"] = summary or None

        item["tags"] = ItemDataNormalizer.normalize_tags(item_data.get("tags")) or None
        item["attachments"] = ItemDataNormalizer.normalize_attachments(item_data.get("attachments")) or None
        item["interactions"] = ItemDataNormalizer.normalize_interactions(item_data.get("interactions"))
        item["author"] = item_data.get("author")
        item.update(_extensions(item_data))

        item = {key: value for key, value in item.items() if value is not None}

        result = self.validator.validate_content_item(item)
        if not result.valid:
            raise DocumentBuildError(
                f"Invalid item {item_id}: {', '.join(result.error_codes)}",
                result.errors,
            )
        return item

    def sign_item(self, item: Union[ContentItem, Mapping[str, Any]], private_key: str) -> str:
        """Sign an item over its content without signature and chain fields."""
        return sign_content(signable_content(item), private_key)

    # ------------------------------------------------------------------

    def _as_feed(self, feed: FeedInput) -> FeedDocument:
        if isinstance(feed, FeedDocument):
            return feed
        try:
            return FeedDocument.model_validate(feed)
        except ModelValidationError as e:
            raise DocumentBuildError(
                "Feed is not a valid document",
                [ValidationDiagnostic(ErrorCode.VALIDATION_ERROR, ".".join(map(str, error["loc"])) or "root",
                                      error["msg"]) for error in e.errors()],
            ) from e

    def get_performance_metrics(self) -> Dict[str, Any]:
        return self.metrics.snapshot()

    def reset_performance_metrics(self) -> None:
        self.metrics.reset()


__all__ = ["DocumentBuilder", "FEED_REQUIRED_FIELDS"]
