"""
Business rules for Ansybl documents.

Each rule is a pure function over a read-only DocumentView (feed rules) or
ItemView (item rules) that yields ValidationDiagnostic values. Rules never
raise on malformed input: shapes the schema phase already reports are
skipped here.
"""

import json
import re
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Callable, Iterable, Iterator, List, Mapping, Tuple

from .dates import parse_datetime
from .diagnostics import ErrorCode, ValidationDiagnostic
from .validation import join_path

EXTENSION_NAME_PATTERN = re.compile(r"^_[A-Za-z][A-Za-z0-9_]*$")


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


@dataclass(frozen=True)
class ItemView:
    """Read-only view of one content item and its position in the feed."""
    index: int
    data: Mapping[str, Any]

    @property
    def path(self) -> str:
        return f"items[{self.index}]"

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    def attachments(self) -> Iterator[Tuple[str, Mapping[str, Any]]]:
        attachments = self.data.get("attachments")
        if not isinstance(attachments, list):
            return
        for index, attachment in enumerate(attachments):
            if isinstance(attachment, dict):
                yield f"{self.path}.attachments[{index}]", attachment


class DocumentView:
    """Read-only view over a parsed feed document."""

    def __init__(self, document: Any):
        self._document = document if isinstance(document, dict) else {}
        self.data: Mapping[str, Any] = MappingProxyType(self._document)

    def get(self, key: str, default: Any = None) -> Any:
        return self._document.get(key, default)

    @property
    def items(self) -> List[ItemView]:
        items = self._document.get("items")
        if not isinstance(items, list):
            return []
        return [
            ItemView(index, MappingProxyType(item))
            for index, item in enumerate(items)
            if isinstance(item, dict)
        ]


# ---------------------------------------------------------------------------
# Feed rules
# ---------------------------------------------------------------------------

def rule_duplicate_item_ids(view: DocumentView) -> Iterator[ValidationDiagnostic]:
    """Report every occurrence of an item id after the first."""
    seen = set()
    for item in view.items:
        item_id = item.get("id")
        if not isinstance(item_id, str) or not item_id:
            continue
        if item_id in seen:
            yield ValidationDiagnostic(
                code=ErrorCode.DUPLICATE_ITEM_ID,
                field=f"{item.path}.id",
                message=f"Duplicate item ID found: {item_id}",
                details="Each item must have a unique ID",
                suggestions=["Ensure all item IDs are unique within the feed"],
            )
        seen.add(item_id)


# ---------------------------------------------------------------------------
# Item rules
# ---------------------------------------------------------------------------

def rule_date_order(item: ItemView) -> Iterator[ValidationDiagnostic]:
    published = parse_datetime(item.get("date_published"))
    modified = parse_datetime(item.get("date_modified"))
    if published and modified and modified < published:
        yield ValidationDiagnostic(
            code=ErrorCode.INVALID_DATE_ORDER,
            field=f"{item.path}.date_modified",
            message="Modified date cannot be before published date",
            details=f"Published: {item.get('date_published')}, Modified: {item.get('date_modified')}",
            suggestions=["Ensure date_modified is after or equal to date_published"],
        )


def rule_has_content(item: ItemView) -> Iterator[ValidationDiagnostic]:
    fields = ("content_text", "content_html", "content_markdown", "title")
    if not any(item.get(name) for name in fields):
        yield ValidationDiagnostic(
            code=ErrorCode.NO_CONTENT,
            field=item.path,
            message="Item must have at least one content field or a title",
            details="Missing content_text, content_html, content_markdown, and title",
            suggestions=["Add at least one content field or a title"],
        )


def rule_self_reply(item: ItemView) -> Iterator[ValidationDiagnostic]:
    item_id = item.get("id")
    if item_id and item.get("in_reply_to") == item_id:
        yield ValidationDiagnostic(
            code=ErrorCode.SELF_REPLY,
            field=f"{item.path}.in_reply_to",
            message="Item cannot reply to itself",
            details=f"Item ID and in_reply_to are both: {item_id}",
            suggestions=["Remove in_reply_to or change it to a different item"],
        )


def rule_attachment_dimensions(item: ItemView) -> Iterator[ValidationDiagnostic]:
    for path, attachment in item.attachments():
        width, height = attachment.get("width"), attachment.get("height")
        bad = [value for value in (width, height) if _is_number(value) and value <= 0]
        if bad:
            yield ValidationDiagnostic(
                code=ErrorCode.INVALID_IMAGE_DIMENSIONS,
                field=path,
                message="Image dimensions must be positive numbers",
                details=f"Width: {width}, Height: {height}",
                suggestions=["Ensure width and height are positive integers"],
            )


def rule_attachment_duration(item: ItemView) -> Iterator[ValidationDiagnostic]:
    for path, attachment in item.attachments():
        duration = attachment.get("duration_in_seconds")
        if _is_number(duration) and duration < 0:
            yield ValidationDiagnostic(
                code=ErrorCode.INVALID_DURATION,
                field=f"{path}.duration_in_seconds",
                message="Duration cannot be negative",
                details=f"Duration: {duration}",
                suggestions=["Ensure duration_in_seconds is a positive number"],
            )


def rule_attachment_size(item: ItemView) -> Iterator[ValidationDiagnostic]:
    for path, attachment in item.attachments():
        size = attachment.get("size_in_bytes")
        if _is_number(size) and size < 0:
            yield ValidationDiagnostic(
                code=ErrorCode.INVALID_FILE_SIZE,
                field=f"{path}.size_in_bytes",
                message="File size cannot be negative",
                details=f"Size: {size}",
                suggestions=["Ensure size_in_bytes is a positive integer"],
            )


# ---------------------------------------------------------------------------
# Extension fields
# ---------------------------------------------------------------------------

def _serialization_error(value: Any) -> str:
    try:
        json.dumps(value, allow_nan=False)
    except (TypeError, ValueError) as e:
        return str(e)
    return ""


def iter_extension_fields(value: Any, path: str = "root") -> Iterator[Tuple[str, str, Any]]:
    """Yield (path, name, value) for every `_` field, without descending into them."""
    if isinstance(value, dict):
        for key, child in value.items():
            key = str(key)
            child_path = join_path(path, key)
            if key.startswith("_"):
                yield child_path, key, child
            else:
                yield from iter_extension_fields(child, child_path)
    elif isinstance(value, list):
        for index, child in enumerate(value):
            yield from iter_extension_fields(child, join_path(path, index))


def rule_extension_fields(view: DocumentView) -> Iterator[ValidationDiagnostic]:
    for path, name, value in iter_extension_fields(dict(view.data)):
        if not EXTENSION_NAME_PATTERN.match(name):
            yield ValidationDiagnostic(
                code=ErrorCode.INVALID_EXTENSION_FIELD_NAME,
                field=path,
                message=f"Invalid extension field name: {name}",
                details="Extension fields must start with underscore followed by letter, "
                        "then alphanumeric/underscore characters",
                suggestions=["Use format: _fieldName, _my_field, _customData"],
            )

        error = _serialization_error(value)
        if error:
            yield ValidationDiagnostic(
                code=ErrorCode.INVALID_EXTENSION_FIELD_VALUE,
                field=path,
                message=f"Extension field value is not JSON serializable: {name}",
                details=error,
                suggestions=["Ensure extension field values are JSON serializable"],
            )


def has_extension_fields(document: Any) -> bool:
    return next(iter_extension_fields(document), None) is not None


# ---------------------------------------------------------------------------
# Warnings
# ---------------------------------------------------------------------------

def warning_feed_metadata(view: DocumentView) -> Iterator[ValidationDiagnostic]:
    if not view.get("description"):
        yield ValidationDiagnostic(
            code=ErrorCode.MISSING_DESCRIPTION,
            field="description",
            message="Feed description is recommended for better discoverability",
        )
    if not view.get("icon"):
        yield ValidationDiagnostic(
            code=ErrorCode.MISSING_ICON,
            field="icon",
            message="Feed icon is recommended for better user experience",
        )
    if not view.get("language"):
        yield ValidationDiagnostic(
            code=ErrorCode.MISSING_LANGUAGE,
            field="language",
            message="Language specification helps with content discovery",
        )


def warning_item_readability(item: ItemView) -> Iterator[ValidationDiagnostic]:
    if not item.get("title") and not item.get("summary"):
        yield ValidationDiagnostic(
            code=ErrorCode.MISSING_TITLE_SUMMARY,
            field=item.path,
            message=f"Item {item.index + 1}: Title or summary recommended for better readability",
        )

    for path, attachment in item.attachments():
        mime_type = attachment.get("mime_type") or ""
        if mime_type.startswith("image/") and not attachment.get("alt_text"):
            yield ValidationDiagnostic(
                code=ErrorCode.MISSING_ALT_TEXT,
                field=f"{path}.alt_text",
                message=f"Item {item.index + 1}: Alt text recommended for accessibility on {path}",
            )


FEED_RULES: Tuple[Callable[[DocumentView], Iterable[ValidationDiagnostic]], ...] = (
    rule_duplicate_item_ids,
    rule_extension_fields,
)

ITEM_RULES: Tuple[Callable[[ItemView], Iterable[ValidationDiagnostic]], ...] = (
    rule_date_order,
    rule_has_content,
    rule_attachment_dimensions,
    rule_attachment_duration,
    rule_attachment_size,
    rule_self_reply,
)


def apply_rules(view: DocumentView, feed_rules=FEED_RULES, item_rules=ITEM_RULES) -> List[ValidationDiagnostic]:
    """Run feed rules, then item rules for each item in order."""
    diagnostics: List[ValidationDiagnostic] = []
    for rule in feed_rules:
        diagnostics.extend(rule(view))
    for item in view.items:
        for rule in item_rules:
            diagnostics.extend(rule(item))
    return diagnostics


def check_business_rules(document: Any) -> List[ValidationDiagnostic]:
    return apply_rules(DocumentView(document))


def check_extensions(document: Any) -> List[ValidationDiagnostic]:
    return list(rule_extension_fields(DocumentView(document)))


def collect_warnings(document: Any) -> List[ValidationDiagnostic]:
    return apply_rules(DocumentView(document), (warning_feed_metadata,), (warning_item_readability,))
