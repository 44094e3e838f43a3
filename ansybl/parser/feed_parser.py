"""
Parsing of received Ansybl feeds.

FeedParser validates a document, optionally checks that signatures are
present and verifies them, then hands back a processed copy: extension
fields optionally stripped and items sorted newest first. Lighter entry
points cover metadata-only and content-only reads.
"""

import copy
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence

from ..common_tools.canonicalizer import signable_content
from ..common_tools.content_tools import content_type_of
from ..common_tools.dates import parse_datetime
from ..common_tools.diagnostics import ErrorCode, ValidationDiagnostic
from ..common_tools.logging import get_logger, log_processing_error
from ..common_tools.metrics import PerformanceMetrics
from ..common_tools.schema_validator import FeedValidator, decode_document, document_size, invalid_json_result
from ..common_tools.signature import verify_signature
from ..config import CONTENT_FILTERS, SIGNATURE_LEVELS, ParserConfig

CONTENT_FIELDS = {
    "text": "content_text",
    "html": "content_html",
    "markdown": "content_markdown",
}

VERIFICATION_MODES = ("strict", "relaxed")

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


@dataclass
class ParseOptions:
    verify_signatures: bool = False
    preserve_extensions: bool = True
    strict_mode: bool = False
    require_signatures: bool = False
    signature_level: str = "all"
    content_filter: str = "all"

    def __post_init__(self):
        if self.signature_level not in SIGNATURE_LEVELS:
            raise ValueError(f"signature_level must be one of {SIGNATURE_LEVELS}, got '{self.signature_level}'")
        if self.content_filter not in CONTENT_FILTERS:
            raise ValueError(f"content_filter must be one of {CONTENT_FILTERS}, got '{self.content_filter}'")

    @classmethod
    def from_config(cls, config: ParserConfig, **overrides: Any) -> "ParseOptions":
        values = {
            "verify_signatures": config.verify_signatures,
            "preserve_extensions": config.preserve_extensions,
            "strict_mode": config.strict_mode,
            "require_signatures": config.require_signatures,
            "signature_level": config.signature_level,
            "content_filter": config.content_filter,
        }
        values.update(overrides)
        return cls(**values)


@dataclass
class ItemSignatureResult:
    index: int
    id: Optional[str]
    uuid: Optional[str]
    valid: bool
    signature_present: bool
    public_key_used: Optional[str] = None
    error: Optional[str] = None


@dataclass
class SignatureSummary:
    total_items: int = 0
    valid_items: int = 0
    invalid_items: int = 0
    missing_signatures: int = 0


@dataclass
class SignatureReport:
    """Outcome of verifying the feed and item signatures of one document."""
    all_valid: bool
    verification_level: str
    feed_signature_valid: Optional[bool] = None
    item_signatures: List[ItemSignatureResult] = field(default_factory=list)
    errors: List[ValidationDiagnostic] = field(default_factory=list)
    summary: SignatureSummary = field(default_factory=SignatureSummary)


@dataclass
class ParseResult:
    success: bool
    feed: Optional[Dict[str, Any]] = None
    errors: List[ValidationDiagnostic] = field(default_factory=list)
    warnings: List[ValidationDiagnostic] = field(default_factory=list)
    signatures: Optional[SignatureReport] = None
    metadata: Optional[Dict[str, Any]] = None
    content: Optional[Dict[str, Any]] = None
    content_filter: Optional[str] = None
    performance: Dict[str, Any] = field(default_factory=dict)

    @property
    def error_codes(self) -> List[str]:
        return [error.code.value for error in self.errors]


@dataclass
class ItemFilters:
    tags: Optional[Sequence[str]] = None
    date_from: Optional[str] = None
    date_to: Optional[str] = None
    author: Optional[str] = None
    limit: Optional[int] = None


def _sort_key(item: Any) -> datetime:
    if not isinstance(item, Mapping):
        return _EPOCH
    return parse_datetime(item.get("date_published")) or _EPOCH


def strip_extensions(value: Any) -> Any:
    """Remove `_`-prefixed keys at every depth."""
    if isinstance(value, dict):
        return {
            key: strip_extensions(child) for key, child in value.items()
            if not (isinstance(key, str) and key.startswith("_"))
        }
    if isinstance(value, list):
        return [strip_extensions(child) for child in value]
    return value


class FeedParser:
    """Parses and verifies feed documents."""

    def __init__(self, validator: Optional[FeedValidator] = None, config: Optional[ParserConfig] = None):
        self.validator = validator or FeedValidator()
        self.config = config or ParserConfig()
        self.metrics = PerformanceMetrics("parser")
        self.logger = get_logger("parser")

    # ------------------------------------------------------------------
    # Full parse
    # ------------------------------------------------------------------

    def parse(self, document: Any, options: Optional[ParseOptions] = None) -> ParseResult:
        """
        Validate, optionally verify, and process a feed document.

        Args:
            document: JSON string/bytes or parsed document
            options: Parse options; defaults come from the parser config

        Returns:
            ParseResult; problems are reported as diagnostics, never raised
        """
        options = options or ParseOptions.from_config(self.config)
        start = time.perf_counter()
        size = None

        try:
            parsed = decode_document(document)
        except ValueError as e:
            result = ParseResult(success=False, errors=invalid_json_result(e).errors)
        else:
            size = document_size(parsed)
            try:
                result = self._parse_document(parsed, options)
            except Exception as e:
                log_processing_error(self.logger, e, "parse")
                result = ParseResult(
                    success=False,
                    errors=[ValidationDiagnostic(ErrorCode.PARSE_ERROR, "root", f"Failed to parse document: {e}")],
                )

        elapsed = (time.perf_counter() - start) * 1000.0
        result.performance.update({"processing_time_ms": elapsed, "parse_type": "full"})
        self.metrics.record("parse", result.success, elapsed, size, result.error_codes)
        return result

    def _parse_document(self, parsed: Any, options: ParseOptions) -> ParseResult:
        validation = self.validator.validate_document(parsed)
        if not validation.valid:
            return ParseResult(success=False, errors=validation.errors, warnings=validation.warnings)

        if options.require_signatures:
            missing = self._missing_signatures(parsed, options.signature_level)
            if missing:
                return ParseResult(success=False, errors=missing, warnings=validation.warnings)

        report = None
        if options.verify_signatures:
            report = self.verify_signatures(parsed, options.signature_level)
            if options.strict_mode and not report.all_valid:
                errors = [ValidationDiagnostic(
                    ErrorCode.SIGNATURE_VERIFICATION_FAILED,
                    "signatures",
                    "Signature verification failed",
                    details=[error.to_dict() for error in report.errors],
                )]
                errors.extend(report.errors)
                return ParseResult(success=False, errors=errors, warnings=validation.warnings, signatures=report)

        return ParseResult(
            success=True,
            feed=self._process(parsed, options),
            warnings=validation.warnings,
            signatures=report,
        )

    def _missing_signatures(self, feed: Mapping[str, Any], level: str) -> List[ValidationDiagnostic]:
        missing: List[ValidationDiagnostic] = []

        if level in ("all", "feed-only") and not feed.get("signature"):
            missing.append(ValidationDiagnostic(
                ErrorCode.MISSING_FEED_SIGNATURE, "signature", "Feed signature is required but missing",
                suggestions=["Sign the feed before publishing"],
            ))

        if level in ("all", "items-only"):
            for index, item in enumerate(feed.get("items", [])):
                if not item.get("signature"):
                    missing.append(ValidationDiagnostic(
                        ErrorCode.MISSING_ITEM_SIGNATURE,
                        f"items[{index}].signature",
                        f"Item {item.get('id')} signature is required but missing",
                    ))
        return missing

    def _process(self, feed: Mapping[str, Any], options: ParseOptions) -> Dict[str, Any]:
        processed = copy.deepcopy(dict(feed))
        if not options.preserve_extensions:
            processed = strip_extensions(processed)

        items = processed.get("items")
        if isinstance(items, list):
            processed["items"] = sorted(items, key=_sort_key, reverse=True)

        if options.content_filter != "all" and isinstance(processed.get("items"), list):
            processed["items"] = [self._filter_content(item, options.content_filter) for item in processed["items"]]
        return processed

    @staticmethod
    def _filter_content(item: Dict[str, Any], content_filter: str) -> Dict[str, Any]:
        keep = CONTENT_FIELDS[content_filter]
        return {
            key: value for key, value in item.items()
            if key == keep or key not in CONTENT_FIELDS.values()
        }

    # ------------------------------------------------------------------
    # Signatures
    # ------------------------------------------------------------------

    def verify_signatures(self, feed: Mapping[str, Any], level: str = "all") -> SignatureReport:
        """
        Verify feed and item signatures.

        Items are checked against their own author's key when they carry
        one, otherwise against the feed author's key. At the items-only
        level the feed signature is not looked at.

        Raises:
            ValueError: If level is not a known signature level
        """
        if level not in SIGNATURE_LEVELS:
            raise ValueError(f"signature_level must be one of {SIGNATURE_LEVELS}, got '{level}'")

        report = SignatureReport(all_valid=True, verification_level=level)
        feed_key = (feed.get("author") or {}).get("public_key")

        if level in ("all", "feed-only"):
            signature = feed.get("signature")
            if not signature:
                report.feed_signature_valid = False
                report.all_valid = False
                report.errors.append(ValidationDiagnostic(
                    ErrorCode.MISSING_FEED_SIGNATURE, "signature", "Feed has no signature",
                ))
            else:
                report.feed_signature_valid = verify_signature(signable_content(feed), signature, feed_key)
                if not report.feed_signature_valid:
                    report.all_valid = False
                    report.errors.append(ValidationDiagnostic(
                        ErrorCode.INVALID_FEED_SIGNATURE, "signature", "Feed signature verification failed",
                    ))

        if level in ("all", "items-only"):
            items = feed.get("items", [])
            report.summary.total_items = len(items)
            for index, item in enumerate(items):
                report.item_signatures.append(self._verify_item(index, item, feed_key, report))

        verified = report.summary.valid_items + (1 if report.feed_signature_valid else 0)
        failed = report.summary.invalid_items + (1 if report.feed_signature_valid is False else 0)
        self.metrics.record_signatures(verified=verified, failed=failed)

        if not report.all_valid:
            self.logger.warning(
                f"Signature verification failed: {len(report.errors)} errors",
                feed_url=feed.get("feed_url"),
                operation="verify_signatures",
                extra_fields={"level": level, "missing": report.summary.missing_signatures},
            )
        return report

    @staticmethod
    def _verify_item(index: int, item: Mapping[str, Any], feed_key: Optional[str],
                     report: SignatureReport) -> ItemSignatureResult:
        public_key = (item.get("author") or {}).get("public_key") or feed_key
        signature = item.get("signature")
        result = ItemSignatureResult(
            index=index,
            id=item.get("id"),
            uuid=item.get("uuid"),
            valid=False,
            signature_present=bool(signature),
            public_key_used=public_key,
        )

        if not signature:
            result.error = "Missing signature"
            report.summary.missing_signatures += 1
            report.summary.invalid_items += 1
            report.all_valid = False
            report.errors.append(ValidationDiagnostic(
                ErrorCode.MISSING_ITEM_SIGNATURE, f"items[{index}].signature",
                f"Item {item.get('id')} has no signature",
            ))
            return result

        result.valid = verify_signature(signable_content(item), signature, public_key)
        if result.valid:
            report.summary.valid_items += 1
        else:
            result.error = "Signature verification failed"
            report.summary.invalid_items += 1
            report.all_valid = False
            report.errors.append(ValidationDiagnostic(
                ErrorCode.INVALID_ITEM_SIGNATURE, f"items[{index}].signature",
                f"Item {item.get('id')} signature verification failed",
            ))
        return result

    def parse_with_verification(self, document: Any, level: str = "strict") -> ParseResult:
        """Parse with all signatures verified; `strict` also requires them to be present and valid."""
        if level not in VERIFICATION_MODES:
            raise ValueError(f"verification level must be one of {VERIFICATION_MODES}, got '{level}'")

        strict = level == "strict"
        options = ParseOptions.from_config(
            self.config,
            verify_signatures=True,
            strict_mode=strict,
            require_signatures=strict,
            signature_level="all",
        )
        return self.parse(document, options)

    # ------------------------------------------------------------------
    # Partial parses
    # ------------------------------------------------------------------

    def parse_metadata_only(self, document: Any) -> ParseResult:
        """Read feed metadata and signature status without validating items or verifying signatures."""
        start = time.perf_counter()

        try:
            feed = decode_document(document)
            if not isinstance(feed, Mapping) or not feed.get("version") or not feed.get("title"):
                result = ParseResult(success=False, errors=[ValidationDiagnostic(
                    ErrorCode.INVALID_METADATA, "root", "Feed must have a version and a title",
                )])
            else:
                result = self._metadata_result(feed)
        except ValueError as e:
            result = ParseResult(success=False, errors=invalid_json_result(e).errors)
        except Exception as e:
            log_processing_error(self.logger, e, "parse_metadata_only")
            result = ParseResult(success=False, errors=[ValidationDiagnostic(
                ErrorCode.METADATA_PARSE_ERROR, "root", f"Failed to parse metadata: {e}",
            )])

        elapsed = (time.perf_counter() - start) * 1000.0
        result.performance.update({"processing_time_ms": elapsed, "parse_type": "metadata-only"})
        self.metrics.record("parse_metadata_only", result.success, elapsed, error_codes=result.error_codes)
        return result

    @staticmethod
    def _metadata_result(feed: Mapping[str, Any]) -> ParseResult:
        items = feed.get("items")
        items = items if isinstance(items, list) else []
        author = feed.get("author") if isinstance(feed.get("author"), Mapping) else None

        content_types = sorted({kind for kind in (content_type_of(item) for item in items if isinstance(item, Mapping)) if kind})
        dates = sorted(
            parsed for parsed in (parse_datetime(item.get("date_published")) for item in items if isinstance(item, Mapping))
            if parsed is not None
        )

        metadata = {
            "version": feed.get("version"),
            "title": feed.get("title"),
            "description": feed.get("description"),
            "language": feed.get("language"),
            "author": dict(author) if author else None,
            "item_count": len(items),
            "has_signature": bool(feed.get("signature")),
            "extension_fields": [
                {"key": key, "value": value} for key, value in feed.items()
                if isinstance(key, str) and key.startswith("_")
            ],
            "content_types": content_types,
            "date_range": {
                "earliest": dates[0].isoformat() if dates else None,
                "latest": dates[-1].isoformat() if dates else None,
            },
        }

        metadata["signature_status"] = {
            "feed_signed": bool(feed.get("signature")),
            "items_signed": sum(1 for item in items if isinstance(item, Mapping) and item.get("signature")),
            "total_items": len(items),
        }
        return ParseResult(success=True, metadata=metadata)

    def parse_content_only(self, document: Any) -> ParseResult:
        """Extract item content fields and a content-type histogram."""
        start = time.perf_counter()

        try:
            feed = decode_document(document)
            items = feed.get("items") if isinstance(feed, Mapping) else None
            if not isinstance(items, list):
                result = ParseResult(success=False, errors=[ValidationDiagnostic(
                    ErrorCode.NO_CONTENT_ITEMS, "items", "Feed has no content items",
                )])
            else:
                result = ParseResult(success=True, content=self._content_summary(items))
        except ValueError as e:
            result = ParseResult(success=False, errors=invalid_json_result(e).errors)
        except Exception as e:
            log_processing_error(self.logger, e, "parse_content_only")
            result = ParseResult(success=False, errors=[ValidationDiagnostic(
                ErrorCode.CONTENT_PARSE_ERROR, "items", f"Failed to parse content: {e}",
            )])

        elapsed = (time.perf_counter() - start) * 1000.0
        result.performance.update({"processing_time_ms": elapsed, "parse_type": "content-only"})
        self.metrics.record("parse_content_only", result.success, elapsed, error_codes=result.error_codes)
        return result

    @staticmethod
    def _content_summary(items: List[Any]) -> Dict[str, Any]:
        histogram = {"text": 0, "html": 0, "markdown": 0, "mixed": 0}
        extracted = []

        for index, item in enumerate(items):
            if not isinstance(item, Mapping):
                continue
            kind = content_type_of(item)
            if kind:
                histogram[kind] += 1
            extracted.append({
                "index": index,
                "id": item.get("id"),
                "title": item.get("title"),
                "content_text": item.get("content_text"),
                "content_html": item.get("content_html"),
                "content_markdown": item.get("content_markdown"),
                "summary": item.get("summary"),
                "date_published": item.get("date_published"),
                "tags": list(item.get("tags") or []),
                "attachments": copy.deepcopy(item.get("attachments") or []),
            })

        return {"items": extracted, "total_items": len(extracted), "content_types": histogram}

    def parse_with_content_filter(self, document: Any, content_filter: str = "all",
                                  options: Optional[ParseOptions] = None) -> ParseResult:
        """Full parse keeping only one kind of content field on each item."""
        base = options or ParseOptions.from_config(self.config)
        filtered = ParseOptions(
            verify_signatures=base.verify_signatures,
            preserve_extensions=base.preserve_extensions,
            strict_mode=base.strict_mode,
            require_signatures=base.require_signatures,
            signature_level=base.signature_level,
            content_filter=content_filter,
        )

        result = self.parse(document, filtered)
        result.content_filter = content_filter
        result.performance["parse_type"] = "content-filtered"
        return result

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_items(self, feed: Mapping[str, Any], filters: Optional[ItemFilters] = None) -> List[Dict[str, Any]]:
        """
        Select items from a parsed feed.

        Tags match if the item has any of them. Dates are inclusive bounds
        on date_published. Author matches the item author's name, falling
        back to the feed author's name.

        Raises:
            ValueError: If a date filter is not an ISO-8601 date-time
        """
        start = time.perf_counter()
        try:
            items = self._select_items(feed, filters or ItemFilters())
        except ValueError:
            self.metrics.record("get_items", False, (time.perf_counter() - start) * 1000.0)
            raise

        self.metrics.record("get_items", True, (time.perf_counter() - start) * 1000.0)
        return items

    @staticmethod
    def _select_items(feed: Mapping[str, Any], filters: ItemFilters) -> List[Dict[str, Any]]:
        items = [item for item in feed.get("items", []) if isinstance(item, Mapping)]
        feed_author = (feed.get("author") or {}).get("name")

        if filters.tags:
            wanted = set(filters.tags)
            items = [item for item in items if wanted.intersection(item.get("tags") or ())]

        if filters.date_from:
            lower = parse_datetime(filters.date_from)
            if lower is None:
                raise ValueError(f"date_from is not an ISO-8601 date-time: {filters.date_from}")
            items = [item for item in items if _sort_key(item) >= lower]

        if filters.date_to:
            upper = parse_datetime(filters.date_to)
            if upper is None:
                raise ValueError(f"date_to is not an ISO-8601 date-time: {filters.date_to}")
            items = [item for item in items if _sort_key(item) <= upper]

        if filters.author:
            items = [
                item for item in items
                if ((item.get("author") or {}).get("name") or feed_author) == filters.author
            ]

        if filters.limit is not None:
            items = items[:max(filters.limit, 0)]

        return [copy.deepcopy(dict(item)) for item in items]

    def get_performance_metrics(self) -> Dict[str, Any]:
        return self.metrics.snapshot()

    def reset_performance_metrics(self) -> None:
        self.metrics.reset()


__all__ = [
    "FeedParser",
    "ItemFilters",
    "ItemSignatureResult",
    "ParseOptions",
    "ParseResult",
    "SignatureReport",
    "SignatureSummary",
    "strip_extensions",
]
