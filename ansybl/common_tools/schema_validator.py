"""
Two-phase validation of Ansybl feed documents.

This module provides the FeedValidator class: structural validation with a
Draft 7 JSON Schema followed by business rules, producing a
ValidationResult instead of raising.
"""

from __future__ import annotations

import json
import logging as std_logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .business_rules import check_business_rules, check_extensions, collect_warnings, has_extension_fields
from .canonicalizer import canonical_hash
from .diagnostics import ErrorCode, ValidationDiagnostic, ValidationMetadata, ValidationResult
from .metrics import PerformanceMetrics
from ..config import ValidatorConfig
from .validation import (
    DEFAULT_SCHEMA_PATH,
    create_validator,
    load_schema,
    merge_schemas,
    reroot_path,
    validate_against_schema,
)

logger = std_logging.getLogger(__name__)

__all__ = ["FeedValidator", "PLACEHOLDER_PUBLIC_KEY", "decode_document"]

# Well-formed key used when validating a single item inside a synthetic feed
PLACEHOLDER_PUBLIC_KEY = "ed25519:" + "A" * 43 + "="

# Deepest container nesting accepted; keeps schema and rule checks off the recursion limit
MAX_NESTING_DEPTH = 64


def nesting_depth(value: Any, limit: int = MAX_NESTING_DEPTH) -> int:
    """
    Depth of nested objects and arrays, measured without recursion.

    Stops as soon as the depth exceeds limit, so self-referencing
    containers terminate too.
    """
    deepest = 0
    pending = [(value, 1)]
    while pending:
        current, depth = pending.pop()
        if isinstance(current, dict):
            children = current.values()
        elif isinstance(current, (list, tuple)):
            children = current
        else:
            continue

        deepest = max(deepest, depth)
        if deepest > limit:
            break
        pending.extend((child, depth + 1) for child in children)
    return deepest


def decode_document(document: Any) -> Any:
    """
    Decode a JSON string or bytes; other values pass through unchanged.

    Raises:
        ValueError: If the text is not valid JSON, or the document nests
                    deeper than MAX_NESTING_DEPTH
    """
    if isinstance(document, (bytes, bytearray)):
        document = document.decode("utf-8")
    if isinstance(document, str):
        try:
            document = json.loads(document)
        except RecursionError:
            raise ValueError("Document nests too deeply to decode") from None
    elif hasattr(document, "model_dump"):
        document = document.model_dump(exclude_none=True)

    if nesting_depth(document) > MAX_NESTING_DEPTH:
        raise ValueError(f"Document nests deeper than {MAX_NESTING_DEPTH} levels")
    return document


def document_size(document: Any) -> Optional[int]:
    try:
        return len(json.dumps(document, default=str, ensure_ascii=False))
    except (TypeError, ValueError):
        return None


def invalid_json_result(error: Exception) -> ValidationResult:
    return ValidationResult(
        valid=False,
        errors=[ValidationDiagnostic(
            code=ErrorCode.INVALID_JSON,
            field="document",
            message="Document is not valid JSON",
            details=str(error),
            suggestions=["Check for syntax errors, missing quotes, or trailing commas"],
        )],
    )


class FeedValidator:
    """
    Validator for Ansybl feed documents.

    Structural errors and business-rule violations are merged into one
    diagnostic list. Warnings are only produced for valid documents.
    """

    def __init__(
        self,
        schema_path: Optional[Path] = None,
        schema: Optional[Dict[str, Any]] = None,
        config: Optional[ValidatorConfig] = None
    ):
        """
        Initialize the validator.

        Args:
            schema_path: Schema file to load. Defaults to config.schema_path,
                         then to the bundled schemas/ansybl-feed.schema.json.
            schema: Already-loaded schema; takes precedence over schema_path
            config: Defaults for warnings and batch concurrency
        """
        self.config = config or ValidatorConfig()
        schema_path = schema_path or self.config.schema_path
        self.schema_path = Path(schema_path) if schema_path else DEFAULT_SCHEMA_PATH
        self.schema: Dict[str, Any] = schema if schema is not None else load_schema(self.schema_path)
        self._validator = create_validator(self.schema)
        self.metrics = PerformanceMetrics("validator")
        self._custom_validators: Dict[str, FeedValidator] = {}
        self._custom_lock = threading.Lock()

        logger.debug(f"FeedValidator initialized with schema: {self.schema.get('$id', self.schema_path)}")

    def validate_document(
        self,
        document: Any,
        include_warnings: Optional[bool] = None,
        custom_schema: Optional[Dict[str, Any]] = None
    ) -> ValidationResult:
        """
        Validate a feed document.

        Args:
            document: JSON string/bytes or parsed document
            include_warnings: Report recommendations for valid documents;
                              defaults to config.include_warnings
            custom_schema: Schema fragment merged into the base schema

        Returns:
            ValidationResult; malformed JSON yields a single INVALID_JSON error
        """
        start = time.perf_counter()

        try:
            parsed = decode_document(document)
        except ValueError as e:
            result = invalid_json_result(e)
            self.metrics.record("validate", False, self._elapsed_ms(start), error_codes=result.error_codes)
            return result

        schema_validator = self._validator
        if custom_schema:
            schema_validator = self.create_custom_validator(custom_schema)._validator

        errors = validate_against_schema(parsed, schema_validator)
        errors.extend(check_business_rules(parsed))
        valid = not errors

        warnings: List[ValidationDiagnostic] = []
        if include_warnings is None:
            include_warnings = self.config.include_warnings
        if valid and include_warnings:
            warnings = collect_warnings(parsed)

        items = parsed.get("items") if isinstance(parsed, dict) else None
        elapsed = self._elapsed_ms(start)
        result = ValidationResult(
            valid=valid,
            errors=errors,
            warnings=warnings,
            metadata=ValidationMetadata(
                item_count=len(items) if isinstance(items, list) else 0,
                has_extensions=has_extension_fields(parsed),
                processing_time_ms=elapsed,
            ),
        )

        self.metrics.record("validate", valid, elapsed, document_size(parsed), result.error_codes)
        if not valid:
            logger.debug(f"Document failed validation with {len(errors)} errors: {result.error_codes}")
        return result

    def validate_content_item(self, item: Any) -> ValidationResult:
        """
        Validate a single content item by wrapping it in a minimal feed.

        Only diagnostics about the item are kept; their paths are re-rooted
        so "items[0].url" becomes "url" and the item itself is "item".
        """
        if hasattr(item, "model_dump"):
            item = item.model_dump(exclude_none=True)

        synthetic_feed = {
            "version": "https://ansybl.org/version/1.0",
            "title": "Validation Feed",
            "home_page_url": "https://example.com",
            "feed_url": "https://example.com/feed.ansybl",
            "author": {"name": "Validation Author", "public_key": PLACEHOLDER_PUBLIC_KEY},
            "items": [item],
        }

        result = self.validate_document(synthetic_feed, include_warnings=False)
        if result.valid or result.error_codes == [ErrorCode.INVALID_JSON.value]:
            return result

        errors = []
        for error in result.errors:
            field = reroot_path(error.field, "items[0]", replacement="item")
            if field is None and error.field == "items":
                field = "item"
            if field is not None:
                error.field = field
                errors.append(error)

        result.errors = errors
        result.valid = not errors
        return result

    def validate_extensions(self, document: Any) -> ValidationResult:
        """Check extension field names and values only."""
        try:
            parsed = decode_document(document)
        except ValueError as e:
            return invalid_json_result(e)

        errors = check_extensions(parsed)
        return ValidationResult(valid=not errors, errors=errors)

    def create_custom_validator(self, custom_schema: Dict[str, Any]) -> FeedValidator:
        """
        Get a validator for the base schema extended by a fragment.

        Properties, definitions and required fields of the fragment are
        merged into a copy of the base schema. Validators are cached by the
        fragment's canonical hash.
        """
        cache_key = canonical_hash(custom_schema)

        with self._custom_lock:
            validator = self._custom_validators.get(cache_key)
            if validator is None:
                merged = merge_schemas(self.schema, custom_schema)
                validator = FeedValidator(schema_path=self.schema_path, schema=merged, config=self.config)
                self._custom_validators[cache_key] = validator
                logger.debug(f"Compiled custom validator {cache_key[:12]}")

        return validator

    def validate_batch(
        self,
        documents: Sequence[Any],
        include_warnings: Optional[bool] = None,
        custom_schema: Optional[Dict[str, Any]] = None,
        max_workers: Optional[int] = None
    ) -> List[ValidationResult]:
        """
        Validate many documents concurrently.

        Results are returned in input order with batch_index set. A document
        whose validation raises becomes a BATCH_VALIDATION_ERROR result.
        max_workers defaults to config.batch_max_workers.
        """
        start = time.perf_counter()
        max_workers = max_workers or self.config.batch_max_workers

        def validate_one(index: int, document: Any) -> ValidationResult:
            try:
                result = self.validate_document(document, include_warnings, custom_schema)
            except Exception as e:
                logger.warning(f"Batch document {index} could not be validated: {e}")
                result = ValidationResult(
                    valid=False,
                    errors=[ValidationDiagnostic(
                        code=ErrorCode.BATCH_VALIDATION_ERROR,
                        field="document",
                        message=str(e),
                        details=type(e).__name__,
                    )],
                )
            result.batch_index = index
            return result

        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            results = list(executor.map(validate_one, range(len(documents)), documents))

        logger.info(f"Batch validation completed: {len(documents)} documents in {self._elapsed_ms(start):.1f}ms")
        return results

    def get_performance_metrics(self) -> Dict[str, Any]:
        """Counters for this validator, with validation-specific aliases."""
        snapshot = self.metrics.snapshot()
        snapshot["total_validations"] = snapshot["count"]
        snapshot["valid_documents"] = snapshot["successes"]
        snapshot["invalid_documents"] = snapshot["failures"]
        return snapshot

    def reset_performance_metrics(self) -> None:
        self.metrics.reset()

    @staticmethod
    def _elapsed_ms(start: float) -> float:
        return (time.perf_counter() - start) * 1000.0
