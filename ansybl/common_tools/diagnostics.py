"""
Diagnostic value types shared by the validator, builder and parser.

A diagnostic describes one problem (or warning) found in a document:
a stable machine code, the field path where it occurred, a human message,
free-form details and a list of suggestions for fixing it.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorCode(str, Enum):
    """Machine-readable diagnostic codes."""
    # Input
    INVALID_JSON = "INVALID_JSON"
    # Structural (schema keywords)
    MISSING_REQUIRED_FIELD = "MISSING_REQUIRED_FIELD"
    INVALID_TYPE = "INVALID_TYPE"
    INVALID_FORMAT = "INVALID_FORMAT"
    INVALID_PATTERN = "INVALID_PATTERN"
    TOO_SHORT = "TOO_SHORT"
    TOO_LONG = "TOO_LONG"
    TOO_SMALL = "TOO_SMALL"
    TOO_LARGE = "TOO_LARGE"
    TOO_FEW_ITEMS = "TOO_FEW_ITEMS"
    TOO_MANY_ITEMS = "TOO_MANY_ITEMS"
    UNKNOWN_FIELD = "UNKNOWN_FIELD"
    INVALID_VALUE = "INVALID_VALUE"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    # Business rules
    DUPLICATE_ITEM_ID = "DUPLICATE_ITEM_ID"
    INVALID_DATE_ORDER = "INVALID_DATE_ORDER"
    NO_CONTENT = "NO_CONTENT"
    SELF_REPLY = "SELF_REPLY"
    INVALID_IMAGE_DIMENSIONS = "INVALID_IMAGE_DIMENSIONS"
    INVALID_DURATION = "INVALID_DURATION"
    INVALID_FILE_SIZE = "INVALID_FILE_SIZE"
    INVALID_EXTENSION_FIELD_NAME = "INVALID_EXTENSION_FIELD_NAME"
    INVALID_EXTENSION_FIELD_VALUE = "INVALID_EXTENSION_FIELD_VALUE"
    # Warnings
    MISSING_DESCRIPTION = "MISSING_DESCRIPTION"
    MISSING_ICON = "MISSING_ICON"
    MISSING_LANGUAGE = "MISSING_LANGUAGE"
    MISSING_TITLE_SUMMARY = "MISSING_TITLE_SUMMARY"
    MISSING_ALT_TEXT = "MISSING_ALT_TEXT"
    # Batch / builder
    BATCH_VALIDATION_ERROR = "BATCH_VALIDATION_ERROR"
    INVALID_METADATA = "INVALID_METADATA"
    # Parser
    MISSING_FEED_SIGNATURE = "MISSING_FEED_SIGNATURE"
    MISSING_ITEM_SIGNATURE = "MISSING_ITEM_SIGNATURE"
    INVALID_FEED_SIGNATURE = "INVALID_FEED_SIGNATURE"
    INVALID_ITEM_SIGNATURE = "INVALID_ITEM_SIGNATURE"
    SIGNATURE_VERIFICATION_FAILED = "SIGNATURE_VERIFICATION_FAILED"
    PARSE_ERROR = "PARSE_ERROR"
    METADATA_PARSE_ERROR = "METADATA_PARSE_ERROR"
    NO_CONTENT_ITEMS = "NO_CONTENT_ITEMS"
    CONTENT_PARSE_ERROR = "CONTENT_PARSE_ERROR"

    def __str__(self) -> str:
        return self.value


# JSON Schema keyword -> diagnostic code
SCHEMA_KEYWORD_CODES = {
    "required": ErrorCode.MISSING_REQUIRED_FIELD,
    "type": ErrorCode.INVALID_TYPE,
    "format": ErrorCode.INVALID_FORMAT,
    "pattern": ErrorCode.INVALID_PATTERN,
    "minLength": ErrorCode.TOO_SHORT,
    "maxLength": ErrorCode.TOO_LONG,
    "minimum": ErrorCode.TOO_SMALL,
    "maximum": ErrorCode.TOO_LARGE,
    "minItems": ErrorCode.TOO_FEW_ITEMS,
    "maxItems": ErrorCode.TOO_MANY_ITEMS,
    "additionalProperties": ErrorCode.UNKNOWN_FIELD,
    "enum": ErrorCode.INVALID_VALUE,
}


def code_for_keyword(keyword: str) -> ErrorCode:
    return SCHEMA_KEYWORD_CODES.get(keyword, ErrorCode.VALIDATION_ERROR)


@dataclass
class ValidationDiagnostic:
    """A single validation error or warning."""
    code: ErrorCode
    field: str
    message: str
    details: Any = None
    suggestions: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code.value,
            "field": self.field,
            "message": self.message,
            "details": self.details,
            "suggestions": list(self.suggestions),
        }


@dataclass
class ValidationMetadata:
    item_count: int = 0
    has_extensions: bool = False
    processing_time_ms: float = 0.0


@dataclass
class ValidationResult:
    """Outcome of validating one document."""
    valid: bool
    errors: List[ValidationDiagnostic] = field(default_factory=list)
    warnings: List[ValidationDiagnostic] = field(default_factory=list)
    metadata: Optional[ValidationMetadata] = None
    batch_index: Optional[int] = None

    @property
    def error_codes(self) -> List[str]:
        return [error.code.value for error in self.errors]

    def errors_at(self, field_path: str) -> List[ValidationDiagnostic]:
        """Get errors reported for an exact field path."""
        return [error for error in self.errors if error.field == field_path]

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "valid": self.valid,
            "errors": [error.to_dict() for error in self.errors],
            "warnings": [warning.to_dict() for warning in self.warnings],
        }
        if self.metadata is not None:
            result["metadata"] = {
                "item_count": self.metadata.item_count,
                "has_extensions": self.metadata.has_extensions,
                "processing_time_ms": self.metadata.processing_time_ms,
            }
        if self.batch_index is not None:
            result["batch_index"] = self.batch_index
        return result
