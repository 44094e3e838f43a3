"""
Ansybl: signed, schema-validated feed documents.

The module-level functions delegate to lazily created default instances
of FeedValidator, DocumentBuilder and FeedParser, configured from
get_config().
"""

import threading
from typing import Any, Iterable, Mapping, Optional

from .builder import DocumentBuilder
from .common_tools import (
    AnsyblError,
    DocumentBuildError,
    ErrorCode,
    FeedValidator,
    InvalidKeyFormat,
    KeyManagementError,
    KeyManager,
    KeyPair,
    SignatureService,
    ValidationDiagnostic,
    ValidationResult,
    generate_key_pair,
    sign_content,
    verify_signature,
)
from .common_tools.logging import configure_logging
from .common_tools.models import ContentItem, FeedDocument
from .config import MonitoringConfig, get_config
from .parser import FeedParser, ItemFilters, ParseOptions, ParseResult, SignatureReport

__version__ = "1.0.0"

_defaults_lock = threading.Lock()
_defaults = {}


def _default(name: str):
    with _defaults_lock:
        if name not in _defaults:
            config = get_config()
            validator = _defaults.get("validator") or FeedValidator(config=config.validator)
            _defaults["validator"] = validator
            if name == "builder":
                _defaults[name] = DocumentBuilder(validator, config.builder)
            elif name == "parser":
                _defaults[name] = FeedParser(validator, config.parser)
        return _defaults[name]


def reset_defaults() -> None:
    """Drop the default instances so the next call picks up new configuration."""
    with _defaults_lock:
        _defaults.clear()


def setup_logging(monitoring: Optional[MonitoringConfig] = None) -> dict:
    """Apply the logging section of the configuration to the `ansybl` loggers."""
    monitoring = monitoring or get_config().monitoring
    return configure_logging(monitoring.log_level, monitoring.log_format, monitoring.log_file)


def validate_document(document: Any, **options: Any) -> ValidationResult:
    return _default("validator").validate_document(document, **options)


def parse(document: Any, options: Optional[ParseOptions] = None) -> ParseResult:
    return _default("parser").parse(document, options)


def create_feed(metadata: Mapping[str, Any]) -> FeedDocument:
    return _default("builder").create_feed(metadata)


def add_item(feed: Any, item_data: Mapping[str, Any], private_key: str) -> FeedDocument:
    return _default("builder").add_item(feed, item_data, private_key)


def sign_feed(feed: Any, private_key: str) -> FeedDocument:
    return _default("builder").sign_feed(feed, private_key)


def create_complete_feed(metadata: Mapping[str, Any], items: Iterable[Mapping[str, Any]],
                         private_key: str) -> FeedDocument:
    return _default("builder").create_complete_feed(metadata, items, private_key)


__all__ = [
    "__version__",
    # Conveniences
    "validate_document",
    "parse",
    "create_feed",
    "add_item",
    "sign_feed",
    "create_complete_feed",
    "generate_key_pair",
    "sign_content",
    "verify_signature",
    "reset_defaults",
    "setup_logging",
    # Components
    "FeedValidator",
    "DocumentBuilder",
    "FeedParser",
    "KeyManager",
    "SignatureService",
    # Values
    "FeedDocument",
    "ContentItem",
    "KeyPair",
    "ParseOptions",
    "ParseResult",
    "ItemFilters",
    "SignatureReport",
    "ValidationResult",
    "ValidationDiagnostic",
    "ErrorCode",
    # Errors
    "AnsyblError",
    "InvalidKeyFormat",
    "KeyManagementError",
    "DocumentBuildError",
]
