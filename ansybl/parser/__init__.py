from .feed_parser import (
    FeedParser,
    ItemFilters,
    ItemSignatureResult,
    ParseOptions,
    ParseResult,
    SignatureReport,
    SignatureSummary,
)

__all__ = [
    "FeedParser",
    "ItemFilters",
    "ItemSignatureResult",
    "ParseOptions",
    "ParseResult",
    "SignatureReport",
    "SignatureSummary",
]
