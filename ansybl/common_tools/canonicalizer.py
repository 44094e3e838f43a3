"""
Canonical JSON serialization for Ansybl documents.

One logical document always yields one byte-identical encoding: object keys
are sorted by code point at every depth, arrays keep their order and no
insignificant whitespace is emitted. Signatures are computed over this form,
so they do not depend on how a document was constructed.
"""

import copy
import hashlib
import json
from typing import Any, Dict, Mapping

# Fields removed before computing signature data
SIGNATURE_FIELD = "signature"
TRANSIENT_FIELDS = ("_timestamp", "_previousHash", "_chainIndex")
SIGNATURE_KINDS = ("feed", "item")


def _to_jsonable(value: Any) -> Any:
    """Unwrap pydantic models into plain JSON values."""
    if hasattr(value, "model_dump") and callable(value.model_dump):
        return value.model_dump(exclude_none=True)
    return value


def serialize(value: Any) -> str:
    """
    Serialize a JSON-like value to its canonical string form.

    Args:
        value: dict/list/str/int/float/bool/None tree (or a pydantic model)

    Returns:
        Canonical JSON string

    Raises:
        TypeError: If the value contains non-JSON types
        ValueError: If the value contains NaN or Infinity
    """
    return json.dumps(
        _to_jsonable(value),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    )


def canonical_bytes(value: Any) -> bytes:
    """UTF-8 bytes of the canonical form."""
    return serialize(value).encode("utf-8")


def canonical_hash(value: Any) -> str:
    """SHA-256 hex digest of the canonical form."""
    return hashlib.sha256(canonical_bytes(value)).hexdigest()


def signable_content(document: Any) -> Dict[str, Any]:
    """
    Return a copy of a feed or item with the signature and transient fields removed.

    Only top-level fields are stripped; nested item signatures are part of
    a feed's signed content.
    """
    document = _to_jsonable(document)
    if not isinstance(document, Mapping):
        raise TypeError(f"Signable content must be an object, got {type(document).__name__}")

    signable = copy.deepcopy(dict(document))
    signable.pop(SIGNATURE_FIELD, None)
    for field in TRANSIENT_FIELDS:
        signable.pop(field, None)
    return signable


def create_signature_data(document: Any, kind: str = "item") -> str:
    """
    Create the canonical string a feed or item signature is computed over.

    Args:
        document: Feed document or content item
        kind: 'feed' or 'item'

    Returns:
        Canonical JSON of the document without signature/transient fields
    """
    if kind not in SIGNATURE_KINDS:
        raise ValueError(f"Unknown signature data kind '{kind}', expected one of {SIGNATURE_KINDS}")
    return serialize(signable_content(document))


def is_canonical(text: str) -> bool:
    """Check whether a JSON string is already in canonical form."""
    try:
        return serialize(json.loads(text)) == text
    except (TypeError, ValueError):
        return False


def are_canonically_equivalent(first: str, second: str) -> bool:
    """Check whether two JSON strings encode the same canonical document."""
    try:
        return serialize(json.loads(first)) == serialize(json.loads(second))
    except (TypeError, ValueError):
        return False


def verify_canonical_consistency(text: str) -> Dict[str, Any]:
    """
    Report whether a JSON string canonicalizes stably.

    Returns:
        Dictionary with consistent flag, lengths and the canonical form
    """
    try:
        canonical = serialize(json.loads(text))
        recanonical = serialize(json.loads(canonical))
    except (TypeError, ValueError) as e:
        return {"consistent": False, "error": str(e), "canonical_form": None}

    return {
        "consistent": canonical == recanonical,
        "original_length": len(text),
        "canonical_length": len(canonical),
        "canonical_form": canonical,
    }
