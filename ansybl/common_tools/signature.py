"""
Ed25519 signing and verification for Ansybl documents.

Keys and signatures use the textual envelope ``ed25519:<base64>`` (32 raw
bytes for keys, 64 for signatures). Content is always canonicalized before
signing or verifying. Verification never raises: malformed and forged
signatures both yield ``False``.

Also provides:
- KeyManager: per-id active key with append-only rotation history
- SignatureService: timestamped signing and signature chains
"""

import base64
import binascii
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from nacl.exceptions import BadSignatureError, CryptoError
from nacl.signing import SigningKey, VerifyKey

from .canonicalizer import canonical_bytes, canonical_hash
from .dates import parse_datetime, utc_now_iso
from .errors import InvalidKeyFormat, KeyManagementError

logger = logging.getLogger(__name__)

ENVELOPE_PREFIX = "ed25519:"
KEY_LENGTH = 32
SIGNATURE_LENGTH = 64


@dataclass(frozen=True)
class KeyPair:
    """An enveloped Ed25519 key pair."""
    private_key: str
    public_key: str


@dataclass(frozen=True)
class KeyValidation:
    """Result of checking a key envelope."""
    valid: bool
    raw: Optional[bytes] = None
    error: Optional[str] = None


def _encode(raw: bytes) -> str:
    return ENVELOPE_PREFIX + base64.b64encode(raw).decode("ascii")


def _decode(envelope: Any, expected_length: int) -> Optional[bytes]:
    """Decode an envelope, returning None if it is malformed."""
    if not isinstance(envelope, str) or not envelope.startswith(ENVELOPE_PREFIX):
        return None
    try:
        raw = base64.b64decode(envelope[len(ENVELOPE_PREFIX):], validate=True)
    except (binascii.Error, ValueError):
        return None
    if len(raw) != expected_length:
        return None
    return raw


def validate_key_format(key: Any, key_type: str = "public") -> KeyValidation:
    """
    Check that a key is a well-formed ed25519 envelope.

    Args:
        key: Key string in format "ed25519:base64"
        key_type: 'private' or 'public' (both are 32 bytes)

    Returns:
        KeyValidation with the raw bytes when valid
    """
    if not key or not isinstance(key, str):
        return KeyValidation(False, error="Key must be a non-empty string")

    if not key.startswith(ENVELOPE_PREFIX):
        return KeyValidation(False, error=f'Key must start with "{ENVELOPE_PREFIX}" prefix')

    try:
        raw = base64.b64decode(key[len(ENVELOPE_PREFIX):], validate=True)
    except (binascii.Error, ValueError):
        return KeyValidation(False, error="Invalid base64 encoding")

    if len(raw) != KEY_LENGTH:
        return KeyValidation(
            False,
            error=f"Invalid {key_type} key length. Expected {KEY_LENGTH} bytes, got {len(raw)}"
        )

    return KeyValidation(True, raw=raw)


def _signing_key(private_key: Any) -> SigningKey:
    validation = validate_key_format(private_key, "private")
    if not validation.valid:
        raise InvalidKeyFormat(f"Invalid private key: {validation.error}", key_type="private")
    return SigningKey(validation.raw)


def generate_key_pair() -> KeyPair:
    """Generate a fresh Ed25519 key pair."""
    signing_key = SigningKey.generate()
    return KeyPair(
        private_key=_encode(bytes(signing_key)),
        public_key=_encode(bytes(signing_key.verify_key)),
    )


def get_public_key_from_private(private_key: str) -> str:
    """Derive the enveloped public key from an enveloped private key."""
    return _encode(bytes(_signing_key(private_key).verify_key))


def sign_content(content: Any, private_key: str) -> str:
    """
    Sign content using an Ed25519 private key.

    Args:
        content: JSON-like content (canonicalized before signing)
        private_key: Private key in format "ed25519:base64"

    Returns:
        Signature in format "ed25519:base64"

    Raises:
        InvalidKeyFormat: If the private key is malformed or the wrong length
    """
    signing_key = _signing_key(private_key)
    signed = signing_key.sign(canonical_bytes(content))
    return _encode(signed.signature)


def verify_signature(content: Any, signature: Any, public_key: Any) -> bool:
    """
    Verify a signature against content using an Ed25519 public key.

    Returns False for malformed keys, malformed signatures, content that
    cannot be canonicalized, or signatures that do not match.
    """
    raw_signature = _decode(signature, SIGNATURE_LENGTH)
    raw_public_key = _decode(public_key, KEY_LENGTH)
    if raw_signature is None or raw_public_key is None:
        return False

    try:
        message = canonical_bytes(content)
        VerifyKey(raw_public_key).verify(message, raw_signature)
        return True
    except (BadSignatureError, CryptoError, TypeError, ValueError):
        return False


# ---------------------------------------------------------------------------
# Key management
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ActiveKey:
    """The key pair currently used for signing under a key id."""
    key_id: str
    private_key: str
    public_key: str
    created_at: str
    rotation_count: int = 0
    previous_public_key: Optional[str] = None


@dataclass(frozen=True)
class RetiredKey:
    """A key pair that may still verify old signatures but never signs."""
    key_id: str
    public_key: str
    created_at: str
    retired_at: str
    rotation_count: int
    reason: str = "rotated"


@dataclass(frozen=True)
class KeyRecord:
    """Immutable snapshot of everything known about a key id."""
    key_id: str
    active: Optional[ActiveKey]
    history: Tuple[RetiredKey, ...] = ()
    deleted_at: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.active is not None


class KeyManager:
    """
    In-memory key management with rotation and soft deletion.

    Each key id maps to a single immutable KeyRecord. Rotation and deletion
    build a new record and swap it in under a lock, so readers always see
    either the old or the new state. Persistence is left to callers.
    """

    def __init__(self):
        self._records: Dict[str, KeyRecord] = {}
        self._lock = threading.Lock()

    def generate_key_pair(self, key_id: str) -> KeyPair:
        """
        Generate and store a new key pair.

        Raises:
            KeyManagementError: If the key id is already in use
        """
        key_pair = generate_key_pair()
        active = ActiveKey(
            key_id=key_id,
            private_key=key_pair.private_key,
            public_key=key_pair.public_key,
            created_at=utc_now_iso(),
        )

        with self._lock:
            if key_id in self._records:
                raise KeyManagementError(f"Key already exists: {key_id}", key_id=key_id)
            self._records[key_id] = KeyRecord(key_id=key_id, active=active)

        logger.info(f"Generated key pair for '{key_id}'")
        return key_pair

    def rotate_key(self, key_id: str) -> Dict[str, str]:
        """
        Replace the active key pair, retiring the old one to history.

        Returns:
            Dictionary with key_id, private_key, public_key and previous_public_key

        Raises:
            KeyManagementError: If the key id is unknown or deleted
        """
        new_pair = generate_key_pair()

        with self._lock:
            record = self._records.get(key_id)
            if record is None or record.active is None:
                raise KeyManagementError(f"Key not found or inactive: {key_id}", key_id=key_id)

            now = utc_now_iso()
            old = record.active
            retired = RetiredKey(
                key_id=key_id,
                public_key=old.public_key,
                created_at=old.created_at,
                retired_at=now,
                rotation_count=old.rotation_count,
            )
            active = ActiveKey(
                key_id=key_id,
                private_key=new_pair.private_key,
                public_key=new_pair.public_key,
                created_at=now,
                rotation_count=old.rotation_count + 1,
                previous_public_key=old.public_key,
            )
            self._records[key_id] = KeyRecord(
                key_id=key_id,
                active=active,
                history=record.history + (retired,),
            )

        logger.info(f"Rotated key '{key_id}' to rotation {active.rotation_count}")
        return {
            "key_id": key_id,
            "private_key": new_pair.private_key,
            "public_key": new_pair.public_key,
            "previous_public_key": old.public_key,
        }

    def get_record(self, key_id: str) -> Optional[KeyRecord]:
        """Get the current record snapshot for a key id."""
        with self._lock:
            return self._records.get(key_id)

    def get_active_key(self, key_id: str) -> Optional[ActiveKey]:
        """Get the active key pair, or None if unknown or deleted."""
        record = self.get_record(key_id)
        return record.active if record else None

    def get_public_key_data(self, key_id: str, public_key: str) -> Optional[Any]:
        """Find a current or retired key under key_id matching public_key."""
        record = self.get_record(key_id)
        if record is None:
            return None

        if record.active and record.active.public_key == public_key:
            return record.active

        for retired in record.history:
            if retired.public_key == public_key:
                return retired

        return None

    def get_key_history(self, key_id: str) -> List[Any]:
        """List active and retired keys for a key id, newest rotation first."""
        record = self.get_record(key_id)
        if record is None:
            return []

        keys: List[Any] = list(record.history)
        if record.active:
            keys.append(record.active)
        return sorted(keys, key=lambda k: k.rotation_count, reverse=True)

    def delete_key(self, key_id: str) -> bool:
        """
        Soft-delete a key id.

        The active key is retired with reason 'deleted'; the history is kept
        for auditing and verification of old signatures.
        """
        with self._lock:
            record = self._records.get(key_id)
            if record is None or record.deleted_at is not None:
                return False

            now = utc_now_iso()
            history = record.history
            if record.active is not None:
                history = history + (RetiredKey(
                    key_id=key_id,
                    public_key=record.active.public_key,
                    created_at=record.active.created_at,
                    retired_at=now,
                    rotation_count=record.active.rotation_count,
                    reason="deleted",
                ),)
            self._records[key_id] = KeyRecord(
                key_id=key_id,
                active=None,
                history=history,
                deleted_at=now,
            )

        logger.info(f"Deleted key '{key_id}' (audit history retained)")
        return True

    def sign_with(self, key_id: str, content: Any) -> str:
        """
        Sign content with the active key of key_id.

        The active key is read once; a concurrent rotation does not affect a
        signing operation that has already started.
        """
        active = self.get_active_key(key_id)
        if active is None:
            raise KeyManagementError(f"No active key for: {key_id}", key_id=key_id)
        return sign_content(content, active.private_key)


# ---------------------------------------------------------------------------
# Signature service
# ---------------------------------------------------------------------------

@dataclass
class VerificationResult:
    """Detailed outcome of a signature verification."""
    valid: bool
    public_key: Any
    signature: Any
    timestamp: Optional[str] = None
    timestamp_valid: Optional[bool] = None
    errors: List[str] = field(default_factory=list)


@dataclass
class ChainItemResult:
    index: int
    signature_valid: bool
    chain_valid: bool = True
    errors: List[str] = field(default_factory=list)


@dataclass
class ChainVerificationResult:
    """Outcome of verifying a signature chain."""
    valid: bool
    chain_valid: bool
    item_results: List[ChainItemResult] = field(default_factory=list)
    first_broken_index: Optional[int] = None


class SignatureService:
    """Signing helpers layered over sign_content/verify_signature."""

    def __init__(
        self,
        key_manager: Optional[KeyManager] = None,
        allow_timestamp_skew: float = 300.0,
        require_timestamp: bool = False
    ):
        self.key_manager = key_manager or KeyManager()
        self.allow_timestamp_skew = allow_timestamp_skew
        self.require_timestamp = require_timestamp

    @classmethod
    def from_config(cls, config: Any, key_manager: Optional[KeyManager] = None) -> "SignatureService":
        """Build a service from the `signature` configuration section."""
        return cls(key_manager, config.allow_timestamp_skew_seconds, config.require_timestamp)

    def sign_content(
        self,
        content: Dict[str, Any],
        private_key: str,
        include_timestamp: bool = False,
        custom_fields: Optional[Dict[str, Any]] = None
    ) -> str:
        """
        Sign content, optionally adding a `_timestamp` and custom fields first.

        Returns only the signature; callers that want the timestamp verified
        later must store the same enriched content.
        """
        signing_content = dict(content)
        if include_timestamp:
            signing_content["_timestamp"] = utc_now_iso()
        if custom_fields:
            signing_content.update(custom_fields)
        return sign_content(signing_content, private_key)

    def verify_signature(
        self,
        content: Dict[str, Any],
        signature: Any,
        public_key: Any,
        allow_timestamp_skew: Optional[float] = None,
        require_timestamp: Optional[bool] = None
    ) -> VerificationResult:
        """
        Verify a signature and check the optional `_timestamp` skew.

        Args:
            allow_timestamp_skew: Maximum allowed distance from now, in seconds
            require_timestamp: Fail if content carries no `_timestamp`
        """
        if allow_timestamp_skew is None:
            allow_timestamp_skew = self.allow_timestamp_skew
        if require_timestamp is None:
            require_timestamp = self.require_timestamp

        timestamp = content.get("_timestamp") if isinstance(content, dict) else None
        result = VerificationResult(
            valid=verify_signature(content, signature, public_key),
            public_key=public_key,
            signature=signature,
            timestamp=timestamp,
        )

        if not result.valid:
            result.errors.append("Signature verification failed")
            return result

        if require_timestamp and not timestamp:
            result.valid = False
            result.errors.append("Timestamp is required but not present")

        if timestamp:
            signed_at = parse_datetime(timestamp)
            if signed_at is None:
                result.valid = False
                result.timestamp_valid = False
                result.errors.append(f"Timestamp is not a valid ISO 8601 date: {timestamp}")
                return result

            skew = abs((datetime.now(timezone.utc) - signed_at).total_seconds())
            result.timestamp_valid = skew <= allow_timestamp_skew
            if not result.timestamp_valid:
                result.valid = False
                result.errors.append(
                    f"Timestamp skew too large: {skew:.0f}s > {allow_timestamp_skew:.0f}s"
                )

        return result

    @staticmethod
    def chain_content(item: Dict[str, Any]) -> Dict[str, Any]:
        """Item without its signature. Chain fields stay, so signatures cover the links."""
        linked = dict(item)
        linked.pop("signature", None)
        return linked

    @classmethod
    def chain_link_hash(cls, item: Dict[str, Any]) -> str:
        """Hash an item for chaining: canonical form without its signature."""
        return canonical_hash(cls.chain_content(item))

    def create_signature_chain(self, items: List[Dict[str, Any]], private_key: str) -> List[Dict[str, Any]]:
        """
        Sign items in sequence, each embedding the hash of its predecessor.

        Returns:
            New item dictionaries carrying `_chainIndex`, `_previousHash`
            (all but the first) and `signature`
        """
        signed_items = []
        previous_hash = None

        for index, original in enumerate(items):
            item = dict(original)
            item.pop("signature", None)
            item.pop("_previousHash", None)
            if previous_hash is not None:
                item["_previousHash"] = previous_hash
            item["_chainIndex"] = index

            item["signature"] = sign_content(self.chain_content(item), private_key)
            previous_hash = self.chain_link_hash(item)
            signed_items.append(item)

        logger.debug(f"Created signature chain of {len(signed_items)} items")
        return signed_items

    def verify_signature_chain(self, items: List[Dict[str, Any]], public_key: str) -> ChainVerificationResult:
        """Verify every signature and every hash link in a chain."""
        result = ChainVerificationResult(valid=True, chain_valid=True)
        expected_previous = None

        for index, item in enumerate(items):
            item_result = ChainItemResult(
                index=index,
                signature_valid=verify_signature(self.chain_content(item), item.get("signature"), public_key),
            )

            if not item_result.signature_valid:
                result.valid = False
                item_result.errors.append("Signature verification failed")

            if index > 0 and item.get("_previousHash") != expected_previous:
                result.chain_valid = False
                item_result.chain_valid = False
                item_result.errors.append(
                    f"Chain break: expected {expected_previous}, got {item.get('_previousHash')}"
                )

            if item.get("_chainIndex") != index:
                result.chain_valid = False
                item_result.chain_valid = False
                item_result.errors.append(f"Chain index mismatch: expected {index}, got {item.get('_chainIndex')}")

            if item_result.errors and result.first_broken_index is None:
                result.first_broken_index = index

            expected_previous = self.chain_link_hash(item)
            result.item_results.append(item_result)

        result.valid = result.valid and result.chain_valid
        return result
