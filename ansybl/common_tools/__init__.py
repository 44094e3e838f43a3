# Shared building blocks for the builder and parser: canonical JSON,
# Ed25519 signatures, validation, content helpers, logging and metrics.

from .canonicalizer import (
    are_canonically_equivalent,
    canonical_hash,
    create_signature_data,
    serialize,
    signable_content,
)
from .diagnostics import ErrorCode, ValidationDiagnostic, ValidationMetadata, ValidationResult
from .errors import AnsyblError, DocumentBuildError, InvalidKeyFormat, KeyManagementError
from .metrics import PerformanceMetrics
from .schema_validator import FeedValidator
from .signature import (
    KeyManager,
    KeyPair,
    SignatureService,
    generate_key_pair,
    get_public_key_from_private,
    sign_content,
    validate_key_format,
    verify_signature,
)

__all__ = [
    # Canonical JSON
    'serialize',
    'canonical_hash',
    'signable_content',
    'create_signature_data',
    'are_canonically_equivalent',

    # Signatures
    'KeyPair',
    'KeyManager',
    'SignatureService',
    'generate_key_pair',
    'get_public_key_from_private',
    'sign_content',
    'verify_signature',
    'validate_key_format',

    # Validation
    'FeedValidator',
    'ErrorCode',
    'ValidationDiagnostic',
    'ValidationMetadata',
    'ValidationResult',

    # Errors
    'AnsyblError',
    'InvalidKeyFormat',
    'KeyManagementError',
    'DocumentBuildError',

    'PerformanceMetrics',
]
