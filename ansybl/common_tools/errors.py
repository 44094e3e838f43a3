"""
Exception types raised by the Ansybl protocol engine.

Validation and parsing never raise on bad input data; they report
diagnostics instead. The exceptions below are reserved for caller misuse
(malformed signing keys, unknown key ids, unbuildable documents).
"""

from typing import Any, Dict, List, Optional


class AnsyblError(Exception):
    """Base class for all Ansybl errors."""


class InvalidKeyFormat(AnsyblError, ValueError):
    """Raised when a key is not a well-formed ``ed25519:<base64>`` envelope."""

    def __init__(self, message: str, key_type: str = "private"):
        super().__init__(message)
        self.key_type = key_type


class KeyManagementError(AnsyblError):
    """Raised for key rotation/signing against an unknown or deleted key id."""

    def __init__(self, message: str, key_id: Optional[str] = None):
        super().__init__(message)
        self.key_id = key_id


class DocumentBuildError(AnsyblError):
    """Raised when feed metadata or item data cannot form a valid document."""

    def __init__(self, message: str, diagnostics: Optional[List[Any]] = None):
        super().__init__(message)
        self.diagnostics = diagnostics or []

    def get_error_details(self) -> List[Dict[str, Any]]:
        """Get diagnostics as plain dictionaries."""
        return [
            diagnostic.to_dict() if hasattr(diagnostic, "to_dict") else dict(diagnostic)
            for diagnostic in self.diagnostics
        ]
