"""
Error taxonomy for the verification engine.

Every rejection carries a machine-readable ``reason`` and a ``category`` so
callers can tell "try again differently" apart from "this is already decided".
Only the ``transient`` category is ever retried.
"""

from typing import Any, Dict, Optional

VALIDATION = "validation"
AUTHORIZATION = "authorization"
NOT_FOUND = "not_found"
STATE_CONFLICT = "state_conflict"
RESOURCE = "resource"
TRANSIENT = "transient"


class VerificationError(Exception):
    """Base class for every engine rejection."""

    reason = "VERIFICATION_ERROR"
    category = VALIDATION

    def __init__(self, message: str = "", details: Optional[Dict[str, Any]] = None):
        super().__init__(message or self.reason)
        self.message = message or self.reason
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "reason": self.reason,
            "category": self.category,
            "detail": self.message,
        }
        if self.details:
            data["details"] = self.details
        return data


class InvalidInput(VerificationError):
    reason = "VALIDATION_ERROR"
    category = VALIDATION


class InvalidPanelConfig(VerificationError):
    reason = "INVALID_PANEL"
    category = VALIDATION


class InvalidSignature(VerificationError):
    """Signature verification failed; ``signature_reason`` says which check."""

    reason = "INVALID_SIGNATURE"
    category = VALIDATION

    def __init__(self, signature_reason: str, message: str = ""):
        super().__init__(message or f"Wallet signature rejected: {signature_reason}",
                         {"signature_reason": signature_reason})
        self.signature_reason = signature_reason


class NotAuthorized(VerificationError):
    reason = "NOT_AUTHORIZED"
    category = AUTHORIZATION


class NotAssigned(VerificationError):
    reason = "NOT_ASSIGNED"
    category = AUTHORIZATION


class RequestNotFound(VerificationError):
    reason = "REQUEST_NOT_FOUND"
    category = NOT_FOUND


class WrongState(VerificationError):
    reason = "WRONG_STATE"
    category = STATE_CONFLICT


class DeadlinePassed(VerificationError):
    reason = "DEADLINE_PASSED"
    category = STATE_CONFLICT


class NotExtendable(VerificationError):
    reason = "NOT_EXTENDABLE"
    category = STATE_CONFLICT


class AlreadyAssigned(VerificationError):
    reason = "ALREADY_ASSIGNED"
    category = STATE_CONFLICT


class NotStalled(VerificationError):
    reason = "NOT_STALLED"
    category = STATE_CONFLICT


class InsufficientCandidates(VerificationError):
    reason = "INSUFFICIENT_CANDIDATES"
    category = RESOURCE

    def __init__(self, required: int, available: int):
        super().__init__(
            f"Not enough validators available. Required: {required}, Available: {available}",
            {"required": required, "available": available},
        )
        self.required = required
        self.available = available


class TransientStorageError(VerificationError):
    reason = "TRANSIENT_STORAGE_ERROR"
    category = TRANSIENT
