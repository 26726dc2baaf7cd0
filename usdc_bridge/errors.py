"""
Bridge error types

Provides consistent error handling patterns across the bridge components.
"""

from typing import Optional


class BridgeError(Exception):
    """Base exception for bridge errors"""

    def __init__(self, message: str, error_code: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or "UNKNOWN_ERROR"
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details
        }


class ValidationError(BridgeError):
    """Bad or missing input, unknown chain"""
    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message, "VALIDATION_ERROR", details)


class TransferStateError(ValidationError):
    """Operation not allowed from the transfer's current status"""
    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message, details)
        self.error_code = "INVALID_STATE"


class NotFoundError(BridgeError):
    """Unknown user, wallet or transfer"""
    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message, "NOT_FOUND", details)


class ExternalServiceError(BridgeError):
    """Signing service or attestation oracle failure"""
    def __init__(self, message: str, status_code: Optional[int] = None, details: Optional[dict] = None):
        super().__init__(message, "EXTERNAL_SERVICE_ERROR", details)
        self.status_code = status_code


class MessageAlreadyReceivedError(ExternalServiceError):
    """Mint rejected because the message was already consumed on-chain"""
    def __init__(self, message: str, status_code: Optional[int] = None, details: Optional[dict] = None):
        super().__init__(message, status_code, details)
        self.error_code = "MESSAGE_ALREADY_RECEIVED"


class TimeoutError(BridgeError):
    """Polling budget exhausted"""
    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message, "TIMEOUT_ERROR", details)


# Substrings the destination chain uses when a message was already received
ALREADY_RECEIVED_MARKERS = ("already", "nonce")


def is_already_received(error: Exception) -> bool:
    """Check whether a mint failure looks like a duplicate message submission"""
    text = str(error).lower()
    return any(marker in text for marker in ALREADY_RECEIVED_MARKERS)
