"""
Error taxonomy for the card shop.

Every error carries a machine-readable code, an HTTP status and a human
message; the server renders them as ``{"error": code, "message": ...}``.
"""
from __future__ import annotations
from typing import Any, Dict, Optional


class NassrError(Exception):
    error_code = "internal_error"
    http_status = 500

    def __init__(self, message: str, **extra: Any) -> None:
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_dict(self) -> Dict[str, Any]:
        body = {"error": self.error_code, "message": self.message}
        body.update(self.extra)
        return body


# ----------------------------
# Gateway errors
# ----------------------------
class ConfigurationError(NassrError):
    """No API key configured. Fatal to the call, not to the process."""
    error_code = "configuration_error"
    http_status = 500


class NetworkError(NassrError):
    error_code = "network_error"
    http_status = 502


class ProtocolError(NassrError):
    """The gateway answered with something that is not JSON."""
    error_code = "protocol_error"
    http_status = 502


class GatewayError(NassrError):
    error_code = "gateway_error"

    def __init__(self, status: int, message: str) -> None:
        super().__init__(message)
        self.status = status

    @property
    def http_status(self) -> int:  # type: ignore[override]
        return 502 if self.status >= 500 else 400


# ----------------------------
# Domain errors
# ----------------------------
class NotFound(NassrError):
    error_code = "not_found"
    http_status = 404


class InvalidInput(NassrError):
    error_code = "invalid_input"
    http_status = 400


class AlreadyRedeemed(NassrError):
    error_code = "already_redeemed"
    http_status = 409

    def __init__(self, message: str, redeemed_at: Optional[str]) -> None:
        super().__init__(message, redeemedAt=redeemed_at)
        self.redeemed_at = redeemed_at


class SignatureMismatch(NassrError):
    error_code = "signature_mismatch"
    http_status = 400
