"""Structured error values shared by services and API routes.

Every error carries a stable machine-readable ``code``, an HTTP-equivalent
``status_code`` and an optional provider ``detail``. The detail is always logged
but only rendered into responses outside production.
"""
from typing import Any, Dict, Optional


class BrokerError(Exception):
    """Base error with a stable code, HTTP status and optional provider detail"""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        detail: Optional[str] = None,
        **context: Any,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        self.detail = detail
        self.context = context

    def to_payload(self, include_detail: bool = True) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"success": False, "error": self.message, "code": self.code}
        if include_detail and self.detail:
            payload["detail"] = self.detail
        # Non-secret context the caller needs to act on (e.g. quota usage)
        payload.update(self.context)
        return payload

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


class RequestValidationFailed(BrokerError):
    code = "MISSING_PARAMS"
    status_code = 400


class CredentialNotFoundError(BrokerError):
    code = "IG_USER_NOT_FOUND"
    status_code = 404


class TokenExpiredError(BrokerError):
    code = "TOKEN_EXPIRED"
    status_code = 401

    def __init__(self, message: str = "Access token has expired. Please re-authenticate.", **kwargs):
        super().__init__(message, tokenExpired=True, **kwargs)


class RateLimitExceededError(BrokerError):
    code = "RATE_LIMIT_EXCEEDED"
    status_code = 429


class GraphAPIError(BrokerError):
    """Non-success response (or transport failure) from the Graph API"""

    code = "GRAPH_API_ERROR"
    status_code = 502

    def __init__(
        self,
        message: str,
        http_status: Optional[int] = None,
        provider_code: Optional[int] = None,
        provider_type: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.http_status = http_status
        self.provider_code = provider_code
        self.provider_type = provider_type


class ExchangeError(BrokerError):
    code = "EXCHANGE_ERROR"
    status_code = 400


class OAuthDiscoveryError(BrokerError):
    code = "NO_INSTAGRAM_ACCOUNT"
    status_code = 404


class LicenseError(BrokerError):
    code = "LICENSE_INVALID"
    status_code = 403


class SubscriptionRequiredError(LicenseError):
    code = "SUBSCRIPTION_REQUIRED"
    status_code = 402
