"""
Custom Exception Hierarchy for Seller Watch Search

This module provides a structured exception hierarchy for error handling
and categorization throughout the application.

Usage:
    from services.exceptions import (
        WatchSearchException,
        ExternalServiceError,
        ValidationError,
    )

    try:
        token = await provider.get_token()
    except MissingCredentialsError as e:
        logger.error(f"Search unavailable: {e}")
        raise
"""

from typing import Optional, Dict, Any


class WatchSearchException(Exception):
    """
    Base exception for all Seller Watch Search errors.

    All custom exceptions should inherit from this class to enable
    unified error handling throughout the application.
    """

    def __init__(
        self,
        message: str,
        code: str = "WATCH_SEARCH_ERROR",
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}
        self.cause = cause

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        result = {
            "error": self.code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result

    def __str__(self) -> str:
        if self.cause:
            return f"{self.message} (caused by: {self.cause})"
        return self.message


# ============================================================
# External Service Errors
# ============================================================

class ExternalServiceError(WatchSearchException):
    """Base class for external service errors."""

    def __init__(
        self,
        service: str,
        message: str,
        code: str = "EXTERNAL_SERVICE_ERROR",
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ):
        details = details or {}
        details["service"] = service
        super().__init__(message, code, details, cause)


class EbayAPIError(ExternalServiceError):
    """eBay API answered with an application error."""

    def __init__(
        self,
        message: str = "eBay API request failed",
        status_code: Optional[int] = None,
        error_id: Optional[int] = None,
        code: str = "EBAY_API_ERROR",
        cause: Optional[Exception] = None,
    ):
        details: Dict[str, Any] = {}
        if status_code:
            details["status_code"] = status_code
        if error_id:
            details["error_id"] = error_id
        super().__init__(
            service="ebay",
            message=message,
            code=code,
            details=details,
            cause=cause,
        )
        self.status_code = status_code
        self.error_id = error_id


class QueryTooBroadError(EbayAPIError):
    """
    Search result set is too large to filter precisely (errorId 12023).

    Not a failure: the retriever reacts by re-querying in price bands.
    """

    ERROR_ID = 12023

    def __init__(self, message: str = "Search result set too large to filter"):
        super().__init__(
            message=message,
            status_code=400,
            error_id=self.ERROR_ID,
            code="QUERY_TOO_BROAD",
        )


class TransientUpstreamError(ExternalServiceError):
    """5xx, 429 or a transport failure; safe to retry."""

    def __init__(
        self,
        service: str,
        message: str,
        status_code: Optional[int] = None,
        cause: Optional[Exception] = None,
    ):
        details: Dict[str, Any] = {}
        if status_code:
            details["status_code"] = status_code
        super().__init__(
            service=service,
            message=message,
            code="TRANSIENT_UPSTREAM_ERROR",
            details=details,
            cause=cause,
        )
        self.status_code = status_code


class TokenError(ExternalServiceError):
    """OAuth token could not be obtained."""

    def __init__(
        self,
        message: str = "Failed to get eBay token",
        status_code: Optional[int] = None,
        error: Optional[str] = None,
        cause: Optional[Exception] = None,
    ):
        details: Dict[str, Any] = {}
        if status_code:
            details["status_code"] = status_code
        if error:
            details["oauth_error"] = error
        super().__init__(
            service="ebay_oauth",
            message=message,
            code="TOKEN_ERROR",
            details=details,
            cause=cause,
        )
        self.status_code = status_code
        self.error = error


# ============================================================
# Validation Errors
# ============================================================

class ValidationError(WatchSearchException):
    """Base class for validation errors."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        code: str = "VALIDATION_ERROR",
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ):
        details = details or {}
        if field:
            details["field"] = field
        super().__init__(message, code, details, cause)


class InvalidRequestError(ValidationError):
    """Search request body is malformed."""

    def __init__(self, reason: str, field: Optional[str] = None):
        super().__init__(
            message=f"Invalid request: {reason}",
            field=field,
            code="INVALID_REQUEST",
            details={"reason": reason},
        )


# ============================================================
# Rate Limiting Errors
# ============================================================

class RateLimitError(WatchSearchException):
    """Upstream signalled a rate or IP limit."""

    def __init__(
        self,
        service: str,
        retry_after: Optional[int] = None,
        reason: Optional[str] = None,
    ):
        details: Dict[str, Any] = {"service": service}
        if retry_after:
            details["retry_after_seconds"] = retry_after
        if reason:
            details["reason"] = reason
        super().__init__(
            message=f"Rate limit exceeded for {service}",
            code="RATE_LIMIT_EXCEEDED",
            details=details,
        )
        self.service = service


# ============================================================
# Configuration Errors
# ============================================================

class ConfigurationError(WatchSearchException):
    """Configuration is invalid or missing."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
    ):
        details = {}
        if config_key:
            details["config_key"] = config_key
        super().__init__(
            message=message,
            code="CONFIGURATION_ERROR",
            details=details,
        )


class MissingCredentialsError(ConfigurationError):
    """eBay client credentials are not configured."""

    def __init__(self, service: str = "ebay"):
        super().__init__(
            message=f"Missing client credentials for {service}",
            config_key="EBAY_CLIENT_ID/EBAY_CLIENT_SECRET",
        )
        self.code = "MISSING_CREDENTIALS"
