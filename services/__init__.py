"""
Services Package

eBay clients, caching/cooldown state, and application plumbing.
"""

from .exceptions import (
    WatchSearchException,
    ExternalServiceError,
    EbayAPIError,
    QueryTooBroadError,
    TransientUpstreamError,
    TokenError,
    ValidationError,
    InvalidRequestError,
    RateLimitError,
    ConfigurationError,
    MissingCredentialsError,
)

__all__ = [
    'WatchSearchException',
    'ExternalServiceError',
    'EbayAPIError',
    'QueryTooBroadError',
    'TransientUpstreamError',
    'TokenError',
    'ValidationError',
    'InvalidRequestError',
    'RateLimitError',
    'ConfigurationError',
    'MissingCredentialsError',
]
