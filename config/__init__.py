"""
Configuration package.

    from config import Settings
    settings = Settings.from_env()
"""

from .settings import (
    BASE_DIR,
    BROWSE_SCOPE,
    FALLBACK_SCOPE,
    CacheSettings,
    EbaySettings,
    EnrichmentSettings,
    SearchSettings,
    ServerSettings,
    Settings,
    load_environment,
)

__all__ = [
    'BASE_DIR',
    'BROWSE_SCOPE',
    'FALLBACK_SCOPE',
    'CacheSettings',
    'EbaySettings',
    'EnrichmentSettings',
    'SearchSettings',
    'ServerSettings',
    'Settings',
    'load_environment',
]
