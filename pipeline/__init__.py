"""
Pipeline Module - Seller Listing Search

This module organizes a search into discrete stages:
- Retrieval: per-seller listing strategies (Browse API, price bands, web ids)
- Normalization: one ListingRecord shape for every source
- Enrichment: watch counts from cache, item pages, Shopping API, aggregator
- Sorting: display order
- Orchestrator: coordinates the stages

Usage:
    from pipeline import SearchOrchestrator
    result = await orchestrator.search(["seller_a"], 50)
"""

from .normalizer import ListingRecord, normalize
from .retrieval import ListingRetriever, PRICE_BANDS, Signal, StrategyResult
from .listing_enrichment import WatchCountEnricher
from .sorting import sort_listings
from .orchestrator import SearchOrchestrator, SearchResult
from .simulation import SimulatedRetriever

__all__ = [
    'ListingRecord',
    'normalize',
    'ListingRetriever',
    'PRICE_BANDS',
    'Signal',
    'StrategyResult',
    'WatchCountEnricher',
    'sort_listings',
    'SearchOrchestrator',
    'SearchResult',
    'SimulatedRetriever',
]
