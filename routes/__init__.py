# Routes package for Seller Watch Search
from .search import router as search_router
from .debug import router as debug_router

__all__ = [
    'search_router',
    'debug_router',
]
