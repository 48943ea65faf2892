"""
API Routers
"""
from .watchlist import router as watchlist_router
from .trades import router as trades_router
from .history import router as history_router
from .blacklist import router as blacklist_router
from .status import router as status_router
from .analyze import router as analyze_router
from .zscore import router as zscore_router

__all__ = [
    "watchlist_router",
    "trades_router",
    "history_router",
    "blacklist_router",
    "status_router",
    "analyze_router",
    "zscore_router",
]
