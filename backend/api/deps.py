"""
Shared route dependencies.

Routes take their collaborators through Depends so tests can swap them
with app.dependency_overrides.
"""

from core.config import Settings, get_settings
from core.scheduler import SchedulerContext, get_context
from db import SQLiteStorage, get_storage
from services.price_feed import get_price_feed


def storage_dep() -> SQLiteStorage:
    return get_storage()


def context_dep() -> SchedulerContext:
    return get_context()


def feed_dep():
    return get_price_feed()


def settings_dep() -> Settings:
    return get_settings()
