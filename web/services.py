"""Backend service construction for the web API and CLI."""

from dataclasses import dataclass
from typing import Optional

from config import settings


@dataclass
class Services:
    """Explicitly constructed engine components, shared by one app or CLI run."""

    store: object
    engine: object
    driver: object
    clock: object


def get_store(clock=None):
    from renewals.store import build_store
    return build_store(
        settings.STORE_BACKEND,
        path=settings.STORE_PATH,
        base_url=settings.STORE_BASE_URL,
        timeout=settings.STORE_TIMEOUT_SECONDS,
        clock=clock,
    )


def build_services(store=None, clock=None, interval_seconds: Optional[int] = None) -> Services:
    """Wire store, engine and sync driver together."""
    from renewals.clock import SystemClock
    from renewals.engine import NotificationEngine
    from renewals.sync import SyncDriver

    clock = clock or SystemClock()
    store = store or get_store(clock)
    engine = NotificationEngine(store, clock=clock)
    driver = SyncDriver(
        store,
        engine,
        clock=clock,
        interval_seconds=interval_seconds or settings.SYNC_INTERVAL_SECONDS,
    )
    return Services(store=store, engine=engine, driver=driver, clock=clock)


def get_services() -> Services:
    """Services bound to the current Flask app."""
    from flask import current_app
    return current_app.extensions["renewals"]
