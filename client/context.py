"""Wiring for the dashboard client, built once at application start."""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from client.admin import UserAdministration
from client.preferences import DisplayPreferences
from client.remote import RemoteStore
from client.session import SessionGateway
from client.synchronizer import DataSynchronizer
from services.aggregator import ReadingAggregator
from services.status import resolve_timezone
from settings import Settings, get_settings
from storage.local_cache import LocalCacheStore, build_default_cache


@dataclass
class ClientContext:
    """Everything a view needs, passed explicitly instead of module singletons."""

    settings: Settings
    remote: RemoteStore
    cache: LocalCacheStore
    synchronizer: DataSynchronizer
    gateway: SessionGateway
    admin: UserAdministration
    preferences: DisplayPreferences
    aggregator: ReadingAggregator


def build_context(
    remote: RemoteStore,
    cache: LocalCacheStore,
    settings: Optional[Settings] = None,
) -> ClientContext:
    settings = settings or get_settings()
    gateway = SessionGateway(remote, cache)
    gateway.restore()
    return ClientContext(
        settings=settings,
        remote=remote,
        cache=cache,
        synchronizer=DataSynchronizer(
            remote,
            cache,
            load_timeout=settings.initial_load_timeout,
            poll_interval=settings.feed_poll_interval,
            tz=resolve_timezone(settings.timezone),
        ),
        gateway=gateway,
        admin=UserAdministration(remote, gateway),
        preferences=DisplayPreferences(cache),
        aggregator=ReadingAggregator(),
    )


@asynccontextmanager
async def open_context(
    base_url: str,
    timeout: float = 30.0,
    cache_path: Optional[str] = None,
) -> AsyncIterator[ClientContext]:
    """Connect to the service and yield a ready context; closes the connection on exit."""
    remote = RemoteStore.connect(base_url, timeout=timeout)
    try:
        yield build_context(remote, build_default_cache(cache_path))
    finally:
        await remote.aclose()
