"""One-shot gate that loads persisted state before anything reads it."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable

from ..services.errors import HydrationFailure
from ..services.local_cache import CacheSnapshot, LocalCacheStore
from .events import EventBus, HydrationCompleted

LOGGER = logging.getLogger(__name__)

SnapshotLoader = Callable[[], Awaitable[CacheSnapshot]]
HydrationListener = Callable[[CacheSnapshot], None]


class HydrationState(str, Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    HYDRATED = "hydrated"
    HYDRATED_WITH_ERROR = "hydrated_with_error"


class HydrationController:
    """Loads the local cache snapshot exactly once per process.

    Until :attr:`is_hydrated` is true, persisted fields are *unknown*, not
    empty. Consumers either await :meth:`await_hydration` or register a
    one-shot listener with :meth:`subscribe`. Only the local layer is read;
    remote reconciliation happens after hydration.
    """

    def __init__(
        self,
        cache: LocalCacheStore,
        *,
        event_bus: EventBus | None = None,
        loader: SnapshotLoader | None = None,
    ) -> None:
        self._cache = cache
        self._bus = event_bus
        self._loader = loader or self._load_from_cache
        self._state = HydrationState.UNINITIALIZED
        self._snapshot: CacheSnapshot | None = None
        self._ready = asyncio.Event()
        self._listeners: list[HydrationListener] = []

    @property
    def state(self) -> HydrationState:
        return self._state

    @property
    def is_hydrated(self) -> bool:
        return self._state in (HydrationState.HYDRATED, HydrationState.HYDRATED_WITH_ERROR)

    @property
    def error(self) -> HydrationFailure | None:
        return self._snapshot.error if self._snapshot is not None else None

    @property
    def snapshot(self) -> CacheSnapshot | None:
        """The loaded snapshot, or ``None`` while hydration is pending."""

        return self._snapshot

    def subscribe(self, listener: HydrationListener) -> None:
        """Call ``listener`` once with the snapshot; immediately if already hydrated."""

        if self._snapshot is not None:
            listener(self._snapshot)
            return
        self._listeners.append(listener)

    async def hydrate(self) -> CacheSnapshot:
        """Run the load if it has not started; otherwise wait for it."""

        if self._state is not HydrationState.UNINITIALIZED:
            return await self.await_hydration()
        self._state = HydrationState.LOADING
        LOGGER.debug("Hydrating session from %s", self._cache.path)
        try:
            snapshot = await self._loader()
        except Exception as exc:
            LOGGER.warning("Hydration failed; continuing with empty state: %s", exc, exc_info=True)
            snapshot = CacheSnapshot(
                error=HydrationFailure(details={"reason": str(exc), "type": type(exc).__name__})
            )
        self._complete(snapshot)
        return snapshot

    async def await_hydration(self) -> CacheSnapshot:
        await self._ready.wait()
        assert self._snapshot is not None
        return self._snapshot

    def _complete(self, snapshot: CacheSnapshot) -> None:
        self._snapshot = snapshot
        if snapshot.error is not None:
            self._state = HydrationState.HYDRATED_WITH_ERROR
            LOGGER.warning("Hydrated with error: %s", snapshot.error)
        else:
            self._state = HydrationState.HYDRATED
            LOGGER.info(
                "Hydrated %d document(s) and %d progress record(s)",
                len(snapshot.documents),
                len(snapshot.progress),
            )
        self._ready.set()
        listeners, self._listeners = self._listeners, []
        for listener in listeners:
            try:
                listener(snapshot)
            except Exception:
                LOGGER.exception("Hydration listener %r failed", listener)
        if self._bus is not None:
            error = snapshot.error
            self._bus.publish(
                HydrationCompleted(
                    with_error=error is not None,
                    error_code=error.error_code if error is not None else None,
                )
            )

    async def _load_from_cache(self) -> CacheSnapshot:
        return await asyncio.to_thread(self._cache.load_snapshot)


__all__ = ["HydrationController", "HydrationState"]
