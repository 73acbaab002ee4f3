"""List-and-resync delivery of certificate request events.

Every resync period the informer lists the store and compares the result with
its cache: new names are delivered as adds, every cached name that is still
present is delivered as an update (old, new), vanished names as deletes.
Updates whose resource version did not change are resync replays; the handler
decides what to do with them.

Events for one name are delivered in order, one sync at a time. Events for
different names within one sync are handled concurrently.
"""

import asyncio
import logging
from typing import Any, Protocol

from certissuer.domain.models import CertificateRequest
from certissuer.repository.store import CertificateRequestStore, StoreError

logger = logging.getLogger(__name__)


class EventHandler(Protocol):
    async def on_add(self, obj: Any) -> None: ...

    async def on_update(self, old_obj: Any, new_obj: Any) -> None: ...

    async def on_delete(self, obj: Any) -> None: ...


class Informer:
    """Watches a store by periodic listing and feeds an EventHandler."""

    def __init__(
        self,
        store: CertificateRequestStore,
        handler: EventHandler,
        resync_seconds: float,
    ):
        if resync_seconds <= 0:
            raise ValueError("resync_seconds must be positive")
        self._store = store
        self._handler = handler
        self._resync_seconds = resync_seconds
        self._cache: dict[str, CertificateRequest] = {}
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None

    @property
    def cached(self) -> dict[str, CertificateRequest]:
        """Last listed snapshot of every known request, by name."""
        return dict(self._cache)

    async def sync_once(self) -> None:
        """List the store once and deliver the resulting events.

        Raises:
            StoreError: If the store cannot be listed. The cache is left untouched.
        """
        listed = {request.name: request for request in await self._store.list()}
        previous = self._cache
        self._cache = listed

        deliveries = []
        for name, request in listed.items():
            old = previous.get(name)
            if old is None:
                deliveries.append((name, self._handler.on_add(request)))
            else:
                deliveries.append((name, self._handler.on_update(old, request)))
        for name, old in previous.items():
            if name not in listed:
                deliveries.append((name, self._handler.on_delete(old)))

        results = await asyncio.gather(*(d for _, d in deliveries), return_exceptions=True)
        for (name, _), result in zip(deliveries, results):
            if isinstance(result, Exception):
                logger.error(
                    "event_handler_failed",
                    extra={"request_name": name, "error": str(result)},
                    exc_info=result,
                )

    async def run(self) -> None:
        """Sync until ``stop`` is called."""
        logger.info("informer_started", extra={"resync_seconds": self._resync_seconds})
        while not self._stop_event.is_set():
            try:
                await self.sync_once()
            except StoreError as e:
                logger.warning("informer_list_failed", extra={"error": str(e)})

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._resync_seconds)
            except asyncio.TimeoutError:
                continue
        logger.info("informer_stopped")

    async def start(self) -> None:
        """Run the sync loop in a background task."""
        if self._task is not None and not self._task.done():
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self.run(), name="certificate-informer")

    async def stop(self) -> None:
        """Stop the background task and wait for it to finish."""
        self._stop_event.set()
        if self._task is not None:
            await self._task
            self._task = None
