"""
Sync status events and the in-process bus that carries them to consumers
(websocket broadcast, e-mail alerts).
"""

import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, List, Optional, Union

from pydantic import BaseModel, Field

from crosslist.core.utils import utc_now

logger = logging.getLogger(__name__)


class SyncStatusEvent(BaseModel):
    listing_id: int
    platform: str
    sync_status: str
    status: Optional[str] = None
    platform_listing_id: Optional[int] = None
    external_id: Optional[str] = None
    error_kind: Optional[str] = None
    message: Optional[str] = None
    timestamp: datetime = Field(default_factory=utc_now)


EventHandler = Callable[[SyncStatusEvent], Union[None, Awaitable[None]]]


class SyncEventBus:
    """Fan-out of SyncStatusEvents to subscribers; a failing subscriber never breaks a sync."""

    def __init__(self):
        self._handlers: List[EventHandler] = []

    def subscribe(self, handler: EventHandler) -> Callable[[], None]:
        self._handlers.append(handler)

        def unsubscribe():
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    async def publish(self, event: SyncStatusEvent) -> None:
        for handler in list(self._handlers):
            try:
                result = handler(event)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error(
                    f"Sync event subscriber {getattr(handler, '__qualname__', handler)} failed "
                    f"for listing {event.listing_id} on {event.platform}: {e}",
                    exc_info=True,
                )

    async def publish_many(self, events: List[SyncStatusEvent]) -> None:
        for event in events:
            await self.publish(event)
