from __future__ import annotations

from typing import Protocol

from src.flowbatch.domain.events.batch_event import BatchEvent


class BatchEventBroadcaster(Protocol):
    async def broadcast(self, event: BatchEvent) -> None:
        """Deliver a batch progress event to every subscriber."""
