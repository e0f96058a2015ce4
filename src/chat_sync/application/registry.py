from __future__ import annotations

import logging
from dataclasses import dataclass

from chat_sync.application.policies.backoff import BackoffController
from chat_sync.application.ports.cache import Cache

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class EngineRegistry:
    """Process-wide shared state: one per signed-in user.

    Built at application start and cleared on logout so nothing cached for one
    account leaks into the next.
    """

    cache: Cache
    backoff: BackoffController

    def clear(self) -> None:
        self.cache.clear()
        self.backoff.clear()
        logger.info("Engine registry cleared")
