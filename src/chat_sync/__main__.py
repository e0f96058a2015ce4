"""Entrypoint: python -m chat_sync"""
from __future__ import annotations

import logging

import uvicorn

from chat_sync.api.middleware.correlation_id import CorrelationIdFilter
from chat_sync.config import settings


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(correlation_id)s] %(name)s: %(message)s",
    )
    for handler in logging.getLogger().handlers:
        handler.addFilter(CorrelationIdFilter())
    uvicorn.run(
        "chat_sync.app:create_app",
        factory=True,
        host=settings.BRIDGE_HOST,
        port=settings.BRIDGE_PORT,
        log_level="info",
    )


if __name__ == "__main__":
    main()
