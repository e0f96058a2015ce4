"""Pin the bridge settings before ``chat_sync.config`` builds its singleton.

Tests never reach a real backend: REST and push point at an unroutable host,
the Redis change feed is off and joins do not wait for a server ack.
"""
from __future__ import annotations

import os

TEST_ENV = {
    "API_BASE_URL": "http://chat.test",
    "PUSH_URL": "http://chat.test",
    "API_TOKEN": "test-token",
    "CHANGE_FEED_ENABLED": "false",
    "JOIN_TIMEOUT_SECONDS": "0",
}

for name, value in TEST_ENV.items():
    os.environ.setdefault(name, value)
