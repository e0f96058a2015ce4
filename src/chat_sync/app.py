from __future__ import annotations

import logging
import math
from contextlib import asynccontextmanager
from functools import partial
from typing import AsyncIterator

import redis.asyncio as aioredis
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from chat_sync.api.middleware.correlation_id import CorrelationIdMiddleware
from chat_sync.api.v1.routers import health, sessions, ws
from chat_sync.application.exceptions import (
    AppError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    RateLimitedError,
    RequestTimeoutError,
    RetryExhaustedError,
    ThrottledError,
    TransportError,
    UnauthorizedError,
    ValidationError,
)
from chat_sync.application.policies.backoff import BackoffController
from chat_sync.application.registry import EngineRegistry
from chat_sync.config import Settings, settings
from chat_sync.infrastructure.cache.ttl_cache import TTLCache
from chat_sync.infrastructure.feed.redis_streams import RedisStreamChangeFeed
from chat_sync.infrastructure.push.socketio_channel import SocketIOPushChannel
from chat_sync.infrastructure.rest.gateway import RestChatGateway
from chat_sync.infrastructure.rest.httpx_client import HttpxRestClient
from chat_sync.infrastructure.ws.manager import ConnectionManager
from chat_sync.services.sync_engine import SyncEngine

logger = logging.getLogger(__name__)


def build_registry(cfg: Settings) -> EngineRegistry:
    return EngineRegistry(
        cache=TTLCache(),
        backoff=BackoffController(
            base_delay=cfg.BACKOFF_BASE_DELAY,
            multiplier=cfg.BACKOFF_MULTIPLIER,
            max_delay=cfg.BACKOFF_MAX_DELAY,
            max_retries=cfg.BACKOFF_MAX_RETRIES,
            jitter_ratio=cfg.BACKOFF_JITTER_RATIO,
        ),
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Startup / shutdown lifecycle."""
    rest = HttpxRestClient(
        settings.API_BASE_URL,
        token=settings.API_TOKEN,
        timeout=settings.API_TIMEOUT_SECONDS,
    )
    push = SocketIOPushChannel(
        settings.PUSH_URL,
        path=settings.PUSH_PATH,
        token=settings.API_TOKEN,
        connect_timeout=settings.PUSH_CONNECT_TIMEOUT_SECONDS,
    )
    try:
        await push.connect()
    except AppError as exc:
        logger.warning("Push channel unavailable at startup: %s", exc.detail)
    app.state.push = push

    feed: RedisStreamChangeFeed | None = None
    app.state.redis = None
    if settings.CHANGE_FEED_ENABLED:
        app.state.redis = aioredis.from_url(settings.REDIS_URL, decode_responses=True)
        feed = RedisStreamChangeFeed(
            app.state.redis,
            stream_template=settings.CHANGE_FEED_STREAM_TEMPLATE,
            block_ms=settings.CHANGE_FEED_BLOCK_MS,
        )
        logger.info("Redis connection pool created")

    engine = SyncEngine(
        push=push,
        gateway=RestChatGateway(rest),
        registry=build_registry(settings),
        change_feed=feed,
        config=settings.engine_config(),
    )
    engine.on_session_created(partial(ws.bind_session, app.state.ws_manager))
    app.state.engine = engine

    yield

    await engine.shutdown()
    if feed is not None:
        await feed.close()
        await app.state.redis.aclose()
        logger.info("Redis connection pool closed")
    await push.disconnect()
    await rest.close()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Chat Sync Bridge",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.ws_manager = ConnectionManager()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(CorrelationIdMiddleware)

    _register_exception_handlers(app)

    app.include_router(health.router)
    app.include_router(sessions.router)
    app.include_router(ws.router)

    return app


def _error_response(status_code: int, exc: AppError) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.detail, "kind": exc.kind.value},
    )


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(NotFoundError)
    async def _not_found(_req: Request, exc: NotFoundError) -> JSONResponse:
        return _error_response(404, exc)

    @app.exception_handler(ForbiddenError)
    async def _forbidden(_req: Request, exc: ForbiddenError) -> JSONResponse:
        return _error_response(403, exc)

    @app.exception_handler(UnauthorizedError)
    async def _unauthorized(_req: Request, exc: UnauthorizedError) -> JSONResponse:
        return _error_response(401, exc)

    @app.exception_handler(InvalidStateError)
    async def _invalid_state(_req: Request, exc: InvalidStateError) -> JSONResponse:
        return _error_response(409, exc)

    @app.exception_handler(ValidationError)
    async def _validation(_req: Request, exc: ValidationError) -> JSONResponse:
        return _error_response(422, exc)

    @app.exception_handler(ThrottledError)
    async def _throttled(_req: Request, exc: ThrottledError) -> JSONResponse:
        response = _error_response(429, exc)
        response.headers["Retry-After"] = str(max(1, math.ceil(exc.retry_after)))
        return response

    @app.exception_handler(RateLimitedError)
    async def _rate_limited(_req: Request, exc: RateLimitedError) -> JSONResponse:
        return _error_response(429, exc)

    @app.exception_handler(RequestTimeoutError)
    async def _timeout(_req: Request, exc: RequestTimeoutError) -> JSONResponse:
        return _error_response(504, exc)

    @app.exception_handler(TransportError)
    async def _upstream(_req: Request, exc: TransportError) -> JSONResponse:
        return _error_response(502, exc)

    @app.exception_handler(RetryExhaustedError)
    async def _exhausted(_req: Request, exc: RetryExhaustedError) -> JSONResponse:
        return _error_response(502, exc)

    @app.exception_handler(AppError)
    async def _app_error(_req: Request, exc: AppError) -> JSONResponse:
        return _error_response(502, exc)
