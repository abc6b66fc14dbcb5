from contextlib import asynccontextmanager
import os
from typing import Optional

from fastapi import FastAPI, Request, WebSocket
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from constants import (
    DISPATCH_QUEUE_SIZE,
    SEND_TIMEOUT,
    HEARTBEAT_INTERVAL,
    HEARTBEAT_TIMEOUT,
    EMPTY_ROOM_TTL,
    STATIC_DIR,
    LOG_LEVEL,
    LOG_FILE,
)
from logging_config import get_logger, setup_logging
from relay.dispatcher import BroadcastDispatcher
from relay.heartbeat import HeartbeatMonitor
from relay.registry import Connection, ConnectionRegistry
from relay.session import SessionLoop
from relay.tracker import RoomLifecycleTracker
from routers.rooms import rooms_router

setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)
logger = get_logger(__name__)


def create_app(
    room_store=None,
    queue_size: int = DISPATCH_QUEUE_SIZE,
    send_timeout: Optional[float] = SEND_TIMEOUT,
    heartbeat_interval: float = HEARTBEAT_INTERVAL,
    heartbeat_timeout: float = HEARTBEAT_TIMEOUT,
    empty_room_ttl: int = EMPTY_ROOM_TTL,
    static_dir: Optional[str] = STATIC_DIR,
) -> FastAPI:
    if room_store is None:
        from backend import redis_backend
        room_store = redis_backend

    registry = ConnectionRegistry()
    tracker = RoomLifecycleTracker(room_store)
    dispatcher = BroadcastDispatcher(registry, tracker, maxsize=queue_size, send_timeout=send_timeout)
    heartbeat = HeartbeatMonitor(registry, dispatcher, interval=heartbeat_interval, timeout=heartbeat_timeout)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # A store that cannot be reached at startup is fatal
        room_store.ping()
        logger.info("Room store reachable")
        dispatcher.start()
        heartbeat.start()
        try:
            yield
        finally:
            await heartbeat.stop()
            await dispatcher.stop()

    app = FastAPI(title="Room Relay", lifespan=lifespan)
    app.state.room_store = room_store
    app.state.registry = registry
    app.state.tracker = tracker
    app.state.dispatcher = dispatcher
    app.state.heartbeat = heartbeat
    app.state.empty_room_ttl = empty_room_ttl

    # Configure CORS to allow all origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def invalid_body_handler(request: Request, exc: RequestValidationError):
        logger.warning(f"Invalid request body for {request.url.path}: {exc.errors()}")
        return JSONResponse(status_code=400, content={"detail": "Invalid request body"})

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    app.include_router(rooms_router)

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        await websocket.accept()
        connection = Connection(websocket)
        logger.info(f"WebSocket connection accepted: {connection.connection_id}")
        session = SessionLoop(connection, registry, tracker, dispatcher)
        try:
            await session.run()
        except Exception as e:
            logger.error(f"WebSocket error for connection {connection.connection_id}: {e}", exc_info=True)

    # Mounted last so it does not shadow the routes above
    if static_dir and os.path.isdir(static_dir):
        app.mount("/", StaticFiles(directory=static_dir, html=True), name="static")
        logger.info(f"Serving static files from {static_dir}")

    logger.info("FastAPI application initialized")
    return app


app = create_app()
