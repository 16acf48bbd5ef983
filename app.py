from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError
from routers.rooms import rooms_router
from backend import RoomStore, MessageStore, create_redis_client
from broadcast import Broadcaster
from connections import Connection, ConnectionRegistry
from session import RoomSession
from constants import CORS_ORIGINS, LOG_LEVEL, LOG_FILE
from logging_config import get_logger, setup_logging

# Setup logging
setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)
logger = get_logger(__name__)


def create_app(redis_client=None) -> FastAPI:
    """Build the application.

    The connection registry, broadcaster and stores are created when the app
    starts and live on `app.state` until shutdown. Pass `redis_client` to use an
    existing client (the app will not close it).
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owns_client = redis_client is None
        client = create_redis_client() if owns_client else redis_client
        try:
            await client.ping()
            logger.info("Redis client connected successfully")
        except RedisError as e:
            logger.error(f"Failed to connect to Redis: {e}", exc_info=True)
            raise

        app.state.redis = client
        app.state.registry = ConnectionRegistry()
        app.state.broadcaster = Broadcaster(app.state.registry)
        app.state.rooms = RoomStore(client)
        app.state.messages = MessageStore(client)
        logger.info("Chat server started")
        try:
            yield
        finally:
            if owns_client:
                await client.aclose()
            logger.info("Chat server stopped")

    app = FastAPI(title="roomchat", lifespan=lifespan)

    # Configure CORS, all origins by default
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(rooms_router)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        # the rejected input is left out, it may not be encodable
        errors = [{k: v for k, v in error.items() if k not in ("input", "ctx")} for error in exc.errors()]
        logger.warning(f"Request validation failed for {request.url.path}: {len(errors)} error(s)")
        return JSONResponse(status_code=422, content={"detail": jsonable_encoder(errors)})

    @app.get("/health")
    async def health():
        try:
            await app.state.redis.ping()
        except RedisError as e:
            logger.error(f"Health check failed: {e}")
            return JSONResponse(status_code=503, content={"status": "unavailable"})
        return {"status": "ok"}

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        """Realtime room protocol.

        Client frames: join, message, edit, delete. Server frames: history,
        message, edit, delete, room_deleted, error.
        """
        await websocket.accept()
        connection = Connection(websocket)
        session = RoomSession(
            connection,
            registry=app.state.registry,
            broadcaster=app.state.broadcaster,
            rooms=app.state.rooms,
            messages=app.state.messages,
        )
        logger.info(f"WebSocket connection accepted: {connection.connection_id}")
        try:
            while True:
                data = await websocket.receive_text()
                await session.handle_raw(data)
        except WebSocketDisconnect:
            logger.info(f"WebSocket disconnected normally for {connection}")
        except Exception as e:
            logger.error(f"WebSocket error for {connection}: {e}", exc_info=True)
        finally:
            session.close()
            if connection.is_open:
                try:
                    await websocket.close()
                except RuntimeError as e:
                    logger.debug(f"Error closing WebSocket: {e}")

    logger.info("FastAPI application initialized")
    return app


app = create_app()
