from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from routers.rooms import rooms_router
from routers.relay import relay_router
from backend import create_backend
from relay import BroadcastRelay
from constants import CORS_ORIGINS, LOG_FILE, LOG_LEVEL, ROOM_SWEEP_INTERVAL_SECONDS
from errors import MalformedPayload, RelayError
from logging_config import get_logger, setup_logging
import asyncio

# Setup logging
setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)
logger = get_logger(__name__)


async def sweep_idle_rooms(app: FastAPI, interval: int = ROOM_SWEEP_INTERVAL_SECONDS):
    """Background task that drops signaling rooms idle for longer than the room TTL."""
    logger.info(f"Starting idle room sweep every {interval}s")
    while True:
        await asyncio.sleep(interval)
        try:
            app.state.backend.sweep_idle_rooms()
        except Exception as e:
            logger.error(f"Idle room sweep failed: {e}", exc_info=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    sweep_task = asyncio.create_task(sweep_idle_rooms(app))
    try:
        yield
    finally:
        sweep_task.cancel()
        try:
            await sweep_task
        except asyncio.CancelledError:
            pass
        app.state.relay.close()
        app.state.backend.close()
        logger.info("Relay shut down, all rooms dropped")


async def relay_error_handler(request: Request, exc: RelayError):
    logger.warning(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


async def validation_error_handler(request: Request, exc: RequestValidationError):
    logger.warning(f"{request.method} {request.url.path} rejected malformed body: {exc.errors()}")
    error = MalformedPayload()
    return JSONResponse(status_code=error.status_code, content={"error": error.message})


def create_app(backend=None, relay=None) -> FastAPI:
    app = FastAPI(title="Ephemeral Relay", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.backend = backend if backend is not None else create_backend()
    app.state.relay = relay if relay is not None else BroadcastRelay()

    app.add_exception_handler(RelayError, relay_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    app.include_router(rooms_router)
    app.include_router(relay_router)

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "rooms": app.state.backend.room_count(),
            "relayRooms": app.state.relay.room_count(),
        }

    logger.info("FastAPI application initialized")
    return app


app = create_app()
