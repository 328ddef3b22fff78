"""Room Chat Backend Application.

This is the main entry point for the room chat backend service: accounts,
rooms, and a realtime WebSocket channel with presence, typing indicators
and delivery/read receipts.

Modules:
    - chat: WebSocket session manager and realtime event handling
    - rooms: Room management and history REST API
    - auth: Email/password accounts and bearer tokens
    - store: DuckDB-based persistence
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.auth.router import router as auth_router
from app.chat.manager import reset_session_manager
from app.chat.router import router as chat_router
from app.config import get_config
from app.rooms.router import router as rooms_router
from app.store.service import ChatStore, get_store

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# urllib3/httpx/httpcore log every TCP connection; passlib warns about
# bcrypt version probing on first use.
for _noisy in (
    "urllib3",
    "httpx",
    "httpcore",
    "passlib",
):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    config = get_config()

    # Apply configured log level to root logger so that
    # `logging.level: "debug"` in chat.settings.yaml activates DEBUG output.
    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    get_store()
    logger.info(f"Chat store ready at {config.database.path}")
    logger.info(
        f"Server running on http://{config.server.host}:{config.server.port} "
        f"(rate limit {config.realtime.rate_limit_max}/{config.realtime.rate_limit_window_ms}ms)"
    )

    yield  # Application runs here

    # Shutdown
    reset_session_manager()
    ChatStore.reset_instance()
    logger.info("Application shutdown complete")


# Create FastAPI application with metadata
app = FastAPI(
    title="Room Chat API",
    description="Backend service for realtime room chat",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_config().server.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register all routers
app.include_router(chat_router)
app.include_router(auth_router)
app.include_router(rooms_router)


@app.get("/health")
async def health() -> dict:
    """Health check endpoint.

    Returns:
        dict: ``{"ok": true}`` while the server is running.
    """
    return {"ok": True}
