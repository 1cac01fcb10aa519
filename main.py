from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import logging

import database
from database import Settings, create_db_engine, create_session_factory
from core.grid_store import GridStore
from core.live_feed import LiveFeed
from core.placement_arbiter import PlacementArbiter
from services.presence_service import PresenceRegistry
from api import pixels, participants, presence, websocket

logger = logging.getLogger(__name__)


def create_app(settings: Settings = None) -> FastAPI:
    """
    建立 FastAPI app

    參數：
        settings: 不傳入時使用環境變數 / .env（database.get_settings()）

    app.state 內共用：
        - store: GridStore
        - arbiter: PlacementArbiter
        - live_feed: LiveFeed
        - presence: PresenceRegistry
    """
    if settings is None:
        settings = database.settings
        engine, session_factory = database.engine, database.SessionLocal
    else:
        engine = create_db_engine(settings.database_url, settings.store_acquire_timeout)
        session_factory = create_session_factory(engine)

    store = GridStore(
        engine,
        settings.grid_width,
        settings.grid_height,
        session_factory=session_factory
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup: 在應用啟動時建立資料庫表
        store.create_tables()
        logger.info(
            f"Grid {settings.grid_width}x{settings.grid_height}, "
            f"reveal threshold {settings.effective_reveal_threshold}"
        )
        yield
        # Shutdown: 結束所有訂閱
        app.state.live_feed.close()

    app = FastAPI(
        title="Pixel Reveal API",
        description="Backend API for the collaborative one-pixel-per-person reveal canvas",
        version="1.0.0",
        lifespan=lifespan
    )

    app.state.settings = settings
    app.state.store = store
    app.state.arbiter = PlacementArbiter(
        store,
        max_attempts=settings.placement_max_attempts,
        retry_backoff=settings.placement_retry_backoff
    )
    app.state.live_feed = LiveFeed(store)
    app.state.presence = PresenceRegistry(ttl_seconds=settings.presence_ttl_seconds)

    # CORS configuration
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        logger.info(f"Invalid request to {request.url.path}: {exc.errors()}")
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid input data.", "reason": "InvalidRequest"}
        )

    # Include routers
    app.include_router(pixels.router)
    app.include_router(participants.router)
    app.include_router(presence.router)
    app.include_router(websocket.router)

    @app.get("/")
    def root():
        return {"message": "Pixel Reveal API", "status": "ok"}

    @app.get("/health")
    def health():
        return {"status": "healthy"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
