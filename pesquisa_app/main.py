import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import auth, config
from .api import api_router, ws_router
from .changefeed import ChangeFeed
from .dashboard import AssignmentFetcher, WatcherRegistry
from .database import AsyncSessionFactory, create_db_and_tables, engine
from .errors import PesquisaError, pesquisa_error_handler

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


# --- Lifecycle ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application starting...")
    if app.state.manage_database:
        await create_db_and_tables()
    async with app.state.session_factory() as session:
        await auth.ensure_admin_user(session)
        await session.commit()
    yield
    logger.info("Application shutting down...")
    await app.state.watchers.shutdown()
    if app.state.manage_database:
        await engine.dispose()


def create_app(session_factory=None) -> FastAPI:
    """
    Builds the application. Passing a ``session_factory`` points every request,
    background task and dashboard watcher at that database instead of the
    configured engine, and leaves schema management to the caller.
    """
    app = FastAPI(title="Pesquisa App Backend", lifespan=lifespan)

    app.state.manage_database = session_factory is None
    app.state.session_factory = session_factory or AsyncSessionFactory
    app.state.change_feed = ChangeFeed()
    app.state.fetcher = AssignmentFetcher(app.state.session_factory)
    app.state.watchers = WatcherRegistry(app.state.fetcher, app.state.change_feed)

    # --- CORS (required for the browser frontend) ---
    origins = config.allowed_origins()
    logger.info("CORS: allowed origins %s", origins)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(PesquisaError, pesquisa_error_handler)
    app.include_router(api_router)
    app.include_router(ws_router)

    @app.get("/")
    async def read_root():
        return {"message": "Welcome to the Pesquisa App backend!"}

    return app


app = create_app()


def run() -> None:
    uvicorn.run(
        "pesquisa_app.main:app",
        host=config.HOST,
        port=config.PORT,
        log_level=config.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    run()
