import logging
from contextlib import asynccontextmanager
from typing import Optional

import firebase_admin
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from firebase_admin import credentials
from starlette.middleware.cors import CORSMiddleware

from config import Settings
from routes.feed import router as feed_router
from routes.posts import router as posts_router
from services.backend import BackendFactory, FirebaseBackendFactory, MemoryBackendFactory, MemoryDatabase
from services.errors import BackendUnavailable, FeedClosed, NotAuthenticated
from services.sessions import FeedSessions

logger = logging.getLogger(__name__)


def create_backends(settings: Settings) -> BackendFactory:
    if settings.backend == "memory":
        logger.info("Using in-memory database")
        return MemoryBackendFactory(MemoryDatabase())

    # Initialize Firebase Admin SDK; the default app verifies ID tokens
    cred = credentials.Certificate(settings.firebase_credentials)
    try:
        firebase_admin.get_app()
    except ValueError:
        firebase_admin.initialize_app(cred, {"databaseURL": settings.firebase_database_url})
    logger.info("Connected to Realtime Database %s", settings.firebase_database_url)
    return FirebaseBackendFactory(cred, settings.firebase_database_url)


async def not_authenticated_handler(request: Request, exc: NotAuthenticated):
    return JSONResponse(status_code=401, content={"detail": str(exc)})


async def backend_unavailable_handler(request: Request, exc: BackendUnavailable):
    logger.warning("Backend unavailable on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": str(exc)})


async def feed_closed_handler(request: Request, exc: FeedClosed):
    return JSONResponse(status_code=410, content={"detail": str(exc)})


def create_app(settings: Settings, backends: Optional[BackendFactory] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.settings = settings
        app.state.sessions = FeedSessions(
            backends or create_backends(settings),
            rollback_on_failure=settings.toggle_rollback,
            max_sessions=settings.max_sessions,
        )

        yield
        # Cleanup resources
        app.state.sessions.close_all()

    app = FastAPI(lifespan=lifespan)

    app.add_exception_handler(NotAuthenticated, not_authenticated_handler)
    app.add_exception_handler(BackendUnavailable, backend_unavailable_handler)
    app.add_exception_handler(FeedClosed, feed_closed_handler)

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(posts_router, prefix="/posts", tags=["posts"])
    app.include_router(feed_router, prefix="/feed", tags=["feed"])
    return app


settings = Settings.from_env()

logging.basicConfig(level=settings.log_level,
                    format="%(levelname)s: %(message)s")

app = create_app(settings)
