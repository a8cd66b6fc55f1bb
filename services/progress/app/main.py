import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.attempts.router import router as attempts_router
from app.database import dispose_db, init_db
from app.dependencies import get_settings
from app.sessions.internal_router import router as sessions_internal_router
from app.sessions.router import router as sessions_router
from shared.database import get_redis_client
from shared.middleware import error_envelope_middleware, request_id_middleware

logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(levelname)s:%(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    init_db(settings.progress_database_url)

    # Redis is optional: heartbeats fall back to the database row only
    app.state.redis = get_redis_client(settings.redis_url)
    if app.state.redis is None:
        logger.info("REDIS_URL not set; heartbeat cache disabled")

    yield

    # Shutdown
    if app.state.redis is not None:
        await app.state.redis.aclose()
    await dispose_db()


SWAGGER_DESCRIPTION = """\
## Watch Progress Service

Tracks video-lesson viewing as client-reported time ranges and turns them
into per-attempt progress: effective watch time, timeline coverage, the
furthest verified second and skip counts.

### Domain Tags

| Tag | Description |
|-----|-------------|
| **Watch Sessions** | Open, heartbeat, record segments/seeks, close, skip analytics |
| **Lesson Attempts** | Attempts and re-takes, crediting unassigned viewing, progress reports |

### Session Lifecycle

```
open → progress batches (any order, retried) → close → attempt aggregates
```

Segments are idempotent on `client_event_id`. Sessions that stop sending
heartbeats are closed by `POST /api/v1/watch/internal/sessions/reap`.

### Effective time vs. coverage

Effective time counts every watched segment adjusted for playback speed and
can exceed the lesson duration. Coverage counts each timeline second once.
"""


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(
        title="Watch Progress",
        version="0.1.0",
        description=SWAGGER_DESCRIPTION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        max_age=600,
    )
    app.middleware("http")(request_id_middleware)
    app.middleware("http")(error_envelope_middleware)

    app.include_router(sessions_router, prefix="/api/v1")
    app.include_router(sessions_internal_router, prefix="/api/v1")
    app.include_router(attempts_router, prefix="/api/v1")

    @app.get("/health", tags=["Health"])
    async def health() -> dict:
        return {"status": "ok", "service": "progress"}

    return app


app = create_app()
