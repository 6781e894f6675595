import logging
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from psycopg import Error as DatabaseError

from . import database
from .config import settings
from .database import close_db_pool, init_db_pool
from .goals import router as goals_router
from .settlement_worker import SettlementSweeper
from .transactions import router as transactions_router

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    await init_db_pool()

    sweeper: SettlementSweeper | None = None
    pool = database.get_pool()
    if pool is not None:
        sweeper = SettlementSweeper(
            pool.connection,
            interval=timedelta(minutes=settings.settlement_interval_minutes),
            run_on_start=settings.settlement_on_startup,
        )
        sweeper.start()
    else:
        logger.warning("DATABASE_URL is not set; settlement sweeper disabled")

    app.state.settlement_sweeper = sweeper
    yield

    if sweeper is not None:
        await sweeper.stop()
    await close_db_pool()


app = FastAPI(title=settings.app_name, lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in settings.cors_allow_origins.split(",") if origin.strip()],
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(goals_router)
app.include_router(transactions_router)


@app.exception_handler(DatabaseError)
async def database_error_handler(request: Request, exc: DatabaseError) -> JSONResponse:
    # Full detail goes to the log; callers only see an opaque failure.
    logger.error("Store failure on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"detail": {"kind": "internal_error", "message": "Internal server error"}},
    )


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}
