from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI
from starlette.middleware.cors import CORSMiddleware

ROOT_DIR = Path(__file__).parent

# Load .env only if exists (development fallback); must run before config import
env_path = ROOT_DIR / ".env"
if env_path.exists():
    load_dotenv(env_path)

from travel_window import config  # noqa: E402
from travel_window.db import MongoConnection  # noqa: E402
from travel_window.exception_handlers import register_exception_handlers  # noqa: E402
from travel_window.indexes.booking_indexes import ensure_booking_indexes  # noqa: E402
from travel_window.middleware.correlation_id import CorrelationIdMiddleware  # noqa: E402
from travel_window.middleware.structured_logging_middleware import StructuredLoggingMiddleware  # noqa: E402
from travel_window.routers.bookings import router as bookings_router  # noqa: E402
from travel_window.routers.health import router as health_router  # noqa: E402
from travel_window.routers.suppliers import router as suppliers_router  # noqa: E402

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("travel-window")


@asynccontextmanager
async def lifespan(app: FastAPI):
    mongo = MongoConnection(config.MONGO_URL, config.DB_NAME)
    db = await mongo.connect()
    app.state.mongo = mongo
    await ensure_booking_indexes(db)
    logger.info("Startup complete")
    try:
        yield
    finally:
        await mongo.close()
        logger.info("Shutdown complete")


def create_app(*, use_lifespan: bool = True) -> FastAPI:
    app = FastAPI(
        title=config.APP_NAME,
        version=config.APP_VERSION,
        lifespan=lifespan if use_lifespan else None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_credentials=True,
        allow_origins=config.CORS_ORIGINS,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    # Added last so it runs first: the access log needs the correlation id.
    app.add_middleware(StructuredLoggingMiddleware)
    app.add_middleware(CorrelationIdMiddleware)

    register_exception_handlers(app)

    # Routers (/api prefix is on each router)
    app.include_router(health_router)
    app.include_router(suppliers_router)
    app.include_router(bookings_router)
    return app


app = create_app()
