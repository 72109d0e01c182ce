import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from src.api.exception_handlers import register_exception_handlers
from src.api.routes.routes import router
from src.infrastructure import settings
from src.infrastructure.db.session import engine
from src.infrastructure.db.models import Base

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


async def _wait_for_db() -> None:
    # The API container may come up before Postgres accepts connections.
    max_retries = settings.DB_CONNECT_MAX_RETRIES
    retry_delay_seconds = settings.DB_CONNECT_RETRY_DELAY

    for attempt in range(1, max_retries + 1):
        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            logger.info("Database connection established (%s).", engine.url.render_as_string(hide_password=True))
            return
        except (OperationalError, OSError):
            if attempt == max_retries:
                logger.exception(
                    "Gave up on the database after %s attempts; check DATABASE_URL.",
                    max_retries,
                )
                raise
            logger.warning(
                "Database unavailable (attempt %s of %s), next try in %.1fs",
                attempt,
                max_retries,
                retry_delay_seconds,
            )
            await asyncio.sleep(retry_delay_seconds)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await _wait_for_db()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await engine.dispose()


app = FastAPI(title="Event Reservation Engine", lifespan=lifespan)

app.include_router(router)
register_exception_handlers(app)
