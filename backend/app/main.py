import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from redis.asyncio import Redis

from config import settings
from models import async_session, engine
from api.ingest import router as ingest_router
from api.meters import router as meters_router
from api.readings import router as readings_router
from core.errors import register_error_handlers
from core.websocket import feed, redis_to_ws_bridge, router as ws_router
from services.retention import RawRetentionManager

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)
logger = logging.getLogger("meterledger.main")

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Meter ledger starting... DEBUG=%s", settings.DEBUG)
    tasks: list[asyncio.Task] = []

    # Redis (live updates)
    redis = None
    if settings.LIVE_UPDATES_ENABLED:
        redis = Redis.from_url(settings.REDIS_URL, decode_responses=False)
        logger.info("Redis configured: %s", settings.REDIS_URL)
        tasks.append(asyncio.create_task(redis_to_ws_bridge(redis)))
    else:
        logger.info("Live updates DISABLED (LIVE_UPDATES_ENABLED=false)")
    app.state.redis = redis

    # Raw payload retention
    retention = None
    if settings.RAW_RETENTION_DAYS > 0:
        retention = RawRetentionManager(
            async_session,
            retention_days=settings.RAW_RETENTION_DAYS,
            keep_per_meter=settings.RAW_RETENTION_KEEP_PER_METER,
            check_interval=settings.RAW_RETENTION_CHECK_INTERVAL,
            batch_size=settings.RAW_RETENTION_BATCH_SIZE,
        )
        app.state.raw_retention = retention
        tasks.append(asyncio.create_task(retention.start()))
    else:
        logger.info("Raw payload retention disabled (RAW_RETENTION_DAYS=0), buffer kept forever")

    yield

    # Shutdown
    logger.info("Meter ledger shutting down...")
    if retention:
        await retention.stop()
    for t in tasks:
        t.cancel()
    for t in tasks:
        try:
            await t
        except asyncio.CancelledError:
            pass

    if redis is not None:
        await redis.close()
    await engine.dispose()
    logger.info("Shutdown complete")


app = FastAPI(
    title="Meter Ledger API",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)

app.include_router(ingest_router)
app.include_router(meters_router)
app.include_router(readings_router)
app.include_router(ws_router)


@app.get("/health")
async def health():
    return {"status": "ok", "version": VERSION, "live_clients": len(feed)}
