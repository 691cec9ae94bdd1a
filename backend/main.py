"""
Relay - multi-mode conversational AI backend
FastAPI app: chat WebSocket, conversation and attachment APIs
"""

from contextlib import asynccontextmanager
import logging
import os

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from config import runtime_config
from errors import register_exception_handlers
from logging_config import setup_logging
from routers import attachments, chat, conversations
from routers.chat_orchestration import (
    AutoClassifier,
    ClassificationCache,
    ContextAssembler,
    ModeResolver,
)
from services.attachment_pipeline import AttachmentPipeline
from services.chat_store import ChatStore
from services.database import close_database, get_database
from services.extraction import release_ocr_engine
from services.storage import close_storage, get_storage
from utils.llm import close_llm_client, get_llm_client

setup_logging()
logger = logging.getLogger(__name__)

CORS_ORIGINS = [o.strip() for o in os.environ.get("CORS_ORIGINS", "http://localhost:3000").split(",") if o.strip()]


async def build_components(app: FastAPI) -> None:
    """Create the long-lived components and hang them on app.state."""
    db = await get_database()
    store = ChatStore(db)
    storage = get_storage()
    llm_client = get_llm_client()

    cache = ClassificationCache(
        max_size=runtime_config.classification_cache_size,
        ttl=runtime_config.classification_cache_ttl,
        sweep_interval=runtime_config.classification_cache_sweep_interval,
    )
    classifier = AutoClassifier(
        llm_client,
        cache,
        model=runtime_config.classifier_model,
        timeout=runtime_config.classifier_timeout,
        short_query_threshold=runtime_config.short_query_threshold,
    )
    pipeline = AttachmentPipeline(
        store,
        storage,
        workers=runtime_config.extraction_workers,
        max_retries=runtime_config.extraction_max_retries,
        retry_delay=runtime_config.extraction_retry_delay,
        thumbnail_max_size=runtime_config.thumbnail_max_size,
        thumbnail_quality=runtime_config.thumbnail_quality,
    )

    app.state.db = db
    app.state.store = store
    app.state.storage = storage
    app.state.llm_client = llm_client
    app.state.cache = cache
    app.state.resolver = ModeResolver(classifier)
    app.state.assembler = ContextAssembler(store, storage)
    app.state.pipeline = pipeline


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown events"""
    # Startup
    await build_components(app)
    if not app.state.db.available:
        logger.warning("PostgreSQL unavailable at startup; requests will fail until it recovers")

    app.state.cache.start()
    app.state.pipeline.start()
    logger.info(
        f"Relay ready (fast={runtime_config.fast_model}, thinking={runtime_config.thinking_model}, "
        f"storage={runtime_config.storage_backend})"
    )

    yield

    # Shutdown
    await app.state.pipeline.stop()
    await app.state.cache.stop()
    release_ocr_engine()

    try:
        await close_storage()
    except Exception as e:
        logger.debug(f"Storage close error: {e}")
    try:
        await close_llm_client()
    except Exception as e:
        logger.debug(f"LLM client close error: {e}")
    await close_database()
    logger.info("Relay signing off")


app = FastAPI(
    title="Relay",
    description="Multi-mode conversational AI backend",
    version="1.0.0",
    lifespan=lifespan,
)

register_exception_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Chat router is mounted WITHOUT /api prefix so the WebSocket is at /ws/chat/{id}
app.include_router(chat.router, tags=["chat"])
app.include_router(conversations.router, prefix="/api", tags=["conversations"])
app.include_router(attachments.router, prefix="/api", tags=["attachments"])

# Local backend locators are /uploads/{key}
if runtime_config.storage_backend == "local":
    app.mount("/uploads", StaticFiles(directory=runtime_config.upload_dir, check_dir=False), name="uploads")


@app.get("/health")
async def health(request: Request):
    """Health check - pings PostgreSQL and reports background workers."""
    checks = {}

    db = getattr(request.app.state, "db", None)
    try:
        db_health = await db.health_check() if db is not None else {"status": "disconnected"}
        checks["postgres"] = "ok" if db_health.get("status") == "connected" else "down"
    except Exception:
        checks["postgres"] = "down"

    pipeline = getattr(request.app.state, "pipeline", None)
    checks["extraction"] = "ok" if pipeline is not None and pipeline.running else "down"

    cache = getattr(request.app.state, "cache", None)
    return {
        "status": "healthy" if all(v == "ok" for v in checks.values()) else "degraded",
        "service": "relay",
        "checks": checks,
        "classification_cache": cache.stats() if cache is not None else None,
    }
