"""
FastAPI Application Entry Point
"""
import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from atlas.api.v1.dependencies import get_supabase
from atlas.api.v1.routes import api_router
from atlas.core.config import get_settings
from atlas.core.validation import validate_providers_on_startup
from atlas.domain.services.task_queue import TaskQueueService
from atlas.infrastructure.storage.blob_storage import SupabaseBlobStorage
from atlas.infrastructure.storage.supabase_store import SupabaseStore
from atlas.services.container import ServiceContainer

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan - startup and shutdown events.

    Startup:
    - Validates provider configuration
    - Connects the task queue and builds the service container

    Shutdown:
    - Closes the Redis connection
    """
    logger.info("Starting Atlas Outbound API...")

    environment = os.getenv("ENVIRONMENT", "development")
    strict_validation = environment == "production"

    try:
        validate_providers_on_startup(strict=strict_validation)
    except RuntimeError as e:
        if strict_validation:
            logger.error(f"Startup failed: {e}")
            raise
        logger.warning(f"Configuration warnings (non-fatal in {environment}): {e}")

    if getattr(app.state, "container", None) is None:
        settings = get_settings()
        queue = TaskQueueService(redis_url=settings.redis_url)
        await queue.initialize()
        supabase = get_supabase()
        app.state.container = ServiceContainer(
            SupabaseStore(supabase),
            SupabaseBlobStorage(supabase, bucket=settings.content_bucket),
            queue,
            settings=settings,
        )

    logger.info("Atlas Outbound API started successfully")

    yield

    logger.info("Shutting down Atlas Outbound API...")
    try:
        await app.state.container.queue.close()
    except Exception as e:
        logger.error(f"Error during shutdown: {e}")
    logger.info("Atlas Outbound API shutdown complete")


app = FastAPI(
    title="Atlas Outbound",
    description="Lead generation, AI outbound calls and meeting booking",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix=get_settings().api_prefix)


@app.get("/")
async def root():
    return {"message": "Atlas Outbound API", "status": "running"}


@app.get("/health")
async def health_check():
    """Health check with task queue stats when available."""
    health = {"status": "healthy"}

    container = getattr(app.state, "container", None)
    if container is not None:
        try:
            health["queue"] = await container.queue.get_queue_stats()
        except Exception as e:
            health["queue"] = f"error: {str(e)}"

    return health


if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    uvicorn.run(app, host="0.0.0.0", port=8000)
