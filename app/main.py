from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from app.config import get_settings
from app.database import init_db
from app.middleware.correlation import CorrelationMiddleware
from app.routes import assignment_health, assignments
from app.services.assignment_pipeline import build_assignment_pipeline, get_pipeline, set_pipeline
from app.services.redis_client import close_redis, get_redis, init_redis, is_redis_healthy
from app.utils.logger import logger
from app.utils.metrics import get_snapshot

settings = get_settings()

# Initialize rate limiter
limiter = Limiter(key_func=get_remote_address)

app = FastAPI(title=settings.app_name, version=settings.app_version)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# CORS - Explicit origins for security
allowed_origins = [origin.strip() for origin in settings.allowed_origins.split(",")]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-User-ID", "X-Correlation-ID"],
)
app.add_middleware(CorrelationMiddleware)


# Startup: database, Redis, bulk assignment pipeline
@app.on_event("startup")
async def startup_event():
    logger.info("Starting SnippetAdmin API...")
    await init_db()
    await init_redis()

    redis = get_redis()
    if redis is None:
        logger.warning("Redis unavailable, bulk assignment endpoints will answer 503")
    else:
        pipeline = build_assignment_pipeline(redis)
        set_pipeline(pipeline)
        if settings.enable_assignment_worker:
            pipeline.worker.start()
        else:
            logger.info("Assignment worker disabled (ENABLE_ASSIGNMENT_WORKER=false)")

    logger.info(f"API ready at http://{settings.backend_host}:{settings.backend_port}")


@app.on_event("shutdown")
async def shutdown_event():
    pipeline = get_pipeline()
    if pipeline is not None:
        # Waits for the in-flight job
        await pipeline.worker.stop()
        set_pipeline(None)
    await close_redis()


# Health check endpoint (minimal response to prevent information disclosure)
@app.get("/health")
async def health_check():
    return {"status": "ok", "redis": await is_redis_healthy()}


@app.get("/metrics")
async def metrics():
    return get_snapshot()


# Register routes (health first so /health is not taken for an assignment id)
app.include_router(assignment_health.router, prefix="/api/assignment/health", tags=["Assignment Health"])
app.include_router(assignments.router, prefix="/api/assignment", tags=["Assignments"])

# Railway deployment - use railway.json startCommand instead
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host=settings.backend_host,
        port=settings.backend_port,
        reload=settings.debug
    )
