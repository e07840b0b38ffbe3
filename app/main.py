import time
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded

from routers.router import router
from core.lifespan import lifespan
from core.config import settings
from core.exceptions import GatewayError, RateLimitedError
from core.logger import logger
from core.rate_limiter import limiter
from services.admission_service import cors_headers

# Initialize FastAPI app
app = FastAPI(
    title=settings.PROJECT_NAME,
    description="""
    Job-intake gateway for the transcode worker.

    **POST /api/v1/jobs** - Enqueue a transcode job

    ### Request Body:
    - `spaceKey` (required): Object key of the uploaded media
    - `originalFilename` (optional): Filename as uploaded
    - `contentType` (optional): MIME type of the media
    - `outFolder` (optional): Output folder, defaults to `uploads-shd`
    - `correlationId` (optional): Caller correlation identifier

    ### Headers:
    - **Request**: `x-api-key: <shared secret>`, `Idempotency-Key` (optional)

    ### Response:
    - `{"ok": true, "jobId": "..."}`, with `"deduped": true` on a replayed Idempotency-Key
    - `{"ok": false, "error": "...", "details": ...}` on failure
    """,
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc"
)

# Configure rate limiting
app.state.limiter = limiter


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    logger.warning(
        f"Rate limit exceeded: {exc.detail}",
        extra={"path": request.url.path}
    )
    error = RateLimitedError(str(exc.detail))
    return JSONResponse(
        status_code=error.status_code,
        content=error.to_payload(),
        headers=cors_headers(settings)
    )


@app.exception_handler(GatewayError)
async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{exc.error}: {exc.message}", extra={"path": request.url.path})
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_payload(),
        headers=exc.headers or None
    )


# Request/Response logging middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = time.time()
    response = await call_next(request)
    duration = time.time() - start_time

    log_data = {
        "method": request.method,
        "path": request.url.path,
        "status_code": response.status_code,
        "duration_ms": int(duration * 1000),
        "client": request.client.host if request.client else "unknown"
    }

    # Only log non-health-check requests
    if request.url.path != "/api/v1/health":
        logger.info(f"Request: {log_data}")

    return response

# Include routers
app.include_router(router)

# Root endpoint
@app.get("/", tags=["Root"])
async def root():
    return {
        "service": settings.SERVICE_NAME,
        "version": "1.0.0",
        "status": "running",
        "documentation": "/docs"
    }
