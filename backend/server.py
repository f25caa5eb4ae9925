from fastapi import FastAPI, APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse
from dotenv import load_dotenv
from starlette.middleware.cors import CORSMiddleware
import time
from pathlib import Path
from contextlib import asynccontextmanager
from datetime import datetime, timezone
import traceback

# Load environment variables first
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# Import configuration
from config import get_settings, get_cors_config, validate_environment

# Import logging and error tracking
from logging_config import setup_logging, get_logger, set_request_context, clear_request_context
from sentry_integration import init_sentry, capture_exception, set_tag

# Import reconciliation module
from reconciliation import RecordKind, create_workflow, reconciliation_router
from reconciliation.clients.tracker_client import TrackerClient

# Get settings
settings = get_settings()

# Configure structured logging
# Use JSON format in production, plain text in development
setup_logging(
    level=settings.LOG_LEVEL,
    json_format=settings.is_production,
    service_name="driver-reconciliation"
)
logger = get_logger(__name__)

# Initialize Sentry error tracking
if settings.SENTRY_DSN:
    init_sentry(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENVIRONMENT,
        traces_sample_rate=0.1 if settings.is_production else 0.0,
    )
    set_tag("service", "driver-reconciliation")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler"""
    # Startup
    logger.info("=" * 60)
    logger.info("Starting Driver Reconciliation Console API...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Debug Mode: {settings.debug_enabled}")
    logger.info("=" * 60)

    # Validate environment
    env_status = validate_environment()
    if not env_status["valid"]:
        for error in env_status["errors"]:
            logger.error(f"Configuration Error: {error}")
        if settings.is_production:
            raise RuntimeError("Cannot start in production with invalid configuration")

    for warning in env_status.get("warnings", []):
        logger.warning(f"Configuration Warning: {warning}")

    # One tracker client shared by every workflow
    client = TrackerClient.from_settings(settings)
    app.state.tracker_client = client
    app.state.workflows = {
        kind: create_workflow(kind, client, settings)
        for kind in RecordKind
    }

    # Initial loads are best-effort; failures land in each workflow's error slot
    for kind, workflow in app.state.workflows.items():
        await workflow.initialize()
        if workflow.state.error:
            logger.warning(f"Initial load for {kind.value} incomplete: {workflow.state.error}")

    logger.info("Driver Reconciliation Console API started successfully")
    yield
    # Shutdown
    logger.info("Shutting down Driver Reconciliation Console API...")
    await client.aclose()


# Create the main app
app = FastAPI(
    title=settings.API_TITLE,
    description="""
    Operator console for manually reconciling imported records against the
    driver registry held by the contractor tracker service.

    ## Features

    ### Reconciliation (/api/reconciliation)
    - Unmatched leads, scout registrations and payment transactions
    - Candidate driver pool over any date range
    - Advisory match highlighting (phone, name, license)
    - Transaction groups by the driver named in the payment comment
    - Single and batch assignment, with milestones for batches
    - Confirmed discard, reprocess and duplicate cleanup
    """,
    version=settings.API_VERSION,
    lifespan=lifespan,
    docs_url="/api/docs" if settings.debug_enabled else None,
    redoc_url="/api/redoc" if settings.debug_enabled else None,
)

# Create a router with the /api prefix
api_router = APIRouter(prefix="/api")


# ==================== HEALTH CHECK ENDPOINTS ====================

@api_router.get("/", tags=["Health"])
async def root():
    """Basic health check - returns 200 if service is running"""
    return {
        "message": "Driver Reconciliation Console API",
        "status": "healthy",
        "version": settings.API_VERSION,
        "environment": settings.ENVIRONMENT,
    }


@api_router.get("/health", tags=["Health"])
async def health_check(request: Request):
    """
    Detailed health check for load balancers and uptime monitors.

    Returns:
    - 200: Workflows initialized and configuration valid
    - 503: Workflows missing

    The tracker itself is not probed; per-kind load errors are reported
    as degraded checks.
    """
    health_status = {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": settings.API_VERSION,
        "environment": settings.ENVIRONMENT,
        "checks": {}
    }

    workflows = getattr(request.app.state, "workflows", None)
    if not workflows:
        health_status["status"] = "unhealthy"
        health_status["checks"]["workflows"] = {"status": "not_initialized"}
    else:
        for kind, workflow in workflows.items():
            health_status["checks"][kind.value] = {
                "status": "degraded" if workflow.state.error else "ok",
                "records": len(workflow.state.pool),
                "drivers": len(workflow.state.drivers),
            }

    # Check configuration
    env_status = validate_environment()
    health_status["checks"]["configuration"] = {
        "status": "valid" if env_status["valid"] else "invalid",
        "warnings": len(env_status.get("warnings", [])),
        "errors": len(env_status.get("errors", []))
    }

    # Return appropriate status code
    if health_status["status"] == "unhealthy":
        raise HTTPException(status_code=503, detail=health_status)

    return health_status


@api_router.get("/health/live", tags=["Health"])
async def liveness_check():
    """
    Kubernetes liveness probe.
    Returns 200 if the process is running (doesn't check dependencies).
    """
    return {"status": "alive", "timestamp": datetime.now(timezone.utc).isoformat()}


# ==================== ROUTERS ====================

api_router.include_router(reconciliation_router)

app.include_router(api_router)


# ==================== MIDDLEWARE ====================

# CORS middleware with production-safe configuration
cors_config = get_cors_config()
app.add_middleware(
    CORSMiddleware,
    **cors_config
)


# Request logging middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all requests with timing information"""
    start_time = time.time()

    # Generate request ID
    request_id = request.headers.get("X-Request-ID", f"req-{int(start_time * 1000)}")
    set_request_context(request_id=request_id, operator=request.headers.get("X-Operator"))

    if settings.debug_enabled:
        logger.debug(f"[{request_id}] {request.method} {request.url.path}")

    try:
        response = await call_next(request)

        process_time = time.time() - start_time
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = str(round(process_time * 1000, 2))

        if settings.debug_enabled or response.status_code >= 400:
            logger.info(f"[{request_id}] {request.method} {request.url.path} -> {response.status_code} ({process_time:.3f}s)")

        return response
    except Exception as e:
        logger.error(f"[{request_id}] Request failed: {str(e)}")
        raise
    finally:
        clear_request_context()


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle uncaught exceptions"""
    logger.error(f"Unhandled exception: {exc}")
    capture_exception(exc, path=request.url.path, method=request.method)
    if settings.debug_enabled:
        logger.error(traceback.format_exc())

    # Don't expose internal errors in production
    if settings.is_production:
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"}
        )
    else:
        return JSONResponse(
            status_code=500,
            content={
                "detail": str(exc),
                "type": type(exc).__name__,
                "traceback": traceback.format_exc() if settings.debug_enabled else None
            }
        )
