from fastapi import FastAPI, APIRouter, Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.cors import CORSMiddleware
from motor.motor_asyncio import AsyncIOMotorClient
import logging

import config
from finance_core.errors import (
    LifecycleError,
    ValidationError,
    InvalidStateTransition,
    AccessDeniedError,
    NotFoundError,
    ConflictError,
)
from finance_core.lifecycle_wiring import build_lifecycles
from finance_core.settings import CompanySettings
from finance_core.unit_of_work import MotorUnitOfWork
from finance_routes import finance_router

# Configure logging
logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# MongoDB connection
client = AsyncIOMotorClient(config.MONGO_URL)
db = client[config.DB_NAME]
unit_of_work = MotorUnitOfWork(client, db)

# Create the main app
app = FastAPI(
    title="OneFlow Finance - Document Lifecycle",
    version="1.0.0",
    description="Expenses, orders, invoices and vendor bills with approval workflow and project ledger"
)
app.state.lifecycles = build_lifecycles(
    unit_of_work,
    settings=CompanySettings(ttl_seconds=config.SETTINGS_CACHE_TTL_SECONDS)
)

# ============================================
# ERROR MAPPING
# ============================================

ERROR_STATUS = [
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (InvalidStateTransition, status.HTTP_400_BAD_REQUEST),
    (AccessDeniedError, status.HTTP_403_FORBIDDEN),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
]

INTERNAL_ERROR_BODY = {"detail": "Internal server error"}


def status_for(exc: LifecycleError) -> int:
    for error_type, code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@app.exception_handler(LifecycleError)
async def lifecycle_error_handler(request: Request, exc: LifecycleError):
    code = status_for(exc)
    if code == status.HTTP_500_INTERNAL_SERVER_ERROR:
        logger.error(f"[TRANSACTION] {request.method} {request.url.path} failed: {exc}")
        return JSONResponse(status_code=code, content=INTERNAL_ERROR_BODY)

    body = {"detail": str(exc)}
    field = getattr(exc, "field", None)
    if field:
        body["field"] = field
    return JSONResponse(status_code=code, content=body)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=INTERNAL_ERROR_BODY)


# ============================================
# HEALTH CHECK
# ============================================

health_router = APIRouter(prefix="/api")


@health_router.get("/health")
async def health_check():
    return {"status": "healthy", "service": "oneflow-finance"}


# Include the routers in the main app
app.include_router(health_router)
app.include_router(finance_router)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=config.CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def create_indexes():
    try:
        await unit_of_work.ensure_indexes()
    except Exception as e:
        logger.warning(f"Index creation failed, continuing without: {str(e)}")


@app.on_event("shutdown")
async def shutdown_db_client():
    client.close()
