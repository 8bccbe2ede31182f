import logging
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text
from app.core.config import settings
from app.core.errors import EntitlementError
from app.core.logging import setup_logging

logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url=f"{settings.API_V1_STR}/openapi.json"
)

@app.on_event("startup")
async def startup_event():
    setup_logging(settings.LOG_LEVEL)
    if not settings.payhere_configured:
        logger.warning("[Startup] PayHere credentials missing, checkout will be refused")

@app.exception_handler(EntitlementError)
async def entitlement_error_handler(request: Request, exc: EntitlementError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.detail}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

@app.get("/")
def root():
    return {"message": "Welcome to VOD Store API", "docs": "/docs"}

@app.get("/health")
async def health():
    from app.core.db import SessionLocal
    database = "ok"
    try:
        async with SessionLocal() as session:
            await session.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"[Health] Database check failed: {e}")
        database = "error"
    return {"status": "ok", "database": database, "payments_configured": settings.payhere_configured}

from fastapi.middleware.cors import CORSMiddleware
from app.modules.cms.router import router as cms_router
from app.modules.sales.router import router as sales_router
from app.modules.admin.router import router as admin_router

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

from app.core.middleware import RateLimitMiddleware
app.add_middleware(
    RateLimitMiddleware,
    limit_per_minute=settings.RATE_LIMIT_PER_MINUTE,
    checkout_limit_per_minute=settings.RATE_LIMIT_CHECKOUT_PER_MINUTE,
)

app.include_router(cms_router, prefix=f"{settings.API_V1_STR}/cms", tags=["cms"])
app.include_router(sales_router, prefix=f"{settings.API_V1_STR}/sales", tags=["sales"])
app.include_router(admin_router, prefix=f"{settings.API_V1_STR}/admin", tags=["admin"])
