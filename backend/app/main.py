import logging

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core.config import get_settings
from app.core.errors import ParkaLotError
from app.core.logging_config import setup_logging
from app.db.base import Base
from app.db.session import engine
from app.api.routers import (
    users as users_router,
    spaces as spaces_router,
    bookings as bookings_router,
    host as host_router,
    payments as payments_router,
    webhooks as webhooks_router,
)

settings = get_settings()
setup_logging(settings.LOG_LEVEL, json_format=settings.LOG_JSON)
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.PROJECT_NAME)

# ---------------------------
# CORS
# ---------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------------
# Errors
# ---------------------------
@app.exception_handler(ParkaLotError)
async def business_error_handler(request: Request, exc: ParkaLotError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.exception_handler(Exception)
async def fatal_error_handler(request: Request, exc: Exception):
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "Internal server error", "code": "internal_error"},
    )

# ---------------------------
# Startup
# ---------------------------
@app.on_event("startup")
async def on_startup():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

# ---------------------------
# Routers
# ---------------------------
app.include_router(users_router.router, prefix="/api/users", tags=["users"])
app.include_router(spaces_router.router, prefix="/api/spaces", tags=["spaces"])
app.include_router(bookings_router.router, prefix="/api/bookings", tags=["bookings"])
app.include_router(host_router.router, prefix="/api/host", tags=["host"])
app.include_router(payments_router.router, prefix="/api/payments", tags=["payments"])
app.include_router(webhooks_router.router, prefix="/api/webhooks", tags=["webhooks"])

# ---------------------------
# Health check
# ---------------------------
@app.get("/ping")
async def ping():
    return {"status": "ok"}

# ---------------------------
# Run
# ---------------------------
if __name__ == "__main__":
    uvicorn.run("app.main:app", host="0.0.0.0", port=8000, reload=True)
