import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from modelsnapper.core.config import settings
from modelsnapper.core.exceptions import APIException
from modelsnapper.core.logging_config import setup_logging
from modelsnapper.database.connection import init_database, close_database, create_tables
from modelsnapper.api.user_routes import router as user_router
from modelsnapper.api.profile_routes import router as profile_router
from modelsnapper.api.consent_routes import router as consent_router
from modelsnapper.api.billing_routes import router as billing_router
from modelsnapper.api.webhook_routes import router as webhook_router
from modelsnapper.api.render_routes import router as render_router
from modelsnapper.api.admin_routes import router as admin_router, cron_router
from modelsnapper.api.public_routes import router as public_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    setup_logging()
    logger.info("Starting ModelSnapper backend...")

    await init_database()
    if settings.AUTO_CREATE_TABLES:
        await create_tables()
    logger.info("Database ready")

    yield

    # Shutdown
    await close_database()
    logger.info("ModelSnapper backend stopped")


app = FastAPI(
    title="ModelSnapper API",
    description="Marketplace connecting businesses with models for consented AI try-on renders",
    version="1.0.0",
    lifespan=lifespan
)


def _error_body(message, code, data=None):
    body = {"status": "error", "message": message, "code": code}
    if data:
        body["data"] = data
    return body


@app.exception_handler(APIException)
async def api_exception_handler(request: Request, exc: APIException):
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(exc.detail, exc.code, exc.data),
        headers=exc.headers,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning(f"Validation error on {request.method} {request.url.path}: {exc.errors()}")
    return JSONResponse(
        status_code=422,
        content=_error_body("Request validation failed", "VALIDATION_ERROR", {"errors": jsonable_errors(exc)}),
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(status_code=500, content=_error_body("Internal server error", "SERVER_ERR"))


def jsonable_errors(exc: RequestValidationError):
    # ctx may hold exception instances that are not JSON serializable
    return [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")}
        for error in exc.errors()
    ]


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(user_router)
app.include_router(profile_router)
app.include_router(consent_router)
app.include_router(billing_router)
app.include_router(webhook_router)
app.include_router(render_router)
app.include_router(admin_router)
app.include_router(cron_router)
app.include_router(public_router)


@app.get("/")
async def root():
    return {"message": "ModelSnapper API", "status": "running"}


@app.get("/health")
async def health_check():
    return {"status": "healthy", "service": "modelsnapper-backend"}


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=settings.DEBUG
    )
