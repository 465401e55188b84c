"""
Main FastAPI application entry point.
"""
from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from examcore.api.auth import router as auth_router
from examcore.api.exams import router as exams_router
from examcore.api.grading import router as grading_router
from examcore.api.groups import invitations_router as group_invitations_router
from examcore.api.groups import router as groups_router
from examcore.api.questions import router as questions_router
from examcore.api.subjects import router as subjects_router
from examcore.api.take import router as take_router
from examcore.core.config import settings
from examcore.core.database import init_db
from examcore.core.errors import ExamCoreError

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting %s %s (%s)", settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT)
    init_db()
    yield
    logger.info("Shutdown complete")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    docs_url=None if settings.is_production() else "/docs",
    redoc_url=None if settings.is_production() else "/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Exception handlers

def _error(status_code: int, message, error_type: str, details=None) -> JSONResponse:
    body = {"message": message, "type": error_type, "status_code": status_code}
    if details is not None:
        body["details"] = details
    return JSONResponse(status_code=status_code, content={"error": body})


@app.exception_handler(ExamCoreError)
async def domain_exception_handler(request: Request, exc: ExamCoreError):
    """Map service failures onto their HTTP status."""
    if exc.status_code >= 409:
        logger.info("%s %s rejected: %s", request.method, request.url.path, exc.message)
    return _error(exc.status_code, exc.message, exc.code, exc.details)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return _error(exc.status_code, exc.detail, "http_error")


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    details = [{k: v for k, v in e.items() if k in ("loc", "msg", "type")} for e in exc.errors()]
    return _error(status.HTTP_422_UNPROCESSABLE_ENTITY, "Validation error", "validation_error", details)


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled exception on %s %s", request.method, request.url.path, exc_info=exc)
    message = "An internal error occurred" if settings.is_production() else str(exc)
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, message, "internal_error")


# Routes

@app.get("/health")
def health():
    return {"status": "ok", "version": settings.APP_VERSION}


app.include_router(auth_router, prefix=f"{settings.API_V1_PREFIX}/auth", tags=["auth"])
app.include_router(questions_router, prefix=f"{settings.API_V1_PREFIX}/questions", tags=["questions"])
app.include_router(exams_router, prefix=f"{settings.API_V1_PREFIX}/exams", tags=["exams"])
app.include_router(take_router, prefix=f"{settings.API_V1_PREFIX}/take", tags=["take"])
app.include_router(grading_router, prefix=f"{settings.API_V1_PREFIX}/grading", tags=["grading"])
app.include_router(subjects_router, prefix=f"{settings.API_V1_PREFIX}/subjects", tags=["subjects"])
app.include_router(groups_router, prefix=f"{settings.API_V1_PREFIX}/groups", tags=["groups"])
app.include_router(group_invitations_router, prefix=f"{settings.API_V1_PREFIX}/invitations", tags=["groups"])


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "examcore.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.RELOAD,
        workers=settings.WORKERS if not settings.RELOAD else 1,
        log_level=settings.LOG_LEVEL.lower(),
        access_log=True,
    )
