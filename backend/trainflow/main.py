# backend/trainflow/main.py
import logging
import os
from typing import List

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import errors
from .apps.approvals.router import router as approvals_router
from .apps.audit.router import router as audit_router
from .apps.completion.router import router as completion_router
from .apps.enrollment.router import router as enrollment_router
from .apps.notifications.router import router as notifications_router

logger = logging.getLogger(__name__)

# Most specific first.
_STATUS_BY_ERROR = (
    (errors.ValidationError, 422),
    (errors.NotFoundError, 404),
    (errors.PermissionDeniedError, 403),
    (errors.StateConflictError, 409),
    (errors.ResolutionError, 409),
    (errors.TransientError, 503),
)


def _allowed_origins() -> List[str]:
    """
    Parse CORS_ALLOWED_ORIGINS from env.

    Accepts comma-separated origins. If unset, defaults to local dev ports.
    """
    raw = os.getenv("CORS_ALLOWED_ORIGINS", "")
    if raw:
        origins = [origin.strip() for origin in raw.split(",") if origin.strip()]
        if origins:
            return origins
    return [
        "http://127.0.0.1:5173",
        "http://localhost:5173",
        "http://localhost:4173",
    ]


def status_code_for(exc: errors.WorkflowError) -> int:
    for error_cls, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_cls):
            return status_code
    return 400


app = FastAPI(title="Trainflow API", version="1.0.0")
cors_origins = _allowed_origins()
allow_credentials = "*" not in cors_origins

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(errors.WorkflowError)
async def workflow_error_handler(request: Request, exc: errors.WorkflowError):
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.warning("Workflow operation failed", extra={"path": request.url.path, "code": exc.code})
    return JSONResponse(status_code=status_code, content=exc.to_dict())


@app.get("/", tags=["health"])
def read_root():
    return {"status": "ok", "message": "Trainflow backend is running"}


@app.get("/health", tags=["health"])
def health():
    return {"status": "ok"}


app.include_router(approvals_router)
app.include_router(enrollment_router)
app.include_router(completion_router)
app.include_router(audit_router)
app.include_router(notifications_router)
