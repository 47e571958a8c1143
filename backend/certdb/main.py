# backend/certdb/main.py
import logging
import os
from typing import List

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .apps.audit.router import router as audit_router
from .apps.cvs.router import router as cvs_router
from .apps.directory.router import router as directory_router
from .apps.integrations.router import router as integrations_router
from .apps.notifications.router import router as notifications_router
from .apps.qualifications.router import router as qualifications_router
from .apps.requirements.router import router as requirements_router
from .apps.service_approvals.router import router as service_approvals_router

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())


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


app = FastAPI(title="Expert Certification API", version="1.0.0")
cors_origins = _allowed_origins()
allow_credentials = "*" not in cors_origins

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/", tags=["health"])
def read_root():
    return {"status": "ok", "message": "Expert certification backend is running"}


@app.get("/health", tags=["health"])
def health():
    return {"status": "ok"}


app.include_router(directory_router)
app.include_router(cvs_router)
app.include_router(requirements_router)
app.include_router(qualifications_router)
app.include_router(service_approvals_router)
app.include_router(notifications_router)
app.include_router(integrations_router)
app.include_router(audit_router)
