"""FastAPI application: Timesheet Invoicer API."""

from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from timesheet_invoicer import __version__
from timesheet_invoicer.config import get_settings

from api.routes import router

app = FastAPI(
    title="Timesheet Invoicer API",
    description="Weekly invoices from employee timesheet rows.",
    version=__version__,
)

# CORS: set ALLOWED_ORIGINS="*" to allow any origin
_settings = get_settings()

if _settings.allow_all_origins:
    ALLOWED_ORIGINS: list[str] = ["*"]
elif _settings.allowed_origins:
    ALLOWED_ORIGINS = list(_settings.allowed_origins)
else:
    ALLOWED_ORIGINS = [
        "http://localhost:8080",
        "http://localhost:3000",
        "http://127.0.0.1:8080",
    ]

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=not _settings.allow_all_origins,  # credentials not allowed with wildcard
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    max_age=3600,
)

app.include_router(router)


@app.get("/")
async def root():
    return {
        "name": "Timesheet Invoicer API",
        "version": __version__,
        "docs": "/docs",
        "health": "/api/v1/health",
    }
