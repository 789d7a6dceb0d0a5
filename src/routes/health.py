"""
PoliMusic API - Health Check

``GET /health`` answers even while MongoDB is unreachable so orchestrators
can tell "process up" from "ready": 200 when the store is connected, 503
otherwise.
"""

import time

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from src.config import APP_ENV
from src.utils import to_iso, utcnow

router = APIRouter(tags=["Health"])

# Track startup time for health check
_START_TIME = time.time()


@router.get("/health")
async def health_check(request: Request):
    """Health check endpoint for the service."""
    connection = request.app.state.connection
    connected = connection.is_connected

    body = {
        "status": "OK",
        "timestamp": to_iso(utcnow()),
        "uptime": round(time.time() - _START_TIME, 3),
        "database": "connected" if connected else "disconnected",
        "environment": APP_ENV,
        "mongoUri": "configured" if connection.uri_configured else "missing",
    }
    return JSONResponse(status_code=200 if connected else 503, content=body)
