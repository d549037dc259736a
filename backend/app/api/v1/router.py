"""
app/api/v1/router.py
─────────────────────
Aggregates every v1 endpoint module under a single router.
"""

from fastapi import APIRouter

from app.api.v1.endpoints import calls

api_router = APIRouter()
api_router.include_router(calls.router, prefix="/calls", tags=["calls"])
