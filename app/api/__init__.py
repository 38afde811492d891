"""API router for v1 endpoints."""

from fastapi import APIRouter

from app.api import context_engine

router = APIRouter()

# Include context preview and session routes
router.include_router(context_engine.router, tags=["context"])
