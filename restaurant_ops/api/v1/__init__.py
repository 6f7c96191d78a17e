"""
API v1 router initialization and setup.
"""
from fastapi import APIRouter
from .endpoints import maintenance

api_router = APIRouter()

api_router.include_router(
    maintenance.router,
    prefix="/maintenance",
    tags=["maintenance"]
)
