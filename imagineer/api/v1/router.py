from fastapi import APIRouter
from imagineer.api.v1.endpoints import analysis

# Create API router
api_router = APIRouter()

# Include routers
api_router.include_router(analysis.router, prefix="/analysis", tags=["Analysis"])

__all__ = ["api_router"]
