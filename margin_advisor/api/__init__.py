"""
Margin Advisor API package initialization.

This package contains FastAPI router modules:
- recommend: deal margin recommendation with scoring and narratives
- bom: bill-of-materials margin allocation
- benchmarks: industry benchmark recommendation
- models: customer model training and margin sweep
- deals: closed-deal recording
"""

from fastapi import APIRouter

from margin_advisor.api.recommend import router as recommend_router
from margin_advisor.api.bom import router as bom_router
from margin_advisor.api.benchmarks import router as benchmarks_router
from margin_advisor.api.models import router as models_router
from margin_advisor.api.deals import router as deals_router

api_router = APIRouter()

api_router.include_router(recommend_router, prefix="/recommend", tags=["recommend"])
api_router.include_router(bom_router, prefix="/bom", tags=["bom"])
api_router.include_router(benchmarks_router, prefix="/benchmarks", tags=["benchmarks"])
api_router.include_router(models_router, prefix="/models", tags=["models"])
api_router.include_router(deals_router, prefix="/deals", tags=["deals"])

__all__ = [
    "api_router",
    "recommend_router",
    "bom_router",
    "benchmarks_router",
    "models_router",
    "deals_router",
]
