"""
FastAPI router for bill-of-materials analysis.

Key Endpoints:
- POST /bom/analyze - per-line margin allocation toward a target blend
"""

import logging

from fastapi import APIRouter

from margin_advisor.models.schemas import BomAllocation, BomAnalyzeRequest
from margin_advisor.services.bom_optimizer import optimize_bom

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/analyze", response_model=BomAllocation)
def analyze_bom(request: BomAnalyzeRequest) -> BomAllocation:
    """
    Allocate margins across BOM lines.

    Example Request:
        POST /bom/analyze
        {
            "bomLines": [
                {"category": "Hardware", "quantity": 10, "unitCost": 5717},
                {"category": "ProfessionalServices", "quantity": 80, "unitCost": 175}
            ],
            "context": {"oem": "Cisco", "targetBlendedMargin": 15}
        }
    """
    allocation = optimize_bom(request.bomLines, request.context)
    logger.info(
        f"BOM analyzed: {len(request.bomLines)} lines, blended {allocation.totals.blendedMarginPct}% "
        f"(target achieved: {allocation.totals.targetAchieved})"
    )
    return allocation
