"""
FastAPI router for recording closed deals.

Key Endpoints:
- POST /deals/{org_id} - store a Won/Lost deal for an organisation

The write goes through the cached reader so the organisation's cached deal
list (and the global entry) is invalidated before the response returns.
"""

import logging

from fastapi import APIRouter

from margin_advisor.core.dependencies import DealReaderDep
from margin_advisor.models.schemas import DealRecordResponse, HistoricalDeal

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/{org_id}", response_model=DealRecordResponse)
def record_deal(org_id: str, deal: HistoricalDeal, reader: DealReaderDep) -> DealRecordResponse:
    stored = reader.record_deal(deal, org_id=org_id)
    logger.info(f"Recorded {stored.status.value} deal for org {org_id}")
    return DealRecordResponse(deal=stored)
