"""
FastAPI router for customer-specific win-probability models.

Key Endpoints:
- POST /models/{customer_id}/train - train and store the customer's model
- POST /models/{customer_id}/recommend - margin sweep with the stored model

Training reads closed deals from every organisation linked to the customer.
Insufficient data is a normal outcome and is returned as a ShortfallReport
with HTTP 200. Recommending without a stored model is a 404.

Dependencies:
- margin_advisor/core/dependencies.py: repositories and settings
- margin_advisor/services/training.py: train_customer_model
- margin_advisor/services/inference.py: recommend_margin
"""

import logging
from typing import Union

from fastapi import APIRouter, HTTPException

from margin_advisor.core.dependencies import (
    DealRepositoryDep,
    ModelRepositoryDep,
    PhaseRepositoryDep,
    SettingsDep,
)
from margin_advisor.models.schemas import (
    DealContext,
    InferenceResult,
    ShortfallReport,
    TrainingResult,
)
from margin_advisor.services.inference import recommend_margin
from margin_advisor.services.training import train_customer_model

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/{customer_id}/train", response_model=Union[TrainingResult, ShortfallReport])
def train_model(
    customer_id: str,
    deals: DealRepositoryDep,
    models: ModelRepositoryDep,
    phases: PhaseRepositoryDep,
    settings: SettingsDep,
) -> Union[TrainingResult, ShortfallReport]:
    """
    Train the customer's model from its connected organisations' deals.

    Raises:
        HTTPException 400: When the training data is malformed.
    """
    try:
        return train_customer_model(customer_id, deals, models, phases, settings=settings)
    except ValueError as e:
        logger.warning(f"Training failed for customer {customer_id}: {e}")
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/{customer_id}/recommend", response_model=InferenceResult)
def model_recommendation(
    customer_id: str,
    deal: DealContext,
    models: ModelRepositoryDep,
) -> InferenceResult:
    """
    Recommend margins for a deal with the customer's stored model.

    Raises:
        HTTPException 404: When the customer has no trained model.
        HTTPException 400: When the stored model does not match the features.
    """
    package = models.get(customer_id)
    if package is None:
        raise HTTPException(status_code=404, detail=f"No trained model for customer {customer_id}")
    try:
        return recommend_margin(deal, package)
    except ValueError as e:
        logger.warning(f"Inference failed for customer {customer_id}: {e}")
        raise HTTPException(status_code=400, detail=str(e))
