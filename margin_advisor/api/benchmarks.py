"""
FastAPI router for industry benchmark recommendations.

Key Endpoints:
- POST /benchmarks - benchmark-based margin range for customers that do not
  yet have a trained model
"""

from fastapi import APIRouter

from margin_advisor.models.schemas import BenchmarkResponse, DealContext
from margin_advisor.services.benchmarks import generate_benchmark_response

router = APIRouter()


@router.post("", response_model=BenchmarkResponse)
def benchmark_recommendation(deal: DealContext) -> BenchmarkResponse:
    return generate_benchmark_response(deal)
