"""
Margin Advisor API application.

Wires the routers under margin_advisor/api/ into one FastAPI app and owns
the engine state (repositories, TTL caches, narrative client) on
`app.state.engine`. The state is rebuilt on every startup, so each app
instance, including one per TestClient, starts with empty caches.

Routes:
- /recommend, /bom, /benchmarks, /models, /deals: see margin_advisor/api/
- /health: liveness probe
- /: service metadata

Run locally:
    uvicorn margin_advisor.main:app --reload
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Dict

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from margin_advisor import __version__
from margin_advisor.api import api_router
from margin_advisor.core.config import get_settings
from margin_advisor.core.dependencies import build_app_state

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def _service_status(configured: bool, fallback: str) -> str:
    return 'configured' if configured else f"disabled ({fallback})"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Build the engine state on startup and log which outbound services are live.

    The external model service and Gemini are both optional; without them the
    rule scorer and the deterministic narratives answer instead.
    """
    settings = get_settings()
    app.state.engine = build_app_state(settings)
    logger.info(
        f"Margin Advisor API {__version__} started: "
        f"external model {_service_status(bool(settings.model_url), 'rules only')}, "
        f"narratives {_service_status(bool(settings.gemini_api_key), 'fallback text')}"
    )

    yield

    logger.info("Margin Advisor API stopped")


app = FastAPI(
    title="Margin Advisor API",
    version=__version__,
    description=(
        "Margin recommendations and BOM margin allocation for IT value-added resellers: "
        "rule and k-NN scoring, industry benchmarks, per-customer win-probability models "
        "and closed-deal recording."
    ),
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(api_router)


@app.get("/health")
def health_check() -> Dict[str, str]:
    """Liveness probe; does not touch the repositories or outbound services."""
    return {"status": "healthy"}


@app.get("/")
def root() -> Dict[str, str]:
    return {
        "name": "Margin Advisor API",
        "version": __version__,
        "docs": "/docs",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("margin_advisor.main:app", host="127.0.0.1", port=8000)
