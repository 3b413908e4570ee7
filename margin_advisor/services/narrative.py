"""
Narrative generation for recommendations.

Turns a recommendation into short prose with the Gemini `generateContent`
endpoint, with deterministic fallbacks when the service is unconfigured or
unavailable.

Key Features:
- Thin wrapper over an injectable `requests.Session`
- One retry (configurable) with linear backoff on HTTP 429/5xx, timeouts and
  connection errors; other 4xx responses fail immediately
- Responses cached by prompt fingerprint (sha256) for a fixed TTL, never
  invalidated early; empty responses are not cached
- Every failure is logged and surfaces as "" so callers can use
  fallback_explanation() / fallback_qualitative()

Usage:
    client = NarrativeClient(settings, TTLCache(600))
    text = client.explain_recommendation(rec) or fallback_explanation(rec)
"""

import hashlib
import logging
import re
from typing import Any, Dict, List, Optional, Sequence

import requests
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_incrementing,
)

from margin_advisor.core.cache import TTLCache
from margin_advisor.core.config import Settings, get_settings
from margin_advisor.models.enums import CompetitorCount
from margin_advisor.models.schemas import BomStats, DealContext, Driver, ScenarioComparison

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


class NarrativeRequestError(RuntimeError):
    """Raised for narrative service responses that should not be retried."""


class RetryableNarrativeError(NarrativeRequestError):
    """Raised for throttling and server errors from the narrative service."""


# =============================================================================
# Client
# =============================================================================


class NarrativeClient:
    """
    Gemini text client with retry, TTL cache and a silent failure mode.

    Returns "" instead of raising whenever no text could be produced.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        cache: Optional[TTLCache] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._cache = cache if cache is not None else TTLCache(self._settings.narrative_cache_ttl_seconds)
        self._session = session or requests.Session()

    @property
    def enabled(self) -> bool:
        return bool(self._settings.gemini_api_key)

    @staticmethod
    def cache_key(prompt: str) -> str:
        return hashlib.sha256(prompt.encode('utf-8')).hexdigest()

    def generate(self, prompt: str) -> str:
        """Generate text for a prompt, or "" on any failure."""
        if not self.enabled:
            return ''

        key = self.cache_key(prompt)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        try:
            text = self._generate_with_retry(prompt)
        except (requests.RequestException, NarrativeRequestError, ValueError) as e:
            logger.warning(f"Narrative generation failed: {e}")
            return ''

        if text:
            self._cache.set(key, text)
        return text

    def _generate_with_retry(self, prompt: str) -> str:
        backoff = self._settings.narrative_backoff_seconds
        retrying = Retrying(
            stop=stop_after_attempt(self._settings.narrative_retries + 1),
            wait=wait_incrementing(start=backoff, increment=backoff),
            retry=retry_if_exception_type(
                (RetryableNarrativeError, requests.ConnectionError, requests.Timeout)
            ),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        for attempt in retrying:
            with attempt:
                return self._perform_request(prompt)
        return ''

    def _perform_request(self, prompt: str) -> str:
        url = f"{self._settings.gemini_base_url}/models/{self._settings.gemini_model}:generateContent"
        response = self._session.post(
            url,
            headers={'Content-Type': 'application/json', 'x-goog-api-key': self._settings.gemini_api_key},
            json={'contents': [{'role': 'user', 'parts': [{'text': prompt}]}]},
            timeout=self._settings.narrative_timeout_seconds,
        )
        if response.status_code in RETRYABLE_STATUS_CODES:
            raise RetryableNarrativeError(f"Narrative service returned HTTP {response.status_code}")
        if not response.ok:
            raise NarrativeRequestError(f"Narrative service returned HTTP {response.status_code}")

        payload = response.json()
        if not isinstance(payload, dict):
            raise NarrativeRequestError("Narrative response is not a JSON object")
        if payload.get('error'):
            raise NarrativeRequestError(f"Narrative service error payload: {payload['error']}")
        return _extract_text(payload)

    # ------------------------------------------------------------------ #
    # Prompts
    # ------------------------------------------------------------------ #

    def explain_recommendation(
        self,
        suggested_margin_pct: float,
        drivers: Sequence[Driver],
        manual_bom: bool = False,
    ) -> str:
        """Two-sentence explanation of the quantitative drivers."""
        drivers_text = '\n'.join(
            f"{d.name}: {d.value * 100:.1f}%" for d in drivers
        ) or 'No explicit drivers were surfaced.'
        bom_note = (
            'The account executive supplied a bill of materials that sets the line mix.'
            if manual_bom
            else 'No bill of materials was supplied; the margin applies to the whole deal.'
        )
        prompt = '\n'.join([
            'You are a pricing assistant for an IT value-added reseller. '
            'Summarize the quantitative logic behind a margin recommendation.',
            f"Recommended margin: {suggested_margin_pct:.1f}%.",
            bom_note,
            'Key drivers with their contribution deltas (% of margin):',
            drivers_text,
            'Produce a short (2 sentence) explanation in a friendly, professional tone, '
            'highlighting the most influential levers and what they imply for customer positioning.',
        ])
        return self.generate(prompt)

    def summarize_qualitative(
        self,
        deal: DealContext,
        suggested_margin_pct: float,
        comparison: Optional[ScenarioComparison] = None,
        bom_stats: Optional[BomStats] = None,
        algorithm_margin_pct: Optional[float] = None,
    ) -> str:
        """Three to four sentences on business impact for the account executive."""
        d = deal.with_defaults()
        if algorithm_margin_pct is not None:
            algo_line = (
                f"Model baseline margin was {algorithm_margin_pct:.1f}%, "
                f"now set to {suggested_margin_pct:.1f}%."
            )
        else:
            algo_line = f"The rules plus kNN blend suggested {suggested_margin_pct:.1f}%."
        prompt_lines = [
            'You are writing a qualitative rationale for an account executive at an IT reseller.',
            'Translate these quantitative signals into a narrative about business impact '
            '(win probability, trust, and profit).',
            f"Segment: {_label(d.customerSegment)}. Registration: {_label(d.dealRegType)}. "
            f"Relationship: {_label(d.relationshipStrength)}. Competition: {_label(d.competitors)} players. "
            f"Tech sophistication: {_label(d.customerTechSophistication)}. VAR value-add: {_label(d.valueAdd)}.",
            algo_line,
        ]
        if bom_stats is not None and bom_stats.manual:
            prompt_lines.append(
                f"The account executive supplied {bom_stats.lineCount} line items averaging "
                f"{(bom_stats.avgMargin or 0.0) * 100:.1f}% margin."
            )
        if comparison is not None:
            prompt_lines.append(
                f"Versus the seller plan, expected gross profit shifts by "
                f"{format_currency_delta(comparison.delta.grossProfit)} and risk-adjusted profit by "
                f"{format_currency_delta(comparison.delta.riskAdjusted)}."
            )
        prompt_lines.append(
            'Use 3-4 sentences. Focus on why the recommendation balances win probability, governance, '
            'and profit. Reference the customer context plainly (no jargon).'
        )
        return self.generate('\n'.join(prompt_lines))


def _extract_text(payload: Dict[str, Any]) -> str:
    try:
        text = payload['candidates'][0]['content']['parts'][0]['text']
    except (KeyError, IndexError, TypeError):
        return ''
    return text.strip() if isinstance(text, str) else ''


# =============================================================================
# Deterministic Fallbacks
# =============================================================================


def _label(value: Any) -> str:
    if value is None:
        return 'unspecified'
    return str(getattr(value, 'value', value))


def humanize_lower(value: Any) -> str:
    """'NotRegistered' -> 'not registered'"""
    return re.sub(r'(?<=[a-z])(?=[A-Z])', ' ', _label(value)).lower()


def format_currency_delta(value: Optional[float]) -> str:
    amount = float(value or 0.0)
    sign = '+' if amount >= 0 else '-'
    return f"{sign}${abs(amount):,.2f}"


def fallback_explanation(
    suggested_margin_pct: float,
    drivers: Sequence[Driver],
    manual_bom: bool = False,
) -> str:
    top = ', '.join(f"{d.name} {d.value * 100:.1f}%" for d in list(drivers)[:3])
    driver_text = f"Key contributors: {top}." if top else 'Leverages policy guardrails and peer benchmarks.'
    if manual_bom:
        return f"Manual BOM blend anchors margin at {suggested_margin_pct:.1f}%. {driver_text}"
    return f"Margin set at {suggested_margin_pct:.1f}%. {driver_text}"


def fallback_qualitative(
    deal: DealContext,
    suggested_margin_pct: float,
    comparison: Optional[ScenarioComparison] = None,
    bom_stats: Optional[BomStats] = None,
    algorithm_margin_pct: Optional[float] = None,
) -> str:
    """Deterministic qualitative summary built from the same signals as the prompt."""
    d = deal.with_defaults()
    if d.competitors == CompetitorCount.NONE:
        competition = 'no direct competition'
    elif d.competitors == CompetitorCount.ONE:
        competition = '1 competitor'
    else:
        competition = f"{_label(d.competitors)} competitors"

    sentences: List[str] = [
        f"With {competition}, a {humanize_lower(d.relationshipStrength)} relationship and "
        f"{humanize_lower(d.dealRegType)} registration, a {suggested_margin_pct:.1f}% blend "
        f"balances win odds and profitability."
    ]
    if bom_stats is not None and bom_stats.manual:
        sentences.append(
            f"The AE-provided BOM averages {(bom_stats.avgMargin or 0.0) * 100:.1f}% margin across "
            f"{bom_stats.lineCount} line items, rooting the recommendation in customer-ready math."
        )
    if algorithm_margin_pct is not None and abs(algorithm_margin_pct - suggested_margin_pct) > 0.1:
        sentences.append(
            f"Baseline modeling suggested {algorithm_margin_pct:.1f}%, so the override reflects "
            f"AE judgement while staying within guardrails."
        )
    if comparison is not None:
        sentences.append(
            f"Versus the seller plan, gross profit shifts by "
            f"{format_currency_delta(comparison.delta.grossProfit)} and risk-adjusted profit by "
            f"{format_currency_delta(comparison.delta.riskAdjusted)}."
        )
    return ' '.join(sentences)
