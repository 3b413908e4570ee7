"""
Industry Benchmarks Service.

Static OEM x segment margin percentiles (p25 / median / p75, in percentage
points) for IT value-added resellers. Used in two places:

- generate_benchmark_response(): the recommendation returned to customers
  who do not yet have enough closed deals for a customer-specific model.
- get_benchmark_iqr(): the interquartile range that sizes the synthetic
  margin shifts used by the training pipeline.

Lookup Cascade (get_benchmark):
    1. oem_segment  - the OEM's row for the effective segment
    2. oem_default  - the OEM's MidMarket row
    3. general      - the general VAR row for the effective segment
    4. final fallback 12 / 16 / 22

    Deals under $25K use SMB ranges regardless of segment. Deals of $500K-$1M
    are compressed by 2pp and $1M+ by 4pp, never below 5%.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional

from margin_advisor.models.enums import CompetitorCount, DealRegType, ProductCategory
from margin_advisor.models.schemas import BenchmarkResponse, DealContext, MarginRange


@dataclass(frozen=True)
class BenchmarkEntry:
    p25: float
    median: float
    p75: float
    source: str


@dataclass(frozen=True)
class Benchmark:
    """A resolved benchmark after segment selection and size compression."""
    low: float
    median: float
    high: float
    source: str
    specificity: str


def _rows(oem_label: str, ent: tuple, mm: tuple, smb: tuple) -> Dict[str, BenchmarkEntry]:
    return {
        'Enterprise': BenchmarkEntry(*ent, source=f"{oem_label} Enterprise benchmark"),
        'MidMarket': BenchmarkEntry(*mm, source=f"{oem_label} MidMarket benchmark"),
        'SMB': BenchmarkEntry(*smb, source=f"{oem_label} SMB benchmark"),
    }


# (p25, median, p75) per segment: Enterprise, MidMarket, SMB
BENCHMARKS: Dict[str, Dict[str, BenchmarkEntry]] = {
    'Cisco': _rows('Cisco', (10, 14, 17), (15, 19, 24), (18, 23, 28)),
    'Dell': _rows('Dell', (8, 12, 16), (14, 18, 23), (18, 22, 27)),
    'HPE': _rows('HPE', (9, 13, 17), (15, 19, 24), (19, 23, 28)),
    'Microsoft': _rows('Microsoft', (12, 16, 22), (18, 22, 28), (22, 26, 32)),
    'Palo Alto': _rows('Palo Alto', (12, 16, 20), (18, 22, 27), (22, 26, 32)),
    'CrowdStrike': _rows('CrowdStrike', (18, 22, 28), (22, 26, 32), (25, 30, 35)),
    'Fortinet': _rows('Fortinet', (12, 15, 20), (16, 20, 25), (20, 24, 28)),
    'VMware': _rows('VMware', (10, 14, 18), (16, 20, 25), (20, 24, 30)),
    'Pure Storage': _rows('Pure Storage', (12, 16, 22), (18, 22, 28), (22, 26, 32)),
}

DEFAULT_BENCHMARKS: Dict[str, BenchmarkEntry] = _rows(
    'General IT VAR', (10, 14, 18), (14, 18, 23), (18, 22, 27)
)

FINAL_FALLBACK = BenchmarkEntry(12, 16, 22, source='General IT VAR benchmark')

DEFAULT_IQR: float = 10.0

MIN_COMPRESSED_MARGIN: float = 5.0

ML_CAVEAT = (
    'These ranges are industry benchmarks; your ML model will personalize '
    'after 100 closed deals'
)

MAX_INSIGHTS = 4


# =============================================================================
# Lookup
# =============================================================================


def get_size_bucket(oem_cost: float) -> str:
    if oem_cost < 25_000:
        return '<$25K'
    if oem_cost < 100_000:
        return '$25K-$100K'
    if oem_cost < 500_000:
        return '$100K-$500K'
    if oem_cost < 1_000_000:
        return '$500K-$1M'
    return '$1M+'


SIZE_COMPRESSION: Dict[str, float] = {
    '$500K-$1M': 2.0,
    '$1M+': 4.0,
}


def _segment_key(segment) -> Optional[str]:
    if segment is None:
        return None
    return getattr(segment, 'value', segment)


def get_benchmark(oem: Optional[str], segment, oem_cost: float) -> Benchmark:
    """
    Resolve the benchmark range for an OEM, segment and deal size.

    Args:
        oem: OEM name; unknown or None falls through to the general table.
        segment: CustomerSegment or its string value; None means MidMarket.
        oem_cost: Deal OEM cost in dollars.

    Returns:
        Benchmark with low/median/high in percentage points.
    """
    size_bucket = get_size_bucket(oem_cost)
    effective_segment = 'SMB' if size_bucket == '<$25K' else (_segment_key(segment) or 'MidMarket')
    oem_rows = BENCHMARKS.get(oem.strip()) if oem else None

    if oem_rows and effective_segment in oem_rows:
        entry, specificity = oem_rows[effective_segment], 'oem_segment'
    elif oem_rows:
        entry, specificity = oem_rows['MidMarket'], 'oem_default'
    elif effective_segment in DEFAULT_BENCHMARKS:
        entry, specificity = DEFAULT_BENCHMARKS[effective_segment], 'general'
    else:
        entry, specificity = FINAL_FALLBACK, 'general'

    compression = SIZE_COMPRESSION.get(size_bucket, 0.0)
    return Benchmark(
        low=max(MIN_COMPRESSED_MARGIN, entry.p25 - compression) if compression else entry.p25,
        median=max(MIN_COMPRESSED_MARGIN, entry.median - compression) if compression else entry.median,
        high=max(MIN_COMPRESSED_MARGIN, entry.p75 - compression) if compression else entry.p75,
        source=entry.source,
        specificity=specificity,
    )


def get_benchmark_iqr(oem: Optional[str], segment) -> float:
    """
    Interquartile range (p75 - p25) in percentage points.

    Falls back to the general table for unknown OEMs and to 10pp when the
    segment is not in the table either.
    """
    effective_segment = _segment_key(segment) or 'MidMarket'
    oem_rows = BENCHMARKS.get(oem.strip()) if oem else None

    if oem_rows and effective_segment in oem_rows:
        entry = oem_rows[effective_segment]
        return entry.p75 - entry.p25
    if effective_segment in DEFAULT_BENCHMARKS:
        entry = DEFAULT_BENCHMARKS[effective_segment]
        return entry.p75 - entry.p25
    return DEFAULT_IQR


# =============================================================================
# Benchmark Response
# =============================================================================


def _benchmark_insights(deal: DealContext) -> List[str]:
    insights: List[str] = []

    if deal.dealRegType is not None and deal.dealRegType != DealRegType.NOT_REGISTERED:
        insights.append('Deal registration typically supports 2-4pp above median')
    if deal.competitors == CompetitorCount.THREE_PLUS:
        insights.append('3+ competitors typically compress margins 2-3pp below median')
    if deal.servicesAttached:
        insights.append('Services-attached deals achieve 3-5pp higher blended margins')
    if deal.productCategory in (ProductCategory.PROFESSIONAL_SERVICES, ProductCategory.MANAGED_SERVICES):
        insights.append('Services/managed categories support premium margins')
    if deal.oemCost >= 500_000:
        insights.append('Large deal sizes ($500K+) create 2-4pp margin compression')

    # The caveat is always the final insight
    return insights[:MAX_INSIGHTS - 1] + [ML_CAVEAT]


def generate_benchmark_response(deal: DealContext) -> BenchmarkResponse:
    """Benchmark-based recommendation for customers without a trained model."""
    benchmark = get_benchmark(deal.oem, deal.customerSegment, deal.oemCost)
    suggested_price = deal.oemCost / (1 - benchmark.median / 100)

    return BenchmarkResponse(
        suggestedMarginPct=benchmark.median,
        suggestedMarginRange=MarginRange(low=benchmark.low, high=benchmark.high),
        suggestedPrice=round(suggested_price, 2),
        sizeBucket=get_size_bucket(deal.oemCost),
        benchmarkSource=benchmark.source,
        benchmarkLevel=benchmark.specificity,
        insights=_benchmark_insights(deal),
    )
