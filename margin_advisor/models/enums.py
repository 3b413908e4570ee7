"""
Enumeration definitions for the Margin Advisor backend.

All enums inherit from both `str` and `Enum` so they serialize transparently
through Pydantic models and compare equal to their raw string values. The
member values are the exact strings carried on the wire by deal records and
BOM lines, which keeps historical deals loaded from JSON comparable with
freshly validated request payloads.
"""

from enum import Enum


class CustomerSegment(str, Enum):
    """
    Customer size segment.

    Drives the rule scorer's base margin (SMB 20%, MidMarket 17%,
    Enterprise 14%) and the benchmark lookup.
    """
    SMB = "SMB"
    MID_MARKET = "MidMarket"
    ENTERPRISE = "Enterprise"


class ProductCategory(str, Enum):
    """
    Product category of a deal or a BOM line.

    Each category carries its own margin floor, ceiling, elasticity and base
    target in the BOM optimizer.
    """
    HARDWARE = "Hardware"
    SOFTWARE = "Software"
    CLOUD = "Cloud"
    PROFESSIONAL_SERVICES = "ProfessionalServices"
    MANAGED_SERVICES = "ManagedServices"
    COMPLEX_SOLUTION = "ComplexSolution"


class RelationshipStrength(str, Enum):
    """Strength of the existing customer relationship."""
    NEW = "New"
    GOOD = "Good"
    STRATEGIC = "Strategic"


class DealRegType(str, Enum):
    """
    OEM deal registration status.

    Teaming registrations are treated like StandardApproved everywhere.
    """
    NOT_REGISTERED = "NotRegistered"
    STANDARD_APPROVED = "StandardApproved"
    PREMIUM_HUNTING = "PremiumHunting"
    TEAMING = "Teaming"


class CompetitorCount(str, Enum):
    """
    Bucketed number of competing bidders.

    Values: '0', '1', '2', '3+'
    """
    NONE = "0"
    ONE = "1"
    TWO = "2"
    THREE_PLUS = "3+"


class Level(str, Enum):
    """
    Three-step ordinal used for value-add, solution complexity, customer
    tech sophistication and VAR strategic importance.
    """
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class DealStatus(str, Enum):
    """Outcome of a closed deal."""
    WON = "Won"
    LOST = "Lost"


class RecommendationSource(str, Enum):
    """
    Which engine produced a recommendation.

    - rules: Rule-based scorer, optionally blended with k-NN neighbours
    - external_model: Remote model service configured via MODEL_URL
    - ml_model: Customer-specific logistic regression margin sweep
    - industry_benchmark: Static OEM x segment benchmark table
    """
    RULES = "rules"
    EXTERNAL_MODEL = "external_model"
    ML_MODEL = "ml_model"
    INDUSTRY_BENCHMARK = "industry_benchmark"


class QualityGrade(str, Enum):
    """Grade attached to a prediction-quality score."""
    EXCELLENT = "Excellent"
    GOOD = "Good"
    FAIR = "Fair"
    POOR = "Poor"
