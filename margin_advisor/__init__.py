"""
Margin Advisor backend package.

Margin recommendation and bill-of-materials margin allocation engine for
commercial IT deals: feature engineering, a from-scratch logistic regression
trainer, k-NN similarity over closed deals, a rule-based heuristic scorer,
a win-probability model, and a constrained BOM optimizer, exposed through a
thin FastAPI layer.
"""

__version__ = "1.0.0"
