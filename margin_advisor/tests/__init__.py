'''
Margin Advisor Test Suite

Test Modules:
-------------
- test_features.py: feature vector layout, normalization, counterfactual margins
- test_logistic_regression.py: training, prediction, AUC, calibration, serialization
- test_benchmarks.py: OEM x segment lookup cascade, size compression, insights
- test_knn.py: similarity, time decay, neighbour summaries
- test_win_probability.py: heuristic win probability bounds and monotonicity
- test_rules.py: rule drivers, policy floor, neighbour blend, external model fallback
- test_training.py: data gate, augmentation, model storage, phase promotion
- test_inference.py: margin sweep operating points and key drivers
- test_scenarios_quality.py: scenario comparison, prediction quality, deal score
- test_bom_optimizer.py: per-line allocation, redistribution, health and insights
- test_narrative.py: Gemini client retry/cache behaviour and fallbacks
- test_repositories.py: TTL cache, cached deal reader, model and phase stores
- test_api.py: FastAPI endpoints end to end

Running Tests:
--------------
    pip install -e ".[test]"
    pytest margin_advisor/tests/ -v

Configuration:
--------------
See conftest.py for shared fixtures and test configuration.
'''

__all__ = []
