"""
Stress scoring: pure functions, no DB or I/O.

Modules
-------
signals    : five total sub-score functions (sleep, activity, mood,
             consistency, historical) + rounding/coercion helpers.
aggregator : weighted total, tier, key factors, confidence, Default
             Prediction and the ``predict_stress()`` failure boundary.
"""
