"""
Recommendation bounded context: domain layer.

This module contains all domain logic for signal fusion:
- Ensemble fusion of per-source, per-timeframe signals
- Conflict detection and resolution
- Uncertainty quantification and risk-adjusted sizing
- Recommendation assembly and performance feedback
"""
