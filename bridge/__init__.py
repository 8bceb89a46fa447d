"""HVAC Estimator Bridge.

Pricing core for an HVAC contractor's chat/CRM bridge.

Architecture:
- Domain normalizer: coerces untrusted catalog/config input
- Estimate engine: cost, margin, discount and tax computation with guardrails
- Changeout planner: classifies an intake into one of five lanes
- Profile store + Housecall mapper: local persistence and CRM payload shaping
"""

__version__ = "1.0.0"
