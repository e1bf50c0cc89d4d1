"""
Detection, scoring, risk and orchestration.
"""

from searcher.engine.detector import BaseDetector
from searcher.engine.pipeline import CycleReport, Pipeline
from searcher.engine.risk_governor import CircuitBreaker, RiskGovernor
from searcher.engine.scorer import OpportunityScorer
from searcher.engine.strategy_engine import StrategyEngine

__all__ = [
    "BaseDetector",
    "CircuitBreaker",
    "CycleReport",
    "OpportunityScorer",
    "Pipeline",
    "RiskGovernor",
    "StrategyEngine",
]
