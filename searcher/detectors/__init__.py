"""
Strategy detectors.
"""

from searcher.detectors.cross_pool_arbitrage import CrossPoolArbitrageDetector
from searcher.detectors.curve_arbitrage import CurveArbitrageDetector
from searcher.detectors.oracle_deviation import OracleDeviationDetector

__all__ = [
    "CrossPoolArbitrageDetector",
    "CurveArbitrageDetector",
    "OracleDeviationDetector",
]
