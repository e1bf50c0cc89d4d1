"""
Slot searcher: on-chain opportunity detection and bundle execution.
"""

__version__ = "0.1.0"
