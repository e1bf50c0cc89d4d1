"""
Bundle assembly and submission.
"""

from searcher.execution.bundle_builder import BundleBuilder
from searcher.execution.submission_manager import SubmissionManager

__all__ = [
    "BundleBuilder",
    "SubmissionManager",
]
