"""
review-router

Runs configured code review agents on a change and reconciles what they
report into one gated, deduplicated review.
"""

__version__ = "0.1.0"
