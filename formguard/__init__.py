"""FormGuard security event timeline.

Correlates active blocks and blocked-validation detections from the form
protection service into one classified, filterable, paginated timeline.
"""

__version__ = "1.0.0"
