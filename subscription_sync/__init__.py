"""Subscription lifecycle reconciliation service.

Reconciles recurring-billing webhook events with locally stored
subscription profiles and payment sessions, and derives access decisions
from the resulting state.
"""

__version__ = "0.1.0"
