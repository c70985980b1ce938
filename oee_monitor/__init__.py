"""OEE Monitor webhook delivery engine.

Notifies external subscribers over signed HTTP callbacks when domain
events (machine status changes, production runs, OEE thresholds) occur.
"""

__version__ = "1.0.0"
