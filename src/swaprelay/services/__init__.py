"""Background services."""

from swaprelay.services.reconciliation import ReconciliationReport, Reconciler

__all__ = [
    "ReconciliationReport",
    "Reconciler",
]
