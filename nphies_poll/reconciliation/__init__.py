from nphies_poll.reconciliation.reconciler import Reconciler, ReconcileResult

__all__ = ["Reconciler", "ReconcileResult"]
