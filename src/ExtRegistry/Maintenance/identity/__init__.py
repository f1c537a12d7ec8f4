"""Public-id reconciliation against an upstream extension gallery."""

from .handlers import PublicIdDailyUpdateHandler, PublicIdUpdateHandler
from .reconciler import IdentityReconciler, ReconcileResult, plan_changes
from .upstream import PublicIds, UpstreamLookup, UpstreamRegistryClient

__all__ = [
    "IdentityReconciler",
    "PublicIdDailyUpdateHandler",
    "PublicIdUpdateHandler",
    "PublicIds",
    "ReconcileResult",
    "UpstreamLookup",
    "UpstreamRegistryClient",
    "plan_changes",
]
