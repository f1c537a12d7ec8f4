"""Job handlers for public-id reconciliation."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ExtRegistry.Maintenance.identity.reconciler import IdentityReconciler
    from ExtRegistry.Maintenance.orchestrator.models import JobContext


class PublicIdUpdateHandler:
    """Payload: ``namespace`` and ``extension`` names."""

    def __init__(self, reconciler: "IdentityReconciler") -> None:
        self.reconciler = reconciler

    def execute(self, ctx: "JobContext") -> None:
        self.reconciler.update(str(ctx.require("namespace")), str(ctx.require("extension")))


class PublicIdDailyUpdateHandler:
    def __init__(self, reconciler: "IdentityReconciler") -> None:
        self.reconciler = reconciler

    def execute(self, ctx: "JobContext") -> None:
        self.reconciler.update_all()
