"""FastAPI dependencies for the controller components.

Components are built once in the app lifespan and stored on app.state;
routes receive them through these dependencies so tests can override them.
"""

from dataclasses import dataclass

from fastapi import HTTPException, Request, status

from tfcontroller.backends import BackendRegistry
from tfcontroller.kube import KubeClients
from tfcontroller.sync.coordinator import SyncCoordinator
from tfcontroller.sync.scheduler import ReconcileScheduler


@dataclass
class Components:
    """Everything the API and the reconcile loop share."""

    clients: KubeClients
    registry: BackendRegistry
    coordinator: SyncCoordinator
    scheduler: ReconcileScheduler


def get_components_or_none(request: Request) -> Components | None:
    return getattr(request.app.state, "components", None)


def get_coordinator(request: Request) -> SyncCoordinator:
    """Return the sync coordinator, or 503 while the controller is starting."""
    components = get_components_or_none(request)
    if components is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Controller not initialized",
        )
    return components.coordinator
