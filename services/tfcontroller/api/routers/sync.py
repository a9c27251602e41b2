"""Synchronous sync trigger for the external orchestration manager.

POST /sync accepts {parent, finalizing} and answers with the resulting
status wrapped as {"body": {"state", "message"}}. The same status is also
written to the resource.
"""

from fastapi import APIRouter, Depends

from tfcontroller.api.dependencies import get_coordinator
from tfcontroller.models import SyncRequest
from tfcontroller.sync.coordinator import SyncCoordinator

router = APIRouter(tags=["sync"])


@router.post("/sync")
async def sync(
    observed: SyncRequest,
    coordinator: SyncCoordinator = Depends(get_coordinator),
) -> dict[str, dict[str, str]]:
    status = await coordinator.handle(observed)
    return {"body": status.to_dict()}
