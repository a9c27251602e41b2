"""
Health check endpoints for the controller.

Provides /health (liveness) and /ready (readiness) endpoints.
"""

from fastapi import APIRouter, Request, Response, status

from tfcontroller.api.dependencies import get_components_or_none
from tfcontroller.logging_config import get_logger

router = APIRouter(tags=["health"])
logger = get_logger(__name__)


@router.get("/health", status_code=status.HTTP_200_OK)
async def health() -> dict[str, str]:
    """Liveness probe endpoint.

    Returns 200 if the server is running.
    """
    return {"status": "healthy"}


@router.get("/ready", status_code=status.HTTP_200_OK)
async def ready(request: Request, response: Response) -> dict[str, str | dict[str, str]]:
    """Readiness probe endpoint.

    Checks that the Kubernetes clients and backend registry are initialized.
    """
    components = get_components_or_none(request)
    checks = {
        "kubernetes": "healthy" if components is not None else "unhealthy",
        "backends": "healthy" if components is not None and components.registry.names() else "unhealthy",
    }

    if not all(v == "healthy" for v in checks.values()):
        logger.warning("Readiness check failed", checks=checks)
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {"status": "not ready", "checks": checks}

    return {"status": "ready", "checks": checks}
