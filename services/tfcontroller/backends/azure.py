"""
Azure Blob Storage remote-state backend.

Uses azure.storage.blob.aio for async I/O. Auth via DefaultAzureCredential
(picks up Workload Identity automatically on AKS). State locking uses blob
leases, so only the container needs to exist.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from tfcontroller.backends.protocol import require_keys
from tfcontroller.errors import BackendSetupError
from tfcontroller.logging_config import get_logger

logger = get_logger(__name__)

DOCKERFILE_ADDITIONS = """\
# Azure backend: az CLI for credential retrieval
RUN apk add --no-cache py3-pip gcc musl-dev python3-dev libffi-dev openssl-dev \\
    && pip install --no-cache-dir --break-system-packages azure-cli
"""


class AzureBackend:
    """Azure blob container state backend."""

    name = "azure"

    def __init__(self, container_client_factory: Any = None) -> None:
        self._container_client_factory = container_client_factory

    def _make_container_client(self, account_name: str, container_name: str) -> Any:
        if self._container_client_factory is not None:
            return self._container_client_factory(account_name, container_name)

        from azure.identity.aio import DefaultAzureCredential
        from azure.storage.blob.aio import ContainerClient

        return ContainerClient(
            account_url=f"https://{account_name}.blob.core.windows.net",
            container_name=container_name,
            credential=DefaultAzureCredential(),
        )

    async def setup_backend(self, config: Mapping[str, str]) -> None:
        keys = require_keys(self.name, config, "storageAccount", "containerName")
        container = self._make_container_client(keys["storageAccount"], keys["containerName"])

        try:
            async with container:
                if await container.exists():
                    logger.debug("State container exists", container=keys["containerName"])
                    return
                await container.create_container()
        except Exception as e:
            if _is_already_exists(e):
                return
            raise BackendSetupError(
                f"ensuring container {keys['containerName']}: {e}"
            ) from e

        logger.info(
            "Created state container",
            account=keys["storageAccount"],
            container=keys["containerName"],
        )

    def get_dockerfile_additions(self) -> str:
        return DOCKERFILE_ADDITIONS


def _is_already_exists(exc: Exception) -> bool:
    """Check if an Azure exception indicates a concurrent create won the race."""
    from azure.core.exceptions import ResourceExistsError

    return isinstance(exc, ResourceExistsError)
