"""Write sync outcomes back onto the Terraform resource's status subresource."""

import asyncio

from kubernetes import client
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

from tfcontroller.config import CRDConfig
from tfcontroller.logging_config import get_logger
from tfcontroller.models import SyncStatus

logger = get_logger(__name__)


class StatusReporter:
    """Last-write-wins status updates. Failures are logged, never raised."""

    def __init__(self, custom_api: client.CustomObjectsApi, crd: CRDConfig) -> None:
        self._custom = custom_api
        self._crd = crd

    async def report(self, name: str, namespace: str, status: SyncStatus) -> bool:
        """Patch the resource status. Returns False if the write failed."""
        body = {"status": status.to_dict()}
        try:
            loop = asyncio.get_event_loop()
            await loop.run_in_executor(
                None,
                lambda: self._custom.patch_namespaced_custom_object_status(
                    group=self._crd.group,
                    version=self._crd.version,
                    namespace=namespace,
                    plural=self._crd.plural,
                    name=name,
                    body=body,
                ),
            )
        except ApiException as e:
            logger.error(
                "Error updating status",
                resource=name,
                namespace=namespace,
                error=f"({e.status}) {e.reason}",
            )
            return False
        except HTTPError as e:
            logger.error(
                "Error updating status", resource=name, namespace=namespace, error=str(e)
            )
            return False

        logger.info("Updated status", resource=name, namespace=namespace, state=status.state.value)
        return True
