"""Pod lifecycle management: ensure-fresh build/run pods and their supporting objects.

Uses the kubernetes Python client. Blocking API calls run in the default
executor so a sync never stalls the event loop.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any

from kubernetes import client
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

from tfcontroller.config import RunnerConfig
from tfcontroller.errors import BuildError, PodLifecycleError, TransientExecutionError
from tfcontroller.logging_config import get_logger
from tfcontroller.models import ParentResource
from tfcontroller.runner import pod_template

logger = get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]

SUCCEEDED = "succeeded"
FAILED = "failed"
TIMEOUT = "timeout"


def _api_error(action: str, e: ApiException) -> PodLifecycleError:
    return PodLifecycleError(f"{action}: ({e.status}) {e.reason}")


class PodLifecycleManager:
    """Idempotent create/replace of execution pods and their ConfigMap, Secret and PVC."""

    def __init__(
        self,
        core_api: client.CoreV1Api,
        runner_config: RunnerConfig,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._core = core_api
        self._config = runner_config
        self._sleep = sleep
        self._clock = clock

    async def _call(self, fn: Callable[..., Any], **kwargs: Any) -> Any:
        """Run a blocking API call in the executor.

        Transport failures surface as PodLifecycleError; ApiException passes
        through for callers that act on the status code.
        """
        loop = asyncio.get_event_loop()
        try:
            return await loop.run_in_executor(None, lambda: fn(**kwargs))
        except HTTPError as e:
            raise PodLifecycleError(f"kubernetes API unreachable: {e}") from e

    # --- Supporting objects ---

    async def ensure_config_map(self, resource_name: str, namespace: str, dockerfile: str) -> str:
        """Create or replace the Dockerfile ConfigMap. Returns its name."""
        body = pod_template.build_config_map_spec(resource_name, namespace, dockerfile)
        name = body["metadata"]["name"]
        try:
            await self._call(self._core.create_namespaced_config_map, namespace=namespace, body=body)
            logger.info("Created ConfigMap", config_map=name, namespace=namespace)
        except ApiException as e:
            if e.status != 409:
                raise _api_error(f"creating ConfigMap {name}", e) from e
            try:
                await self._call(
                    self._core.replace_namespaced_config_map,
                    name=name,
                    namespace=namespace,
                    body=body,
                )
            except ApiException as replace_error:
                raise _api_error(f"replacing ConfigMap {name}", replace_error) from replace_error
            logger.info("Replaced ConfigMap", config_map=name, namespace=namespace)
        return name

    async def ensure_registry_secret(
        self, resource_name: str, namespace: str, encoded_docker_config: str
    ) -> str:
        """Create or replace the registry credential Secret. Returns its name."""
        if not encoded_docker_config:
            raise PodLifecycleError("container registry credential is not configured")

        body = pod_template.build_registry_secret_spec(
            resource_name, namespace, encoded_docker_config
        )
        name = body["metadata"]["name"]
        try:
            await self._call(self._core.create_namespaced_secret, namespace=namespace, body=body)
            logger.info("Created Secret", secret=name, namespace=namespace)
        except ApiException as e:
            if e.status != 409:
                raise _api_error(f"creating Secret {name}", e) from e
            try:
                await self._call(
                    self._core.replace_namespaced_secret,
                    name=name,
                    namespace=namespace,
                    body=body,
                )
            except ApiException as replace_error:
                raise _api_error(f"replacing Secret {name}", replace_error) from replace_error
            logger.info("Replaced Secret", secret=name, namespace=namespace)
        return name

    async def ensure_cache_claim(self, resource_name: str, namespace: str) -> str:
        """Create the build cache PVC if absent. An existing claim is left untouched."""
        name = pod_template.cache_claim_name(resource_name)
        try:
            await self._call(
                self._core.read_namespaced_persistent_volume_claim,
                name=name,
                namespace=namespace,
            )
            return name
        except ApiException as e:
            if e.status != 404:
                raise _api_error(f"reading PVC {name}", e) from e

        body = pod_template.build_cache_claim_spec(resource_name, namespace, self._config)
        try:
            await self._call(
                self._core.create_namespaced_persistent_volume_claim,
                namespace=namespace,
                body=body,
            )
            logger.info("Created PVC", pvc=name, namespace=namespace)
        except ApiException as e:
            # A concurrent sync created it first
            if e.status != 409:
                raise _api_error(f"creating PVC {name}", e) from e
        return name

    # --- Pods ---

    async def ensure_fresh_pod(self, namespace: str, body: dict) -> str:
        """Replace any pod with the same name by a new one built from `body`.

        A previous instance has its finalizers stripped, is deleted, and is
        confirmed gone before the new pod is created.
        """
        name = body["metadata"]["name"]
        await self._remove_existing_pod(name, namespace)

        try:
            await self._call(self._core.create_namespaced_pod, namespace=namespace, body=body)
        except ApiException as e:
            logger.error("Failed to create Pod", pod=name, error=str(e.reason))
            raise _api_error(f"creating pod {name}", e) from e

        logger.info("Created Pod", pod=name, namespace=namespace)
        return name

    async def _remove_existing_pod(self, name: str, namespace: str) -> None:
        try:
            pod = await self._call(self._core.read_namespaced_pod, name=name, namespace=namespace)
        except ApiException as e:
            if e.status == 404:
                logger.debug("No existing Pod to delete", pod=name)
                return
            raise _api_error(f"checking for existing pod {name}", e) from e

        try:
            if pod.metadata.finalizers:
                logger.info("Removing finalizers from Pod", pod=name)
                await self._call(
                    self._core.patch_namespaced_pod,
                    name=name,
                    namespace=namespace,
                    body={"metadata": {"finalizers": []}},
                    _content_type="application/merge-patch+json",
                )

            await self._call(
                self._core.delete_namespaced_pod,
                name=name,
                namespace=namespace,
                body=client.V1DeleteOptions(),
            )
            logger.info("Deleted existing Pod", pod=name)
        except ApiException as e:
            if e.status != 404:
                raise _api_error(f"removing existing pod {name}", e) from e

        await self._wait_until_gone(name, namespace)

    async def _wait_until_gone(self, name: str, namespace: str) -> None:
        deadline = self._clock() + self._config.deletion_timeout_seconds
        while True:
            try:
                await self._call(self._core.read_namespaced_pod, name=name, namespace=namespace)
            except ApiException as e:
                if e.status == 404:
                    return
                raise _api_error(f"waiting for pod {name} deletion", e) from e

            if self._clock() >= deadline:
                raise PodLifecycleError(
                    f"pod {name} still terminating after "
                    f"{self._config.deletion_timeout_seconds}s"
                )
            await self._sleep(self._config.deletion_poll_seconds)

    async def wait_for_pod(self, name: str, namespace: str, timeout_seconds: int) -> str:
        """Poll a pod until it reaches a terminal phase.

        Returns "succeeded", "failed", or "timeout". A pod that disappears
        while being watched counts as failed.
        """
        deadline = self._clock() + timeout_seconds
        while True:
            try:
                pod = await self._call(
                    self._core.read_namespaced_pod, name=name, namespace=namespace
                )
            except ApiException as e:
                if e.status == 404:
                    logger.warning("Pod vanished while waiting", pod=name)
                    return FAILED
                raise _api_error(f"reading pod {name}", e) from e

            phase = pod.status.phase if pod.status else None
            if phase == "Succeeded":
                return SUCCEEDED
            if phase == "Failed":
                return FAILED

            if self._clock() >= deadline:
                return TIMEOUT
            await self._sleep(self._config.status_poll_seconds)

    async def get_pod_logs(self, name: str, namespace: str, tail_lines: int = 20) -> str:
        try:
            return await self._call(
                self._core.read_namespaced_pod_log,
                name=name,
                namespace=namespace,
                tail_lines=tail_lines,
            )
        except (ApiException, PodLifecycleError):
            return ""

    async def _describe_failure(self, name: str, namespace: str, result: str) -> str:
        message = f"pod {name} {result}"
        logs = (await self.get_pod_logs(name, namespace)).strip()
        if logs:
            message = f"{message}: {logs}"
        return message

    # --- Stages ---

    async def build_image(self, resource: ParentResource, repo_dir: str) -> str:
        """Build and push the resource image. Returns the tagged image reference.

        Expects the Dockerfile ConfigMap and registry Secret to exist already.
        """
        name = resource.metadata.name
        namespace = resource.metadata.namespace
        image = pod_template.tagged_image(
            resource.spec.container_registry.image_name,
            namespace,
            name,
            resource.metadata.generation,
        )

        try:
            await self.ensure_cache_claim(name, namespace)
            body = pod_template.build_build_pod_spec(
                name, namespace, image, repo_dir, self._config
            )
            pod = await self.ensure_fresh_pod(namespace, body)
            result = await self.wait_for_pod(pod, namespace, self._config.build_timeout_seconds)
        except PodLifecycleError as e:
            raise BuildError(str(e)) from e

        if result != SUCCEEDED:
            raise BuildError(await self._describe_failure(pod, namespace, result))

        logger.info("Built image", image=image, pod=pod)
        return image

    async def run_script(
        self,
        resource: ParentResource,
        script: str,
        image: str,
        env: dict[str, str],
    ) -> None:
        """Run `script` in a fresh run pod.

        Raises TransientExecutionError if the pod cannot be started or, when
        completion is awaited, does not succeed.
        """
        name = resource.metadata.name
        namespace = resource.metadata.namespace
        body = pod_template.build_run_pod_spec(name, namespace, image, script, env, self._config)

        try:
            pod = await self.ensure_fresh_pod(namespace, body)
            if not self._config.wait_for_run_completion:
                return
            result = await self.wait_for_pod(pod, namespace, self._config.run_timeout_seconds)
        except PodLifecycleError as e:
            raise TransientExecutionError(str(e)) from e

        if result != SUCCEEDED:
            raise TransientExecutionError(await self._describe_failure(pod, namespace, result))
        logger.info("Run pod succeeded", pod=pod)
