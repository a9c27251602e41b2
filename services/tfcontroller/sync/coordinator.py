"""Sync pipeline for a single Terraform resource.

Stages run strictly in order and the first failure short-circuits the rest:

1. select the deploy or destroy script
2. derive the execution environment from spec.variables
3. set up the remote-state backend (optional)
4. render the Dockerfile into a ConfigMap
5. materialize the registry credential Secret
6. check out the repository and build the tagged image
7. run the script, retrying transient failures

Whatever happens, exactly one status is written back to the resource.
"""

import os
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass

import structlog

from tfcontroller.backends import PROVIDER_KEY, BackendRegistry
from tfcontroller.config import Settings
from tfcontroller.errors import ConfigurationError, ControllerError
from tfcontroller.logging_config import get_logger
from tfcontroller.models import SyncRequest, SyncState, SyncStatus
from tfcontroller.runner.git import checkout_repo
from tfcontroller.runner.pod_manager import PodLifecycleManager
from tfcontroller.runner.pod_template import render_dockerfile
from tfcontroller.sync.retry import RetryPolicy
from tfcontroller.sync.status import StatusReporter

logger = get_logger(__name__)

SUCCESS_MESSAGE = "applied successfully"
TF_VAR_PREFIX = "TF_VAR_"

Checkout = Callable[[str, str, str, str], Awaitable[str]]


@dataclass(frozen=True)
class BackendSetup:
    dockerfile_additions: str = ""
    provider_exists: bool = False


def select_script(request: SyncRequest) -> str:
    """Pick the destroy script while finalizing, the deploy script otherwise."""
    scripts = request.parent.spec.scripts
    if request.finalizing:
        if not scripts.destroy:
            raise ConfigurationError("destroy script is missing")
        return scripts.destroy
    if not scripts.deploy:
        raise ConfigurationError("deploy script is missing")
    return scripts.deploy


def derive_environment(variables: Mapping[str, str] | None) -> dict[str, str]:
    """Map resource variables to container environment.

    Each variable is exported under its own name and as TF_VAR_<name>, so
    both scripts and terraform see it. Names already carrying the prefix are
    exported once.
    """
    env: dict[str, str] = {}
    for key, value in (variables or {}).items():
        env[key] = value
        if not key.startswith(TF_VAR_PREFIX):
            env[f"{TF_VAR_PREFIX}{key}"] = value
    return env


def error_status(action: str, err: Exception) -> SyncStatus:
    logger.error(f"Error {action}", error=str(err))
    return SyncStatus(state=SyncState.ERROR, message=f"error {action}: {err}")


class SyncCoordinator:
    """Drives one SyncRequest through the pipeline and reports the outcome."""

    def __init__(
        self,
        pods: PodLifecycleManager,
        registry: BackendRegistry,
        reporter: StatusReporter,
        settings: Settings,
        retry_policy: RetryPolicy | None = None,
        checkout: Checkout = checkout_repo,
    ) -> None:
        self._pods = pods
        self._registry = registry
        self._reporter = reporter
        self._settings = settings
        self._retry = retry_policy or RetryPolicy.from_config(settings.retry)
        self._checkout = checkout

    async def handle(self, request: SyncRequest) -> SyncStatus:
        """Run the pipeline for `request` and write the resulting status."""
        with structlog.contextvars.bound_contextvars(
            resource=request.name, namespace=request.namespace
        ):
            logger.info("Handling sync request", finalizing=request.finalizing)
            try:
                status = await self._sync(request)
            except Exception as e:
                logger.exception("Unexpected error during sync")
                status = error_status("syncing resource", e)

            await self._reporter.report(request.name, request.namespace, status)
            return status

    async def setup_backend(self, backend: Mapping[str, str]) -> BackendSetup:
        """Resolve and prepare the backend named by `backend["provider"]`.

        A missing backend block or provider key is not an error; the sync
        simply proceeds without remote-state setup.
        """
        if not backend:
            logger.info("No backend provided, continuing without backend setup")
            return BackendSetup()

        provider_name = backend.get(PROVIDER_KEY, "")
        if not provider_name:
            logger.info("Backend provided without specifying provider, continuing without backend setup")
            return BackendSetup()

        provider = self._registry.get(provider_name)
        await provider.setup_backend(backend)
        logger.info("Backend ready", provider=provider_name)
        return BackendSetup(
            dockerfile_additions=provider.get_dockerfile_additions(),
            provider_exists=True,
        )

    async def _sync(self, request: SyncRequest) -> SyncStatus:
        parent = request.parent
        spec = parent.spec
        name = request.name
        namespace = request.namespace
        verb = "destroy" if request.finalizing else "deploy"

        try:
            script = select_script(request)
        except ConfigurationError as e:
            return error_status(f"executing {verb} script", e)

        env = derive_environment(spec.variables)

        try:
            backend = await self.setup_backend(spec.backend)
        except ConfigurationError as e:
            return error_status("setting up backend", e)

        runner = self._settings.runner
        dockerfile = render_dockerfile(runner.base_image, backend.dockerfile_additions)
        try:
            await self._pods.ensure_config_map(name, namespace, dockerfile)
        except ControllerError as e:
            return error_status("creating Dockerfile ConfigMap", e)

        try:
            await self._pods.ensure_registry_secret(
                name, namespace, self._settings.container_registry_secret
            )
        except ControllerError as e:
            return error_status("creating Docker config secret", e)

        repo_dir = os.path.join(runner.repo_root, namespace, name)
        try:
            await self._checkout(
                spec.git_repo.url, spec.git_repo.branch, repo_dir, self._settings.git_ssh_secret
            )
            image = await self._pods.build_image(parent, repo_dir)
        except ControllerError as e:
            return error_status("creating build job", e)

        try:
            await self._retry.run(lambda: self._pods.run_script(parent, script, image, env))
        except ControllerError as e:
            logger.error(f"Terraform {verb} failed", attempts=self._retry.max_attempts, error=str(e))
            return SyncStatus(state=SyncState.FAILED, message=str(e))

        logger.info(f"Terraform {verb} succeeded", image=image)
        return SyncStatus(state=SyncState.SUCCESS, message=SUCCESS_MESSAGE)
