"""
Top-level test configuration for the Terraform controller.

Provides in-memory stand-ins for the CoreV1 and CustomObjects APIs so the
pipeline can be exercised without a cluster.
"""

import os
from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock

import pytest
from kubernetes.client.rest import ApiException

# Ensure test-friendly defaults
os.environ.setdefault("TFCONTROLLER_JSON_LOGS", "false")
os.environ.setdefault("TFCONTROLLER_LOG_LEVEL", "DEBUG")
os.environ.setdefault("TFCONTROLLER_CONFIG_FILE", "/nonexistent/tfcontroller.yaml")

from tfcontroller.config import RunnerConfig  # noqa: E402


def _not_found(name: str) -> ApiException:
    return ApiException(status=404, reason=f"{name} not found")


def _conflict(name: str) -> ApiException:
    return ApiException(status=409, reason=f"{name} already exists")


class FakeCoreApi:
    """Dict-backed subset of CoreV1Api used by the pod manager.

    - `delete_lag` keeps a deleted pod readable for that many reads.
    - `pod_phases[name]` lists phases returned by successive reads of a pod
      (the last one sticks); pods default to "Succeeded".
    - `create_pod_errors[name]` lists exceptions raised by successive creates.
    """

    def __init__(self) -> None:
        self.pods: dict[tuple[str, str], SimpleNamespace] = {}
        self.config_maps: dict[tuple[str, str], dict] = {}
        self.secrets: dict[tuple[str, str], dict] = {}
        self.claims: dict[tuple[str, str], dict] = {}
        self.calls: list[tuple[str, str]] = []
        self.delete_lag = 0
        self.pod_phases: dict[str, list[str]] = {}
        self.create_pod_errors: dict[str, list[Exception]] = {}
        self.pod_logs: dict[str, str] = {}
        self._pending_delete: dict[tuple[str, str], int] = {}

    # --- Pods ---

    def add_pod(self, name: str, namespace: str = "default", finalizers: list[str] | None = None) -> None:
        self.pods[(namespace, name)] = SimpleNamespace(
            metadata=SimpleNamespace(name=name, finalizers=list(finalizers or [])),
            status=SimpleNamespace(phase="Running"),
            body={},
        )

    def read_namespaced_pod(self, name: str, namespace: str) -> Any:
        self.calls.append(("read_pod", name))
        key = (namespace, name)
        if key in self._pending_delete:
            if self._pending_delete[key] <= 0:
                del self._pending_delete[key]
                self.pods.pop(key, None)
            else:
                self._pending_delete[key] -= 1
        pod = self.pods.get(key)
        if pod is None:
            raise _not_found(name)
        phases = self.pod_phases.get(name)
        if phases and key not in self._pending_delete:
            pod.status.phase = phases.pop(0) if len(phases) > 1 else phases[0]
        return pod

    def patch_namespaced_pod(self, name: str, namespace: str, body: dict, **kwargs: Any) -> Any:
        self.calls.append(("patch_pod", name))
        pod = self.pods.get((namespace, name))
        if pod is None:
            raise _not_found(name)
        pod.metadata.finalizers = list(body["metadata"]["finalizers"])
        return pod

    def delete_namespaced_pod(self, name: str, namespace: str, body: Any = None) -> None:
        self.calls.append(("delete_pod", name))
        key = (namespace, name)
        if key not in self.pods:
            raise _not_found(name)
        if self.pods[key].metadata.finalizers:
            # Stuck terminating until finalizers are cleared
            self._pending_delete[key] = 10**9
            return
        if self.delete_lag:
            self._pending_delete[key] = self.delete_lag
        else:
            del self.pods[key]

    def create_namespaced_pod(self, namespace: str, body: dict) -> None:
        name = body["metadata"]["name"]
        self.calls.append(("create_pod", name))
        errors = self.create_pod_errors.get(name)
        if errors:
            raise errors.pop(0)
        key = (namespace, name)
        if key in self.pods:
            raise _conflict(name)
        self.pods[key] = SimpleNamespace(
            metadata=SimpleNamespace(name=name, finalizers=[]),
            status=SimpleNamespace(phase="Pending" if name in self.pod_phases else "Succeeded"),
            body=body,
        )

    def read_namespaced_pod_log(self, name: str, namespace: str, tail_lines: int = 20) -> str:
        if (namespace, name) not in self.pods:
            raise _not_found(name)
        return self.pod_logs.get(name, "")

    def live_pods(self, namespace: str = "default") -> list[str]:
        return sorted(n for (ns, n) in self.pods if ns == namespace)

    # --- ConfigMaps / Secrets / PVCs ---

    def _create(self, store: dict, namespace: str, body: dict) -> None:
        name = body["metadata"]["name"]
        if (namespace, name) in store:
            raise _conflict(name)
        store[(namespace, name)] = body

    def _replace(self, store: dict, name: str, namespace: str, body: dict) -> None:
        if (namespace, name) not in store:
            raise _not_found(name)
        store[(namespace, name)] = body

    def create_namespaced_config_map(self, namespace: str, body: dict) -> None:
        self.calls.append(("create_config_map", body["metadata"]["name"]))
        self._create(self.config_maps, namespace, body)

    def replace_namespaced_config_map(self, name: str, namespace: str, body: dict) -> None:
        self.calls.append(("replace_config_map", name))
        self._replace(self.config_maps, name, namespace, body)

    def create_namespaced_secret(self, namespace: str, body: dict) -> None:
        self.calls.append(("create_secret", body["metadata"]["name"]))
        self._create(self.secrets, namespace, body)

    def replace_namespaced_secret(self, name: str, namespace: str, body: dict) -> None:
        self.calls.append(("replace_secret", name))
        self._replace(self.secrets, name, namespace, body)

    def read_namespaced_persistent_volume_claim(self, name: str, namespace: str) -> dict:
        claim = self.claims.get((namespace, name))
        if claim is None:
            raise _not_found(name)
        return claim

    def create_namespaced_persistent_volume_claim(self, namespace: str, body: dict) -> None:
        self.calls.append(("create_pvc", body["metadata"]["name"]))
        self._create(self.claims, namespace, body)


class FakeCustomApi:
    """Subset of CustomObjectsApi used for status writes and listing."""

    def __init__(self, items: list[dict] | None = None) -> None:
        self.items = items or []
        self.status_patches: list[dict] = []
        self.list_error: Exception | None = None
        self.patch_error: Exception | None = None

    def list_cluster_custom_object(self, group: str, version: str, plural: str) -> dict:
        if self.list_error is not None:
            raise self.list_error
        return {"items": self.items}

    def patch_namespaced_custom_object_status(self, **kwargs: Any) -> dict:
        if self.patch_error is not None:
            raise self.patch_error
        self.status_patches.append(kwargs)
        return kwargs["body"]


@pytest.fixture
def sleep() -> AsyncMock:
    """Injected sleep that returns immediately and records requested delays."""
    return AsyncMock(return_value=None)


@pytest.fixture
def core_api() -> FakeCoreApi:
    return FakeCoreApi()


@pytest.fixture
def custom_api() -> FakeCustomApi:
    return FakeCustomApi()


@pytest.fixture
def runner_config() -> RunnerConfig:
    return RunnerConfig(
        deletion_timeout_seconds=5,
        deletion_poll_seconds=0,
        status_poll_seconds=0,
        build_timeout_seconds=5,
        run_timeout_seconds=5,
    )


def make_resource(
    name: str = "vpc",
    namespace: str = "default",
    *,
    deploy: str | None = "./deploy.sh",
    destroy: str | None = "./destroy.sh",
    backend: dict | None = None,
    variables: dict | None = None,
    deletion_timestamp: str | None = None,
    generation: int = 1,
) -> dict:
    """Raw Terraform resource as returned by the API server."""
    metadata: dict[str, Any] = {"name": name, "namespace": namespace, "generation": generation}
    if deletion_timestamp:
        metadata["deletionTimestamp"] = deletion_timestamp
    return {
        "apiVersion": "alustan.io/v1alpha1",
        "kind": "Terraform",
        "metadata": metadata,
        "spec": {
            "variables": variables or {},
            "backend": backend or {},
            "scripts": {"deploy": deploy, "destroy": destroy},
            "gitRepo": {"url": "git@github.com:acme/infra.git", "branch": "main"},
            "containerRegistry": {"imageName": "registry.io/acme/infra"},
        },
        "status": {},
    }


@pytest.fixture
def resource_factory():
    return make_resource
