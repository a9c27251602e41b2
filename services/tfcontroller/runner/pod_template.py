"""Build K8s object specs for the image build and apply/destroy pods.

Every generated name is derived from the resource name alone, so two
resources never share a pod, ConfigMap, Secret or claim, and a repeated sync
of the same resource always targets the same objects.
"""

from tfcontroller.config import RunnerConfig

BUILD_ROLE = "build"
RUN_ROLE = "run"

MANAGED_BY = "tfcontroller"
LABEL_RESOURCE = "tfcontroller.alustan.io/resource"
LABEL_ROLE = "tfcontroller.alustan.io/role"


# --- Names ---


def pod_name(resource_name: str, role: str) -> str:
    if role == BUILD_ROLE:
        return f"{resource_name}-docker-build-pod"
    if role == RUN_ROLE:
        return f"{resource_name}-run-pod"
    raise ValueError(f"unknown pod role: {role}")


def config_map_name(resource_name: str) -> str:
    return f"{resource_name}-dockerfile-configmap"


def registry_secret_name(resource_name: str) -> str:
    return f"{resource_name}-container-secret"


def cache_claim_name(resource_name: str) -> str:
    return f"{resource_name}-kaniko-cache"


def generated_names(resource_name: str) -> set[str]:
    """All object names a sync of `resource_name` may create."""
    return {
        pod_name(resource_name, BUILD_ROLE),
        pod_name(resource_name, RUN_ROLE),
        config_map_name(resource_name),
        registry_secret_name(resource_name),
        cache_claim_name(resource_name),
    }


def tagged_image(image_name: str, namespace: str, resource_name: str, generation: int) -> str:
    """Tag an image reference with the resource namespace, name and generation.

    An existing tag on `image_name` is replaced; a registry port is not a tag.

    Examples:
        'registry.io/infra' → 'registry.io/infra:dev-vpc-3'
        'localhost:5000/infra:latest' → 'localhost:5000/infra:dev-vpc-3'
    """
    repository = image_name.split("@", 1)[0]
    last_slash = repository.rfind("/")
    last_colon = repository.rfind(":")
    if last_colon > last_slash:
        repository = repository[:last_colon]
    return f"{repository}:{namespace}-{resource_name}-{generation}"


def _labels(resource_name: str, role: str) -> dict[str, str]:
    return {
        "app.kubernetes.io/managed-by": MANAGED_BY,
        LABEL_RESOURCE: resource_name,
        LABEL_ROLE: role,
    }


# --- Build assets ---


def render_dockerfile(base_image: str, additions: str = "") -> str:
    """Render the Dockerfile for a resource image.

    The repository content becomes /app; backend additions are appended
    before scripts are marked executable.
    """
    lines = [
        f"FROM {base_image}",
        "WORKDIR /app",
        "COPY . /app",
    ]
    if additions.strip():
        lines.append(additions.rstrip("\n"))
    lines.append("RUN find /app -name '*.sh' -exec chmod +x {} +")
    return "\n".join(lines) + "\n"


def build_config_map_spec(resource_name: str, namespace: str, dockerfile: str) -> dict:
    return {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {
            "name": config_map_name(resource_name),
            "namespace": namespace,
            "labels": _labels(resource_name, BUILD_ROLE),
        },
        "data": {"Dockerfile": dockerfile},
    }


def build_registry_secret_spec(
    resource_name: str, namespace: str, encoded_docker_config: str
) -> dict:
    return {
        "apiVersion": "v1",
        "kind": "Secret",
        "type": "kubernetes.io/dockerconfigjson",
        "metadata": {
            "name": registry_secret_name(resource_name),
            "namespace": namespace,
            "labels": _labels(resource_name, BUILD_ROLE),
        },
        "data": {".dockerconfigjson": encoded_docker_config},
    }


def build_cache_claim_spec(
    resource_name: str, namespace: str, runner_config: RunnerConfig
) -> dict:
    spec: dict = {
        "accessModes": ["ReadWriteOnce"],
        "resources": {"requests": {"storage": runner_config.cache_storage_size}},
    }
    if runner_config.cache_storage_class:
        spec["storageClassName"] = runner_config.cache_storage_class

    return {
        "apiVersion": "v1",
        "kind": "PersistentVolumeClaim",
        "metadata": {
            "name": cache_claim_name(resource_name),
            "namespace": namespace,
            "labels": _labels(resource_name, BUILD_ROLE),
        },
        "spec": spec,
    }


# --- Pods ---


def build_build_pod_spec(
    resource_name: str,
    namespace: str,
    image: str,
    repo_dir: str,
    runner_config: RunnerConfig,
) -> dict:
    """Build the kaniko pod that turns a checkout into a tagged image.

    Args:
        resource_name: Name of the Terraform resource.
        namespace: Namespace of the resource (and the pod).
        image: Fully tagged destination image.
        repo_dir: Host path of the repository checkout.
        runner_config: Kaniko image, service account, etc.
    """
    pod_spec: dict = {
        "restartPolicy": "Never",
        "containers": [
            {
                "name": "kaniko",
                "image": runner_config.kaniko_image,
                "args": [
                    "--dockerfile=/config/Dockerfile",
                    "--context=dir:///workspace",
                    f"--destination={image}",
                    "--cache=true",
                    "--cache-dir=/cache",
                ],
                "env": [{"name": "DOCKER_CONFIG", "value": "/kaniko/.docker"}],
                "volumeMounts": [
                    {"name": "dockerfile-config", "mountPath": "/config", "readOnly": True},
                    {"name": "workspace", "mountPath": "/workspace"},
                    {"name": "docker-credentials", "mountPath": "/kaniko/.docker"},
                    {"name": "kaniko-cache", "mountPath": "/cache"},
                ],
            }
        ],
        "volumes": [
            {
                "name": "dockerfile-config",
                "configMap": {
                    "name": config_map_name(resource_name),
                    "items": [{"key": "Dockerfile", "path": "Dockerfile"}],
                },
            },
            {
                "name": "workspace",
                "hostPath": {"path": repo_dir, "type": "Directory"},
            },
            {
                "name": "docker-credentials",
                "secret": {
                    "secretName": registry_secret_name(resource_name),
                    "items": [{"key": ".dockerconfigjson", "path": "config.json"}],
                },
            },
            {
                "name": "kaniko-cache",
                "persistentVolumeClaim": {"claimName": cache_claim_name(resource_name)},
            },
        ],
    }
    if runner_config.service_account_name:
        pod_spec["serviceAccountName"] = runner_config.service_account_name

    return {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": {
            "name": pod_name(resource_name, BUILD_ROLE),
            "namespace": namespace,
            "labels": _labels(resource_name, BUILD_ROLE),
        },
        "spec": pod_spec,
    }


def build_run_pod_spec(
    resource_name: str,
    namespace: str,
    image: str,
    script: str,
    env: dict[str, str],
    runner_config: RunnerConfig,
) -> dict:
    """Build the pod that runs the deploy or destroy script from the built image."""
    pod_spec: dict = {
        "restartPolicy": "Never",
        "imagePullSecrets": [{"name": registry_secret_name(resource_name)}],
        "containers": [
            {
                "name": "runner",
                "image": image,
                "imagePullPolicy": "Always",
                "workingDir": "/app",
                "command": ["/bin/sh", "-c", script],
                "env": [{"name": key, "value": value} for key, value in sorted(env.items())],
            }
        ],
    }
    if runner_config.service_account_name:
        pod_spec["serviceAccountName"] = runner_config.service_account_name

    return {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": {
            "name": pod_name(resource_name, RUN_ROLE),
            "namespace": namespace,
            "labels": _labels(resource_name, RUN_ROLE),
        },
        "spec": pod_spec,
    }
