"""Kubernetes client construction.

Uses in-cluster config when running in K8s, falls back to kubeconfig for local dev.
The resulting clients are passed explicitly to every component that needs them.
"""

from dataclasses import dataclass

from kubernetes import client, config

from tfcontroller.logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class KubeClients:
    """API handles shared by the pod manager, status reporter and scheduler."""

    core: client.CoreV1Api
    custom: client.CustomObjectsApi


def load_config() -> None:
    """Load cluster credentials, preferring the in-cluster service account."""
    try:
        config.load_incluster_config()
        logger.info("Loaded in-cluster K8s config")
    except config.ConfigException:
        try:
            config.load_kube_config()
            logger.info("Loaded kubeconfig")
        except config.ConfigException:
            logger.error("Failed to load K8s config")
            raise


def create_clients() -> KubeClients:
    load_config()
    return KubeClients(core=client.CoreV1Api(), custom=client.CustomObjectsApi())
