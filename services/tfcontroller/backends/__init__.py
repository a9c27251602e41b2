"""
Remote-state backend registry.

Providers are registered in an explicit name -> instance map built once at
startup; lookup is by the `provider` key of a resource's backend block.
"""

from __future__ import annotations

from collections.abc import Mapping

from tfcontroller.backends.protocol import PROVIDER_KEY, BackendProvider
from tfcontroller.errors import UnknownBackendError
from tfcontroller.logging_config import get_logger

logger = get_logger(__name__)

__all__ = ["PROVIDER_KEY", "BackendProvider", "BackendRegistry", "default_registry"]


class BackendRegistry:
    """Closed set of named backend providers."""

    def __init__(self, providers: Mapping[str, BackendProvider]) -> None:
        self._providers = dict(providers)

    def get(self, name: str) -> BackendProvider:
        """Return the provider registered under `name`.

        Raises UnknownBackendError if no such provider exists.
        """
        try:
            return self._providers[name]
        except KeyError:
            raise UnknownBackendError(name) from None

    def names(self) -> list[str]:
        return sorted(self._providers)

    def __contains__(self, name: object) -> bool:
        return name in self._providers


def default_registry() -> BackendRegistry:
    """Build the registry of built-in providers."""
    from tfcontroller.backends.aws import AWSBackend
    from tfcontroller.backends.azure import AzureBackend
    from tfcontroller.backends.gcs import GCSBackend

    registry = BackendRegistry(
        {
            AWSBackend.name: AWSBackend(),
            GCSBackend.name: GCSBackend(),
            AzureBackend.name: AzureBackend(),
        }
    )
    logger.info("Backend providers registered", providers=registry.names())
    return registry
