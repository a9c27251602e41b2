"""
Backend provider protocol for remote Terraform state.

Defines the BackendProvider Protocol that every remote-state backend must
satisfy, along with shared helpers for validating backend blocks.
"""

from collections.abc import Mapping
from typing import Protocol, runtime_checkable

from tfcontroller.errors import BackendConfigError

# Key of the backend block that selects the provider; never provider-specific.
PROVIDER_KEY = "provider"


@runtime_checkable
class BackendProvider(Protocol):
    """Protocol defining a remote-state backend.

    Implementations satisfy this interface structurally (duck typing) and
    keep no state between calls beyond what the caller passes in.
    """

    name: str

    async def setup_backend(self, config: Mapping[str, str]) -> None:
        """Prepare remote state storage for a resource.

        Args:
            config: The resource's backend block, including the provider key.

        Raises:
            BackendConfigError: If required keys are missing or malformed.
            BackendSetupError: If the backing service rejects the setup.
        """
        ...

    def get_dockerfile_additions(self) -> str:
        """Return the Dockerfile fragment this backend needs at build time.

        Returns an empty string when nothing is required.
        """
        ...


def require_keys(provider: str, config: Mapping[str, str], *keys: str) -> dict[str, str]:
    """Return the named keys from a backend block, failing on any that are blank."""
    missing = [key for key in keys if not config.get(key, "").strip()]
    if missing:
        raise BackendConfigError(
            f"{provider} backend requires {', '.join(missing)}"
        )
    return {key: config[key].strip() for key in keys}
