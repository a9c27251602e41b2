"""
Exception hierarchy for the sync pipeline.

ConfigurationError and BuildError are terminal for a sync.
TransientExecutionError is retried by the apply/destroy stage.
"""


class ControllerError(Exception):
    """Base exception for controller operations."""


class ConfigurationError(ControllerError):
    """The resource (or its backend block) cannot be acted on as declared."""


class UnknownBackendError(ConfigurationError):
    """Raised when a backend provider name is not registered."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"unsupported backend provider: {name}")


class BackendConfigError(ConfigurationError):
    """Raised when provider-specific backend keys are missing or malformed."""


class BackendSetupError(ConfigurationError):
    """Raised when remote-state initialization fails at the provider."""


class GitCheckoutError(ControllerError):
    """Raised when the repository cannot be checked out for a build."""


class PodLifecycleError(ControllerError):
    """Raised when a pod or one of its supporting objects cannot be managed."""


class BuildError(PodLifecycleError):
    """Raised when the image build pod fails or never finishes."""


class TransientExecutionError(PodLifecycleError):
    """Raised when the apply/destroy pod fails; eligible for retry."""
