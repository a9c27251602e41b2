"""
Wire and domain models for Terraform resources and sync requests.

Field aliases follow the camelCase of the custom resource; unknown fields are
ignored so newer CRD revisions do not break parsing.
"""

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


class Scripts(_Frozen):
    deploy: str = ""
    destroy: str = ""

    @field_validator("deploy", "destroy", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value


class GitRepo(_Frozen):
    url: str = ""
    branch: str = ""


class ContainerRegistry(_Frozen):
    image_name: str = Field(default="", alias="imageName")


class TerraformSpec(_Frozen):
    """Desired state declared on a Terraform resource."""

    variables: dict[str, str] = Field(default_factory=dict)
    backend: dict[str, str] = Field(default_factory=dict)
    scripts: Scripts = Field(default_factory=Scripts)
    git_repo: GitRepo = Field(default_factory=GitRepo, alias="gitRepo")
    container_registry: ContainerRegistry = Field(
        default_factory=ContainerRegistry, alias="containerRegistry"
    )

    @field_validator("variables", "backend", mode="before")
    @classmethod
    def _stringify_mapping(cls, value: Any) -> Any:
        """Treat null as empty and coerce scalar values to strings."""
        if value is None:
            return {}
        if isinstance(value, dict):
            return {str(k): "" if v is None else str(v) for k, v in value.items()}
        return value

    @field_validator("scripts", "git_repo", "container_registry", mode="before")
    @classmethod
    def _none_to_default(cls, value: Any) -> Any:
        return {} if value is None else value


class ObjectMeta(_Frozen):
    name: str
    namespace: str = "default"
    generation: int = 0
    deletion_timestamp: str | None = Field(default=None, alias="deletionTimestamp")
    labels: dict[str, str] = Field(default_factory=dict)

    @field_validator("namespace", mode="before")
    @classmethod
    def _default_namespace(cls, value: Any) -> Any:
        return value or "default"


class ParentResource(_Frozen):
    """A Terraform custom resource as delivered by the API server."""

    api_version: str = Field(default="", alias="apiVersion")
    kind: str = ""
    metadata: ObjectMeta
    spec: TerraformSpec = Field(default_factory=TerraformSpec)
    status: dict[str, Any] = Field(default_factory=dict)

    @field_validator("spec", "status", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return {} if value is None else value


class SyncRequest(_Frozen):
    """One desired-state evaluation for exactly one resource."""

    parent: ParentResource
    finalizing: bool = False

    @classmethod
    def from_resource(cls, item: dict[str, Any]) -> "SyncRequest":
        """Build a request from a raw listed resource.

        A resource carrying a deletionTimestamp is being torn down.
        """
        parent = ParentResource.model_validate(item)
        return cls(parent=parent, finalizing=parent.metadata.deletion_timestamp is not None)

    @property
    def name(self) -> str:
        return self.parent.metadata.name

    @property
    def namespace(self) -> str:
        return self.parent.metadata.namespace


class SyncState(StrEnum):
    """Terminal outcome written to a resource's status."""

    SUCCESS = "Success"
    FAILED = "Failed"
    ERROR = "error"


class SyncStatus(_Frozen):
    state: SyncState
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"state": self.state.value, "message": self.message}
