"""Request and response models for deployment operations."""

import re
from datetime import datetime
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_core import PydanticCustomError

if TYPE_CHECKING:
    from config import Settings

# Constants
MIN_PROJECT_NAME_LENGTH = 3
MAX_PROJECT_NAME_LENGTH = 63
MAX_DOMAIN_LENGTH = 253
MAX_LABEL_LENGTH = 63
MIN_PORT = 1
MAX_PORT = 65535

_ALPHANUMERIC = re.compile(r"^[a-zA-Z0-9]+$")
_DOMAIN_LABEL = re.compile(r"^[a-zA-Z0-9](?:[a-zA-Z0-9-]*[a-zA-Z0-9])?$")
_TOP_LEVEL_DOMAIN = re.compile(r"^[a-zA-Z]{2,63}$")

# pydantic error types mapped to the tags reported to callers
_ERROR_TAGS = {
    "missing": "required",
    "greater_than_equal": "min",
    "less_than_equal": "max",
    "int_parsing": "number",
    "int_type": "number",
    "int_from_float": "number",
    "string_type": "string",
}


class FieldError(BaseModel):
    """A single failed field constraint."""

    failed_field: str
    tag: str
    value: str = ""


def field_errors(model_name: str, error: ValidationError) -> list[FieldError]:
    """Flatten a pydantic validation error into per-field errors."""
    errors = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"])
        context = item.get("ctx") or {}
        param = context.get("param", context.get("ge", context.get("le", "")))
        errors.append(
            FieldError(
                failed_field=f"{model_name}.{location}" if location else model_name,
                tag=_ERROR_TAGS.get(item["type"], item["type"]),
                value=str(param),
            ),
        )
    return errors


def validate_project_name(value: str) -> str:
    if len(value) < MIN_PROJECT_NAME_LENGTH:
        raise PydanticCustomError(
            "min",
            "project must be at least {param} characters",
            {"param": MIN_PROJECT_NAME_LENGTH},
        )
    if len(value) > MAX_PROJECT_NAME_LENGTH:
        raise PydanticCustomError(
            "max",
            "project must be at most {param} characters",
            {"param": MAX_PROJECT_NAME_LENGTH},
        )
    if not _ALPHANUMERIC.fullmatch(value):
        raise PydanticCustomError("alphanum", "project must contain only letters and digits")
    return value


def validate_domain_name(value: str) -> str:
    """Check that ``value`` is a fully-qualified domain name.

    One trailing dot is accepted.
    """
    name = value[:-1] if value.endswith(".") else value
    labels = name.split(".")
    valid = (
        0 < len(name) <= MAX_DOMAIN_LENGTH
        and len(labels) >= 2
        and all(len(label) <= MAX_LABEL_LENGTH and _DOMAIN_LABEL.fullmatch(label) for label in labels)
        and _TOP_LEVEL_DOMAIN.fullmatch(labels[-1])
    )
    if not valid:
        raise PydanticCustomError("fqdn", "domain must be a fully-qualified domain name")
    return value


class DeploymentRequest(BaseModel):
    """Request model for creating a tenant application stack."""

    model_config = ConfigDict(frozen=True)

    project: str = Field(..., description="Project name, used as the name of every object")
    domain: str = Field(..., description="Fully-qualified domain the ingress serves")
    port: int = Field(..., ge=MIN_PORT, le=MAX_PORT, description="Container port")
    image: str = Field(..., description="Container image reference")

    @field_validator("project")
    @classmethod
    def validate_project(cls, v: str) -> str:
        return validate_project_name(v)

    @field_validator("domain")
    @classmethod
    def validate_domain(cls, v: str) -> str:
        return validate_domain_name(v)

    @field_validator("image")
    @classmethod
    def validate_image(cls, v: str) -> str:
        """Validate image reference is not empty."""
        if not v or not v.strip():
            raise PydanticCustomError("required", "image cannot be empty")
        return v.strip()


class ValidateImageRequest(BaseModel):
    """Query model for the image platform check."""

    model_config = ConfigDict(frozen=True)

    container: str

    @field_validator("container")
    @classmethod
    def validate_container(cls, v: str) -> str:
        if not v or not v.strip():
            raise PydanticCustomError("required", "container cannot be empty")
        return v.strip()


class DeploymentConfig(BaseModel):
    """Fully resolved deployment, request fields merged with operator defaults."""

    model_config = ConfigDict(frozen=True)

    project_name: str
    username: str
    domain_name: str
    docker_image: str
    container_port: int = Field(..., ge=MIN_PORT, le=MAX_PORT)
    namespace: str
    tls_secret_name: str

    @field_validator("project_name")
    @classmethod
    def validate_project(cls, v: str) -> str:
        return validate_project_name(v)

    @field_validator("domain_name")
    @classmethod
    def validate_domain(cls, v: str) -> str:
        return validate_domain_name(v)

    @classmethod
    def from_request(cls, request: DeploymentRequest, settings: "Settings") -> "DeploymentConfig":
        """Build the config for the multi-tenant entry point."""
        return cls(
            project_name=request.project,
            domain_name=request.domain,
            docker_image=request.image,
            container_port=request.port,
            namespace=settings.namespace,
            tls_secret_name=settings.tls_secret_name,
            username=settings.owner_username,
        )


class WorkloadSummary(BaseModel):
    """A deployed workload as returned by owner listings."""

    name: str
    namespace: str
    images: list[str] = Field(default_factory=list)
    replicas: int | None = None
    ready_replicas: int | None = None
    labels: dict[str, str] = Field(default_factory=dict)
    created_at: datetime | None = None


class ApplyResult(BaseModel):
    """Objects created for one stack."""

    namespace: str
    created: list[str] = Field(default_factory=list)


class DeploymentResponse(BaseModel):
    """Response model for a successful deployment."""

    message: str
    config: DeploymentConfig
    created: list[str] = Field(default_factory=list)
    platforms: list[str] = Field(default_factory=list)
    correlation_id: str | None = None
