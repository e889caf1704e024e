"""Parsing of container image references."""

import re

from pydantic import BaseModel, ConfigDict

from services.errors import InvalidReferenceError

DEFAULT_REGISTRY = "index.docker.io"
DEFAULT_TAG = "latest"
DOCKER_HUB_ALIASES = {"docker.io", "index.docker.io", "registry-1.docker.io"}
MAX_REPOSITORY_LENGTH = 255

_PATH_COMPONENT = re.compile(r"^[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*$")
_DOMAIN = re.compile(
    r"^(?:[a-zA-Z0-9](?:[a-zA-Z0-9-]*[a-zA-Z0-9])?)"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]*[a-zA-Z0-9])?)*"
    r"(?::[0-9]+)?$"
)
_TAG = re.compile(r"^[\w][\w.-]{0,127}$")
_DIGEST = re.compile(r"^[A-Za-z][A-Za-z0-9]*(?:[-_+.][A-Za-z][A-Za-z0-9]*)*:[0-9a-fA-F]{32,}$")


class ImageReference(BaseModel):
    """A parsed ``registry/repository[:tag][@digest]`` reference."""

    model_config = ConfigDict(frozen=True)

    registry: str
    repository: str
    tag: str | None = None
    digest: str | None = None

    @property
    def identifier(self) -> str:
        """Digest if pinned, otherwise the tag."""
        return self.digest or self.tag or DEFAULT_TAG

    def __str__(self) -> str:
        name = f"{self.registry}/{self.repository}"
        if self.tag:
            name = f"{name}:{self.tag}"
        if self.digest:
            name = f"{name}@{self.digest}"
        return name


def _split_registry(name: str) -> tuple[str, str]:
    first, sep, rest = name.partition("/")
    if sep and ("." in first or ":" in first or first == "localhost"):
        return first, rest
    return DEFAULT_REGISTRY, name


def parse_reference(value: str) -> ImageReference:
    """Parse an image reference, applying Docker Hub defaults.

    ``nginx`` becomes ``index.docker.io/library/nginx:latest``.

    Raises:
        InvalidReferenceError: If the string does not match the grammar
    """
    if not value or value != value.strip():
        raise InvalidReferenceError(value, "reference must be non-empty without surrounding whitespace")

    remainder = value
    digest = None
    if "@" in remainder:
        remainder, digest = remainder.split("@", 1)
        if not _DIGEST.fullmatch(digest):
            raise InvalidReferenceError(value, f"invalid digest '{digest}'")

    tag = None
    last_slash = remainder.rfind("/")
    colon = remainder.rfind(":")
    if colon > last_slash:
        remainder, tag = remainder[:colon], remainder[colon + 1:]
        if not _TAG.fullmatch(tag):
            raise InvalidReferenceError(value, f"invalid tag '{tag}'")

    registry, repository = _split_registry(remainder)
    if not _DOMAIN.fullmatch(registry):
        raise InvalidReferenceError(value, f"invalid registry '{registry}'")
    if not repository:
        raise InvalidReferenceError(value, "repository is required")
    if len(repository) > MAX_REPOSITORY_LENGTH:
        raise InvalidReferenceError(value, "repository name is too long")
    for component in repository.split("/"):
        if not _PATH_COMPONENT.fullmatch(component):
            raise InvalidReferenceError(value, f"invalid repository component '{component}'")

    if registry in DOCKER_HUB_ALIASES:
        registry = DEFAULT_REGISTRY
        if "/" not in repository:
            repository = f"library/{repository}"

    if tag is None and digest is None:
        tag = DEFAULT_TAG

    return ImageReference(registry=registry, repository=repository, tag=tag, digest=digest)
