"""Models for registry descriptors and multi-platform image indexes."""

from pydantic import BaseModel, ConfigDict, Field


class Platform(BaseModel):
    """Operating system and CPU architecture an image runs on."""

    model_config = ConfigDict(frozen=True)

    os: str
    architecture: str
    variant: str | None = None

    @classmethod
    def parse(cls, value: str) -> "Platform":
        """Parse an ``os/arch[/variant]`` string such as ``linux/arm64``."""
        parts = [part.strip() for part in value.strip().split("/")]
        if len(parts) not in (2, 3) or not all(parts):
            msg = f"Invalid platform '{value}', expected os/arch[/variant]"
            raise ValueError(msg)
        variant = parts[2] if len(parts) == 3 else None
        return cls(os=parts[0], architecture=parts[1], variant=variant)

    def without_variant(self) -> "Platform":
        return Platform(os=self.os, architecture=self.architecture)

    def __str__(self) -> str:
        if self.variant:
            return f"{self.os}/{self.architecture}/{self.variant}"
        return f"{self.os}/{self.architecture}"


class ImageManifest(BaseModel):
    """One per-platform entry of an image index."""

    model_config = ConfigDict(populate_by_name=True)

    media_type: str = Field(default="", alias="mediaType")
    digest: str = ""
    size: int = 0
    platform: Platform | None = None
    annotations: dict[str, str] = Field(default_factory=dict)


class ImageIndex(BaseModel):
    """Multi-platform image index (OCI index or Docker manifest list).

    A single-platform image manifest has no ``manifests`` list and decodes
    to an index that supports no platforms.
    """

    model_config = ConfigDict(populate_by_name=True)

    schema_version: int = Field(default=0, alias="schemaVersion")
    media_type: str = Field(default="", alias="mediaType")
    manifests: list[ImageManifest] = Field(default_factory=list)

    def platforms(self) -> frozenset[Platform]:
        """Return the ``(os, arch)`` pairs present, ignoring variants."""
        return frozenset(
            manifest.platform.without_variant()
            for manifest in self.manifests
            if manifest.platform is not None
        )


class Descriptor(BaseModel):
    """Content descriptor returned when resolving a reference."""

    model_config = ConfigDict(frozen=True)

    registry: str
    repository: str
    media_type: str
    digest: str
    size: int | None = None
