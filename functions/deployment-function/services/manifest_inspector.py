"""Pre-flight check that an image supports the required platforms."""

import json
import logging
from collections.abc import Iterable

from pydantic import BaseModel, ValidationError

from models.manifests import ImageIndex, Platform
from services.errors import ManifestDecodeError, MissingPlatformsError
from services.image_reference import parse_reference
from services.registry_client import RegistryClient

logger = logging.getLogger(__name__)


class PlatformCheckResult(BaseModel):
    """Outcome of comparing required platforms against an image index."""

    reference: str
    ok: bool
    required: list[str]
    found: list[str]
    missing: list[str]


def decode_index(reference: str, payload: bytes) -> ImageIndex:
    """Decode manifest bytes as a multi-platform image index.

    Raises:
        ManifestDecodeError: If the payload is not an index-shaped JSON object
    """
    try:
        document = json.loads(payload)
    except ValueError as e:
        raise ManifestDecodeError(reference, f"invalid JSON: {e}") from e
    if not isinstance(document, dict):
        raise ManifestDecodeError(reference, "manifest is not a JSON object")
    try:
        return ImageIndex.model_validate(document)
    except ValidationError as e:
        raise ManifestDecodeError(reference, str(e)) from e


def evaluate_platforms(
    reference: str,
    required: Iterable[Platform],
    found: Iterable[Platform],
) -> PlatformCheckResult:
    """Check that ``required`` is a subset of ``found``, ignoring variants."""
    required_set = {platform.without_variant() for platform in required}
    found_set = {platform.without_variant() for platform in found}
    missing = required_set - found_set
    return PlatformCheckResult(
        reference=reference,
        ok=not missing,
        required=sorted(str(platform) for platform in required_set),
        found=sorted(str(platform) for platform in found_set),
        missing=sorted(str(platform) for platform in missing),
    )


class ManifestInspector:
    """Fetch an image index and check it against a platform policy."""

    def __init__(self, registry_client: RegistryClient, correlation_id: str | None = None) -> None:
        self.registry_client = registry_client
        self.correlation_id = correlation_id

    def check_platforms(self, image_ref: str, required: Iterable[Platform]) -> PlatformCheckResult:
        """Report whether every required platform is present in the image.

        Args:
            image_ref: Image reference as supplied by the caller
            required: Platforms the image must provide

        Returns:
            Check result; ``ok`` is true iff all required platforms are present

        Raises:
            InvalidReferenceError: If ``image_ref`` is not a valid reference
            RegistryFetchError: If the manifest cannot be fetched
            ManifestDecodeError: If the manifest is not an image index
        """
        reference = parse_reference(image_ref)
        descriptor = self.registry_client.resolve(reference)
        payload = self.registry_client.fetch_manifest(descriptor)
        index = decode_index(image_ref, payload)

        result = evaluate_platforms(image_ref, required, index.platforms())
        logger.info(
            "Image platform check completed",
            extra={
                "correlation_id": self.correlation_id,
                "operation": "check_platforms",
                "reference": str(reference),
                "digest": descriptor.digest,
                "found_platforms": result.found,
                "missing_platforms": result.missing,
                "ok": result.ok,
            },
        )
        return result

    def require_platforms(self, image_ref: str, required: Iterable[Platform]) -> PlatformCheckResult:
        """Like :meth:`check_platforms` but raise when platforms are missing.

        Raises:
            MissingPlatformsError: If any required platform is absent
        """
        result = self.check_platforms(image_ref, required)
        if not result.ok:
            raise MissingPlatformsError(image_ref, result.required, result.missing)
        return result
