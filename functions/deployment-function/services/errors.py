"""Error types raised by the image check and stack deployment services."""

HTTP_BAD_REQUEST = 400
HTTP_NOT_FOUND = 404
HTTP_CONFLICT = 409
HTTP_INTERNAL_SERVER_ERROR = 500
HTTP_BAD_GATEWAY = 502


class StackDeployerError(Exception):
    """Base class for errors surfaced to the caller."""

    error_code = "internal_error"
    http_status = HTTP_INTERNAL_SERVER_ERROR

    def to_dict(self) -> dict:
        return {"message": str(self), "error": self.error_code}


class InvalidReferenceError(StackDeployerError):
    """Image reference does not match the registry reference grammar."""

    error_code = "invalid_reference"
    http_status = HTTP_BAD_REQUEST

    def __init__(self, reference: str, reason: str) -> None:
        self.reference = reference
        self.reason = reason
        super().__init__(f"Invalid container image reference '{reference}': {reason}")


class RegistryFetchError(StackDeployerError):
    """Manifest could not be fetched from the registry."""

    error_code = "registry_fetch_failed"
    http_status = HTTP_BAD_GATEWAY

    def __init__(self, reference: str, reason: str, status_code: int | None = None) -> None:
        self.reference = reference
        self.reason = reason
        self.status_code = status_code
        super().__init__(f"Failed to fetch container image metadata for '{reference}': {reason}")


class ManifestDecodeError(StackDeployerError):
    """Manifest bytes are not a multi-platform image index."""

    error_code = "manifest_decode_failed"
    http_status = HTTP_BAD_REQUEST

    def __init__(self, reference: str, reason: str) -> None:
        self.reference = reference
        self.reason = reason
        super().__init__(f"Failed to decode image manifest for '{reference}': {reason}")


class MissingPlatformsError(StackDeployerError):
    """Image does not provide every required platform."""

    error_code = "missing_platforms"
    http_status = HTTP_BAD_REQUEST

    def __init__(self, reference: str, required: list[str], missing: list[str]) -> None:
        self.reference = reference
        self.required = required
        self.missing = missing
        super().__init__(f"Container image missing required platform support: {', '.join(missing)}")

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["required_platforms"] = self.required
        payload["missing_platforms"] = self.missing
        return payload


class ApplyError(StackDeployerError):
    """Creating one object of the stack failed.

    Objects created by earlier stages are left in place.
    """

    error_code = "apply_failed"
    http_status = HTTP_INTERNAL_SERVER_ERROR

    def __init__(self, stage: str, cause: Exception, created: list[str] | None = None) -> None:
        self.stage = stage
        self.cause = cause
        self.created = created or []
        super().__init__(f"Failed to create {stage}: {cause}")

    def to_dict(self) -> dict:
        return {
            "message": "Failed to create deployment",
            "error": str(self),
            "stage": self.stage,
            "created": self.created,
        }


class NotFoundError(StackDeployerError):
    """Workload does not exist."""

    error_code = "not_found"
    http_status = HTTP_NOT_FOUND

    def __init__(self, namespace: str, name: str) -> None:
        self.namespace = namespace
        self.name = name
        super().__init__(f"Deployment {namespace}/{name} not found")


class UpdateConflictError(StackDeployerError):
    """Workload changed between read and update."""

    error_code = "update_conflict"
    http_status = HTTP_CONFLICT

    def __init__(self, namespace: str, name: str) -> None:
        self.namespace = namespace
        self.name = name
        super().__init__(f"Deployment {namespace}/{name} was modified concurrently")


class KubernetesConfigError(StackDeployerError):
    """Kubernetes client configuration could not be loaded."""

    error_code = "kubernetes_config_failed"
    http_status = HTTP_INTERNAL_SERVER_ERROR

    def __init__(self, source: str, reason: str) -> None:
        self.source = source
        self.reason = reason
        super().__init__(f"Failed to create Kubernetes client from {source}: {reason}")


class ClusterRequestError(StackDeployerError):
    """Kubernetes API could not be reached or did not answer in time."""

    error_code = "cluster_request_failed"
    http_status = HTTP_INTERNAL_SERVER_ERROR

    def __init__(self, operation: str, cause: Exception) -> None:
        self.operation = operation
        self.cause = cause
        super().__init__(f"Kubernetes request failed during {operation}: {cause}")
