"""Deployment service: image check, composition and submission of one stack."""

import logging
import time
from collections.abc import Callable

from kubernetes import client

from config import Settings
from models.requests import DeploymentConfig, DeploymentResponse, WorkloadSummary
from services.kubernetes_client import build_api_client
from services.manifest_inspector import ManifestInspector, PlatformCheckResult
from services.registry_client import RegistryClient
from services.resource_composer import compose
from services.stack_applier import StackApplier

logger = logging.getLogger(__name__)


def build_registry_client(settings: Settings) -> RegistryClient:
    return RegistryClient(
        timeout=settings.registry_timeout_seconds,
        docker_config_path=settings.docker_config_path,
    )


class DeploymentService:
    """Service for deploying tenant application stacks."""

    def __init__(
        self,
        settings: Settings,
        correlation_id: str,
        registry_client_factory: Callable[[Settings], RegistryClient] = build_registry_client,
        api_client_factory: Callable[[Settings], client.ApiClient] = build_api_client,
    ) -> None:
        """Initialize the deployment service."""
        self.settings = settings
        self.correlation_id = correlation_id
        self.registry_client_factory = registry_client_factory
        self.api_client_factory = api_client_factory

    def _applier(self, api_client: client.ApiClient) -> StackApplier:
        return StackApplier(
            api_client,
            request_timeout=self.settings.kubernetes_timeout_seconds,
            correlation_id=self.correlation_id,
        )

    def check_image(self, image_ref: str) -> PlatformCheckResult:
        """Check an image against the required platforms without side effects."""
        with self.registry_client_factory(self.settings) as registry_client:
            inspector = ManifestInspector(registry_client, self.correlation_id)
            return inspector.check_platforms(image_ref, self.settings.required_platform_set)

    def deploy(self, deployment_config: DeploymentConfig) -> DeploymentResponse:
        """Verify the image, then create the Deployment, Service and Ingress.

        Raises:
            InvalidReferenceError: If the image reference is malformed
            RegistryFetchError: If the image manifest cannot be fetched
            ManifestDecodeError: If the manifest is not an image index
            MissingPlatformsError: If the image lacks a required platform
            KubernetesConfigError: If no Kubernetes client can be built
            ApplyError: If an object could not be created
        """
        start_time = time.time()
        logger.info(
            "Starting deployment",
            extra={
                "correlation_id": self.correlation_id,
                "project_name": deployment_config.project_name,
                "namespace": deployment_config.namespace,
                "domain_name": deployment_config.domain_name,
                "docker_image": deployment_config.docker_image,
            },
        )

        # Step 1: Verify image platforms
        with self.registry_client_factory(self.settings) as registry_client:
            inspector = ManifestInspector(registry_client, self.correlation_id)
            check = inspector.require_platforms(
                deployment_config.docker_image,
                self.settings.required_platform_set,
            )

        # Step 2: Compose the stack
        stack = compose(
            deployment_config,
            cluster_issuer=self.settings.cluster_issuer,
            ingress_class_name=self.settings.ingress_class_name,
        )

        # Step 3: Submit to the cluster
        with self.api_client_factory(self.settings) as api_client:
            result = self._applier(api_client).apply(stack, deployment_config.namespace)

        logger.info(
            "Deployment created",
            extra={
                "correlation_id": self.correlation_id,
                "project_name": deployment_config.project_name,
                "namespace": result.namespace,
                "created_objects": result.created,
                "total_duration_seconds": round(time.time() - start_time, 2),
            },
        )
        return DeploymentResponse(
            message="Deployment created successfully",
            config=deployment_config,
            created=result.created,
            platforms=check.found,
            correlation_id=self.correlation_id,
        )

    def list_workloads(self, username: str) -> list[WorkloadSummary]:
        with self.api_client_factory(self.settings) as api_client:
            return self._applier(api_client).list_by_owner(username)

    def restart(self, namespace: str, name: str) -> str:
        with self.api_client_factory(self.settings) as api_client:
            return self._applier(api_client).restart(namespace, name)
