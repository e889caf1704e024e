"""Submit composed stacks to the cluster and manage deployed workloads."""

import logging
from collections.abc import Callable
from datetime import datetime, timezone

from kubernetes import client
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

from models.requests import ApplyResult, WorkloadSummary
from services.errors import (
    ApplyError,
    ClusterRequestError,
    NotFoundError,
    UpdateConflictError,
)
from services.resource_composer import ComposedStack, owner_selector

# Constants for error codes
HTTP_NOT_FOUND = 404
HTTP_CONFLICT = 409

RESTARTED_AT_ANNOTATION = "kubectl.kubernetes.io/restartedAt"

# Stage names reported in ApplyError, in submission order
STAGE_WORKLOAD = "workload"
STAGE_ENDPOINT = "endpoint"
STAGE_ROUTE = "route"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class StackApplier:
    """Create stacks and run lifecycle operations against the Kubernetes API."""

    def __init__(
        self,
        api_client: client.ApiClient,
        request_timeout: float | None = None,
        correlation_id: str | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.apps_v1 = client.AppsV1Api(api_client)
        self.core_v1 = client.CoreV1Api(api_client)
        self.networking_v1 = client.NetworkingV1Api(api_client)
        self.request_timeout = request_timeout
        self.correlation_id = correlation_id
        self.clock = clock
        self.logger = logging.getLogger(__name__)

    def apply(self, stack: ComposedStack, namespace: str) -> ApplyResult:
        """Create the Deployment, Service and Ingress in that order.

        The first failure stops submission. Objects created before it are
        left in place.

        Raises:
            ApplyError: Naming the stage that failed
        """
        stages = (
            (STAGE_WORKLOAD, "deployment", self.apps_v1.create_namespaced_deployment, stack.deployment),
            (STAGE_ENDPOINT, "service", self.core_v1.create_namespaced_service, stack.service),
            (STAGE_ROUTE, "ingress", self.networking_v1.create_namespaced_ingress, stack.ingress),
        )

        created: list[str] = []
        for stage, kind, create, body in stages:
            try:
                create(namespace=namespace, body=body, _request_timeout=self.request_timeout)
            except (ApiException, HTTPError) as e:
                self.logger.error(
                    "Failed to create stack object",
                    extra={
                        "correlation_id": self.correlation_id,
                        "operation": "apply",
                        "stage": stage,
                        "namespace": namespace,
                        "deployment_name": stack.name,
                        "created_objects": created,
                        "error_status": getattr(e, "status", None),
                        "error_message": str(e),
                    },
                )
                raise ApplyError(stage, e, created) from e

            created.append(f"{kind}/{body.metadata.name}")
            self.logger.info(
                "Created stack object",
                extra={
                    "correlation_id": self.correlation_id,
                    "operation": "apply",
                    "stage": stage,
                    "namespace": namespace,
                    "deployment_name": stack.name,
                },
            )

        return ApplyResult(namespace=namespace, created=created)

    def list_by_owner(self, username: str) -> list[WorkloadSummary]:
        """List Deployments in all namespaces carrying the owner label."""
        try:
            deployments = self.apps_v1.list_deployment_for_all_namespaces(
                label_selector=owner_selector(username),
                _request_timeout=self.request_timeout,
            )
        except HTTPError as e:
            raise ClusterRequestError("list_by_owner", e) from e
        summaries = []
        for deployment in deployments.items:
            containers = deployment.spec.template.spec.containers or []
            summaries.append(
                WorkloadSummary(
                    name=deployment.metadata.name,
                    namespace=deployment.metadata.namespace,
                    images=[container.image for container in containers],
                    replicas=deployment.spec.replicas,
                    ready_replicas=deployment.status.ready_replicas if deployment.status else None,
                    labels=deployment.metadata.labels or {},
                    created_at=deployment.metadata.creation_timestamp,
                ),
            )
        return summaries

    def restart(self, namespace: str, name: str) -> str:
        """Trigger a rolling restart by stamping the pod template.

        Returns:
            The restart timestamp written to the pod template

        Raises:
            NotFoundError: If the Deployment does not exist
            UpdateConflictError: If the Deployment changed since it was read
            ClusterRequestError: If the API server is unreachable or times out
        """
        try:
            deployment = self.apps_v1.read_namespaced_deployment(
                name=name,
                namespace=namespace,
                _request_timeout=self.request_timeout,
            )
        except ApiException as e:
            if e.status == HTTP_NOT_FOUND:
                raise NotFoundError(namespace, name) from e
            raise
        except HTTPError as e:
            raise ClusterRequestError("restart", e) from e

        template_metadata = deployment.spec.template.metadata
        if template_metadata is None:
            template_metadata = client.V1ObjectMeta()
            deployment.spec.template.metadata = template_metadata
        if template_metadata.annotations is None:
            template_metadata.annotations = {}

        restarted_at = self.clock().strftime("%Y-%m-%dT%H:%M:%SZ")
        template_metadata.annotations[RESTARTED_AT_ANNOTATION] = restarted_at

        try:
            self.apps_v1.replace_namespaced_deployment(
                name=name,
                namespace=namespace,
                body=deployment,
                _request_timeout=self.request_timeout,
            )
        except ApiException as e:
            if e.status == HTTP_CONFLICT:
                self.logger.warning(
                    "Deployment changed during restart",
                    extra={
                        "correlation_id": self.correlation_id,
                        "operation": "restart",
                        "namespace": namespace,
                        "deployment_name": name,
                        "resource_version": deployment.metadata.resource_version,
                    },
                )
                raise UpdateConflictError(namespace, name) from e
            if e.status == HTTP_NOT_FOUND:
                raise NotFoundError(namespace, name) from e
            raise
        except HTTPError as e:
            raise ClusterRequestError("restart", e) from e

        self.logger.info(
            "Deployment restart requested",
            extra={
                "correlation_id": self.correlation_id,
                "operation": "restart",
                "namespace": namespace,
                "deployment_name": name,
                "restarted_at": restarted_at,
            },
        )
        return restarted_at
