"""Compose the Kubernetes objects that make up one tenant stack."""

from dataclasses import dataclass

from kubernetes import client

from models.requests import DeploymentConfig

SERVICE_PORT = 80
CLUSTER_ISSUER_ANNOTATION = "cert-manager.io/cluster-issuer"
DEFAULT_CLUSTER_ISSUER = "letsencrypt-prod"
DEFAULT_INGRESS_CLASS = "nginx"

# Label keys shared by every object in a stack
APP_LABEL = "app"
OWNER_LABEL = "leashUser"
MANAGED_BY_LABEL = "managedBy"
CREATED_BY_LABEL = "created-by"


@dataclass(frozen=True)
class ComposedStack:
    """The Deployment, Service and Ingress for one project."""

    deployment: client.V1Deployment
    service: client.V1Service
    ingress: client.V1Ingress

    @property
    def name(self) -> str:
        return self.deployment.metadata.name


def common_labels(config: DeploymentConfig) -> dict[str, str]:
    """Labels applied to all resources of a stack."""
    return {
        APP_LABEL: config.project_name,
        OWNER_LABEL: config.username,
        MANAGED_BY_LABEL: config.username,
        CREATED_BY_LABEL: config.username,
    }


def owner_selector(username: str) -> str:
    """Label selector matching every workload owned by ``username``."""
    return f"{OWNER_LABEL}={username}"


def _metadata(config: DeploymentConfig, annotations: dict[str, str] | None = None) -> client.V1ObjectMeta:
    return client.V1ObjectMeta(
        name=config.project_name,
        labels=common_labels(config),
        annotations=annotations,
    )


def compose_deployment(config: DeploymentConfig) -> client.V1Deployment:
    container = client.V1Container(
        name=config.project_name,
        image=config.docker_image,
        # Always re-pull so mutable tags such as latest pick up new pushes
        image_pull_policy="Always",
        ports=[client.V1ContainerPort(container_port=config.container_port)],
    )
    return client.V1Deployment(
        api_version="apps/v1",
        kind="Deployment",
        metadata=_metadata(config),
        spec=client.V1DeploymentSpec(
            selector=client.V1LabelSelector(match_labels={APP_LABEL: config.project_name}),
            template=client.V1PodTemplateSpec(
                metadata=client.V1ObjectMeta(labels=common_labels(config)),
                spec=client.V1PodSpec(containers=[container]),
            ),
        ),
    )


def compose_service(config: DeploymentConfig) -> client.V1Service:
    return client.V1Service(
        api_version="v1",
        kind="Service",
        metadata=_metadata(config),
        spec=client.V1ServiceSpec(
            ports=[
                client.V1ServicePort(
                    port=SERVICE_PORT,
                    target_port=config.container_port,
                    protocol="TCP",
                ),
            ],
            selector={APP_LABEL: config.project_name},
        ),
    )


def compose_ingress(
    config: DeploymentConfig,
    cluster_issuer: str = DEFAULT_CLUSTER_ISSUER,
    ingress_class_name: str = DEFAULT_INGRESS_CLASS,
) -> client.V1Ingress:
    backend = client.V1IngressBackend(
        service=client.V1IngressServiceBackend(
            name=config.project_name,
            port=client.V1ServiceBackendPort(number=SERVICE_PORT),
        ),
    )
    return client.V1Ingress(
        api_version="networking.k8s.io/v1",
        kind="Ingress",
        metadata=_metadata(config, annotations={CLUSTER_ISSUER_ANNOTATION: cluster_issuer}),
        spec=client.V1IngressSpec(
            ingress_class_name=ingress_class_name,
            tls=[
                client.V1IngressTLS(
                    hosts=[config.domain_name],
                    secret_name=config.tls_secret_name,
                ),
            ],
            rules=[
                client.V1IngressRule(
                    host=config.domain_name,
                    http=client.V1HTTPIngressRuleValue(
                        paths=[
                            client.V1HTTPIngressPath(
                                path="/",
                                path_type="Prefix",
                                backend=backend,
                            ),
                        ],
                    ),
                ),
            ],
        ),
    )


def compose(
    config: DeploymentConfig,
    cluster_issuer: str = DEFAULT_CLUSTER_ISSUER,
    ingress_class_name: str = DEFAULT_INGRESS_CLASS,
) -> ComposedStack:
    """Build the Deployment, Service and Ingress for a deployment config.

    All three objects are named after the project so that they can be found
    together later without a separate index.
    """
    return ComposedStack(
        deployment=compose_deployment(config),
        service=compose_service(config),
        ingress=compose_ingress(config, cluster_issuer, ingress_class_name),
    )
