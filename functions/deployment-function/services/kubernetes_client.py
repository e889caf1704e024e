"""Construction of Kubernetes API clients from the configured credential source."""

import logging

import yaml
from azure.core.exceptions import AzureError
from azure.identity import DefaultAzureCredential
from azure.mgmt.containerservice import ContainerServiceClient
from kubernetes import client, config

from config import KubeConfigSource, Settings
from services.errors import KubernetesConfigError

logger = logging.getLogger(__name__)


def _in_cluster_client() -> client.ApiClient:
    configuration = client.Configuration()
    config.load_incluster_config(client_configuration=configuration)
    return client.ApiClient(configuration)


def _kubeconfig_client(settings: Settings) -> client.ApiClient:
    return config.new_client_from_config(
        config_file=settings.kubeconfig_path,
        context=settings.kube_context,
        persist_config=False,
    )


def _aks_client(settings: Settings) -> client.ApiClient:
    """Fetch cluster credentials with the Azure SDK and build a client from them."""
    credential = DefaultAzureCredential()
    container_client = ContainerServiceClient(credential, settings.azure_subscription_id)

    if settings.aks_admin_credentials:
        credential_results = container_client.managed_clusters.list_cluster_admin_credentials(
            resource_group_name=settings.aks_resource_group,
            resource_name=settings.aks_cluster_name,
        )
    else:
        credential_results = container_client.managed_clusters.list_cluster_user_credentials(
            resource_group_name=settings.aks_resource_group,
            resource_name=settings.aks_cluster_name,
        )

    if not credential_results.kubeconfigs:
        msg = f"No kubeconfig found for AKS cluster {settings.aks_cluster_name}"
        raise config.ConfigException(msg)

    kubeconfig = yaml.safe_load(credential_results.kubeconfigs[0].value.decode("utf-8"))
    return config.new_client_from_config_dict(
        kubeconfig,
        context=settings.kube_context,
        persist_config=False,
    )


def build_api_client(settings: Settings) -> client.ApiClient:
    """Create an API client for the credential source chosen in settings.

    Raises:
        KubernetesConfigError: If the configuration cannot be loaded
    """
    source = settings.kube_config_source
    logger.info("Loading Kubernetes configuration", extra={"kube_config_source": source.value})
    try:
        if source is KubeConfigSource.IN_CLUSTER:
            return _in_cluster_client()
        if source is KubeConfigSource.KUBECONFIG:
            return _kubeconfig_client(settings)
        return _aks_client(settings)
    except (config.ConfigException, AzureError, yaml.YAMLError) as e:
        logger.exception(
            "Failed to load Kubernetes configuration",
            extra={"kube_config_source": source.value, "error_class": type(e).__name__},
        )
        raise KubernetesConfigError(source.value, str(e)) from e
