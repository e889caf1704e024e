"""Configuration settings for the deployment function."""

from enum import Enum

from pydantic import ConfigDict, field_validator, model_validator
from pydantic_settings import BaseSettings

from models.manifests import Platform


class KubeConfigSource(str, Enum):
    """Where the Kubernetes client loads its credentials from."""

    IN_CLUSTER = "in_cluster"
    KUBECONFIG = "kubeconfig"
    AKS = "aks"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = ConfigDict(
        env_file=".env",
        env_prefix="",
        case_sensitive=False,
    )

    # Operator-fixed deployment fields
    namespace: str = "default"
    tls_secret_name: str = "wildcard-mkr-certs"
    owner_username: str = "system"

    # Ingress settings
    cluster_issuer: str = "letsencrypt-prod"
    ingress_class_name: str = "nginx"

    # Image platform policy, comma separated os/arch pairs
    required_platforms: str = "linux/amd64,linux/arm64"

    # Kubernetes client settings
    kube_config_source: KubeConfigSource = KubeConfigSource.IN_CLUSTER
    kubeconfig_path: str | None = None
    kube_context: str | None = None
    kubernetes_timeout_seconds: float = 30.0

    # Azure Kubernetes Service settings (kube_config_source=aks)
    azure_subscription_id: str | None = None
    aks_resource_group: str | None = None
    aks_cluster_name: str | None = None
    aks_admin_credentials: bool = False

    # Container registry settings
    registry_timeout_seconds: float = 30.0
    docker_config_path: str | None = None

    @field_validator("required_platforms")
    @classmethod
    def validate_required_platforms(cls, v: str) -> str:
        """Parse the platform list up front so a bad value fails at startup."""
        platforms = [Platform.parse(item) for item in v.split(",") if item.strip()]
        if not platforms:
            msg = "required_platforms must name at least one os/arch platform"
            raise ValueError(msg)
        return ",".join(str(platform) for platform in platforms)

    @model_validator(mode="after")
    def validate_aks_settings(self) -> "Settings":
        """Require the cluster coordinates when credentials come from AKS."""
        if self.kube_config_source is KubeConfigSource.AKS:
            missing = [
                name
                for name in ("azure_subscription_id", "aks_resource_group", "aks_cluster_name")
                if not getattr(self, name)
            ]
            if missing:
                msg = f"kube_config_source=aks requires: {', '.join(missing)}"
                raise ValueError(msg)
        return self

    @property
    def required_platform_set(self) -> frozenset[Platform]:
        """Platforms every deployable image must provide."""
        return frozenset(
            Platform.parse(item)
            for item in self.required_platforms.split(",")
            if item.strip()
        )
