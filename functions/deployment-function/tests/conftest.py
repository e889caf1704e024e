"""Shared fixtures for deployment function tests."""

import json

import pytest

from config import Settings
from models.requests import DeploymentConfig


def make_index(*platforms: str, variant: str | None = None) -> bytes:
    """Build an OCI image index payload listing the given os/arch pairs."""
    manifests = []
    for position, item in enumerate(platforms):
        os_name, architecture = item.split("/")
        platform = {"os": os_name, "architecture": architecture}
        if variant and architecture == "arm64":
            platform["variant"] = variant
        manifests.append(
            {
                "mediaType": "application/vnd.oci.image.manifest.v1+json",
                "digest": f"sha256:{position:064x}",
                "size": 1024,
                "platform": platform,
            },
        )
    return json.dumps(
        {
            "schemaVersion": 2,
            "mediaType": "application/vnd.oci.image.index.v1+json",
            "manifests": manifests,
        },
    ).encode()


@pytest.fixture
def settings(monkeypatch):
    """Settings with defaults only, unaffected by the host environment."""
    for name in ("NAMESPACE", "TLS_SECRET_NAME", "OWNER_USERNAME", "REQUIRED_PLATFORMS", "KUBE_CONFIG_SOURCE"):
        monkeypatch.delenv(name, raising=False)
    return Settings(_env_file=None)


@pytest.fixture
def deployment_config():
    """A valid resolved deployment config."""
    return DeploymentConfig(
        project_name="haylinmoore",
        username="haylin",
        domain_name="haylin.script.example.com",
        docker_image="nginx:latest",
        container_port=8080,
        namespace="default",
        tls_secret_name="wildcard-example-certs",
    )
