"""Tests for stack composition."""

import json

import pytest
from kubernetes import client

from models.requests import DeploymentConfig
from services.resource_composer import common_labels, compose, owner_selector


def _serialize(obj) -> str:
    return json.dumps(client.ApiClient().sanitize_for_serialization(obj), sort_keys=True)


class TestCompose:
    """Tests for compose()."""

    def test_all_objects_share_the_project_name(self, deployment_config):
        """Test that every object is named after the project."""
        stack = compose(deployment_config)

        assert stack.deployment.metadata.name == "haylinmoore"
        assert stack.service.metadata.name == "haylinmoore"
        assert stack.ingress.metadata.name == "haylinmoore"
        assert stack.name == "haylinmoore"

    def test_common_labels_identical_across_objects(self, deployment_config):
        """Test that all objects and the pod template carry the same labels."""
        stack = compose(deployment_config)
        expected = {
            "app": "haylinmoore",
            "leashUser": "haylin",
            "managedBy": "haylin",
            "created-by": "haylin",
        }

        assert common_labels(deployment_config) == expected
        assert stack.deployment.metadata.labels == expected
        assert stack.deployment.spec.template.metadata.labels == expected
        assert stack.service.metadata.labels == expected
        assert stack.ingress.metadata.labels == expected

    def test_deployment_spec(self, deployment_config):
        """Test the workload selector and container."""
        deployment = compose(deployment_config).deployment

        assert deployment.spec.selector.match_labels == {"app": "haylinmoore"}
        (container,) = deployment.spec.template.spec.containers
        assert container.name == "haylinmoore"
        assert container.image == "nginx:latest"
        assert container.image_pull_policy == "Always"
        assert [port.container_port for port in container.ports] == [8080]

    def test_service_spec(self, deployment_config):
        """Test that the service forwards port 80 to the container port."""
        service = compose(deployment_config).service

        (port,) = service.spec.ports
        assert port.port == 80
        assert port.target_port == 8080
        assert port.protocol == "TCP"
        assert service.spec.selector == {"app": "haylinmoore"}

    def test_ingress_spec(self, deployment_config):
        """Test TLS wiring and routing of the ingress."""
        ingress = compose(deployment_config).ingress

        assert ingress.metadata.annotations == {"cert-manager.io/cluster-issuer": "letsencrypt-prod"}
        assert ingress.spec.ingress_class_name == "nginx"
        (tls,) = ingress.spec.tls
        assert tls.hosts == ["haylin.script.example.com"]
        assert tls.secret_name == "wildcard-example-certs"
        (rule,) = ingress.spec.rules
        assert rule.host == "haylin.script.example.com"
        (path,) = rule.http.paths
        assert path.path == "/"
        assert path.path_type == "Prefix"
        assert path.backend.service.name == "haylinmoore"
        assert path.backend.service.port.number == 80

    def test_ingress_issuer_and_class_overrides(self, deployment_config):
        """Test that issuer and ingress class can be configured."""
        ingress = compose(deployment_config, cluster_issuer="internal-ca", ingress_class_name="traefik").ingress

        assert ingress.metadata.annotations["cert-manager.io/cluster-issuer"] == "internal-ca"
        assert ingress.spec.ingress_class_name == "traefik"

    def test_compose_is_deterministic(self, deployment_config):
        """Test that identical configs serialize to identical specs."""
        first = compose(deployment_config)
        second = compose(deployment_config.model_copy())

        assert _serialize(first.deployment) == _serialize(second.deployment)
        assert _serialize(first.service) == _serialize(second.service)
        assert _serialize(first.ingress) == _serialize(second.ingress)

    def test_compose_does_not_share_label_dicts(self, deployment_config):
        """Test that mutating one object's labels leaves the others alone."""
        stack = compose(deployment_config)

        stack.deployment.metadata.labels["extra"] = "x"

        assert "extra" not in stack.service.metadata.labels

    @pytest.mark.parametrize("project", ["abc", "MyApp2024", "z" * 63])
    def test_valid_project_name_used_verbatim(self, deployment_config, project):
        """Test that a validated project name is used unchanged as object name."""
        config = DeploymentConfig(**{**deployment_config.model_dump(), "project_name": project})

        stack = compose(config)

        assert {stack.deployment.metadata.name, stack.service.metadata.name, stack.ingress.metadata.name} == {
            project,
        }


def test_owner_selector():
    """Test the label selector used to list a user's workloads."""
    assert owner_selector("haylin") == "leashUser=haylin"
