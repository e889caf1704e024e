"""Tests for the HTTP entry points."""

import json
from unittest.mock import Mock, patch

import azure.functions as func
import pytest
from kubernetes.client.rest import ApiException
from urllib3.exceptions import ReadTimeoutError

import function_app
from models.requests import DeploymentResponse
from services.deployment_service import DeploymentService
from services.errors import (
    ApplyError,
    ClusterRequestError,
    InvalidReferenceError,
    MissingPlatformsError,
    NotFoundError,
    RegistryFetchError,
    UpdateConflictError,
)
from services.manifest_inspector import PlatformCheckResult

VALID_BODY = {
    "project": "myproject",
    "domain": "myproject.apps.example.com",
    "port": 8080,
    "image": "nginx:latest",
}


def _call(function, req: func.HttpRequest) -> tuple[int, dict]:
    response = function.build().get_user_function()(req)
    return response.status_code, json.loads(response.get_body())


def _post(body) -> func.HttpRequest:
    raw = body if isinstance(body, bytes) else json.dumps(body).encode()
    return func.HttpRequest(method="POST", url="/api/deployments", body=raw)


@pytest.fixture
def mock_service(settings):
    """Patch the service constructed by the function app."""
    service = Mock(spec=DeploymentService)
    service.settings = settings
    with patch("function_app.DeploymentService", return_value=service):
        yield service


class TestCreateDeployment:
    """Tests for POST /deployments."""

    def test_created(self, mock_service):
        """Test that a valid request returns 201 with the resolved config."""
        mock_service.deploy.side_effect = lambda config: DeploymentResponse(
            message="Deployment created successfully",
            config=config,
            created=["deployment/myproject", "service/myproject", "ingress/myproject"],
        )

        status, body = _call(function_app.create_deployment, _post(VALID_BODY))

        assert status == 201
        assert body["config"]["project_name"] == "myproject"
        assert body["config"]["namespace"] == "default"
        assert body["config"]["tls_secret_name"] == "wildcard-mkr-certs"
        assert body["config"]["username"] == "system"

    def test_invalid_body_returns_field_errors(self, mock_service):
        """Test that validation failures list each failed field."""
        status, body = _call(
            function_app.create_deployment,
            _post({**VALID_BODY, "project": "my-project", "port": 70000}),
        )

        assert status == 400
        failed = {error["failed_field"]: error["tag"] for error in body["errors"]}
        assert failed == {"DeploymentRequest.project": "alphanum", "DeploymentRequest.port": "max"}
        mock_service.deploy.assert_not_called()

    def test_malformed_json(self, mock_service):
        """Test that an unparsable body is rejected."""
        status, body = _call(function_app.create_deployment, _post(b"{not json"))

        assert status == 400
        assert body["message"] == "Invalid request body"

    def test_missing_platforms(self, mock_service):
        """Test that unsupported images return the required platform list."""
        mock_service.deploy.side_effect = MissingPlatformsError(
            "nginx:latest",
            ["linux/amd64", "linux/arm64"],
            ["linux/arm64"],
        )

        status, body = _call(function_app.create_deployment, _post(VALID_BODY))

        assert status == 400
        assert body["required_platforms"] == ["linux/amd64", "linux/arm64"]
        assert body["missing_platforms"] == ["linux/arm64"]
        assert "correlation_id" in body

    def test_invalid_reference(self, mock_service):
        """Test that bad image references are client errors."""
        mock_service.deploy.side_effect = InvalidReferenceError("Bad", "invalid repository component 'Bad'")

        status, body = _call(function_app.create_deployment, _post(VALID_BODY))

        assert status == 400
        assert body["error"] == "invalid_reference"

    def test_apply_failure_names_stage(self, mock_service):
        """Test that orchestrator failures return 500 with the failed stage."""
        mock_service.deploy.side_effect = ApplyError(
            "endpoint",
            ApiException(status=422, reason="Unprocessable"),
            ["deployment/myproject"],
        )

        status, body = _call(function_app.create_deployment, _post(VALID_BODY))

        assert status == 500
        assert body["message"] == "Failed to create deployment"
        assert body["stage"] == "endpoint"
        assert body["created"] == ["deployment/myproject"]


class TestValidateImage:
    """Tests for GET /validate."""

    @staticmethod
    def _get(params) -> func.HttpRequest:
        return func.HttpRequest(method="GET", url="/api/validate", params=params, body=b"")

    def test_supported_image(self, mock_service):
        """Test that an image with all platforms returns 200."""
        mock_service.check_image.return_value = PlatformCheckResult(
            reference="nginx",
            ok=True,
            required=["linux/amd64", "linux/arm64"],
            found=["linux/386", "linux/amd64", "linux/arm64"],
            missing=[],
        )

        status, body = _call(function_app.validate_image, self._get({"container": "nginx"}))

        assert status == 200
        assert body["status"] == "ok"
        mock_service.check_image.assert_called_once_with("nginx")

    def test_unsupported_image(self, mock_service):
        """Test that a missing platform returns 400 without side effects."""
        mock_service.check_image.return_value = PlatformCheckResult(
            reference="nginx",
            ok=False,
            required=["linux/amd64", "linux/arm64"],
            found=["linux/amd64"],
            missing=["linux/arm64"],
        )

        status, body = _call(function_app.validate_image, self._get({"container": "nginx"}))

        assert status == 400
        assert body["missing_platforms"] == ["linux/arm64"]
        mock_service.deploy.assert_not_called()

    def test_missing_container_parameter(self, mock_service):
        """Test that the container query parameter is required."""
        status, body = _call(function_app.validate_image, self._get({}))

        assert status == 400
        assert body["errors"][0]["failed_field"] == "ValidateImageRequest.container"
        assert body["errors"][0]["tag"] == "required"

    def test_registry_unreachable(self, mock_service):
        """Test that registry failures are reported as gateway errors."""
        mock_service.check_image.side_effect = RegistryFetchError("nginx", "connection refused")

        status, body = _call(function_app.validate_image, self._get({"container": "nginx"}))

        assert status == 502
        assert body["error"] == "registry_fetch_failed"

    def test_unexpected_error_returns_json(self, mock_service):
        """Test that unexpected failures still return a JSON 500."""
        mock_service.check_image.side_effect = RuntimeError("boom")

        status, body = _call(function_app.validate_image, self._get({"container": "nginx"}))

        assert status == 500
        assert body["message"] == "Internal server error"
        assert "correlation_id" in body


class TestLifecycleRoutes:
    """Tests for listing and restarting deployments."""

    @staticmethod
    def _restart_request() -> func.HttpRequest:
        return func.HttpRequest(
            method="POST",
            url="/api/deployments/default/myapp/restart",
            route_params={"namespace": "default", "name": "myapp"},
            body=b"",
        )

    def test_list_uses_configured_owner(self, mock_service):
        """Test that listing is scoped to the owner from settings."""
        mock_service.list_workloads.return_value = []

        status, body = _call(
            function_app.list_deployments,
            func.HttpRequest(method="GET", url="/api/deployments", body=b""),
        )

        assert status == 200
        assert body["deployments"] == []
        mock_service.list_workloads.assert_called_once_with("system")

    def test_restart(self, mock_service):
        """Test a successful restart."""
        mock_service.restart.return_value = "2024-05-01T00:00:00Z"

        status, body = _call(function_app.restart_deployment, self._restart_request())

        assert status == 200
        assert body["restarted_at"] == "2024-05-01T00:00:00Z"
        mock_service.restart.assert_called_once_with("default", "myapp")

    @pytest.mark.parametrize(
        ("error", "expected_status"),
        [
            (NotFoundError("default", "myapp"), 404),
            (UpdateConflictError("default", "myapp"), 409),
            (ClusterRequestError("restart", ReadTimeoutError(None, "/apis", "timed out")), 500),
        ],
    )
    def test_restart_errors(self, mock_service, error, expected_status):
        """Test that lifecycle errors map to their status codes."""
        mock_service.restart.side_effect = error

        status, body = _call(function_app.restart_deployment, self._restart_request())

        assert status == expected_status
        assert body["error"] == error.error_code

    def test_list_transport_error_returns_json(self, mock_service):
        """Test that a cluster timeout during listing returns a JSON 500."""
        mock_service.list_workloads.side_effect = ClusterRequestError(
            "list_by_owner",
            ReadTimeoutError(None, "/apis", "timed out"),
        )

        status, body = _call(
            function_app.list_deployments,
            func.HttpRequest(method="GET", url="/api/deployments", body=b""),
        )

        assert status == 500
        assert body["error"] == "cluster_request_failed"
        assert "correlation_id" in body

    def test_restart_untyped_error_returns_json(self, mock_service):
        """Test that a raw transport error from restart still returns a JSON 500."""
        mock_service.restart.side_effect = ReadTimeoutError(None, "/apis", "timed out")

        status, body = _call(function_app.restart_deployment, self._restart_request())

        assert status == 500
        assert body["message"] == "Internal server error"
        assert "correlation_id" in body


def test_health_check():
    """Test the anonymous health endpoint."""
    status, body = _call(
        function_app.health_check,
        func.HttpRequest(method="GET", url="/api/health", body=b""),
    )

    assert status == 200
    assert body["status"] == "healthy"
