"""Azure Function App entry point for tenant stack deployments."""

import json
import logging
import time
import uuid
from typing import Any

import azure.functions as func
from kubernetes.client.rest import ApiException
from pydantic import ValidationError

from config import Settings
from models.requests import (
    DeploymentConfig,
    DeploymentRequest,
    ValidateImageRequest,
    field_errors,
)
from services.deployment_service import DeploymentService
from services.errors import StackDeployerError

# Initialize the function app
app = func.FunctionApp()

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def _new_correlation_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:8]}-{int(time.time())}"


def _json_response(payload: Any, status_code: int, correlation_id: str) -> func.HttpResponse:
    if isinstance(payload, dict):
        payload = {**payload, "correlation_id": correlation_id}
    return func.HttpResponse(
        json.dumps(payload, default=str),
        status_code=status_code,
        headers={"Content-Type": "application/json"},
    )


def _error_response(error: StackDeployerError, correlation_id: str) -> func.HttpResponse:
    logger.warning(
        "Request failed",
        extra={
            "correlation_id": correlation_id,
            "error_type": error.error_code,
            "error_message": str(error),
            "status_code": error.http_status,
        },
    )
    return _json_response(error.to_dict(), error.http_status, correlation_id)


def _unexpected_response(operation: str, error: Exception, correlation_id: str) -> func.HttpResponse:
    logger.exception(
        "Unexpected error in %s",
        operation,
        extra={
            "correlation_id": correlation_id,
            "error_type": "unexpected_error",
            "error_class": type(error).__name__,
            "status_code": 500,
        },
    )
    return _json_response(
        {"message": "Internal server error", "error": str(error)},
        500,
        correlation_id,
    )


def _validation_response(model_name: str, error: ValidationError, correlation_id: str) -> func.HttpResponse:
    errors = [item.model_dump() for item in field_errors(model_name, error)]
    logger.info(
        "Request validation failed",
        extra={
            "correlation_id": correlation_id,
            "error_type": "validation_error",
            "failed_fields": [item["failed_field"] for item in errors],
            "status_code": 400,
        },
    )
    return _json_response(
        {"message": "Invalid request", "errors": errors},
        400,
        correlation_id,
    )


def _load_service(correlation_id: str) -> DeploymentService | func.HttpResponse:
    try:
        settings = Settings()
    except ValidationError as e:
        logger.error(
            "Failed to load settings",
            extra={"correlation_id": correlation_id, "error_message": str(e)},
        )
        return _json_response(
            {"message": "Configuration error", "error": str(e)},
            500,
            correlation_id,
        )
    return DeploymentService(settings, correlation_id)


@app.function_name(name="validate")
@app.route(route="validate", methods=["GET"], auth_level=func.AuthLevel.FUNCTION)
def validate_image(req: func.HttpRequest) -> func.HttpResponse:
    """Check that an image supports the required platforms, without side effects."""
    correlation_id = _new_correlation_id("validate")

    try:
        request = ValidateImageRequest.model_validate(dict(req.params))
    except ValidationError as e:
        return _validation_response("ValidateImageRequest", e, correlation_id)

    service = _load_service(correlation_id)
    if isinstance(service, func.HttpResponse):
        return service

    try:
        result = service.check_image(request.container)
    except StackDeployerError as e:
        return _error_response(e, correlation_id)
    except Exception as e:
        return _unexpected_response("validate_image", e, correlation_id)

    if not result.ok:
        return _json_response(
            {
                "message": "Missing required platforms",
                "error": "missing_platforms",
                "required_platforms": result.required,
                "missing_platforms": result.missing,
            },
            400,
            correlation_id,
        )
    return _json_response(
        {
            "status": "ok",
            "required_platforms": result.required,
            "found_platforms": result.found,
        },
        200,
        correlation_id,
    )


@app.function_name(name="create_deployment")
@app.route(route="deployments", methods=["POST"], auth_level=func.AuthLevel.FUNCTION)
def create_deployment(req: func.HttpRequest) -> func.HttpResponse:
    """Create the Deployment, Service and Ingress for a project."""
    correlation_id = _new_correlation_id("deploy")
    logger.info(
        "Deployment function triggered",
        extra={
            "correlation_id": correlation_id,
            "request_method": req.method,
            "request_url": req.url,
        },
    )

    try:
        req_body = req.get_json()
    except ValueError as e:
        return _json_response(
            {"message": "Invalid request body", "error": str(e)},
            400,
            correlation_id,
        )
    if not isinstance(req_body, dict):
        return _json_response(
            {"message": "Invalid request body", "error": "expected a JSON object"},
            400,
            correlation_id,
        )

    try:
        request = DeploymentRequest(**req_body)
    except ValidationError as e:
        return _validation_response("DeploymentRequest", e, correlation_id)

    service = _load_service(correlation_id)
    if isinstance(service, func.HttpResponse):
        return service

    deployment_config = DeploymentConfig.from_request(request, service.settings)
    try:
        result = service.deploy(deployment_config)
    except StackDeployerError as e:
        return _error_response(e, correlation_id)
    except Exception as e:
        return _unexpected_response("create_deployment", e, correlation_id)

    return func.HttpResponse(
        result.model_dump_json(),
        status_code=201,
        headers={"Content-Type": "application/json"},
    )


@app.function_name(name="list_deployments")
@app.route(route="deployments", methods=["GET"], auth_level=func.AuthLevel.FUNCTION)
def list_deployments(req: func.HttpRequest) -> func.HttpResponse:
    """List the workloads belonging to the configured owner."""
    correlation_id = _new_correlation_id("list")

    service = _load_service(correlation_id)
    if isinstance(service, func.HttpResponse):
        return service

    try:
        workloads = service.list_workloads(service.settings.owner_username)
    except StackDeployerError as e:
        return _error_response(e, correlation_id)
    except ApiException as e:
        logger.error(
            "Failed to list deployments",
            extra={"correlation_id": correlation_id, "error_status": e.status, "error_message": str(e)},
        )
        return _json_response(
            {"message": "Failed to list deployments", "error": e.reason},
            500,
            correlation_id,
        )
    except Exception as e:
        return _unexpected_response("list_deployments", e, correlation_id)

    return _json_response(
        {"deployments": [workload.model_dump(mode="json") for workload in workloads]},
        200,
        correlation_id,
    )


@app.function_name(name="restart_deployment")
@app.route(
    route="deployments/{namespace}/{name}/restart",
    methods=["POST"],
    auth_level=func.AuthLevel.FUNCTION,
)
def restart_deployment(req: func.HttpRequest) -> func.HttpResponse:
    """Roll the pods of a deployment."""
    correlation_id = _new_correlation_id("restart")
    namespace = req.route_params.get("namespace")
    name = req.route_params.get("name")

    service = _load_service(correlation_id)
    if isinstance(service, func.HttpResponse):
        return service

    try:
        restarted_at = service.restart(namespace, name)
    except StackDeployerError as e:
        return _error_response(e, correlation_id)
    except ApiException as e:
        logger.error(
            "Failed to restart deployment",
            extra={
                "correlation_id": correlation_id,
                "namespace": namespace,
                "deployment_name": name,
                "error_status": e.status,
                "error_message": str(e),
            },
        )
        return _json_response(
            {"message": "Failed to restart deployment", "error": e.reason},
            500,
            correlation_id,
        )
    except Exception as e:
        return _unexpected_response("restart_deployment", e, correlation_id)

    return _json_response(
        {"message": "Deployment restarted", "namespace": namespace, "name": name, "restarted_at": restarted_at},
        200,
        correlation_id,
    )


@app.function_name(name="health")
@app.route(route="health", methods=["GET"], auth_level=func.AuthLevel.ANONYMOUS)
def health_check(req: func.HttpRequest) -> func.HttpResponse:
    """Health check endpoint."""
    return func.HttpResponse(
        json.dumps({"status": "healthy", "service": "deployment-function"}),
        status_code=200,
        headers={"Content-Type": "application/json"},
    )
