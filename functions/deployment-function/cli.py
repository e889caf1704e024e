#!/usr/bin/env python3
"""Single-tenant command line entry point.

Every field is given on the command line, including namespace, TLS secret and
owner, which the HTTP entry point takes from settings:

    python cli.py deploy --project demo --domain demo.example.com \
        --port 80 --image nginx:latest --namespace default \
        --tls-secret wildcard-certs --username alice
    python cli.py check nginx:latest
    python cli.py list --username alice
    python cli.py restart default demo
"""

import argparse
import json
import logging
import sys
import time
import uuid

from kubernetes.client.rest import ApiException
from pydantic import ValidationError

from config import Settings
from models.requests import DeploymentConfig, field_errors
from services.deployment_service import DeploymentService
from services.errors import StackDeployerError

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Deploy tenant application stacks to Kubernetes")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    deploy = subparsers.add_parser("deploy", help="Check the image and create the stack")
    deploy.add_argument("--project", required=True, help="Project name (alphanumeric, 3-63 chars)")
    deploy.add_argument("--domain", required=True, help="Fully-qualified domain for the ingress")
    deploy.add_argument("--port", required=True, type=int, help="Container port")
    deploy.add_argument("--image", required=True, help="Container image reference")
    deploy.add_argument("--namespace", required=True, help="Target namespace")
    deploy.add_argument("--tls-secret", required=True, help="Existing TLS secret name")
    deploy.add_argument("--username", required=True, help="Owning user recorded in labels")

    check = subparsers.add_parser("check", help="Only check image platform support")
    check.add_argument("image", help="Container image reference")

    list_parser = subparsers.add_parser("list", help="List deployments owned by a user")
    list_parser.add_argument("--username", required=True)

    restart = subparsers.add_parser("restart", help="Roll the pods of a deployment")
    restart.add_argument("namespace")
    restart.add_argument("name")

    return parser


def _deploy(service: DeploymentService, args: argparse.Namespace) -> int:
    try:
        deployment_config = DeploymentConfig(
            project_name=args.project,
            domain_name=args.domain,
            docker_image=args.image,
            container_port=args.port,
            namespace=args.namespace,
            tls_secret_name=args.tls_secret,
            username=args.username,
        )
    except ValidationError as e:
        for error in field_errors("DeploymentConfig", e):
            print(f"Invalid {error.failed_field}: {error.tag} {error.value}".rstrip(), file=sys.stderr)
        return EXIT_USAGE

    result = service.deploy(deployment_config)
    print(result.model_dump_json(indent=2))
    return EXIT_OK


def _check(service: DeploymentService, args: argparse.Namespace) -> int:
    result = service.check_image(args.image)
    print(result.model_dump_json(indent=2))
    return EXIT_OK if result.ok else EXIT_FAILURE


def _list(service: DeploymentService, args: argparse.Namespace) -> int:
    workloads = service.list_workloads(args.username)
    print(json.dumps([workload.model_dump(mode="json") for workload in workloads], indent=2))
    return EXIT_OK


def _restart(service: DeploymentService, args: argparse.Namespace) -> int:
    restarted_at = service.restart(args.namespace, args.name)
    print(f"Restarted {args.namespace}/{args.name} at {restarted_at}")
    return EXIT_OK


COMMANDS = {
    "deploy": _deploy,
    "check": _check,
    "list": _list,
    "restart": _restart,
}


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        settings = Settings()
    except ValidationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_USAGE

    correlation_id = f"cli-{uuid.uuid4().hex[:8]}-{int(time.time())}"
    service = DeploymentService(settings, correlation_id)

    try:
        return COMMANDS[args.command](service, args)
    except StackDeployerError as e:
        print(f"Error ({e.error_code}): {e}", file=sys.stderr)
        return EXIT_FAILURE
    except ApiException as e:
        print(f"Kubernetes API error ({e.status}): {e.reason}", file=sys.stderr)
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
