"""Registry client speaking the OCI distribution API."""

import base64
import binascii
import hashlib
import json
import logging
import os
import re
import subprocess
from pathlib import Path
from typing import Any

import requests

from models.manifests import Descriptor
from services.errors import RegistryFetchError
from services.image_reference import DEFAULT_REGISTRY, ImageReference

logger = logging.getLogger(__name__)

HTTP_UNAUTHORIZED = 401
HTTP_ERROR_THRESHOLD = 400

DOCKER_HUB_API_HOST = "registry-1.docker.io"
DOCKER_HUB_AUTH_KEY = "https://index.docker.io/v1/"

# Username the Docker CLI stores alongside OAuth2 identity tokens
IDENTITY_TOKEN_USERNAME = "<token>"
TOKEN_CLIENT_ID = "stack-deployer"

MANIFEST_MEDIA_TYPES = (
    "application/vnd.oci.image.index.v1+json",
    "application/vnd.docker.distribution.manifest.list.v2+json",
    "application/vnd.oci.image.manifest.v1+json",
    "application/vnd.docker.distribution.manifest.v2+json",
)

_CHALLENGE_PARAM = re.compile(r'(\w+)="([^"]*)"')


class RegistryClient:
    """Resolve references and fetch manifest bytes from a remote registry.

    Anonymous access is tried first. On a ``401`` the registry's challenge is
    answered with credentials from the Docker config file or the credential
    helper it names, if any.
    """

    def __init__(
        self,
        timeout: float = 30.0,
        docker_config_path: str | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self.timeout = timeout
        self.docker_config_path = docker_config_path
        self.session = session or requests.Session()
        self._tokens: dict[tuple[str, str], str] = {}

    def close(self) -> None:
        """Release pooled registry connections."""
        self.session.close()

    def __enter__(self) -> "RegistryClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def resolve(self, reference: ImageReference) -> Descriptor:
        """Resolve a reference to the descriptor of its top-level manifest.

        Raises:
            RegistryFetchError: On network, auth or not-found failures
        """
        url = self._manifest_url(reference.registry, reference.repository, reference.identifier)
        response = self._request("HEAD", reference.registry, reference.repository, url, str(reference))

        digest = response.headers.get("Docker-Content-Digest") or reference.digest
        media_type = response.headers.get("Content-Type", "")
        size = response.headers.get("Content-Length")

        if not digest:
            # Some registries omit the digest header on HEAD
            response = self._request("GET", reference.registry, reference.repository, url, str(reference))
            digest = "sha256:" + hashlib.sha256(response.content).hexdigest()
            media_type = response.headers.get("Content-Type", media_type)
            size = len(response.content)

        descriptor = Descriptor(
            registry=reference.registry,
            repository=reference.repository,
            media_type=media_type.split(";")[0].strip(),
            digest=digest,
            size=int(size) if size else None,
        )
        logger.debug(
            "Resolved image reference",
            extra={
                "reference": str(reference),
                "digest": descriptor.digest,
                "media_type": descriptor.media_type,
            },
        )
        return descriptor

    def fetch_manifest(self, descriptor: Descriptor) -> bytes:
        """Fetch the raw manifest bytes for a resolved descriptor.

        Raises:
            RegistryFetchError: On network, auth or not-found failures
        """
        url = self._manifest_url(descriptor.registry, descriptor.repository, descriptor.digest)
        name = f"{descriptor.registry}/{descriptor.repository}@{descriptor.digest}"
        response = self._request("GET", descriptor.registry, descriptor.repository, url, name)
        return response.content

    def _manifest_url(self, registry: str, repository: str, identifier: str) -> str:
        host = DOCKER_HUB_API_HOST if registry == DEFAULT_REGISTRY else registry
        scheme = "http" if host.startswith(("localhost", "127.0.0.1")) else "https"
        return f"{scheme}://{host}/v2/{repository}/manifests/{identifier}"

    def _request(
        self,
        method: str,
        registry: str,
        repository: str,
        url: str,
        name: str,
    ) -> requests.Response:
        headers = {"Accept": ", ".join(MANIFEST_MEDIA_TYPES)}
        token = self._tokens.get((registry, repository))
        if token:
            headers["Authorization"] = f"Bearer {token}"

        try:
            response = self.session.request(method, url, headers=headers, timeout=self.timeout)
            if response.status_code == HTTP_UNAUTHORIZED:
                authorization = self._authorize(registry, repository, response, name)
                if authorization:
                    headers["Authorization"] = authorization
                    response = self.session.request(method, url, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            logger.warning(
                "Registry request failed",
                extra={"reference": name, "method": method, "error_message": str(e)},
            )
            raise RegistryFetchError(name, str(e)) from e

        if response.status_code >= HTTP_ERROR_THRESHOLD:
            logger.warning(
                "Registry returned an error status",
                extra={"reference": name, "method": method, "status_code": response.status_code},
            )
            raise RegistryFetchError(
                name,
                f"registry returned HTTP {response.status_code}",
                status_code=response.status_code,
            )
        return response

    def _authorize(
        self,
        registry: str,
        repository: str,
        challenge_response: requests.Response,
        name: str,
    ) -> str | None:
        challenge = challenge_response.headers.get("WWW-Authenticate", "")
        scheme, _, params_text = challenge.partition(" ")
        params = dict(_CHALLENGE_PARAM.findall(params_text))
        credentials = self._load_credentials(registry)

        if scheme.lower() == "basic":
            if credentials is None or credentials[0] == IDENTITY_TOKEN_USERNAME:
                return None
            encoded = base64.b64encode(f"{credentials[0]}:{credentials[1]}".encode()).decode()
            return f"Basic {encoded}"

        if scheme.lower() != "bearer" or "realm" not in params:
            return None

        token_params = {"scope": params.get("scope", f"repository:{repository}:pull")}
        if "service" in params:
            token_params["service"] = params["service"]

        if credentials is not None and credentials[0] == IDENTITY_TOKEN_USERNAME:
            # Identity tokens are exchanged through the OAuth2 refresh flow
            response = self.session.post(
                params["realm"],
                data={
                    **token_params,
                    "grant_type": "refresh_token",
                    "refresh_token": credentials[1],
                    "client_id": TOKEN_CLIENT_ID,
                },
                timeout=self.timeout,
            )
        else:
            response = self.session.get(
                params["realm"],
                params=token_params,
                auth=credentials,
                timeout=self.timeout,
            )
        if response.status_code >= HTTP_ERROR_THRESHOLD:
            raise RegistryFetchError(
                name,
                f"token endpoint returned HTTP {response.status_code}",
                status_code=response.status_code,
            )
        try:
            body = response.json()
        except ValueError as e:
            raise RegistryFetchError(name, "token endpoint returned invalid JSON") from e

        token = (body.get("token") or body.get("access_token")) if isinstance(body, dict) else None
        if not token:
            raise RegistryFetchError(name, "token endpoint returned no token")
        self._tokens[(registry, repository)] = token
        return f"Bearer {token}"

    def _docker_config_file(self) -> Path:
        if self.docker_config_path:
            return Path(self.docker_config_path)
        config_dir = os.environ.get("DOCKER_CONFIG")
        if config_dir:
            return Path(config_dir) / "config.json"
        return Path.home() / ".docker" / "config.json"

    def _load_docker_config(self) -> dict[str, Any]:
        path = self._docker_config_file()
        if not path.is_file():
            return {}
        try:
            document = json.loads(path.read_text())
        except (OSError, ValueError):
            logger.warning("Ignoring unreadable Docker config", extra={"path": str(path)})
            return {}
        if not isinstance(document, dict):
            logger.warning("Ignoring Docker config that is not a JSON object", extra={"path": str(path)})
            return {}
        return document

    def _load_credentials(self, registry: str) -> tuple[str, str] | None:
        """Look up credentials for a registry the way the Docker CLI does.

        A per-registry ``credHelpers`` entry wins over the ``credsStore``
        default store, which wins over inline ``auths`` entries.
        """
        docker_config = self._load_docker_config()
        keys = [registry, f"https://{registry}", f"http://{registry}"]
        server_url = registry
        if registry == DEFAULT_REGISTRY:
            keys.insert(0, DOCKER_HUB_AUTH_KEY)
            server_url = DOCKER_HUB_AUTH_KEY

        helpers = docker_config.get("credHelpers")
        if isinstance(helpers, dict):
            helper = next((helpers[key] for key in keys if helpers.get(key)), None)
            if helper:
                return self._helper_credentials(helper, server_url)

        store = docker_config.get("credsStore")
        if store:
            credentials = self._helper_credentials(store, server_url)
            if credentials is not None:
                return credentials

        auths = docker_config.get("auths")
        if not isinstance(auths, dict):
            return None
        for key in keys:
            entry = auths.get(key)
            if not isinstance(entry, dict) or not entry:
                continue
            credentials = self._inline_credentials(key, entry)
            if credentials is not None:
                return credentials
        return None

    def _inline_credentials(self, key: str, entry: dict[str, Any]) -> tuple[str, str] | None:
        if entry.get("identitytoken"):
            return IDENTITY_TOKEN_USERNAME, entry["identitytoken"]
        if entry.get("username") and entry.get("password"):
            return entry["username"], entry["password"]
        if entry.get("auth"):
            try:
                decoded = base64.b64decode(entry["auth"], validate=True).decode("utf-8")
            except (binascii.Error, UnicodeDecodeError, TypeError):
                logger.warning("Ignoring malformed Docker config auth entry", extra={"registry": key})
                return None
            username, sep, password = decoded.partition(":")
            if not sep:
                logger.warning("Ignoring malformed Docker config auth entry", extra={"registry": key})
                return None
            return username, password
        return None

    def _helper_credentials(self, helper: str, server_url: str) -> tuple[str, str] | None:
        """Ask a ``docker-credential-<helper>`` program for credentials."""
        binary = f"docker-credential-{helper}"
        try:
            result = subprocess.run(
                [binary, "get"],
                input=server_url,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=True,
            )
        except (FileNotFoundError, subprocess.TimeoutExpired) as e:
            logger.warning(
                "Docker credential helper unavailable",
                extra={"helper": binary, "server_url": server_url, "error_class": type(e).__name__},
            )
            return None
        except subprocess.CalledProcessError as e:
            # Helpers exit non-zero when they hold no credentials for the server
            logger.debug(
                "Docker credential helper returned no credentials",
                extra={"helper": binary, "server_url": server_url, "output": (e.stderr or e.stdout or "").strip()},
            )
            return None

        try:
            payload = json.loads(result.stdout)
        except ValueError:
            logger.warning("Docker credential helper returned invalid JSON", extra={"helper": binary})
            return None
        if not isinstance(payload, dict) or not payload.get("Secret"):
            return None
        return payload.get("Username", ""), payload["Secret"]
