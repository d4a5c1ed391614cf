"""Azure Resource Manager REST client.

Talks to https://management.azure.com with a bearer token obtained through
the OAuth2 client-credentials flow for a service principal. Resource
creation is a PUT (create-or-update, keyed by name); the returned resource
is usually still provisioning, so callers poll with GET until
``properties.provisioningState`` settles.
"""

from __future__ import annotations

import time
from typing import Any, Optional

import requests

from vmware2azure.config import AzureConfig
from vmware2azure.errors import ProvisioningError, TransportError
from vmware2azure.utils.logging import get_logger
from vmware2azure.utils.redact import redact_mapping

logger = get_logger(__name__)

NETWORK_API_VERSION = "2023-09-01"
COMPUTE_API_VERSION = "2023-09-01"

TERMINAL_FAILURE_STATES = ("Failed", "Canceled")


class ARMClient:
    """Minimal ARM client: token handling, GET/PUT and provisioning polls."""

    def __init__(self, config: AzureConfig, session: Optional[requests.Session] = None, timeout: int = 60):
        self.config = config
        self.subscription_id = config.subscription_id
        self.timeout = timeout
        self.session = session or requests.Session()
        self._token: Optional[str] = None
        self._token_expires_at = 0.0

    # ── Auth ─────────────────────────────────────────────────────

    def _ensure_token(self) -> None:
        if self._token and time.time() < self._token_expires_at - 60:
            return

        url = f"{self.config.authority}/{self.config.tenant_id}/oauth2/v2.0/token"
        data = {
            "grant_type": "client_credentials",
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret.get_secret_value() if self.config.client_secret else "",
            "scope": f"{self.config.management_endpoint}/.default",
        }
        try:
            resp = self.session.post(url, data=data, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise TransportError("Cannot reach Azure AD token endpoint", str(e)) from e

        if not resp.ok:
            raise TransportError(
                f"Azure AD rejected service principal {self.config.client_id} ({resp.status_code})",
                _error_text(resp),
            )

        body = resp.json()
        self._token = body["access_token"]
        self._token_expires_at = time.time() + int(body.get("expires_in", 3600))
        self.session.headers["Authorization"] = f"Bearer {self._token}"
        logger.debug(f"Acquired ARM token for tenant {self.config.tenant_id}")

    # ── Requests ─────────────────────────────────────────────────

    def resource_path(self, resource_group: str, provider: str, name: str) -> str:
        """ARM id of a resource, e.g. provider='Microsoft.Network/publicIPAddresses'."""
        return (f"/subscriptions/{self.subscription_id}/resourceGroups/{resource_group}"
                f"/providers/{provider}/{name}")

    def _request(self, method: str, path: str, api_version: str, **kwargs) -> requests.Response:
        self._ensure_token()
        url = f"{self.config.management_endpoint}{path}"
        try:
            return self.session.request(
                method, url, params={"api-version": api_version}, timeout=self.timeout, **kwargs
            )
        except requests.exceptions.RequestException as e:
            raise TransportError(f"ARM {method} {path} failed", str(e)) from e

    def get(self, path: str, api_version: str) -> Optional[dict[str, Any]]:
        """GET a resource; ``None`` when it does not exist."""
        resp = self._request("GET", path, api_version)
        if resp.status_code == 404:
            return None
        if resp.status_code in (401, 403):
            raise TransportError(f"ARM refused GET {path} ({resp.status_code})", _error_text(resp))
        if not resp.ok:
            code, message = _error_body(resp)
            raise ProvisioningError(f"ARM GET {path} failed ({resp.status_code})", message, code=code)
        return resp.json()

    def put(self, path: str, body: dict[str, Any], api_version: str) -> dict[str, Any]:
        """Create or update a resource by id."""
        logger.debug(f"PUT {path}: {redact_mapping(body)}")
        resp = self._request("PUT", path, api_version, json=body)
        if resp.status_code in (401, 403):
            raise TransportError(f"ARM refused PUT {path} ({resp.status_code})", _error_text(resp))
        if not resp.ok:
            code, message = _error_body(resp)
            logger.error(f"ARM error {resp.status_code} on {path}: {code}: {message}")
            raise ProvisioningError(f"Azure rejected {path.rsplit('/', 1)[-1]}", message, code=code)
        return resp.json() if resp.content else {}

    def list_all(self, path: str, api_version: str) -> list[dict[str, Any]]:
        """GET a collection, following ``nextLink`` pages."""
        items: list[dict[str, Any]] = []
        resp = self._request("GET", path, api_version)
        while True:
            if not resp.ok:
                code, message = _error_body(resp)
                raise ProvisioningError(f"ARM list {path} failed ({resp.status_code})", message, code=code)
            body = resp.json()
            items.extend(body.get("value", []))
            next_link = body.get("nextLink")
            if not next_link:
                return items
            try:
                resp = self.session.get(next_link, timeout=self.timeout)
            except requests.exceptions.RequestException as e:
                raise TransportError(f"ARM list {path} failed", str(e)) from e

    def wait_for_provisioning(
        self,
        path: str,
        api_version: str,
        timeout: int = 900,
        poll_interval: int = 5,
    ) -> dict[str, Any]:
        """Poll a resource until its provisioning state is Succeeded.

        Raises:
            ProvisioningError: If provisioning fails, is canceled, times out
                or the resource disappears
        """
        start = time.time()
        while True:
            resource = self.get(path, api_version)
            if resource is None:
                raise ProvisioningError(f"Resource {path} vanished while provisioning")

            state = resource.get("properties", {}).get("provisioningState", "Succeeded")
            if state == "Succeeded":
                return resource
            if state in TERMINAL_FAILURE_STATES:
                raise ProvisioningError(f"Provisioning of {path} ended in state {state}")

            elapsed = time.time() - start
            if elapsed > timeout:
                raise ProvisioningError(
                    f"Resource {path} not provisioned after {timeout}s (state: {state})"
                )

            logger.info(f"{path.rsplit('/', 1)[-1]}: {state} ({elapsed:.0f}s elapsed)")
            time.sleep(poll_interval)


def _error_body(resp: requests.Response) -> tuple[Optional[str], str]:
    """Extract ARM's ``{"error": {"code", "message"}}`` payload."""
    try:
        body = resp.json()
    except ValueError:
        return None, resp.text[:500]
    error = body.get("error", {})
    if isinstance(error, str):
        # Azure AD token endpoint: {"error": "invalid_client", "error_description": "..."}
        return error, body.get("error_description", resp.text[:500])
    return error.get("code"), error.get("message", resp.text[:500])


def _error_text(resp: requests.Response) -> str:
    code, message = _error_body(resp)
    return f"{code}: {message}" if code else message
