"""Directus REST transport over requests."""

from __future__ import annotations

import json
import re
from typing import Any, Optional

import requests

from dxmigrate.errors import ConnectivityError, DirectusError, FetchError, RemoteWriteError
from dxmigrate.models.config import ConnectionConfig
from dxmigrate.transport.base import Transport

SYSTEM_ENDPOINTS = {
    "roles": "/roles",
    "policies": "/policies",
    "permissions": "/permissions",
    "access": "/access",
    "folders": "/folders",
    "files": "/files",
    "collections": "/collections",
    "relations": "/relations",
    "fields": "/fields",
}


class DirectusClient(Transport):
    def __init__(
        self,
        url: str,
        token: str = "",
        timeout: int = 60,
        session: Optional[requests.Session] = None,
    ):
        self.url = url.rstrip("/")
        self.token = re.sub(r"^Bearer\s+", "", token or "", flags=re.IGNORECASE)
        self.timeout = timeout
        self.session = session or requests.Session()

    @classmethod
    def login(
        cls,
        url: str,
        email: str,
        password: str,
        timeout: int = 60,
        session: Optional[requests.Session] = None,
    ) -> "DirectusClient":
        """Exchange credentials for an access token and return an authenticated client."""
        anonymous = cls(url, timeout=timeout, session=session)
        try:
            data = anonymous._request("POST", "/auth/login", body={"email": email, "password": password})
        except DirectusError as e:
            raise ConnectivityError(f"Login failed: {e.message}") from e

        token = (data or {}).get("access_token")
        if not token:
            raise ConnectivityError("Login failed: no access token received")
        return cls(url, token=token, timeout=timeout, session=anonymous.session)

    def endpoint(self, entity_type: str) -> str:
        return SYSTEM_ENDPOINTS.get(entity_type, f"/items/{entity_type}")

    def list(self, entity_type: str, params: Optional[dict[str, Any]] = None) -> list[dict]:
        query = {"limit": -1}
        query.update(params or {})
        data = self._request("GET", self.endpoint(entity_type), params=query)
        if data is None:
            return []
        return data if isinstance(data, list) else [data]

    def create(self, entity_type: str, body: dict[str, Any]) -> dict:
        return self._request("POST", self.endpoint(entity_type), body=body) or {}

    def update(self, entity_type: str, record_id: Any, body: dict[str, Any]) -> dict:
        return self._request("PATCH", f"{self.endpoint(entity_type)}/{record_id}", body=body) or {}

    def import_file(self, url: str, metadata: dict[str, Any]) -> dict:
        payload: dict[str, Any] = {"url": url}
        if metadata:
            payload["data"] = metadata
        return self._request("POST", "/files/import", body=payload) or {}

    def check_connection(self) -> dict:
        try:
            return self._request("GET", "/server/info") or {}
        except DirectusError as e:
            raise ConnectivityError(f"{self.url}: {e.message}") from e

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[dict[str, Any]] = None,
        body: Optional[dict[str, Any]] = None,
    ) -> Any:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        try:
            response = self.session.request(
                method,
                f"{self.url}{path}",
                params=_encode_params(params),
                json=body,
                headers=headers,
                timeout=self.timeout,
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            raise ConnectivityError(f"{self.url} unreachable: {e}") from e

        if response.status_code == 401:
            raise ConnectivityError(f"{self.url}: authentication rejected (HTTP 401)")

        if not response.ok:
            details = _safe_json(response)
            message = _error_message(details) or f"HTTP {response.status_code}: {response.reason}"
            error_cls = FetchError if method == "GET" else RemoteWriteError
            raise error_cls(message, status=response.status_code, details=details)

        if response.status_code == 204 or not response.content:
            return None
        payload = _safe_json(response)
        if isinstance(payload, dict) and "data" in payload:
            return payload["data"]
        return payload


def get_transport(config: ConnectionConfig) -> DirectusClient:
    """Build an authenticated client from a connection config."""
    if config.uses_login:
        return DirectusClient.login(config.url, config.email, config.password, timeout=config.timeout)
    return DirectusClient(config.url, token=config.token, timeout=config.timeout)


def _encode_params(params: Optional[dict[str, Any]]) -> Optional[dict[str, str]]:
    if not params:
        return None
    encoded = {}
    for key, value in params.items():
        if value is None:
            continue
        encoded[key] = json.dumps(value) if isinstance(value, (dict, list)) else str(value)
    return encoded


def _safe_json(response: requests.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return {"raw": response.text}


def _error_message(details: Any) -> str:
    """Pull the first message out of a Directus error envelope."""
    if not isinstance(details, dict):
        return ""
    errors = details.get("errors")
    if isinstance(errors, list) and errors and isinstance(errors[0], dict):
        return errors[0].get("message", "")
    return details.get("message") or details.get("error") or ""
