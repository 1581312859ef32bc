"""Cloudflare DNS API client built on requests."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

import requests

from .config import DEFAULT_API_URL
from .models import AuthorizationError, ProviderError, RemoteRecord

LOG = logging.getLogger("haproxy_ctl.cloudflare")

# Cloudflare error codes for missing, malformed or rejected credentials.
AUTH_ERROR_CODES = frozenset({9103, 9106, 9107, 9109, 10000})


class DnsProvider(ABC):
    """Operations the reconciler needs from a DNS provider."""

    @abstractmethod
    def get_zone(self, zone_id: str) -> dict[str, Any]:
        """Return zone metadata; proves credentials and reachability."""

    @abstractmethod
    def find_zone_id(self, zone_name: str) -> str:
        """Return the provider id for a zone name."""

    @abstractmethod
    def list_records(self, zone_id: str, per_page: int = 1000) -> list[RemoteRecord]:
        """Return every record of the zone in provider order."""

    @abstractmethod
    def create_record(self, zone_id: str, payload: dict[str, Any]) -> RemoteRecord:
        """Create a record."""

    @abstractmethod
    def update_record(self, zone_id: str, record_id: str, payload: dict[str, Any]) -> RemoteRecord:
        """Overwrite an existing record."""

    @abstractmethod
    def delete_record(self, zone_id: str, record_id: str) -> None:
        """Delete a record by id."""


def _error_text(payload: dict[str, Any]) -> str:
    errors = payload.get("errors") or []
    parts = [f"{err.get('code')}: {err.get('message')}" for err in errors if isinstance(err, dict)]
    return "; ".join(parts) or "no error detail"


def _is_auth_failure(status_code: int, payload: dict[str, Any]) -> bool:
    if status_code in (401, 403):
        return True
    for err in payload.get("errors") or []:
        if isinstance(err, dict) and err.get("code") in AUTH_ERROR_CODES:
            return True
    return False


def record_from_api(data: dict[str, Any]) -> RemoteRecord:
    """Convert an API record object into a RemoteRecord."""
    return RemoteRecord(
        id=str(data.get("id", "")),
        name=str(data.get("name", "")),
        type=str(data.get("type", "")),
        content=str(data.get("content", "")),
        proxied=bool(data.get("proxied", False)),
        ttl=int(data.get("ttl") or 1),
        comment=data.get("comment") or "",
    )


class CloudflareClient(DnsProvider):
    """Thin wrapper over the Cloudflare v4 REST API."""

    def __init__(self, api_token: str, api_url: str = DEFAULT_API_URL, timeout: float = 10.0):
        self._api_url = api_url.rstrip("/")
        self._timeout = timeout
        self._session = requests.Session()
        self._session.headers.update(
            {
                "Authorization": f"Bearer {api_token}",
                "Content-Type": "application/json",
            }
        )

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        """Send a request and return the decoded envelope, raising on failure."""
        url = f"{self._api_url}{path}"
        try:
            response = self._session.request(method, url, timeout=self._timeout, **kwargs)
        except requests.exceptions.RequestException as exc:
            raise ProviderError(f"{method} {path} failed: {exc}") from exc

        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {}

        if _is_auth_failure(response.status_code, payload):
            raise AuthorizationError(
                f"{method} {path} rejected credentials ({response.status_code}): {_error_text(payload)}",
                status_code=response.status_code,
            )
        if not response.ok or not payload.get("success", False):
            raise ProviderError(
                f"{method} {path} failed ({response.status_code}): {_error_text(payload)}",
                status_code=response.status_code,
            )
        return payload

    def get_zone(self, zone_id: str) -> dict[str, Any]:
        """Return zone metadata for a zone id."""
        payload = self._request("GET", f"/zones/{zone_id}")
        return payload.get("result") or {}

    def find_zone_id(self, zone_name: str) -> str:
        """Look up a zone id by zone name."""
        payload = self._request("GET", "/zones", params={"name": zone_name})
        result = payload.get("result") or []
        if not result:
            raise ProviderError(f"Zone {zone_name} not found in this account.")
        return str(result[0]["id"])

    def list_records(self, zone_id: str, per_page: int = 1000) -> list[RemoteRecord]:
        """Return every DNS record of the zone, following pagination."""
        records: list[RemoteRecord] = []
        page = 1
        while True:
            payload = self._request(
                "GET",
                f"/zones/{zone_id}/dns_records",
                params={"per_page": per_page, "page": page},
            )
            batch = payload.get("result") or []
            records.extend(record_from_api(item) for item in batch)
            total_pages = int((payload.get("result_info") or {}).get("total_pages") or 1)
            if not batch or page >= total_pages:
                break
            page += 1
        LOG.debug("Fetched %s records for zone %s", len(records), zone_id)
        return records

    def create_record(self, zone_id: str, payload: dict[str, Any]) -> RemoteRecord:
        """Create a DNS record."""
        response = self._request("POST", f"/zones/{zone_id}/dns_records", json=payload)
        return record_from_api(response.get("result") or {})

    def update_record(self, zone_id: str, record_id: str, payload: dict[str, Any]) -> RemoteRecord:
        """Overwrite a DNS record by id."""
        response = self._request("PUT", f"/zones/{zone_id}/dns_records/{record_id}", json=payload)
        return record_from_api(response.get("result") or {})

    def delete_record(self, zone_id: str, record_id: str) -> None:
        """Delete a DNS record by id."""
        self._request("DELETE", f"/zones/{zone_id}/dns_records/{record_id}")
