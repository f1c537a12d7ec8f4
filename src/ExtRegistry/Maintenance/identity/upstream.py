"""Lookup of public ids in an upstream extension gallery.

The gallery is queried with the same ``extensionquery`` call VS Code issues:
one filter with a target criterion (type 8) and an extension-name criterion
(type 7), page size 1. The first extension of the first result carries the
upstream ``extensionId`` and ``publisher.publisherId``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

import httpx

from ExtRegistry.Maintenance.errors import IOOperation, TransientIOError, create_io_retry_policy
from ExtRegistry.Maintenance.errors.tenacity_policies import is_transient_io_error

__all__ = ["PublicIds", "UpstreamLookup", "UpstreamRegistryClient", "API_VERSION"]

logger = logging.getLogger(__name__)

API_VERSION = "3.0-preview.1"
FILTER_TARGET = 8
FILTER_EXTENSION_NAME = 7
TARGET_VSCODE = "Microsoft.VisualStudio.Code"


@dataclass(frozen=True)
class PublicIds:
    namespace: Optional[str] = None
    extension: Optional[str] = None


class UpstreamLookup(Protocol):
    def lookup(self, namespace: str, extension: str) -> PublicIds:
        ...


def query_payload(qualified_name: str) -> Dict[str, Any]:
    return {
        "filters": [
            {
                "criteria": [
                    {"filterType": FILTER_TARGET, "value": TARGET_VSCODE},
                    {"filterType": FILTER_EXTENSION_NAME, "value": qualified_name},
                ],
                "pageNumber": 1,
                "pageSize": 1,
            }
        ]
    }


def parse_public_ids(document: Dict[str, Any]) -> PublicIds:
    results = document.get("results") or []
    if not results:
        return PublicIds()
    extensions = results[0].get("extensions") or []
    if not extensions:
        return PublicIds()
    upstream = extensions[0]
    publisher = upstream.get("publisher") or {}
    return PublicIds(namespace=publisher.get("publisherId"), extension=upstream.get("extensionId"))


class UpstreamRegistryClient:
    """``UpstreamLookup`` over HTTP.

    Returns empty ids when no gallery URL is configured or the gallery does not
    know the extension. Transient failures surface as ``TransientIOError`` after
    the per-call attempts.
    """

    def __init__(
        self,
        gallery_url: Optional[str],
        *,
        client: Optional[httpx.Client] = None,
        timeout_seconds: float = 30.0,
        io_attempts: int = 3,
        initial_wait_seconds: float = 0.5,
    ) -> None:
        self.gallery_url = gallery_url.rstrip("/") if gallery_url else None
        self._client = client or httpx.Client(timeout=timeout_seconds)
        self.io_attempts = io_attempts
        self.initial_wait_seconds = initial_wait_seconds

    def lookup(self, namespace: str, extension: str) -> PublicIds:
        if not self.gallery_url:
            return PublicIds()

        qualified_name = f"{namespace}.{extension}"
        url = f"{self.gallery_url}/extensionquery"
        headers = {"Accept": f"application/json;api-version={API_VERSION}"}
        policy = create_io_retry_policy(
            IOOperation.UPSTREAM,
            max_attempts=self.io_attempts,
            initial_wait_seconds=self.initial_wait_seconds,
        )
        try:
            for attempt in policy:
                with attempt:
                    response = self._client.post(
                        url, json=query_payload(qualified_name), headers=headers
                    )
                    if response.status_code == 404:
                        return PublicIds()
                    response.raise_for_status()
        except Exception as exc:
            if is_transient_io_error(exc):
                raise TransientIOError(
                    f"Upstream lookup of {qualified_name} failed: {exc}",
                    operation=IOOperation.UPSTREAM.name,
                    key=qualified_name,
                ) from exc
            raise

        try:
            document = response.json()
        except ValueError:
            logger.warning(f"Upstream returned invalid JSON for {qualified_name}")
            return PublicIds()
        ids = parse_public_ids(document)
        logger.debug(f"Upstream public ids of {qualified_name}: {ids}")
        return ids

    def close(self) -> None:
        self._client.close()
