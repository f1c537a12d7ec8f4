"""HTTP object-store backend (GET/PUT/DELETE under a base URL)."""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from ExtRegistry.Maintenance.config import STORAGE_REMOTE

logger = logging.getLogger(__name__)


class HttpArtifactStore:
    """Backend for the ``remote`` storage type.

    Any object store exposing plain HTTP verbs on ``<base_url>/<key>`` works
    (S3-compatible gateways, WebDAV, a static blob service). A 404 on fetch is
    reported as ``FileNotFoundError``; other HTTP errors propagate as
    ``httpx.HTTPStatusError`` for the retry policy to classify.
    """

    def __init__(
        self,
        base_url: str,
        *,
        client: Optional[httpx.Client] = None,
        timeout_seconds: float = 30.0,
    ):
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.Client(timeout=timeout_seconds)

    def name(self) -> str:
        return STORAGE_REMOTE

    def _url(self, key: str) -> str:
        return f"{self.base_url}/{key.lstrip('/')}"

    def fetch(self, key: str) -> bytes:
        response = self._client.get(self._url(key))
        if response.status_code == 404:
            raise FileNotFoundError(key)
        response.raise_for_status()
        return response.content

    def store(self, key: str, data: bytes, content_type: Optional[str] = None) -> None:
        headers = {"Content-Type": content_type or "application/octet-stream"}
        response = self._client.put(self._url(key), content=data, headers=headers)
        response.raise_for_status()
        logger.debug(f"Uploaded {len(data)} bytes to {self._url(key)}")

    def delete(self, key: str) -> None:
        response = self._client.delete(self._url(key))
        if response.status_code == 404:
            return
        response.raise_for_status()

    def close(self) -> None:
        self._client.close()
