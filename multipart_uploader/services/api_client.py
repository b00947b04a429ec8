"""HTTP adapter for the multipart upload backend API."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from ..errors import BackendError, ProtocolError, TransientError
from ..protocols import IBackendAPI

logger = logging.getLogger(__name__)

DEFAULT_PART_URL_PATH = "/api/data/upload/multipart/getPartUrl"
DEFAULT_COMPLETE_PATH = "/api/data/upload/complete"


def origin_of(url: str) -> str:
    """Scheme + host (+ port) of ``url``."""
    parsed = httpx.URL(url)
    return f"{parsed.scheme}://{parsed.netloc.decode('ascii')}"


class BackendAPIClient(IBackendAPI):
    """
    HTTP client adapter for the backend's JSON endpoints.

    Implements IBackendAPI protocol. Every call is an authenticated POST;
    retries are left to the caller (see services.retry), this class only
    classifies failures:

    - transport error / status >= 500: retryable
    - body with an ``error`` field: BackendError, verbatim
    - other 4xx or non-JSON body: BackendError / ProtocolError
    """

    def __init__(
        self,
        api_endpoint: str,
        auth_token: Optional[str] = None,
        part_url_path: str = DEFAULT_PART_URL_PATH,
        complete_path: str = DEFAULT_COMPLETE_PATH,
        timeout: float = 60,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._api_endpoint = api_endpoint
        self._auth_token = auth_token
        self._timeout = timeout
        self._part_url_endpoint = self._resolve(part_url_path)
        self._complete_endpoint = self._resolve(complete_path)
        self._client = client
        self._owns_client = client is None

    def _resolve(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{origin_of(self._api_endpoint)}/{path.lstrip('/')}"

    @property
    def headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._auth_token:
            headers["Authorization"] = f"Bearer {self._auth_token}"
        return headers

    async def __aenter__(self):
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self

    async def __aexit__(self, *args):
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def post(self, endpoint: str, json: Dict) -> Any:
        """POST JSON and return the decoded body."""
        if not self._client:
            raise RuntimeError("BackendAPIClient not initialized. Use 'async with' context.")

        response = await self._client.post(endpoint, json=json, headers=self.headers)

        if response.status_code >= 500:
            raise TransientError(
                f"API error {response.status_code} on POST {endpoint}",
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as exc:
            if response.status_code >= 400:
                raise BackendError(
                    f"API error {response.status_code} on POST {endpoint}: {response.text}"
                ) from exc
            raise ProtocolError(f"Non-JSON response from {endpoint}") from exc

        if isinstance(body, dict) and body.get("error"):
            raise BackendError(str(body["error"]))

        if response.status_code >= 400:
            raise BackendError(f"API error {response.status_code} on POST {endpoint}: {body}")

        return body

    async def start(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        body = await self.post(self._api_endpoint, payload)
        if not isinstance(body, dict):
            raise ProtocolError("START response is not a JSON object")
        return body

    async def get_part_url(self, file_id: str, upload_id: str, part_number: int) -> str:
        body = await self.post(
            self._part_url_endpoint,
            {"file_id": file_id, "upload_id": upload_id, "part_number": part_number},
        )
        url = body.get("presigned_url") if isinstance(body, dict) else None
        if not url:
            raise ProtocolError(f"Missing presigned_url for part {part_number}")
        return url

    async def complete(self, payload: Dict[str, Any]) -> Any:
        return await self.post(self._complete_endpoint, payload)
