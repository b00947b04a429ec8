"""Shared fixtures: an in-memory backend and storage served through httpx.MockTransport."""
import asyncio
import json
from typing import Dict, List, Optional, Set
from urllib.parse import parse_qs

import httpx
import pytest

from multipart_uploader.models import RetryPolicy, UploadConfig
from multipart_uploader.orchestrator import MultipartUploadOrchestrator
from multipart_uploader.services.api_client import BackendAPIClient
from multipart_uploader.services.transfer import PartTransferClient

API_ENDPOINT = "https://api.test/api/data/upload/start"
PART_URL_ENDPOINT = "https://api.test/api/data/upload/multipart/getPartUrl"
COMPLETE_ENDPOINT = "https://api.test/api/data/upload/complete"
STORAGE_URL = "https://storage.test/bucket/object"


async def no_sleep(delay: float) -> None:
    """Backoff sleep that only yields to the loop."""
    await asyncio.sleep(0)


class FakeBackend:
    """
    Records every request and answers like the upload API plus object storage.

    Knobs:
        start_response: body returned by START
        start_refusals: number of START connections refused first
        start_failures: number of 503s START answers next
        complete_refusals: number of COMPLETE connections refused first
        complete_lost_responses: number of COMPLETEs applied whose response times out
        omit_presigned_url: getPartUrl answers without a URL
        put_failures: part number -> number of 500s before a success
        fail_part_always: part number answered with 500 forever
        omit_etag: storage answers 200 without an ETag header
    """

    def __init__(self):
        self.start_response: Dict = {
            "file_id": "file-1",
            "upload_id": "upload-1",
            "collection_path": "collections/raw",
        }
        self.complete_response: Dict = {"status": "ok", "file_id": "file-1"}
        self.start_refusals = 0
        self.start_failures = 0
        self.complete_refusals = 0
        self.complete_lost_responses = 0
        self.omit_presigned_url = False
        self.put_failures: Dict[int, int] = {}
        self.fail_part_always: Optional[int] = None
        self.omit_etag = False

        self.calls: List[str] = []
        self.start_payloads: List[Dict] = []
        self.complete_payloads: List[Dict] = []
        self.completed_uploads: Set[str] = set()
        self.part_url_requests: List[int] = []
        self.put_attempts: Dict[int, int] = {}
        self.stored: Dict[int, bytes] = {}
        self.put_headers: Dict[int, httpx.Headers] = {}
        self.in_flight = 0
        self.peak_in_flight = 0

    @property
    def complete_called(self) -> bool:
        return "complete" in self.calls

    def assembled(self) -> bytes:
        return b"".join(self.stored[n] for n in sorted(self.stored))

    async def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url).split("?")[0]
        if request.method == "PUT":
            return await self._put(request)
        body = json.loads(request.content or b"{}")
        if url == API_ENDPOINT:
            self.calls.append("start")
            self.start_payloads.append(body)
            attempt = self.calls.count("start")
            if attempt <= self.start_refusals:
                raise httpx.ConnectError("connection refused", request=request)
            if attempt <= self.start_refusals + self.start_failures:
                return httpx.Response(503, text="warming up")
            return httpx.Response(200, json=self.start_response)
        if url == PART_URL_ENDPOINT:
            self.calls.append("part_url")
            self.part_url_requests.append(body["part_number"])
            if self.omit_presigned_url:
                return httpx.Response(200, json={})
            return httpx.Response(
                200, json={"presigned_url": f"{STORAGE_URL}?partNumber={body['part_number']}"}
            )
        if url == COMPLETE_ENDPOINT:
            self.calls.append("complete")
            self.complete_payloads.append(body)
            attempt = self.calls.count("complete")
            if attempt <= self.complete_refusals:
                raise httpx.ConnectError("connection refused", request=request)
            if body["upload_id"] in self.completed_uploads:
                return httpx.Response(404, json={"error": "NoSuchUpload"})
            self.completed_uploads.add(body["upload_id"])
            if attempt <= self.complete_refusals + self.complete_lost_responses:
                raise httpx.ReadTimeout("timed out", request=request)
            return httpx.Response(200, json=self.complete_response)
        return httpx.Response(404, json={"error": f"unknown endpoint {url}"})

    async def _put(self, request: httpx.Request) -> httpx.Response:
        number = int(parse_qs(request.url.query.decode())["partNumber"][0])
        self.put_attempts[number] = self.put_attempts.get(number, 0) + 1
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            if number == self.fail_part_always:
                return httpx.Response(500)
            if self.put_failures.get(number, 0) >= self.put_attempts[number]:
                return httpx.Response(500)
            self.stored[number] = request.content
            self.put_headers[number] = request.headers
            headers = {} if self.omit_etag else {"ETag": f'"etag-{number}"'}
            return httpx.Response(200, headers=headers)
        finally:
            self.in_flight -= 1


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def http_client(backend):
    return httpx.AsyncClient(transport=httpx.MockTransport(backend.handler))


@pytest.fixture
def api_client(http_client):
    return BackendAPIClient(API_ENDPOINT, "secret-token", client=http_client)


@pytest.fixture
def transfer_client(http_client):
    return PartTransferClient(http_client)


@pytest.fixture
def fast_config():
    """Small parts, no minimum, quick retries."""
    return UploadConfig(
        part_size=1024,
        min_part_size=0,
        min_concurrency=1,
        max_concurrency=4,
        api_retry=RetryPolicy(retries=2, base_delay=0.01, max_delay=0.05),
        part_retry=RetryPolicy(retries=3, base_delay=0.01, max_delay=0.05),
        progress_interval=0.0,
    )


@pytest.fixture
def make_orchestrator(api_client, transfer_client, fast_config):
    """Orchestrator wired to the fake backend; keyword arguments override config fields."""

    def factory(**overrides) -> MultipartUploadOrchestrator:
        return MultipartUploadOrchestrator(
            API_ENDPOINT,
            "secret-token",
            config=fast_config.with_overrides(**overrides),
            api_client=api_client,
            transfer_client=transfer_client,
            sleep=no_sleep,
        )

    return factory
