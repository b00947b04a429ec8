"""Core orchestrator - sequences START, part transfers and COMPLETE."""
import asyncio
import functools
import logging
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import httpx

from ..errors import ProtocolError, UploadError, ValidationError, error_kind, request_not_sent
from ..models import (
    ChecksumPolicy,
    FilePart,
    SessionState,
    UploadConfig,
    UploadResult,
    UploadSession,
)
from ..protocols import IBackendAPI, IFileSource, IPartTransfer
from ..services.api_client import BackendAPIClient
from ..services.chunking import validate_plan
from ..services.content_type import guess_content_type
from ..services.file_source import LocalFileSource
from ..services.hasher import StreamingHasher
from ..services.retry import RetryExecutor
from ..services.transfer import PartTransferClient
from ..utils.events import EVENT_PART_DONE, EVENT_PART_FAILED, EVENT_STATE, UploadEvents
from .progress import ProgressAggregator, ProgressSink
from .scheduler import AdaptiveWorkerPool

logger = logging.getLogger(__name__)


class MultipartUploadOrchestrator:
    """
    Orchestrates presigned multipart uploads using injected services.

    Usage:
        async with MultipartUploadOrchestrator(endpoint, token) as uploader:
            result = await uploader.upload_file(path, on_progress=print)
            if result.success:
                print(result.payload)
            else:
                print(result.error)

    Upload failures never raise: every call ends in an ``UploadResult``.
    """

    def __init__(
        self,
        api_endpoint: str,
        auth_token: Optional[str] = None,
        config: Optional[UploadConfig] = None,
        api_client: Optional[IBackendAPI] = None,
        transfer_client: Optional[IPartTransfer] = None,
        sleep: Callable = asyncio.sleep,
    ):
        """
        Initialize orchestrator with dependencies.

        Args:
            api_endpoint: START endpoint; other endpoints resolve against its origin
            auth_token: Bearer token for backend calls
            config: Upload configuration
            api_client: Pre-built backend client (skips building one)
            transfer_client: Pre-built part transfer client (skips building one)
            sleep: Backoff sleep, injectable for tests
        """
        self._api_endpoint = api_endpoint
        self._auth_token = auth_token
        self._config = config or UploadConfig()
        self._external_api = api_client
        self._external_transfer = transfer_client

        self._api: Optional[IBackendAPI] = api_client
        self._transfer: Optional[IPartTransfer] = transfer_client
        self._owned_api: Optional[BackendAPIClient] = None
        self._storage_http: Optional[httpx.AsyncClient] = None

        self._api_executor = RetryExecutor(self._config.api_retry, sleep=sleep)
        self._part_executor = RetryExecutor(self._config.part_retry, sleep=sleep)
        self.events = UploadEvents()

    @property
    def config(self) -> UploadConfig:
        return self._config

    async def __aenter__(self):
        """Build HTTP clients unless injected."""
        if self._external_api is None:
            self._owned_api = BackendAPIClient(
                self._api_endpoint,
                self._auth_token,
                part_url_path=self._config.part_url_path,
                complete_path=self._config.complete_path,
                timeout=self._config.api_timeout,
            )
            await self._owned_api.__aenter__()
            self._api = self._owned_api

        if self._external_transfer is None:
            # No auth headers here: presigned URLs carry their own signature
            self._storage_http = httpx.AsyncClient(timeout=httpx.Timeout(self._config.api_timeout))
            self._transfer = PartTransferClient(
                self._storage_http,
                timeout_floor=self._config.part_timeout,
            )

        return self

    async def __aexit__(self, *args):
        """Cleanup resources."""
        if self._owned_api:
            await self._owned_api.__aexit__(*args)
            self._owned_api = None
        if self._storage_http:
            await self._storage_http.aclose()
            self._storage_http = None

    async def upload_file(self, path: Path, **kwargs) -> UploadResult:
        """Upload a local file. Accepts the keyword arguments of ``upload``."""
        path = Path(path)
        try:
            source = LocalFileSource(path)
        except OSError as e:
            return UploadResult.fail(path.name, f"Cannot read file: {e}", ValidationError.kind)
        return await self.upload(source, **kwargs)

    async def upload(
        self,
        source: IFileSource,
        on_progress: Optional[ProgressSink] = None,
        submission_id: Optional[str] = None,
        endpoint_params: Optional[Dict[str, Any]] = None,
        content_type: Optional[str] = None,
    ) -> UploadResult:
        """
        Upload one file through START -> parts -> COMPLETE.

        Args:
            source: File source
            on_progress: Callback receiving ProgressSnapshot (never awaited)
            submission_id: Optional submission id forwarded to START
            endpoint_params: Extra fields forwarded to START (``collection_name``
                is also forwarded to COMPLETE)
            content_type: Declared content type, if the caller knows one

        Returns:
            UploadResult carrying the COMPLETE response or an error message
        """
        if self._api is None or self._transfer is None:
            raise RuntimeError("MultipartUploadOrchestrator not initialized. Use 'async with' context.")

        config = self._config
        endpoint_params = dict(endpoint_params or {})
        session = UploadSession(
            filename=source.name,
            total_size=source.size,
            part_size=config.part_size,
        )
        aggregator = ProgressAggregator(
            source.size,
            on_progress,
            throttle=config.progress_interval,
            checksum_band=config.effective_checksum_band,
        )
        hash_task: Optional[asyncio.Task] = None

        try:
            # 1. Validate before touching the network
            validate_plan(
                session.total_size,
                session.part_size,
                min_part_size=config.min_part_size,
                max_parts=config.max_parts,
                max_file_size=config.max_file_size,
            )
            session.content_type = guess_content_type(source.name, content_type)
            logger.info(
                f"Uploading {source.name}: {session.total_size} bytes in "
                f"{session.total_parts} part(s) of {session.part_size} bytes"
            )
            hasher = StreamingHasher(
                config.checksum_algorithm,
                buffer_size=config.hash_buffer_size,
                yield_every=config.hash_yield_every,
            )
            aggregator.start()

            # 2. Checksum: up front, or alongside the transfer
            if config.checksum_policy is ChecksumPolicy.AT_START:
                session.checksum = await hasher.hash_source(source, aggregator.report_checksum)
            else:
                hash_task = asyncio.create_task(hasher.hash_source(source))

            # 3. START
            start_payload = {
                "file_name": source.name,
                "file_type": session.content_type,
                "file_size_bytes": session.total_size,
            }
            if config.checksum_policy is ChecksumPolicy.AT_START:
                start_payload["checksum_value"] = session.checksum
            if submission_id:
                start_payload["submission_id"] = submission_id
            start_payload.update(endpoint_params)

            # START and COMPLETE are not idempotent: repeat only unsent requests
            start_resp = await self._api_executor.run(
                lambda attempt: self._api.start(start_payload),
                label="START",
                retry_on=request_not_sent,
            )
            file_id = start_resp.get("file_id")
            upload_id = start_resp.get("upload_id")
            if not file_id or not upload_id:
                raise ProtocolError("START response is missing file_id or upload_id")
            session.assign_ids(str(file_id), str(upload_id))
            session.collection_path = start_resp.get("collection_path")
            await self._advance(session, SessionState.STARTED)

            # 4. Parts
            await self._advance(session, SessionState.UPLOADING)
            aggregator.begin_upload()
            pool = AdaptiveWorkerPool(
                session.total_size,
                session.part_size,
                functools.partial(self._upload_part, session, source, aggregator),
                min_concurrency=config.min_concurrency,
                max_concurrency=config.max_concurrency,
                on_part_done=functools.partial(self._part_done, session),
                on_part_failed=functools.partial(self._part_failed, session),
            )
            session.parts = await pool.run()
            await aggregator.aclose()

            # 5. COMPLETE
            await self._advance(session, SessionState.COMPLETING)
            if hash_task is not None:
                session.checksum = await hash_task
                hash_task = None

            complete_payload = {
                "file_id": session.file_id,
                "upload_id": session.upload_id,
                "parts": [part.to_payload() for part in session.parts],
                "file_name": source.name,
                "collection_name": endpoint_params.get("collection_name"),
                "collection_path": session.collection_path,
                "content_type": session.content_type,
                "checksum": session.checksum,
                "final_file_size": session.total_size,
            }
            response = await self._api_executor.run(
                lambda attempt: self._api.complete(complete_payload),
                label="COMPLETE",
                retry_on=request_not_sent,
            )

            await self._advance(session, SessionState.COMPLETED)
            logger.info(f"Upload complete: {source.name} ({len(session.parts)} parts)")
            return UploadResult.ok(session, response)

        except Exception as e:
            if isinstance(e, UploadError):
                logger.error(f"Upload failed for {source.name}: {e}")
            else:
                logger.exception(f"Upload failed for {source.name}: {e}")
            await self._abort(session, aggregator, hash_task)
            return UploadResult.fail(source.name, str(e) or type(e).__name__, error_kind(e), session)

    async def _upload_part(
        self,
        session: UploadSession,
        source: IFileSource,
        aggregator: ProgressAggregator,
        part: FilePart,
    ) -> str:
        """get-url -> read -> PUT for one part; returns the ETag."""
        number = part.part_number
        url = await self._api_executor.run(
            lambda attempt: self._api.get_part_url(session.file_id, session.upload_id, number),
            label=f"part {number} URL",
        )
        data = await source.read_range(part.start, part.end)

        def on_progress(fraction: float) -> None:
            part.uploaded_bytes = int(fraction * part.size)
            aggregator.report_part(number, part.uploaded_bytes)

        async def put(attempt: int) -> str:
            part.attempts = attempt + 1
            if attempt and part.uploaded_bytes:
                # retried from scratch
                part.uploaded_bytes = 0
                aggregator.report_part(number, 0)
            return await self._transfer.transfer(url, data, on_progress)

        etag = await self._part_executor.run(put, label=f"part {number} PUT")
        part.uploaded_bytes = part.size
        aggregator.report_part(number, part.size)
        return etag

    async def _part_done(self, session: UploadSession, part: FilePart) -> None:
        await self.events.emit(EVENT_PART_DONE, session, part)

    async def _part_failed(self, session: UploadSession, part: FilePart, error: BaseException) -> None:
        await self.events.emit(EVENT_PART_FAILED, session, part, error)

    async def _advance(self, session: UploadSession, state: SessionState) -> None:
        session.advance(state)
        logger.debug(f"Session {session.file_id or session.filename} -> {state.value}")
        await self.events.emit(EVENT_STATE, session)

    async def _abort(
        self,
        session: UploadSession,
        aggregator: ProgressAggregator,
        hash_task: Optional[asyncio.Task],
    ) -> None:
        if hash_task is not None and not hash_task.done():
            hash_task.cancel()
        if hash_task is not None:
            await asyncio.gather(hash_task, return_exceptions=True)
        if aggregator.running:
            await aggregator.aclose()
        if not session.is_terminal:
            await self._advance(session, SessionState.FAILED)
