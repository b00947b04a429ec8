"""
Error taxonomy for multipart uploads.

Every expected failure the engine can produce maps to one of four kinds:
- validation: bad input/configuration, detected before any network call
- transient: network/timeout/5xx, retried with backoff (START and COMPLETE
  only when the request was never sent)
- protocol: contract violation (missing identifier, missing ETag), never retried
- backend: error reported by the backend in a JSON response, never retried

Anything else (a bug, an unexpected exception) is kind ``upload`` and is not
retried.
"""
import asyncio
from typing import Optional

import httpx


class UploadError(Exception):
    """Base class for upload engine errors."""

    kind = "upload"
    retryable = False


class ValidationError(UploadError):
    """File or part configuration is not uploadable."""

    kind = "validation"


class TransientError(UploadError):
    """Network, timeout or server-side failure worth retrying."""

    kind = "transient"
    retryable = True

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ProtocolError(UploadError):
    """Response violates the upload contract (storage/proxy misconfiguration)."""

    kind = "protocol"


class BackendError(UploadError):
    """Business error returned by the backend API (``error`` field)."""

    kind = "backend"


class PartUploadError(UploadError):
    """A part exhausted its retry budget or failed fatally."""

    def __init__(self, part_number: int, cause: BaseException):
        super().__init__(f"Part {part_number} failed: {cause}")
        self.part_number = part_number
        self.cause = cause

    @property
    def kind(self) -> str:
        return error_kind(self.cause)


TRANSPORT_ERRORS = (httpx.RequestError, asyncio.TimeoutError, TimeoutError)


def error_kind(exc: BaseException) -> str:
    """Classify any exception into the upload error taxonomy."""
    if isinstance(exc, UploadError):
        return exc.kind
    if isinstance(exc, TRANSPORT_ERRORS):
        return TransientError.kind
    return UploadError.kind


def is_retryable(exc: BaseException) -> bool:
    """Only transient errors and transport failures are retried."""
    if isinstance(exc, UploadError):
        return exc.retryable
    return isinstance(exc, TRANSPORT_ERRORS)


def request_not_sent(exc: BaseException) -> bool:
    """True when the request never reached the server.

    Non-idempotent calls (START, COMPLETE) are only repeated in this case:
    after a read timeout the server may already have acted on the request.
    """
    return isinstance(exc, (httpx.ConnectError, httpx.ConnectTimeout))
