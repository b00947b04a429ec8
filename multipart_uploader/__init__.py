"""
Multipart uploader - presigned-URL multipart uploads with progress and retries.

Splits a file into parts, hashes it incrementally, uploads parts through an
adaptive pool of concurrent workers with backoff retries, and sequences the
backend protocol (START -> per-part PUT -> COMPLETE).

Usage:
    from multipart_uploader import MultipartUploadOrchestrator, UploadConfig

    async with MultipartUploadOrchestrator(api_endpoint, auth_token) as uploader:
        result = await uploader.upload_file(path, on_progress=print)

    if result.success:
        print(result.payload)       # backend COMPLETE response, verbatim
    else:
        print(result.error)         # human-readable message
"""
from .orchestrator import MultipartUploadOrchestrator, ProgressAggregator, AdaptiveWorkerPool
from .models import (
    ChecksumPolicy,
    ProgressSnapshot,
    RetryPolicy,
    SessionState,
    UploadConfig,
    UploadResult,
    UploadStatus,
)
from .errors import (
    BackendError,
    PartUploadError,
    ProtocolError,
    TransientError,
    UploadError,
    ValidationError,
)
from .services import (
    BackendAPIClient,
    BytesFileSource,
    LocalFileSource,
    PartTransferClient,
    RetryExecutor,
    StreamingHasher,
    plan_parts,
)

__version__ = "0.3.0"
__all__ = [
    # Main
    "MultipartUploadOrchestrator",
    "ProgressAggregator",
    "AdaptiveWorkerPool",
    # Models
    "ChecksumPolicy",
    "ProgressSnapshot",
    "RetryPolicy",
    "SessionState",
    "UploadConfig",
    "UploadResult",
    "UploadStatus",
    # Errors
    "UploadError",
    "ValidationError",
    "TransientError",
    "ProtocolError",
    "BackendError",
    "PartUploadError",
    # Services
    "BackendAPIClient",
    "BytesFileSource",
    "LocalFileSource",
    "PartTransferClient",
    "RetryExecutor",
    "StreamingHasher",
    "plan_parts",
]
