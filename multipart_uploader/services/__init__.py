"""Services for multipart uploader."""
from .api_client import BackendAPIClient
from .chunking import PartRange, count_parts, part_range, plan_parts, validate_plan
from .content_type import guess_content_type
from .file_source import BytesFileSource, LocalFileSource
from .hasher import StreamingHasher, hash_file
from .retry import RetryExecutor, execute, with_retry
from .transfer import PartTransferClient

__all__ = [
    "BackendAPIClient",
    "PartRange",
    "count_parts",
    "part_range",
    "plan_parts",
    "validate_plan",
    "guess_content_type",
    "BytesFileSource",
    "LocalFileSource",
    "StreamingHasher",
    "hash_file",
    "RetryExecutor",
    "execute",
    "with_retry",
    "PartTransferClient",
]
