"""
Models for multipart uploader.

Immutable dataclasses for results/config, mutable ones for per-upload state
owned by a single component.
"""
import os
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Optional, Dict, Any, List

from .errors import ProtocolError

KB = 1024
MB = 1024 * KB
GB = 1024 * MB
TB = 1024 * GB


class UploadStatus(Enum):
    """Terminal status of an upload call."""
    COMPLETED = "completed"
    FAILED = "failed"


class SessionState(Enum):
    """Lifecycle of one upload session (forward-only)."""
    CREATED = "created"
    STARTED = "started"
    UPLOADING = "uploading"
    COMPLETING = "completing"
    COMPLETED = "completed"
    FAILED = "failed"


_STATE_ORDER = [
    SessionState.CREATED,
    SessionState.STARTED,
    SessionState.UPLOADING,
    SessionState.COMPLETING,
    SessionState.COMPLETED,
]


class PartStatus(Enum):
    """Status of a single part."""
    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    DONE = "done"
    FAILED = "failed"


class ChecksumPolicy(Enum):
    """When the whole-file checksum is handed to the backend."""
    AT_START = "start"        # hash first, send with START
    AT_COMPLETE = "complete"  # hash alongside the upload, send with COMPLETE


@dataclass(frozen=True)
class RetryPolicy:
    """Capped exponential backoff settings."""
    retries: int
    base_delay: float
    max_delay: float

    def delay_for(self, attempt: int) -> float:
        """Un-jittered delay after a failed ``attempt`` (0-based)."""
        return min(self.max_delay, self.base_delay * (2 ** attempt))


@dataclass(frozen=True)
class UploadConfig:
    """Immutable configuration for upload operations."""
    part_size: int = 8 * MB
    min_part_size: int = 5 * MB
    max_parts: int = 10_000
    max_file_size: int = 5 * TB
    min_concurrency: int = 2
    max_concurrency: int = 8
    checksum_policy: ChecksumPolicy = ChecksumPolicy.AT_START
    checksum_algorithm: str = "sha256"
    checksum_band: int = 20  # percent of the bar used by hashing (AT_START only)
    hash_buffer_size: int = 1 * MB
    hash_yield_every: int = 8
    api_retry: RetryPolicy = RetryPolicy(retries=4, base_delay=0.4, max_delay=10.0)
    part_retry: RetryPolicy = RetryPolicy(retries=5, base_delay=0.6, max_delay=12.0)
    api_timeout: float = 60.0
    part_timeout: float = 15 * 60.0
    progress_interval: float = 0.15
    part_url_path: str = "/api/data/upload/multipart/getPartUrl"
    complete_path: str = "/api/data/upload/complete"

    def __post_init__(self):
        if self.min_concurrency < 1:
            raise ValueError("min_concurrency must be >= 1")
        if self.max_concurrency < self.min_concurrency:
            raise ValueError("max_concurrency must be >= min_concurrency")
        if not 0 <= self.checksum_band < 100:
            raise ValueError("checksum_band must be in [0, 100)")

    @property
    def effective_checksum_band(self) -> int:
        """Hashing only owns part of the bar when it runs before the upload."""
        if self.checksum_policy is ChecksumPolicy.AT_START:
            return self.checksum_band
        return 0

    def with_overrides(self, **overrides) -> "UploadConfig":
        """Copy with non-None overrides applied."""
        clean = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **clean) if clean else self

    @classmethod
    def from_env(cls, prefix: str = "UPLOADER_") -> "UploadConfig":
        """
        Build config from environment variables.

        Scalar fields map to ``{prefix}{FIELD_NAME}`` (e.g. UPLOADER_PART_SIZE).
        Unset or empty variables keep the default.
        """
        overrides: Dict[str, Any] = {}
        for f in fields(cls):
            raw = os.getenv(f"{prefix}{f.name.upper()}")
            if raw is None or raw.strip() == "":
                continue
            raw = raw.strip()
            default = f.default
            if isinstance(default, ChecksumPolicy):
                overrides[f.name] = ChecksumPolicy(raw.lower())
            elif isinstance(default, bool):
                overrides[f.name] = raw.lower() in {"1", "true", "yes", "on"}
            elif isinstance(default, int):
                overrides[f.name] = int(raw)
            elif isinstance(default, float):
                overrides[f.name] = float(raw)
            elif isinstance(default, str):
                overrides[f.name] = raw
        return cls(**overrides)


@dataclass
class FilePart:
    """One chunk of the file; owned by exactly one worker while in flight."""
    part_number: int
    start: int
    end: int
    status: PartStatus = PartStatus.PENDING
    uploaded_bytes: int = 0
    etag: Optional[str] = None
    attempts: int = 0

    @property
    def size(self) -> int:
        return self.end - self.start


@dataclass(frozen=True)
class PartResult:
    """Result of a successfully uploaded part."""
    part_number: int
    etag: str

    def to_payload(self) -> Dict[str, Any]:
        return {"PartNumber": self.part_number, "ETag": self.etag}


@dataclass(frozen=True)
class ProgressSnapshot:
    """Progress reported to the caller; percent never decreases within one upload."""
    percent: int
    phase: str  # "checksum" | "upload"
    uploaded_bytes: int
    total_bytes: int
    eta_seconds: Optional[int] = None


@dataclass
class UploadSession:
    """
    State of one upload attempt.

    Owned and mutated only by the orchestrator.
    """
    filename: str
    total_size: int
    part_size: int
    content_type: str = "application/octet-stream"
    state: SessionState = SessionState.CREATED
    file_id: Optional[str] = None
    upload_id: Optional[str] = None
    collection_path: Optional[str] = None
    checksum: Optional[str] = None
    parts: List[PartResult] = field(default_factory=list)

    @property
    def total_parts(self) -> int:
        if self.total_size <= 0:
            return 1
        return -(-self.total_size // self.part_size)

    @property
    def is_terminal(self) -> bool:
        return self.state in (SessionState.COMPLETED, SessionState.FAILED)

    def assign_ids(self, file_id: str, upload_id: str) -> None:
        """Set backend identifiers once."""
        if self.file_id is not None or self.upload_id is not None:
            raise ProtocolError("Session identifiers already assigned")
        self.file_id = file_id
        self.upload_id = upload_id

    def advance(self, state: SessionState) -> None:
        """Move forward in the lifecycle; FAILED is reachable from any non-terminal state."""
        if self.is_terminal:
            raise ValueError(f"Session already {self.state.value}")
        if state is SessionState.FAILED:
            self.state = state
            return
        if _STATE_ORDER.index(state) <= _STATE_ORDER.index(self.state):
            raise ValueError(f"Cannot move from {self.state.value} to {state.value}")
        self.state = state


@dataclass(frozen=True)
class UploadResult:
    """Immutable result of an upload operation."""
    filename: str
    status: UploadStatus = UploadStatus.COMPLETED
    file_id: Optional[str] = None
    upload_id: Optional[str] = None
    parts: int = 0
    payload: Optional[Any] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status == UploadStatus.COMPLETED

    @classmethod
    def ok(cls, session: UploadSession, payload: Any):
        return cls(
            filename=session.filename,
            status=UploadStatus.COMPLETED,
            file_id=session.file_id,
            upload_id=session.upload_id,
            parts=len(session.parts),
            payload=payload,
        )

    @classmethod
    def fail(cls, filename: str, error: str, kind: str = "upload", session: UploadSession = None):
        return cls(
            filename=filename,
            status=UploadStatus.FAILED,
            file_id=session.file_id if session else None,
            upload_id=session.upload_id if session else None,
            error=error,
            error_kind=kind,
        )
