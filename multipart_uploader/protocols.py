"""
Protocols (Interfaces) for Dependency Inversion.

Small, focused interfaces for the collaborators the upload engine consumes.
"""
from typing import Any, AsyncIterator, Callable, Dict, Optional, Protocol, runtime_checkable


@runtime_checkable
class IFileSource(Protocol):
    """Interface for the file being uploaded."""

    @property
    def name(self) -> str:
        ...

    @property
    def size(self) -> int:
        ...

    def iter_chunks(self, buffer_size: int) -> AsyncIterator[bytes]:
        """Yield the whole content once, in order. Each call starts over.

        Implementations are async generators; consumers close them early.
        """
        ...

    async def read_range(self, start: int, end: int) -> bytes:
        """Read ``[start, end)``; may be called repeatedly and out of order."""
        ...


@runtime_checkable
class IBackendAPI(Protocol):
    """Interface for the three logical backend calls."""

    async def start(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Open a multipart upload; returns ``file_id``/``upload_id``."""
        ...

    async def get_part_url(self, file_id: str, upload_id: str, part_number: int) -> str:
        """Presigned PUT URL for one part."""
        ...

    async def complete(self, payload: Dict[str, Any]) -> Any:
        """Finalize the upload; response is returned to the caller verbatim."""
        ...


@runtime_checkable
class IPartTransfer(Protocol):
    """Interface for putting one part's bytes to a presigned URL."""

    async def transfer(
        self,
        url: str,
        data: bytes,
        on_progress: Optional[Callable[[float], None]] = None,
    ) -> str:
        """Upload ``data`` and return the entity tag."""
        ...
