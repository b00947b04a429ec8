"""Content-type detection for the START request."""
import mimetypes
from pathlib import PurePath
from typing import Optional

DEFAULT_CONTENT_TYPE = "application/octet-stream"

# Types that say nothing useful about the content
_OPAQUE_TYPES = {DEFAULT_CONTENT_TYPE, "application/x-msdownload"}

OFFICE_TYPES = {
    ".doc": "application/msword",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".xls": "application/vnd.ms-excel",
    ".xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ".ppt": "application/vnd.ms-powerpoint",
    ".pptx": "application/vnd.openxmlformats-officedocument.presentationml.presentation",
}


def guess_content_type(name: str, declared: Optional[str] = None) -> str:
    """
    Pick a content type for ``name``.

    Office extensions win (platforms disagree on them), then a meaningful
    declared type, then the extension table, else octet-stream.
    """
    ext = PurePath(name).suffix.lower()
    if ext in OFFICE_TYPES:
        return OFFICE_TYPES[ext]

    if declared and declared not in _OPAQUE_TYPES:
        return declared

    guessed, _ = mimetypes.guess_type(name)
    if guessed and guessed not in _OPAQUE_TYPES:
        return guessed

    return DEFAULT_CONTENT_TYPE
