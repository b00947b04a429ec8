"""Chunk planning: split a file size into contiguous part ranges."""
from dataclasses import dataclass
from typing import List, Optional

from ..errors import ValidationError


@dataclass(frozen=True)
class PartRange:
    """Byte range ``[start, end)`` of one part."""
    part_number: int
    start: int
    end: int

    @property
    def length(self) -> int:
        return self.end - self.start


def count_parts(total_size: int, part_size: int) -> int:
    """
    Number of parts for a file.

    A zero-byte file still has one (empty) part.
    """
    if part_size <= 0:
        raise ValidationError(f"part_size must be positive, got {part_size}")
    if total_size <= 0:
        return 1
    return -(-total_size // part_size)


def part_range(part_number: int, total_size: int, part_size: int) -> PartRange:
    """Compute the range of a single part (1-based)."""
    total_parts = count_parts(total_size, part_size)
    if not 1 <= part_number <= total_parts:
        raise ValueError(f"part_number {part_number} out of range 1..{total_parts}")
    start = (part_number - 1) * part_size
    end = min(start + part_size, total_size)
    return PartRange(part_number, start, end)


def plan_parts(total_size: int, part_size: int) -> List[PartRange]:
    """
    Plan all parts of a file.

    Args:
        total_size: File size in bytes (>= 0)
        part_size: Configured part size in bytes (> 0)

    Returns:
        Ordered ranges tiling ``[0, total_size)`` without gaps or overlaps
    """
    if total_size < 0:
        raise ValidationError(f"total_size must be >= 0, got {total_size}")
    total_parts = count_parts(total_size, part_size)
    return [part_range(n, total_size, part_size) for n in range(1, total_parts + 1)]


def validate_plan(
    total_size: int,
    part_size: int,
    min_part_size: int = 0,
    max_parts: Optional[int] = None,
    max_file_size: Optional[int] = None,
) -> int:
    """
    Fail fast on an unuploadable file/part configuration.

    Returns:
        Number of parts the upload will use
    """
    if total_size < 0:
        raise ValidationError(f"File size must be >= 0, got {total_size}")
    if max_file_size is not None and total_size > max_file_size:
        raise ValidationError(
            f"File too large: {total_size} bytes exceeds limit of {max_file_size} bytes"
        )
    if part_size <= 0:
        raise ValidationError(f"part_size must be positive, got {part_size}")
    if part_size < min_part_size:
        raise ValidationError(
            f"part_size {part_size} is below the protocol minimum of {min_part_size} bytes"
        )

    total_parts = count_parts(total_size, part_size)
    if max_parts is not None and total_parts > max_parts:
        raise ValidationError(
            f"{total_parts} parts exceeds the protocol maximum of {max_parts}; "
            f"increase part_size"
        )
    return total_parts
