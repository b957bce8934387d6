from __future__ import annotations

from dataclasses import dataclass

from .errors import ConfigurationError


@dataclass(frozen=True)
class PartSpec:
    index: int
    offset: int
    count: int

    @property
    def end(self) -> int:
        """Inclusive offset of the last byte in this part."""
        return self.offset + self.count - 1


@dataclass(frozen=True)
class CopyPlan:
    total_length: int
    part_size: int
    parts: tuple[PartSpec, ...]

    def __len__(self) -> int:
        return len(self.parts)


def part_size_for(total_length: int, base_chunk_size: int, max_parts: int) -> int:
    """Smallest part size, no less than ``base_chunk_size``, within ``max_parts``."""
    return max(base_chunk_size, -(-total_length // max_parts))


def plan_copy(total_length: int, base_chunk_size: int, max_parts: int) -> CopyPlan:
    """Split ``[0, total_length)`` into contiguous, 1-indexed parts.

    Parts are ``part_size`` bytes long except the last, which takes whatever
    is left. The remainder is folded into the last part instead of becoming a
    trailing part of its own that could fall below the provider's minimum
    part size.
    """
    if total_length <= 0:
        msg = f"cannot plan a copy of {total_length} bytes"
        raise ConfigurationError(msg)
    if base_chunk_size <= 0:
        msg = f"base chunk size must be positive, got {base_chunk_size}"
        raise ConfigurationError(msg)
    if max_parts <= 0:
        msg = f"max parts must be positive, got {max_parts}"
        raise ConfigurationError(msg)

    part_size = part_size_for(total_length, base_chunk_size, max_parts)
    count = max(1, total_length // part_size)
    parts = []
    for number in range(1, count + 1):
        offset = (number - 1) * part_size
        length = part_size if number < count else total_length - offset
        parts.append(PartSpec(index=number, offset=offset, count=length))
    return CopyPlan(total_length=total_length, part_size=part_size, parts=tuple(parts))
