from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

MAX_RESULTS = 500
CONTENT_LENGTH = "content_length"
LAST_MODIFIED = "last_modified"
DERIVED_METADATA_KEYS = frozenset({CONTENT_LENGTH, LAST_MODIFIED})


@dataclass(frozen=True)
class ObjectRef:
    """An object addressed by container (bucket) and key (blob name)."""

    container: str
    key: str

    def __str__(self) -> str:
        return f"{self.container}/{self.key}"


@dataclass(frozen=True)
class StoredObject:
    ref: ObjectRef
    metadata: dict[str, str]
    content: bytes


@dataclass(frozen=True)
class MultipartSession:
    session_id: str
    ref: ObjectRef
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class StagedPart:
    index: int
    token: str


@runtime_checkable
class ObjectStore(Protocol):
    """Capabilities shared by every object storage provider."""

    provider: str
    max_parts: int
    supports_range_copy: bool

    async def list_files(
        self, container: str, max_results: int = MAX_RESULTS, prefix: str = ""
    ) -> list[str]: ...

    async def list_folders(
        self, container: str, max_results: int = MAX_RESULTS, prefix: str = ""
    ) -> list[str]: ...

    async def get_object(self, ref: ObjectRef) -> StoredObject: ...

    async def get_metadata(self, ref: ObjectRef) -> dict[str, str]: ...

    async def read_object(self, ref: ObjectRef) -> bytes: ...

    async def read_range(self, ref: ObjectRef, offset: int, count: int) -> bytes: ...

    async def put_object(
        self,
        ref: ObjectRef,
        data: bytes,
        metadata: Mapping[str, str] | None = None,
    ) -> None: ...

    async def delete_object(self, ref: ObjectRef) -> None: ...

    async def copy_object(self, source: ObjectRef, dest: ObjectRef) -> None: ...

    async def open_multipart(
        self, ref: ObjectRef, metadata: Mapping[str, str]
    ) -> MultipartSession: ...

    async def stage_part(
        self, session: MultipartSession, index: int, data: bytes
    ) -> str: ...

    async def stage_part_copy(
        self,
        session: MultipartSession,
        index: int,
        source: ObjectRef,
        offset: int,
        count: int,
    ) -> str: ...

    async def commit(
        self, session: MultipartSession, parts: Sequence[StagedPart]
    ) -> None: ...

    async def abort(self, session: MultipartSession) -> None: ...


def format_timestamp(value: datetime) -> str:
    aware = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    return aware.astimezone(UTC).isoformat()


def carried_metadata(metadata: Mapping[str, str]) -> dict[str, str]:
    """User metadata to copy onto a destination object."""
    return {k: v for k, v in metadata.items() if k not in DERIVED_METADATA_KEYS}
