from __future__ import annotations

import base64
import logging
import uuid
from functools import partial
from typing import TYPE_CHECKING, Any

from azure.core.exceptions import AzureError
from azure.storage.blob import BlobBlock, BlobPrefix

from .errors import MetadataFetchError, StorageError
from .storage import (
    CONTENT_LENGTH,
    LAST_MODIFIED,
    MAX_RESULTS,
    MultipartSession,
    ObjectRef,
    StagedPart,
    StoredObject,
    format_timestamp,
)
from .tasks import run_sync

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from azure.storage.blob import BlobServiceClient

LOG = logging.getLogger("cloud_proxy.azure_blob")

AZURE_MAX_BLOCKS = 50000


def block_id(session_id: str, index: int) -> str:
    """Block id for part ``index``; all ids of one blob share the same length."""
    return base64.b64encode(f"{session_id}{index:05d}".encode()).decode("ascii")


class BlobStore:
    """Object storage backed by Azure Blob Storage block blobs.

    Multipart sessions map onto block staging: parts are staged as uncommitted
    blocks and assembled with a block list commit. Azure has no call that
    discards uncommitted blocks, so aborting a session only forgets it; the
    service garbage collects the blocks.
    """

    provider = "azure_blob"
    max_parts = AZURE_MAX_BLOCKS
    supports_range_copy = False

    def __init__(self, client: BlobServiceClient):
        self._client = client

    @property
    def client(self) -> BlobServiceClient:
        return self._client

    def _blob(self, ref: ObjectRef) -> Any:
        return self._client.get_blob_client(container=ref.container, blob=ref.key)

    async def list_files(
        self, container: str, max_results: int = MAX_RESULTS, prefix: str = ""
    ) -> list[str]:
        return await self._list(container, max_results, prefix, folders=False)

    async def list_folders(
        self, container: str, max_results: int = MAX_RESULTS, prefix: str = ""
    ) -> list[str]:
        return await self._list(container, max_results, prefix, folders=True)

    async def _list(
        self, container: str, max_results: int, prefix: str, *, folders: bool
    ) -> list[str]:
        if max_results <= 0:
            max_results = MAX_RESULTS
        try:
            return await run_sync(
                self._collect_listing, container, max_results, prefix, folders
            )
        except AzureError as error:
            msg = f"error listing contents of container {container}"
            raise StorageError(msg, error) from error

    def _collect_listing(
        self, container: str, max_results: int, prefix: str, folders: bool
    ) -> list[str]:
        container_client = self._client.get_container_client(container)
        items: list[str] = []
        for item in container_client.walk_blobs(name_starts_with=prefix, delimiter="/"):
            if isinstance(item, BlobPrefix) != folders:
                continue
            items.append(item.name)
            if len(items) >= max_results:
                break
        return items

    async def get_object(self, ref: ObjectRef) -> StoredObject:
        try:
            downloader = await run_sync(self._blob(ref).download_blob)
            content = await run_sync(downloader.readall)
        except AzureError as error:
            msg = f"unable to get file content {ref}"
            raise StorageError(msg, error) from error
        return StoredObject(
            ref=ref, metadata=self._metadata(downloader.properties), content=content
        )

    async def get_metadata(self, ref: ObjectRef) -> dict[str, str]:
        try:
            properties = await run_sync(self._blob(ref).get_blob_properties)
        except AzureError as error:
            msg = f"error getting blob metadata {ref}"
            raise MetadataFetchError(msg, error) from error
        return self._metadata(properties)

    @staticmethod
    def _metadata(properties: Any) -> dict[str, str]:
        metadata = dict(properties.metadata or {})
        if properties.last_modified is not None:
            metadata[LAST_MODIFIED] = format_timestamp(properties.last_modified)
        metadata[CONTENT_LENGTH] = str(properties.size or 0)
        return metadata

    async def read_object(self, ref: ObjectRef) -> bytes:
        return (await self.get_object(ref)).content

    async def read_range(self, ref: ObjectRef, offset: int, count: int) -> bytes:
        try:
            downloader = await run_sync(
                partial(self._blob(ref).download_blob, offset=offset, length=count)
            )
            return await run_sync(downloader.readall)
        except AzureError as error:
            msg = f"unable to read bytes {offset}-{offset + count - 1} of {ref}"
            raise StorageError(msg, error) from error

    async def put_object(
        self,
        ref: ObjectRef,
        data: bytes,
        metadata: Mapping[str, str] | None = None,
    ) -> None:
        try:
            await run_sync(
                partial(
                    self._blob(ref).upload_blob,
                    data,
                    overwrite=True,
                    metadata=dict(metadata or {}),
                )
            )
        except AzureError as error:
            msg = f"unable to save file {ref}"
            raise StorageError(msg, error) from error
        LOG.debug("uploaded blob %s (%d bytes)", ref, len(data))

    async def delete_object(self, ref: ObjectRef) -> None:
        try:
            await run_sync(self._blob(ref).delete_blob)
        except AzureError as error:
            msg = f"unable to delete blob {ref}"
            raise StorageError(msg, error) from error

    async def copy_object(self, source: ObjectRef, dest: ObjectRef) -> None:
        source_url = self._blob(source).url
        try:
            result = await run_sync(self._blob(dest).start_copy_from_url, source_url)
        except AzureError as error:
            msg = f"unable to copy blob {source} to {dest}"
            raise StorageError(msg, error) from error
        if result.get("copy_status") == "pending":
            LOG.info("copy of %s to %s is pending on the service", source, dest)

    async def open_multipart(
        self, ref: ObjectRef, metadata: Mapping[str, str]
    ) -> MultipartSession:
        return MultipartSession(
            session_id=str(uuid.uuid4()), ref=ref, metadata=dict(metadata)
        )

    async def stage_part(
        self, session: MultipartSession, index: int, data: bytes
    ) -> str:
        block = block_id(session.session_id, index)
        await run_sync(
            partial(self._blob(session.ref).stage_block, block_id=block, data=data)
        )
        return block

    async def stage_part_copy(
        self,
        session: MultipartSession,
        index: int,
        source: ObjectRef,
        offset: int,
        count: int,
    ) -> str:
        msg = (
            f"cannot stage part {index} of {session.ref} from {source}: "
            "server-side range copy needs a signed source URL"
        )
        raise StorageError(msg)

    async def commit(
        self, session: MultipartSession, parts: Sequence[StagedPart]
    ) -> None:
        await run_sync(
            partial(
                self._blob(session.ref).commit_block_list,
                [BlobBlock(block_id=part.token) for part in parts],
                metadata=session.metadata,
            )
        )

    async def abort(self, session: MultipartSession) -> None:
        LOG.info(
            "abandoned block staging %s for %s; uncommitted blocks expire on the "
            "service",
            session.session_id,
            session.ref,
        )
