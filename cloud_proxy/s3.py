from __future__ import annotations

import logging
from functools import partial
from typing import TYPE_CHECKING, Any

from botocore.exceptions import BotoCoreError, ClientError

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

LOG = logging.getLogger("cloud_proxy.s3")

S3_MAX_PARTS = 10000

SDK_ERRORS = (BotoCoreError, ClientError)


class S3Store:
    """Object storage backed by an S3 compatible service."""

    provider = "aws_s3"
    max_parts = S3_MAX_PARTS
    supports_range_copy = True

    def __init__(self, client: Any):
        self._client = client

    @property
    def client(self) -> Any:
        return self._client

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
        except SDK_ERRORS as error:
            msg = f"unable to list contents of bucket {container}"
            raise StorageError(msg, error) from error

    def _collect_listing(
        self, container: str, max_results: int, prefix: str, folders: bool
    ) -> list[str]:
        paginator = self._client.get_paginator("list_objects_v2")
        pages = paginator.paginate(
            Bucket=container,
            Prefix=prefix,
            Delimiter="/",
            PaginationConfig={"PageSize": max_results},
        )
        items: list[str] = []
        for page in pages:
            if folders:
                names = [p["Prefix"] for p in page.get("CommonPrefixes", [])]
            else:
                names = [o["Key"] for o in page.get("Contents", [])]
            for name in names:
                items.append(name)
                if len(items) >= max_results:
                    return items
        return items

    async def get_object(self, ref: ObjectRef) -> StoredObject:
        try:
            result = await run_sync(
                partial(self._client.get_object, Bucket=ref.container, Key=ref.key)
            )
            body = result["Body"]
            try:
                content = await run_sync(body.read)
            finally:
                await run_sync(body.close)
        except SDK_ERRORS as error:
            msg = f"unable to get file {ref}"
            raise StorageError(msg, error) from error
        return StoredObject(ref=ref, metadata=self._metadata(result), content=content)

    async def get_metadata(self, ref: ObjectRef) -> dict[str, str]:
        try:
            result = await run_sync(
                partial(self._client.head_object, Bucket=ref.container, Key=ref.key)
            )
        except SDK_ERRORS as error:
            msg = f"unable to get metadata for object {ref}"
            raise MetadataFetchError(msg, error) from error
        return self._metadata(result)

    @staticmethod
    def _metadata(result: Mapping[str, Any]) -> dict[str, str]:
        metadata = dict(result.get("Metadata") or {})
        if result.get("LastModified") is not None:
            metadata[LAST_MODIFIED] = format_timestamp(result["LastModified"])
        metadata[CONTENT_LENGTH] = str(result.get("ContentLength", 0))
        return metadata

    async def read_object(self, ref: ObjectRef) -> bytes:
        return (await self.get_object(ref)).content

    async def read_range(self, ref: ObjectRef, offset: int, count: int) -> bytes:
        byte_range = f"bytes={offset}-{offset + count - 1}"
        try:
            result = await run_sync(
                partial(
                    self._client.get_object,
                    Bucket=ref.container,
                    Key=ref.key,
                    Range=byte_range,
                )
            )
            body = result["Body"]
            try:
                return await run_sync(body.read)
            finally:
                await run_sync(body.close)
        except SDK_ERRORS as error:
            msg = f"unable to read {byte_range} of {ref}"
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
                    self._client.put_object,
                    Bucket=ref.container,
                    Key=ref.key,
                    Body=data,
                    Metadata=dict(metadata or {}),
                )
            )
        except SDK_ERRORS as error:
            msg = f"could not upload file {ref}"
            raise StorageError(msg, error) from error
        LOG.debug("uploaded s3://%s (%d bytes)", ref, len(data))

    async def delete_object(self, ref: ObjectRef) -> None:
        try:
            await run_sync(
                partial(self._client.delete_object, Bucket=ref.container, Key=ref.key)
            )
        except SDK_ERRORS as error:
            msg = f"unable to delete file {ref}"
            raise StorageError(msg, error) from error

    async def copy_object(self, source: ObjectRef, dest: ObjectRef) -> None:
        try:
            await run_sync(
                partial(
                    self._client.copy_object,
                    CopySource={"Bucket": source.container, "Key": source.key},
                    Bucket=dest.container,
                    Key=dest.key,
                )
            )
        except SDK_ERRORS as error:
            msg = f"unable to copy object {source} to {dest}"
            raise StorageError(msg, error) from error

    async def open_multipart(
        self, ref: ObjectRef, metadata: Mapping[str, str]
    ) -> MultipartSession:
        try:
            result = await run_sync(
                partial(
                    self._client.create_multipart_upload,
                    Bucket=ref.container,
                    Key=ref.key,
                    Metadata=dict(metadata),
                )
            )
        except SDK_ERRORS as error:
            msg = f"unable to create multipart upload for {ref}"
            raise StorageError(msg, error) from error
        return MultipartSession(
            session_id=result["UploadId"], ref=ref, metadata=dict(metadata)
        )

    async def stage_part(
        self, session: MultipartSession, index: int, data: bytes
    ) -> str:
        result = await run_sync(
            partial(
                self._client.upload_part,
                Bucket=session.ref.container,
                Key=session.ref.key,
                UploadId=session.session_id,
                PartNumber=index,
                Body=data,
            )
        )
        return result["ETag"]

    async def stage_part_copy(
        self,
        session: MultipartSession,
        index: int,
        source: ObjectRef,
        offset: int,
        count: int,
    ) -> str:
        result = await run_sync(
            partial(
                self._client.upload_part_copy,
                Bucket=session.ref.container,
                Key=session.ref.key,
                UploadId=session.session_id,
                PartNumber=index,
                CopySource={"Bucket": source.container, "Key": source.key},
                CopySourceRange=f"bytes={offset}-{offset + count - 1}",
            )
        )
        return result["CopyPartResult"]["ETag"]

    async def commit(
        self, session: MultipartSession, parts: Sequence[StagedPart]
    ) -> None:
        await run_sync(
            partial(
                self._client.complete_multipart_upload,
                Bucket=session.ref.container,
                Key=session.ref.key,
                UploadId=session.session_id,
                MultipartUpload={
                    "Parts": [
                        {"ETag": part.token, "PartNumber": part.index}
                        for part in parts
                    ]
                },
            )
        )

    async def abort(self, session: MultipartSession) -> None:
        await run_sync(
            partial(
                self._client.abort_multipart_upload,
                Bucket=session.ref.container,
                Key=session.ref.key,
                UploadId=session.session_id,
            )
        )
        LOG.info(
            "aborted multipart upload %s for s3://%s", session.session_id, session.ref
        )
