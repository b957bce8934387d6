from __future__ import annotations

import logging
from functools import partial
from typing import TYPE_CHECKING, BinaryIO

import anyio

from .errors import (
    CommitError,
    ConfigurationError,
    MetadataFetchError,
    StagingError,
    StorageError,
)
from .planning import CopyPlan, PartSpec, plan_copy
from .settings import CopySettings
from .storage import CONTENT_LENGTH, StagedPart, carried_metadata
from .tasks import TaskFailure, run_bounded, run_sync

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping

    from .storage import MultipartSession, ObjectRef, ObjectStore

LOG = logging.getLogger("cloud_proxy.transfer")


def _read_exactly(stream: BinaryIO, count: int) -> bytes:
    chunks: list[bytes] = []
    remaining = count
    while remaining > 0:
        chunk = stream.read(remaining)
        if not chunk:
            break
        chunks.append(chunk)
        remaining -= len(chunk)
    data = b"".join(chunks)
    if len(data) != count:
        msg = f"stream ended after {len(data)} of {count} expected bytes"
        raise StorageError(msg)
    return data


class ChunkedCopyEngine:
    """Copy objects between stores, splitting large ones into parts.

    Objects below ``large_object_threshold`` are copied in one call. Larger
    objects go through a multipart session on the destination: the parts are
    staged concurrently, at most ``concurrency`` at a time, and then committed
    in index order. If any part fails, or the copy is cancelled while parts
    are being staged, the session is aborted and nothing is committed.

    The same machinery serves concurrent ranged downloads (:meth:`read_large`)
    and multipart uploads from a byte stream (:meth:`upload_stream`).
    """

    def __init__(self, settings: CopySettings | None = None):
        self._settings = settings or CopySettings()

    @property
    def settings(self) -> CopySettings:
        return self._settings

    async def copy(
        self,
        source: ObjectStore,
        source_ref: ObjectRef,
        dest: ObjectStore,
        dest_ref: ObjectRef,
        *,
        concurrency: int | None = None,
    ) -> None:
        metadata = await self._source_metadata(source, source_ref)
        total_length = self._content_length(metadata, source_ref)
        if total_length < self._settings.large_object_threshold:
            await self._copy_small(source, source_ref, dest, dest_ref, metadata)
            return

        await self.copy_large(
            source,
            source_ref,
            dest,
            dest_ref,
            total_length,
            metadata=metadata,
            concurrency=concurrency,
        )

    @staticmethod
    async def _source_metadata(source: ObjectStore, ref: ObjectRef) -> dict[str, str]:
        try:
            return await source.get_metadata(ref)
        except MetadataFetchError:
            raise
        except Exception as error:
            msg = f"unable to read source file metadata {ref}"
            raise MetadataFetchError(msg, error) from error

    @staticmethod
    def _content_length(metadata: Mapping[str, str], ref: ObjectRef) -> int:
        raw = metadata.get(CONTENT_LENGTH)
        if raw is None:
            msg = f"missing content length for {ref}"
            raise ConfigurationError(msg)
        try:
            length = int(raw)
        except ValueError:
            msg = f"invalid content length {raw!r} for {ref}"
            raise ConfigurationError(msg) from None
        if length < 0:
            msg = f"invalid content length {raw!r} for {ref}"
            raise ConfigurationError(msg)
        return length

    @staticmethod
    def _concurrency(requested: int | None, default: int) -> int:
        concurrency = default if requested is None else requested
        if concurrency < 1:
            msg = f"concurrency must be at least 1, got {concurrency}"
            raise ConfigurationError(msg)
        return concurrency

    async def _copy_small(
        self,
        source: ObjectStore,
        source_ref: ObjectRef,
        dest: ObjectStore,
        dest_ref: ObjectRef,
        metadata: Mapping[str, str],
    ) -> None:
        if source is dest:
            LOG.debug("copying %s to %s server-side", source_ref, dest_ref)
            await dest.copy_object(source_ref, dest_ref)
            return
        LOG.debug(
            "copying %s (%s) to %s (%s) in one request",
            source_ref,
            source.provider,
            dest_ref,
            dest.provider,
        )
        content = await source.read_object(source_ref)
        await dest.put_object(dest_ref, content, carried_metadata(metadata))

    async def copy_large(
        self,
        source: ObjectStore,
        source_ref: ObjectRef,
        dest: ObjectStore,
        dest_ref: ObjectRef,
        total_length: int,
        *,
        metadata: Mapping[str, str] | None = None,
        concurrency: int | None = None,
    ) -> CopyPlan:
        """Copy ``total_length`` bytes of ``source_ref`` as a multipart upload.

        Returns:
            The plan the copy was executed with.

        Raises:
            ConfigurationError: Invalid length or concurrency, before any
                remote call.
            StagingError: A part failed; the session was aborted.
            CommitError: Every part was staged but the commit failed.
        """
        concurrency = self._concurrency(
            concurrency,
            self._settings.same_provider_concurrency
            if source is dest
            else self._settings.concurrency,
        )
        plan = plan_copy(total_length, self._settings.base_chunk_size, dest.max_parts)

        range_copy = source is dest and dest.supports_range_copy
        LOG.info(
            "copying %s to %s in %d part(s) of %d bytes (size=%d, concurrency=%d, "
            "mode=%s)",
            source_ref,
            dest_ref,
            len(plan),
            plan.part_size,
            total_length,
            concurrency,
            "range-copy" if range_copy else "read-stage",
        )

        session = await dest.open_multipart(dest_ref, carried_metadata(metadata or {}))

        async def stage(part: PartSpec) -> StagedPart:
            if range_copy:
                token = await dest.stage_part_copy(
                    session, part.index, source_ref, part.offset, part.count
                )
            else:
                data = await source.read_range(source_ref, part.offset, part.count)
                token = await dest.stage_part(session, part.index, data)
            LOG.debug("staged part %d of %s", part.index, dest_ref)
            return StagedPart(index=part.index, token=token)

        await self._stage_and_commit(dest, session, plan, stage, concurrency)
        LOG.info("copied %s to %s (%d bytes)", source_ref, dest_ref, total_length)
        return plan

    async def read_large(
        self,
        source: ObjectStore,
        source_ref: ObjectRef,
        total_length: int | None = None,
        *,
        concurrency: int | None = None,
    ) -> bytes:
        """Download an object with concurrent ranged reads.

        ``total_length`` is read from the object metadata when not given.

        Raises:
            ConfigurationError: Invalid length or concurrency.
            StorageError: A ranged read failed; the remaining reads are
                cancelled.
        """
        concurrency = self._concurrency(concurrency, self._settings.concurrency)
        if total_length is None:
            metadata = await self._source_metadata(source, source_ref)
            total_length = self._content_length(metadata, source_ref)
        if total_length == 0:
            return b""
        plan = plan_copy(
            total_length, self._settings.base_chunk_size, source.max_parts
        )
        LOG.info(
            "downloading %s in %d part(s) of %d bytes (concurrency=%d)",
            source_ref,
            len(plan),
            plan.part_size,
            concurrency,
        )

        jobs = [
            partial(source.read_range, source_ref, part.offset, part.count)
            for part in plan.parts
        ]
        try:
            chunks = await run_bounded(jobs, concurrency)
        except TaskFailure as failure:
            part = plan.parts[failure.index]
            msg = f"unable to download large file {source_ref} (part {part.index})"
            raise StorageError(msg, failure.error) from failure.error
        return b"".join(chunks)

    async def upload_stream(
        self,
        dest: ObjectStore,
        dest_ref: ObjectRef,
        stream: BinaryIO,
        size: int,
        *,
        metadata: Mapping[str, str] | None = None,
        concurrency: int | None = None,
    ) -> CopyPlan | None:
        """Upload ``size`` bytes read from ``stream`` to ``dest_ref``.

        Streams below ``large_object_threshold`` are sent in one request.
        Larger ones are uploaded as a multipart session; parts are read from
        the stream in order, so at most ``concurrency`` parts are held in
        memory at a time.

        Returns:
            The plan of the multipart upload, or None for a single request.

        Raises:
            ConfigurationError: Invalid size or concurrency.
            StorageError: The stream is shorter than ``size`` (single request).
            StagingError: A part failed; the session was aborted.
            CommitError: Every part was staged but the commit failed.
        """
        concurrency = self._concurrency(concurrency, self._settings.concurrency)
        if size < 0:
            msg = f"invalid upload size {size} for {dest_ref}"
            raise ConfigurationError(msg)
        carried = carried_metadata(metadata or {})
        if size < self._settings.large_object_threshold:
            data = await run_sync(_read_exactly, stream, size)
            await dest.put_object(dest_ref, data, carried)
            return None

        plan = plan_copy(size, self._settings.base_chunk_size, dest.max_parts)
        LOG.info(
            "uploading stream to %s in %d part(s) of %d bytes (concurrency=%d)",
            dest_ref,
            len(plan),
            plan.part_size,
            concurrency,
        )
        session = await dest.open_multipart(dest_ref, carried)

        lock = anyio.Lock()
        buffered: dict[int, bytes] = {}
        next_position = 0

        async def read_part(part: PartSpec) -> bytes:
            nonlocal next_position
            async with lock:
                while part.index not in buffered:
                    pending = plan.parts[next_position]
                    buffered[pending.index] = await run_sync(
                        _read_exactly, stream, pending.count
                    )
                    next_position += 1
                return buffered.pop(part.index)

        async def stage(part: PartSpec) -> StagedPart:
            data = await read_part(part)
            token = await dest.stage_part(session, part.index, data)
            LOG.debug("staged part %d of %s", part.index, dest_ref)
            return StagedPart(index=part.index, token=token)

        await self._stage_and_commit(dest, session, plan, stage, concurrency)
        LOG.info("uploaded stream to %s (%d bytes)", dest_ref, size)
        return plan

    async def _stage_and_commit(
        self,
        dest: ObjectStore,
        session: MultipartSession,
        plan: CopyPlan,
        stage: Callable[[PartSpec], Awaitable[StagedPart]],
        concurrency: int,
    ) -> None:
        jobs = [partial(stage, part) for part in plan.parts]
        try:
            staged = await run_bounded(jobs, concurrency)
        except TaskFailure as failure:
            part = plan.parts[failure.index]
            LOG.error(
                "part %d of %s failed",
                part.index,
                session.ref,
                exc_info=failure.error,
            )
            await self._abort(dest, session)
            msg = (
                f"error staging blocks; copy aborted "
                f"(part {part.index} of {session.ref})"
            )
            raise StagingError(msg, part.index, failure.error) from failure.error
        except BaseException:
            LOG.warning(
                "staging parts for %s interrupted; aborting multipart session %s",
                session.ref,
                session.session_id,
            )
            await self._abort(dest, session)
            raise

        ordered = sorted(staged, key=lambda staged_part: staged_part.index)
        try:
            await dest.commit(session, ordered)
        except Exception as error:
            msg = f"unable to complete multipart upload for {session.ref}"
            raise CommitError(msg, error) from error

    @staticmethod
    async def _abort(dest: ObjectStore, session: MultipartSession) -> None:
        # runs while the caller may already be cancelled
        with anyio.CancelScope(shield=True):
            try:
                await dest.abort(session)
            except Exception:
                LOG.warning(
                    "failed to abort multipart session %s for %s",
                    session.session_id,
                    session.ref,
                    exc_info=True,
                )
