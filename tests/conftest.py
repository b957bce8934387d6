from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import anyio
import pytest
from cloud_proxy.storage import (
    CONTENT_LENGTH,
    MultipartSession,
    ObjectRef,
    StagedPart,
    StoredObject,
)

if TYPE_CHECKING:
    from collections.abc import Generator, Mapping, Sequence

    from botocore.client import BaseClient


@dataclass
class MinioService:
    endpoint: str
    access_key: str
    secret_key: str
    secure: bool


@pytest.fixture(scope="session")
def minio_access_key() -> str:
    return os.getenv("MINIO_ACCESS_KEY", "minio")


@pytest.fixture(scope="session")
def minio_secret_key() -> str:
    return os.getenv("MINIO_SECRET_KEY", "minio123")


@pytest.fixture(scope="session")
def minio_secure() -> bool:
    return os.getenv("MINIO_SECURE", "false").lower() in {
        "true",
        "1",
        "yes",
        "y",
        "t",
        "on",
    }


def _docker_available() -> bool:
    try:
        import docker

        docker.from_env().ping()
    except Exception:
        return False
    return True


@pytest.fixture(scope="session")
def minio_service(
    request: pytest.FixtureRequest,
    minio_access_key: str,
    minio_secret_key: str,
    minio_secure: bool,
) -> Generator[MinioService]:
    if not _docker_available():
        pytest.skip("Docker is not available for MinIO integration tests")

    from urllib.error import URLError
    from urllib.request import Request, urlopen

    from pytest_databases.types import ServiceContainer

    docker_service = request.getfixturevalue("docker_service")

    def check(_service: ServiceContainer) -> bool:
        scheme = "https" if minio_secure else "http"
        url = f"{scheme}://{_service.host}:{_service.port}/minio/health/ready"
        if not url.startswith(("http:", "https:")):
            msg = "URL must start with 'http:' or 'https:'"
            raise ValueError(msg)
        try:
            with urlopen(url=Request(url, method="GET"), timeout=10) as response:
                return response.status == 200
        except (URLError, ConnectionError):
            return False

    env = {
        "MINIO_ROOT_USER": minio_access_key,
        "MINIO_ROOT_PASSWORD": minio_secret_key,
    }

    with docker_service.run(
        image="quay.io/minio/minio",
        name="minio-cloud-proxy",
        command="server /data",
        container_port=9000,
        timeout=20,
        pause=0.5,
        env=env,
        check=check,
    ) as service:
        yield MinioService(
            endpoint=f"{service.host}:{service.port}",
            access_key=minio_access_key,
            secret_key=minio_secret_key,
            secure=minio_secure,
        )


def _s3_client_from_service(minio_service: MinioService):
    import boto3
    from botocore.config import Config

    scheme = "https" if minio_service.secure else "http"
    endpoint = f"{scheme}://{minio_service.endpoint}"
    return boto3.client(
        "s3",
        endpoint_url=endpoint,
        aws_access_key_id=minio_service.access_key,
        aws_secret_access_key=minio_service.secret_key,
        region_name="us-east-1",
        config=Config(s3={"addressing_style": "path"}),
    )


def _bucket_exists(client, bucket: str) -> bool:
    from botocore.exceptions import ClientError

    try:
        client.head_bucket(Bucket=bucket)
    except ClientError as exc:
        code = exc.response.get("Error", {}).get("Code", "")
        if code in {"404", "NoSuchBucket", "NotFound"}:
            return False
        raise
    else:
        return True


def _ensure_bucket(client, bucket: str) -> None:
    if not _bucket_exists(client, bucket):
        client.create_bucket(Bucket=bucket)


@pytest.fixture
def s3_client(minio_service: MinioService) -> BaseClient:
    """Create a boto3 S3 client for the MinIO service."""
    return _s3_client_from_service(minio_service)


@pytest.fixture
def minio_credentials(minio_service: MinioService) -> dict[str, str]:
    scheme = "https" if minio_service.secure else "http"
    return {
        "endpoint_url": f"{scheme}://{minio_service.endpoint}",
        "access_key_id": minio_service.access_key,
        "secret_access_key": minio_service.secret_key,
        "region": "us-east-1",
    }


@pytest.fixture
def s3_helpers():
    return {
        "bucket_exists": _bucket_exists,
        "ensure_bucket": _ensure_bucket,
    }


@pytest.fixture
def copy_env_vars() -> Generator[dict[str, str]]:
    """Set copy tuning variables for the duration of a test."""
    env_vars = {
        "CLOUD_PROXY_LARGE_OBJECT_THRESHOLD": "1024",
        "CLOUD_PROXY_BASE_CHUNK_SIZE": "256",
        "CLOUD_PROXY_COPY_CONCURRENCY": "3",
        "CLOUD_PROXY_SAME_PROVIDER_CONCURRENCY": "7",
        "CLOUD_PROXY_SECRET_CACHE_MAX_ENTRIES": "4",
        "CLOUD_PROXY_SECRET_CACHE_TTL": "PT30M",
    }

    original_values = {}
    for key, value in env_vars.items():
        original_values[key] = os.environ.get(key)
        os.environ[key] = value

    yield env_vars

    for key, original_value in original_values.items():
        if original_value is None:
            os.environ.pop(key, None)
        else:
            os.environ[key] = original_value


class FakeClock:
    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@dataclass
class MemoryStore:
    """In-memory object store recording every multipart call."""

    provider: str = "memory"
    max_parts: int = 10000
    supports_range_copy: bool = True
    objects: dict[ObjectRef, tuple[bytes, dict[str, str]]] = field(
        default_factory=dict
    )
    delays: dict[int, float] = field(default_factory=dict)
    failing_parts: set[int] = field(default_factory=set)
    fail_commit: bool = False
    fail_abort: bool = False

    sessions: list[MultipartSession] = field(default_factory=list)
    staged: dict[str, dict[int, bytes]] = field(default_factory=dict)
    started: list[int] = field(default_factory=list)
    completed: list[int] = field(default_factory=list)
    cancelled: list[int] = field(default_factory=list)
    range_copies: list[int] = field(default_factory=list)
    commits: list[tuple[MultipartSession, list[StagedPart]]] = field(
        default_factory=list
    )
    aborts: list[MultipartSession] = field(default_factory=list)
    whole_copies: list[tuple[ObjectRef, ObjectRef]] = field(default_factory=list)
    puts: list[ObjectRef] = field(default_factory=list)
    in_flight: int = 0
    max_in_flight: int = 0

    def add(
        self, ref: ObjectRef, data: bytes, metadata: Mapping[str, str] | None = None
    ) -> None:
        self.objects[ref] = (data, dict(metadata or {}))

    def content(self, ref: ObjectRef) -> bytes:
        return self.objects[ref][0]

    async def list_files(self, container, max_results=500, prefix=""):
        return [
            ref.key
            for ref in self.objects
            if ref.container == container and ref.key.startswith(prefix)
        ][:max_results]

    async def list_folders(self, container, max_results=500, prefix=""):
        return []

    async def get_object(self, ref: ObjectRef) -> StoredObject:
        data, metadata = self.objects[ref]
        return StoredObject(ref, await self.get_metadata(ref), data)

    async def get_metadata(self, ref: ObjectRef) -> dict[str, str]:
        data, metadata = self.objects[ref]
        return {**metadata, CONTENT_LENGTH: str(len(data))}

    async def read_object(self, ref: ObjectRef) -> bytes:
        return self.objects[ref][0]

    async def read_range(self, ref: ObjectRef, offset: int, count: int) -> bytes:
        return self.objects[ref][0][offset : offset + count]

    async def put_object(self, ref, data, metadata=None) -> None:
        self.puts.append(ref)
        self.add(ref, data, metadata)

    async def delete_object(self, ref: ObjectRef) -> None:
        self.objects.pop(ref, None)

    async def copy_object(self, source: ObjectRef, dest: ObjectRef) -> None:
        self.whole_copies.append((source, dest))
        self.objects[dest] = self.objects[source]

    async def open_multipart(self, ref, metadata) -> MultipartSession:
        session = MultipartSession(
            session_id=f"session-{len(self.sessions) + 1}",
            ref=ref,
            metadata=dict(metadata),
        )
        self.sessions.append(session)
        self.staged[session.session_id] = {}
        return session

    async def _transfer(self, session: MultipartSession, index: int, data: bytes):
        self.started.append(index)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await anyio.sleep(self.delays.get(index, 0))
            if index in self.failing_parts:
                msg = f"part {index} rejected"
                raise OSError(msg)
            self.staged[session.session_id][index] = data
            self.completed.append(index)
            return f"etag-{index}"
        except anyio.get_cancelled_exc_class():
            self.cancelled.append(index)
            raise
        finally:
            self.in_flight -= 1

    async def stage_part(self, session, index, data) -> str:
        return await self._transfer(session, index, data)

    async def stage_part_copy(self, session, index, source, offset, count) -> str:
        self.range_copies.append(index)
        data = self.objects[source][0][offset : offset + count]
        return await self._transfer(session, index, data)

    async def commit(self, session, parts: Sequence[StagedPart]) -> None:
        self.commits.append((session, list(parts)))
        if self.fail_commit:
            msg = "commit rejected"
            raise OSError(msg)
        chunks = self.staged[session.session_id]
        self.objects[session.ref] = (
            b"".join(chunks[part.index] for part in parts),
            dict(session.metadata),
        )

    async def abort(self, session) -> None:
        self.aborts.append(session)
        if self.fail_abort:
            msg = "abort rejected"
            raise OSError(msg)
        self.staged.pop(session.session_id, None)


@pytest.fixture
def memory_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def store_factory() -> type[MemoryStore]:
    return MemoryStore
