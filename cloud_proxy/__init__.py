"""Unified access to AWS and Azure object storage and secret stores."""

from .auth import (
    AuthConfig,
    AWSConfiguredKeys,
    AWSDefaultIdentity,
    AzureClientSecret,
    AzureConnectionString,
    AzureDefaultIdentity,
    AzureSASToken,
    parse_auth,
)
from .azure_blob import BlobStore
from .cache import CachedSecret, SecretCache
from .errors import (
    CloudProxyError,
    CommitError,
    ConfigurationError,
    FetchError,
    MetadataFetchError,
    SecretFetchError,
    StagingError,
    StorageError,
)
from .factory import create_secrets_proxy, create_storage_proxy
from .planning import CopyPlan, PartSpec, plan_copy
from .s3 import S3Store
from .secret_store import AWSSecretsProxy, AzureSecretsProxy, CloudSecretsProxy
from .settings import CopySettings, SecretCacheSettings
from .storage import MultipartSession, ObjectRef, ObjectStore, StagedPart
from .transfer import ChunkedCopyEngine

__all__ = [
    "AWSConfiguredKeys",
    "AWSDefaultIdentity",
    "AWSSecretsProxy",
    "AuthConfig",
    "AzureClientSecret",
    "AzureConnectionString",
    "AzureDefaultIdentity",
    "AzureSASToken",
    "AzureSecretsProxy",
    "BlobStore",
    "CachedSecret",
    "ChunkedCopyEngine",
    "CloudProxyError",
    "CloudSecretsProxy",
    "CommitError",
    "ConfigurationError",
    "CopyPlan",
    "CopySettings",
    "FetchError",
    "MetadataFetchError",
    "MultipartSession",
    "ObjectRef",
    "ObjectStore",
    "PartSpec",
    "S3Store",
    "SecretCache",
    "SecretCacheSettings",
    "SecretFetchError",
    "StagedPart",
    "StagingError",
    "StorageError",
    "create_secrets_proxy",
    "create_storage_proxy",
    "parse_auth",
    "plan_copy",
]
