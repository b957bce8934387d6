from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from azure.identity import ClientSecretCredential, DefaultAzureCredential
from azure.keyvault.secrets import SecretClient
from azure.storage.blob import BlobServiceClient
from boto3.session import Session
from botocore.config import Config as BotoConfig

from .auth import (
    AWSConfiguredKeys,
    AWSDefaultIdentity,
    AzureClientSecret,
    AzureConnectionString,
    AzureDefaultIdentity,
    AzureSASToken,
)
from .azure_blob import BlobStore
from .errors import ConfigurationError
from .s3 import S3Store
from .secret_store import AWSSecretsProxy, AzureSecretsProxy, CloudSecretsProxy

if TYPE_CHECKING:
    from .auth import AuthConfig
    from .settings import SecretCacheSettings
    from .storage import ObjectStore

LOG = logging.getLogger("cloud_proxy.factory")


def _aws_session(auth: AWSDefaultIdentity | AWSConfiguredKeys) -> Session:
    if isinstance(auth, AWSConfiguredKeys):
        return Session(
            aws_access_key_id=auth.access_key_id,
            aws_secret_access_key=auth.secret_access_key,
            aws_session_token=auth.session_token,
            region_name=auth.region,
        )
    return Session(region_name=auth.region)


def _aws_client(auth: AWSDefaultIdentity | AWSConfiguredKeys, service: str) -> Any:
    s3_options = {"addressing_style": "path"} if auth.endpoint_url else None
    return _aws_session(auth).client(
        service,
        endpoint_url=auth.endpoint_url,
        config=BotoConfig(
            signature_version="s3v4",
            retries={"max_attempts": 3},
            s3=s3_options,
        ),
    )


def _azure_credential(
    auth: AzureDefaultIdentity | AzureClientSecret,
) -> DefaultAzureCredential | ClientSecretCredential:
    if isinstance(auth, AzureClientSecret):
        return ClientSecretCredential(
            tenant_id=auth.tenant_id,
            client_id=auth.client_id,
            client_secret=auth.client_secret,
        )
    return DefaultAzureCredential()


def create_storage_proxy(auth: AuthConfig) -> ObjectStore:
    """Build the object store for a credential configuration."""
    if isinstance(auth, (AWSDefaultIdentity, AWSConfiguredKeys)):
        store: ObjectStore = S3Store(_aws_client(auth, "s3"))
    elif isinstance(auth, (AzureDefaultIdentity, AzureClientSecret)):
        store = BlobStore(
            BlobServiceClient(
                account_url=auth.account_url, credential=_azure_credential(auth)
            )
        )
    elif isinstance(auth, AzureConnectionString):
        store = BlobStore(
            BlobServiceClient.from_connection_string(auth.connection_string)
        )
    elif isinstance(auth, AzureSASToken):
        store = BlobStore(
            BlobServiceClient(account_url=auth.account_url, credential=auth.sas_token)
        )
    else:
        msg = f"unsupported storage credentials: {type(auth).__name__}"
        raise ConfigurationError(msg)
    LOG.info("created %s storage proxy (%s)", store.provider, auth.kind)
    return store


def create_secrets_proxy(
    auth: AuthConfig, settings: SecretCacheSettings | None = None
) -> CloudSecretsProxy:
    """Build the cached secrets proxy for a credential configuration."""
    if isinstance(auth, (AWSDefaultIdentity, AWSConfiguredKeys)):
        proxy: CloudSecretsProxy = AWSSecretsProxy(
            _aws_client(auth, "secretsmanager"), settings
        )
    elif isinstance(auth, (AzureDefaultIdentity, AzureClientSecret)):
        client = SecretClient(
            vault_url=auth.account_url, credential=_azure_credential(auth)
        )
        proxy = AzureSecretsProxy(client, settings)
    else:
        msg = f"unsupported secrets credentials: {type(auth).__name__}"
        raise ConfigurationError(msg)
    LOG.info("created %s secrets proxy (%s)", proxy.provider, auth.kind)
    return proxy
