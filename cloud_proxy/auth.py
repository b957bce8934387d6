from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from .errors import ConfigurationError


class _Auth(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class AWSDefaultIdentity(_Auth):
    """Credentials resolved by the default boto3 provider chain."""

    kind: Literal["aws_default"] = "aws_default"
    region: str | None = None
    endpoint_url: str | None = None


class AWSConfiguredKeys(_Auth):
    kind: Literal["aws_keys"] = "aws_keys"
    access_key_id: str
    secret_access_key: str
    session_token: str | None = None
    region: str | None = None
    endpoint_url: str | None = None


class AzureDefaultIdentity(_Auth):
    """DefaultAzureCredential against a storage account or Key Vault URL."""

    kind: Literal["azure_default"] = "azure_default"
    account_url: str


class AzureClientSecret(_Auth):
    kind: Literal["azure_client_secret"] = "azure_client_secret"
    account_url: str
    tenant_id: str
    client_id: str
    client_secret: str


class AzureConnectionString(_Auth):
    kind: Literal["azure_connection_string"] = "azure_connection_string"
    connection_string: str


class AzureSASToken(_Auth):
    """A storage account URL with a pre-issued SAS token."""

    kind: Literal["azure_sas_token"] = "azure_sas_token"
    account_url: str
    sas_token: str


AuthConfig = Annotated[
    Union[
        AWSDefaultIdentity,
        AWSConfiguredKeys,
        AzureDefaultIdentity,
        AzureClientSecret,
        AzureConnectionString,
        AzureSASToken,
    ],
    Field(discriminator="kind"),
]

_auth_adapter: TypeAdapter[AuthConfig] = TypeAdapter(AuthConfig)


def parse_auth(data: dict[str, Any]) -> AuthConfig:
    """Validate a credential configuration mapping into its variant.

    Raises:
        ConfigurationError: Unknown ``kind`` or missing/invalid fields.
    """
    try:
        return _auth_adapter.validate_python(data)
    except ValidationError as error:
        msg = f"invalid credential configuration: {error}"
        raise ConfigurationError(msg, error) from error
