from __future__ import annotations


class CloudProxyError(Exception):
    """Base error for every failure surfaced by cloud_proxy."""

    def __init__(self, message: str, cause: BaseException | None = None):
        super().__init__(message)
        self.message = message
        self.cause = cause

    def __str__(self) -> str:
        return f"CloudProxy Error: {self.message}"


class ConfigurationError(CloudProxyError):
    """Invalid parameters, detected before any remote call."""


class FetchError(CloudProxyError):
    """Remote secret or metadata retrieval failed."""


class SecretFetchError(FetchError):
    pass


class MetadataFetchError(FetchError):
    pass


class StorageError(CloudProxyError):
    """A storage operation outside of part staging failed."""


class StagingError(CloudProxyError):
    """A part transfer failed; the multipart session has been aborted."""

    def __init__(
        self,
        message: str,
        part_index: int,
        cause: BaseException | None = None,
    ):
        super().__init__(message, cause)
        self.part_index = part_index


class CommitError(CloudProxyError):
    """Assembling the staged parts failed after every part was staged."""
