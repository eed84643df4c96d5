# core/errors.py
"""Exception hierarchy and HTTP error mapping for davmount."""

from typing import Any, Dict, Optional


class DavMountError(Exception):
    """
    Base exception for davmount.

    Attributes:
        details: Optional structured information (HTTP status, path, ...)
        cause: Optional original exception that triggered this error
    """

    def __init__(self, message: str, *,
                 details: Optional[Dict[str, Any]] = None,
                 cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.cause = cause

    @property
    def status_code(self) -> Optional[int]:
        return self.details.get('status_code')


# Remote (WebDAV) errors

class WebDavError(DavMountError):
    """Base class for failures talking to a WebDAV server."""


class UnauthorizedError(WebDavError):
    """Raised when the server rejects the credentials (HTTP 401/403)."""


class RemoteNotFoundError(WebDavError):
    """Raised when the base path or a remote file does not exist (HTTP 404)."""


class PathNotFoundError(RemoteNotFoundError):
    """Raised when a sub-path below the base path does not exist."""


class UnreachableError(WebDavError):
    """Raised on network, DNS or timeout failures."""


class TLSError(UnreachableError):
    """Raised when the TLS handshake or certificate verification fails."""


class ServerError(WebDavError):
    """Raised for any other non-2xx answer."""


# Offline cache errors

class StorageFullError(DavMountError):
    """Raised when there is not enough free space for a download."""


class DownloadInProgressError(DavMountError):
    """Raised when a download for the same key is already running."""


class DownloadCancelledError(DavMountError):
    """Raised when a running download was cancelled."""


class InvalidPathError(DavMountError, ValueError):
    """Raised when a remote path cannot name a downloadable file."""


class LocalStorageError(DavMountError):
    """Raised when a download cannot be written to the local disk."""


# Local persistence errors

class CorruptCredentialError(DavMountError):
    """Raised when a stored credential record cannot be decrypted or parsed."""


class CredentialsMissingError(DavMountError):
    """Raised when a folder has no stored credentials."""


class FolderNotFoundError(DavMountError):
    """Raised when a virtual folder id is not in the registry."""


class InvalidFolderError(DavMountError, ValueError):
    """Raised when virtual folder fields violate structural invariants."""


def map_http_status(status_code: int, message: Optional[str] = None, *,
                    path: Optional[str] = None,
                    cause: Optional[BaseException] = None) -> WebDavError:
    """
    Map an HTTP status code to a davmount exception.

    Policy:
        - 401/403 -> UnauthorizedError
        - 404/410 -> RemoteNotFoundError
        - anything else -> ServerError
    """
    details: Dict[str, Any] = {'status_code': status_code}
    if path is not None:
        details['path'] = path

    message = message or f"HTTP error {status_code}"

    if status_code in (401, 403):
        return UnauthorizedError(message, details=details, cause=cause)
    if status_code in (404, 410):
        return RemoteNotFoundError(message, details=details, cause=cause)
    return ServerError(message, details=details, cause=cause)
