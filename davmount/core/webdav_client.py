# core/webdav_client.py
"""Stateless WebDAV client: connection test, directory listing, download."""

import base64
import logging
import os
import tempfile
from threading import Event
from typing import Callable, List, Optional
from urllib.parse import quote, unquote, urlsplit

import requests
from requests.auth import HTTPBasicAuth
from webdav3.client import Client
from webdav3.exceptions import (ConnectionException, NoConnection,
                                RemoteResourceNotFound, ResponseErrorCode,
                                WebDavException)

from davmount.core.errors import (DownloadCancelledError, LocalStorageError,
                                  PathNotFoundError, RemoteNotFoundError,
                                  ServerError, StorageFullError, TLSError,
                                  UnreachableError, WebDavError, map_http_status)
from davmount.core.models import (ConnectionResult, DownloadResult, FileItem,
                                  ServerCredentials)
from davmount.utils.helpers import (get_filename, join_path, normalize_path,
                                    normalize_server_url)
from davmount.utils.mime import resolve_mime_type

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]

PROPFIND_BODY = (
    '<?xml version="1.0" encoding="utf-8" ?>'
    '<d:propfind xmlns:d="DAV:"><d:prop><d:resourcetype/></d:prop></d:propfind>'
)


def build_base_url(server_url: str, base_path: str) -> str:
    """Join server URL and base path into the folder's root URL."""
    base = normalize_server_url(server_url)
    path = normalize_path(base_path)
    if path == '/':
        return base
    return base + quote(path, safe='/')


def _is_tls_failure(exc: BaseException) -> bool:
    """Walk an exception chain looking for a TLS failure."""
    seen = set()
    pending = [exc]
    while pending:
        current = pending.pop()
        if current is None or id(current) in seen:
            continue
        seen.add(id(current))
        if isinstance(current, requests.exceptions.SSLError):
            return True
        pending.extend([getattr(current, 'exception', None),
                        current.__cause__, current.__context__])
    return False


class WebDAVClient:
    """
    WebDAV protocol client.

    Holds only transport settings; every call receives the server, base path
    and credentials it should use, so one instance serves all folders.
    """

    def __init__(self, connection_timeout: float = 10, read_timeout: float = 30,
                 download_timeout: float = 600, verify_ssl: bool = True,
                 user_agent: str = 'davmount/1.0', chunk_size: int = 256 * 1024):
        """
        Initialize WebDAV client.

        Args:
            connection_timeout: Seconds to wait for a TCP/TLS connection
            read_timeout: Seconds to wait for PROPFIND answers
            download_timeout: Seconds to wait between chunks of a download
            verify_ssl: Verify server certificates
            user_agent: User-Agent header value
            chunk_size: Bytes per streamed download chunk
        """
        self.connection_timeout = connection_timeout
        self.read_timeout = read_timeout
        self.download_timeout = download_timeout
        self.verify_ssl = verify_ssl
        self.user_agent = user_agent
        self.chunk_size = chunk_size

    @classmethod
    def from_config(cls, config) -> 'WebDAVClient':
        """Create a client from a ConfigManager."""
        return cls(
            connection_timeout=config.get_setting('connection_timeout', 10),
            read_timeout=config.get_setting('read_timeout', 30),
            download_timeout=config.get_setting('download_timeout', 600),
            verify_ssl=config.get_setting('verify_ssl', True),
            user_agent=config.get_setting('user_agent', 'davmount/1.0'),
            chunk_size=config.get_setting('chunk_size', 256 * 1024)
        )

    # URL and auth helpers

    def file_url(self, server_url: str, base_path: str, path: str) -> str:
        """Absolute URL of a path below the folder's base path."""
        path = normalize_path(path)
        base = build_base_url(server_url, base_path)
        if path == '/':
            return base + '/'
        return base + quote(path, safe='/')

    @staticmethod
    def auth_headers(credentials: ServerCredentials) -> dict:
        """Basic auth header for direct HTTP access (e.g. media streaming)."""
        raw = f"{credentials.username}:{credentials.password}".encode('utf-8')
        return {'Authorization': 'Basic ' + base64.b64encode(raw).decode('ascii')}

    def _open_session(self, credentials: ServerCredentials) -> requests.Session:
        """Create a session with auth and default headers."""
        session = requests.Session()
        session.auth = HTTPBasicAuth(credentials.username, credentials.password)
        session.verify = self.verify_ssl
        session.headers.update({
            'User-Agent': self.user_agent,
            'Accept': '*/*'
        })
        return session

    def _make_request(self, session: requests.Session, method: str, url: str,
                      **kwargs) -> requests.Response:
        """
        Make HTTP request with proper WebDAV headers.

        Args:
            session: Authenticated session
            method: HTTP method
            url: Request URL
            **kwargs: Additional arguments for requests

        Returns:
            requests.Response: Server response
        """
        headers = kwargs.pop('headers', {})
        if method.upper() == 'PROPFIND':
            headers.setdefault('Depth', '0')
            headers['Content-Type'] = 'application/xml; charset=utf-8'
            kwargs.setdefault('data', PROPFIND_BODY)

        kwargs.setdefault('timeout', (self.connection_timeout, self.read_timeout))

        return session.request(
            method=method,
            url=url,
            headers=headers,
            allow_redirects=True,
            **kwargs
        )

    @staticmethod
    def _translate_request_error(error: requests.RequestException, action: str,
                                 path: Optional[str] = None) -> WebDavError:
        """Turn a requests exception into the davmount taxonomy."""
        details = {'action': action}
        if path is not None:
            details['path'] = path

        if _is_tls_failure(error):
            return TLSError(f"TLS failure during {action}: {error}",
                            details=details, cause=error)
        return UnreachableError(f"Server unreachable during {action}: {error}",
                                details=details, cause=error)

    # Connection test

    def test_connection(self, server_url: str, base_path: str,
                        credentials: ServerCredentials) -> ConnectionResult:
        """
        Check the folder root with an authenticated PROPFIND (Depth 0).

        Returns:
            ConnectionResult describing the outcome; never raises for
            network or HTTP failures
        """
        url = self.file_url(server_url, base_path, '/')

        try:
            with self._open_session(credentials) as session:
                response = self._make_request(session, 'PROPFIND', url)
                if response.status_code == 405:
                    # Method not allowed - try simple GET as fallback
                    logger.debug(f"PROPFIND not allowed on {url}, trying GET")
                    response = self._make_request(session, 'GET', url, stream=True)
                response.close()
        except requests.exceptions.SSLError as e:
            logger.warning(f"TLS failure probing {url}: {e}")
            return ConnectionResult.TLS_ERROR
        except requests.RequestException as e:
            logger.warning(f"Connection test to {url} failed: {e}")
            return ConnectionResult.UNREACHABLE

        status = response.status_code
        if 200 <= status < 300:
            result = ConnectionResult.CONNECTED
        elif status in (401, 403):
            result = ConnectionResult.UNAUTHORIZED
        elif status == 404:
            result = ConnectionResult.NOT_FOUND
        else:
            result = ConnectionResult.SERVER_ERROR

        logger.info(f"Connection test to {url}: HTTP {status} -> {result.value}")
        return result

    # Directory listing

    def _create_client(self, server_url: str, base_path: str,
                       credentials: ServerCredentials) -> Client:
        """Build a webdav3 client rooted at the folder's base path."""
        parts = urlsplit(build_base_url(server_url, base_path))
        options = {
            'webdav_hostname': f"{parts.scheme}://{parts.netloc}",
            # webdav3 quotes the root itself
            'webdav_root': unquote(parts.path) or '/',
            'webdav_login': credentials.username,
            'webdav_password': credentials.password,
            'webdav_timeout': self.read_timeout,
            # Without this, list() turns 401 on the existence check into 404
            'webdav_disable_check': True,
        }
        client = Client(options)
        client.verify = self.verify_ssl
        return client

    def list_directory(self, server_url: str, base_path: str,
                       credentials: ServerCredentials,
                       path: str = '/') -> List[FileItem]:
        """
        List a directory below the base path.

        Returns:
            Entries sorted directories first, then by case-insensitive name

        Raises:
            UnauthorizedError, RemoteNotFoundError (base path missing),
            PathNotFoundError (sub-path missing), UnreachableError, TLSError,
            ServerError
        """
        path = normalize_path(path)
        client = self._create_client(server_url, base_path, credentials)

        try:
            infos = client.list(path, get_info=True)
        except RemoteResourceNotFound as e:
            raise self._not_found(path, e)
        except ResponseErrorCode as e:
            error = map_http_status(e.code, f"Listing {path} failed: HTTP {e.code}",
                                    path=path, cause=e)
            if isinstance(error, RemoteNotFoundError):
                raise self._not_found(path, e)
            raise error
        except (NoConnection, ConnectionException) as e:
            if _is_tls_failure(e):
                raise TLSError(f"TLS failure listing {path}",
                               details={'path': path}, cause=e)
            raise UnreachableError(f"Server unreachable listing {path}",
                                   details={'path': path}, cause=e)
        except requests.RequestException as e:
            raise self._translate_request_error(e, 'list', path)
        except WebDavException as e:
            raise ServerError(f"Listing {path} failed: {e}",
                              details={'path': path}, cause=e)

        own_path = normalize_path(
            unquote(urlsplit(self.file_url(server_url, base_path, path)).path))
        items = []
        for info in infos:
            href_path = normalize_path(info.get('path') or '')
            if href_path == own_path:
                continue
            items.append(self._to_file_item(info, path))

        items.sort(key=lambda item: (not item.is_directory, item.name.lower()))
        logger.info(f"Received {len(items)} items from {path}")
        return items

    @staticmethod
    def _not_found(path: str, cause: BaseException) -> RemoteNotFoundError:
        if path == '/':
            return RemoteNotFoundError("Base path does not exist on the server",
                                       details={'path': path, 'status_code': 404},
                                       cause=cause)
        return PathNotFoundError(f"Path not found: {path}",
                                 details={'path': path, 'status_code': 404},
                                 cause=cause)

    @staticmethod
    def _to_file_item(info: dict, parent_path: str) -> FileItem:
        """Create FileItem from a webdav3 info dict."""
        is_dir = bool(info.get('isdir'))
        name = get_filename(info.get('path') or '') or info.get('name') or ''
        if name == '/':
            name = info.get('name') or ''

        try:
            size = int(info.get('size') or 0)
        except (TypeError, ValueError):
            size = 0

        mime_type = None
        if not is_dir:
            mime_type = resolve_mime_type(name, info.get('content_type'))

        return FileItem(
            name=name,
            path=join_path(parent_path, name),
            is_directory=is_dir,
            size=0 if is_dir else size,
            mime_type=mime_type,
            modified_at=info.get('modified') or None
        )

    # Download

    def download(self, server_url: str, base_path: str,
                 credentials: ServerCredentials, remote_path: str,
                 destination: str,
                 progress_callback: Optional[ProgressCallback] = None,
                 cancel_event: Optional[Event] = None,
                 max_bytes: Optional[int] = None) -> DownloadResult:
        """
        Download one file with a streamed GET.

        The body is written to a temporary file next to destination and moved
        into place only once complete, so destination never holds a partial
        file.

        Args:
            remote_path: Path below the base path
            destination: Final local path
            progress_callback: Called with (bytes_received, total_bytes);
                total is 0 when the server sends no Content-Length
            cancel_event: Set it to abort the transfer
            max_bytes: Abort with StorageFullError beyond this many bytes

        Raises:
            UnreachableError, TLSError, UnauthorizedError,
            RemoteNotFoundError, ServerError, StorageFullError,
            DownloadCancelledError, LocalStorageError
        """
        remote_path = normalize_path(remote_path)
        url = self.file_url(server_url, base_path, remote_path)
        directory = os.path.dirname(os.path.abspath(destination))
        try:
            os.makedirs(directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=directory, prefix='.part-')
        except OSError as e:
            raise LocalStorageError(f"Cannot write to {directory}: {e}",
                                    details={'path': destination}, cause=e)

        try:
            with os.fdopen(fd, 'wb') as f, self._open_session(credentials) as session:
                result = self._stream_to(f, session, url, remote_path,
                                         progress_callback, cancel_event, max_bytes)
                f.flush()
                os.fsync(f.fileno())
            try:
                os.replace(tmp_path, destination)
            except OSError as e:
                raise LocalStorageError(f"Cannot store {destination}: {e}",
                                        details={'path': destination}, cause=e)
        except BaseException:
            try:
                os.remove(tmp_path)
            except FileNotFoundError:
                pass
            raise

        logger.info(f"Downloaded {remote_path} ({result.bytes_written} bytes)")
        return result

    def _stream_to(self, f, session: requests.Session, url: str, remote_path: str,
                   progress_callback: Optional[ProgressCallback],
                   cancel_event: Optional[Event],
                   max_bytes: Optional[int]) -> DownloadResult:
        try:
            response = self._make_request(
                session, 'GET', url, stream=True,
                timeout=(self.connection_timeout, self.download_timeout))
        except requests.RequestException as e:
            raise self._translate_request_error(e, 'download', remote_path)

        with response:
            if not 200 <= response.status_code < 300:
                raise map_http_status(
                    response.status_code,
                    f"Download of {remote_path} failed: HTTP {response.status_code}",
                    path=remote_path)

            try:
                total = int(response.headers.get('Content-Length', ''))
            except ValueError:
                total = 0

            if max_bytes is not None and total > max_bytes:
                raise StorageFullError(
                    f"Not enough free space for {remote_path}",
                    details={'required': total, 'available': max_bytes})

            received = 0
            try:
                for chunk in response.iter_content(chunk_size=self.chunk_size):
                    if cancel_event is not None and cancel_event.is_set():
                        raise DownloadCancelledError(
                            f"Download cancelled: {remote_path}",
                            details={'path': remote_path})
                    if not chunk:
                        continue
                    received += len(chunk)
                    if max_bytes is not None and received > max_bytes:
                        raise StorageFullError(
                            f"Ran out of space downloading {remote_path}",
                            details={'received': received, 'available': max_bytes})
                    f.write(chunk)
                    if progress_callback:
                        progress_callback(received, total)
            except requests.RequestException as e:
                raise self._translate_request_error(e, 'download', remote_path)

            if cancel_event is not None and cancel_event.is_set():
                raise DownloadCancelledError(f"Download cancelled: {remote_path}",
                                             details={'path': remote_path})

            return DownloadResult(bytes_written=received,
                                  content_type=response.headers.get('Content-Type'))
