# core/models.py
"""Data models for davmount."""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from davmount.utils.helpers import format_size, get_filename, get_parent_path
from davmount.utils.mime import get_extension


def now_iso() -> str:
    """Current local time as an ISO-8601 string."""
    return datetime.now().isoformat(timespec='seconds')


class ConnectionResult(Enum):
    """Outcome of a connection test."""
    CONNECTED = 'connected'
    UNAUTHORIZED = 'unauthorized'
    NOT_FOUND = 'not_found'
    UNREACHABLE = 'unreachable'
    TLS_ERROR = 'tls_error'
    SERVER_ERROR = 'server_error'

    @property
    def ok(self) -> bool:
        return self is ConnectionResult.CONNECTED


@dataclass(frozen=True)
class ServerCredentials:
    """Username/password pair for one WebDAV server."""
    username: str
    password: str = field(repr=False)

    @property
    def is_valid(self) -> bool:
        return bool(self.username) and bool(self.password)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ServerCredentials':
        """Create credentials from dictionary."""
        username = data['username']
        password = data['password']
        if not isinstance(username, str) or not isinstance(password, str):
            raise TypeError("username and password must be strings")
        return cls(username=username, password=password)

    def to_dict(self) -> Dict[str, str]:
        return {'username': self.username, 'password': self.password}

    def __repr__(self) -> str:
        return f"ServerCredentials(username={self.username!r}, password='****')"


@dataclass(frozen=True)
class VirtualFolder:
    """A named mount of one WebDAV server path. Holds no secrets."""
    id: str
    name: str
    server_url: str
    base_path: str
    credential_id: Optional[str] = None
    icon_color: Optional[int] = None
    created_at: str = ""
    updated_at: str = ""

    @property
    def full_url(self) -> str:
        """Server URL joined with the base path."""
        base = self.server_url.rstrip('/')
        path = self.base_path if self.base_path.startswith('/') else '/' + self.base_path
        return base if path == '/' else f"{base}{path}"

    @property
    def has_credentials(self) -> bool:
        return bool(self.credential_id)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'VirtualFolder':
        """Create VirtualFolder from dictionary."""
        return cls(
            id=data['id'],
            name=data['name'],
            server_url=data['server_url'],
            base_path=data.get('base_path', '/'),
            credential_id=data.get('credential_id'),
            icon_color=data.get('icon_color'),
            created_at=data.get('created_at', ''),
            updated_at=data.get('updated_at', '')
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'id': self.id,
            'name': self.name,
            'server_url': self.server_url,
            'base_path': self.base_path,
            'credential_id': self.credential_id,
            'icon_color': self.icon_color,
            'created_at': self.created_at,
            'updated_at': self.updated_at
        }

    def copy_with(self, **changes) -> 'VirtualFolder':
        return replace(self, **changes)


@dataclass(frozen=True)
class FileItem:
    """One entry of a remote directory listing."""
    name: str
    path: str
    is_directory: bool
    size: int = 0
    mime_type: Optional[str] = None
    modified_at: Optional[str] = None
    is_offline_available: bool = False
    offline_path: Optional[str] = None

    @property
    def extension(self) -> Optional[str]:
        if self.is_directory:
            return None
        return get_extension(self.name)

    @property
    def parent_path(self) -> str:
        return get_parent_path(self.path)

    @property
    def formatted_size(self) -> str:
        if self.is_directory:
            return ""
        return format_size(self.size)

    def with_offline(self, offline_path: Optional[str]) -> 'FileItem':
        """Return a copy marked as (un)available offline."""
        return replace(self, is_offline_available=offline_path is not None,
                       offline_path=offline_path)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'name': self.name,
            'path': self.path,
            'is_directory': self.is_directory,
            'size': self.size,
            'mime_type': self.mime_type,
            'modified_at': self.modified_at,
            'is_offline_available': self.is_offline_available,
            'offline_path': self.offline_path
        }


@dataclass(frozen=True)
class OfflineFile:
    """A locally cached copy of one remote file."""
    id: str
    virtual_folder_id: str
    remote_path: str
    local_path: str
    file_size: int
    mime_type: str
    downloaded_at: str

    @property
    def key(self):
        """Identity of the cached remote file."""
        return self.virtual_folder_id, self.remote_path

    @property
    def file_name(self) -> str:
        return get_filename(self.remote_path)

    @property
    def formatted_size(self) -> str:
        return format_size(self.file_size)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'OfflineFile':
        """Create OfflineFile from dictionary."""
        return cls(
            id=data['id'],
            virtual_folder_id=data['virtual_folder_id'],
            remote_path=data['remote_path'],
            local_path=data['local_path'],
            file_size=int(data.get('file_size', 0) or 0),
            mime_type=data.get('mime_type') or 'application/octet-stream',
            downloaded_at=data.get('downloaded_at', '')
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'id': self.id,
            'virtual_folder_id': self.virtual_folder_id,
            'remote_path': self.remote_path,
            'local_path': self.local_path,
            'file_size': self.file_size,
            'mime_type': self.mime_type,
            'downloaded_at': self.downloaded_at
        }

    def to_file_item(self) -> FileItem:
        """Project the record as a listing entry (used for offline browsing)."""
        return FileItem(
            name=self.file_name,
            path=self.remote_path,
            is_directory=False,
            size=self.file_size,
            mime_type=self.mime_type,
            modified_at=self.downloaded_at,
            is_offline_available=True,
            offline_path=self.local_path
        )


@dataclass(frozen=True)
class DownloadResult:
    """What WebDavClient.download wrote."""
    bytes_written: int
    content_type: Optional[str] = None
