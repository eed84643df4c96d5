# services/folder_service.py
"""Virtual folder operations exposed to the presentation layer."""

import logging
import uuid
from typing import Any, Dict, List, Optional

from davmount.core.config import ConfigManager
from davmount.core.credentials import CredentialStore
from davmount.core.errors import CorruptCredentialError, CredentialsMissingError, FolderNotFoundError
from davmount.core.models import (ConnectionResult, FileItem, OfflineFile,
                                  ServerCredentials, VirtualFolder)
from davmount.core.offline_cache import OfflineCacheManager
from davmount.core.registry import VirtualFolderRegistry
from davmount.core.webdav_client import ProgressCallback, WebDAVClient

logger = logging.getLogger(__name__)


class FolderService:
    """
    Orchestrates registry, credential store, WebDAV client and offline cache.

    Holds no UI state. Secrets only pass through on their way to the
    credential store or to the client.
    """

    def __init__(self, registry: VirtualFolderRegistry,
                 credentials: CredentialStore, client: WebDAVClient,
                 cache: OfflineCacheManager, cancel_timeout: Optional[float] = 30):
        """
        Initialize folder service.

        Args:
            registry: Virtual folder records
            credentials: Encrypted credential store
            client: WebDAV client shared by all folders
            cache: Offline copies
            cancel_timeout: Seconds delete_folder waits for each cancelled
                download (None waits indefinitely)
        """
        self.registry = registry
        self.credentials = credentials
        self.client = client
        self.cache = cache
        self.cancel_timeout = cancel_timeout

    @classmethod
    def from_config(cls, config: ConfigManager) -> 'FolderService':
        """Wire up all components from application settings."""
        client = WebDAVClient.from_config(config)
        return cls(
            registry=VirtualFolderRegistry(config.config_dir),
            credentials=CredentialStore(config.config_dir),
            client=client,
            cache=OfflineCacheManager(
                config.config_dir, client,
                offline_dir=config.offline_dir,
                min_free_space=config.get_setting('min_free_space', 0)
            ),
            cancel_timeout=config.get_setting('cancel_timeout', 30)
        )

    # Helpers

    def _require_folder(self, folder_id: str) -> VirtualFolder:
        folder = self.registry.get(folder_id)
        if folder is None:
            raise FolderNotFoundError(f"Folder not found: {folder_id}",
                                      details={'folder_id': folder_id})
        return folder

    def _credentials_for(self, folder: VirtualFolder) -> ServerCredentials:
        credentials = None
        if folder.has_credentials:
            credentials = self.credentials.get(folder.credential_id)
        if credentials is None:
            raise CredentialsMissingError(
                f"No credentials stored for folder '{folder.name}'",
                details={'folder_id': folder.id})
        return credentials

    # Connection

    def check_connection(self, server_url: str, base_path: str,
                         username: str, password: str) -> ConnectionResult:
        """Test a server configuration and report why it failed, if it did."""
        credentials = ServerCredentials(username=username, password=password)
        return self.client.test_connection(server_url, base_path, credentials)

    def test_connection(self, server_url: str, base_path: str,
                        username: str, password: str) -> bool:
        """True only if the server accepted the credentials at base_path."""
        return self.check_connection(server_url, base_path, username, password).ok

    # Folder lifecycle

    def create_folder(self, name: str, server_url: str, base_path: str,
                      username: str, password: str,
                      icon_color: Optional[int] = None) -> VirtualFolder:
        """
        Store credentials and create the folder referencing them.

        Callers are expected to have run test_connection with the same
        parameters first. If the folder cannot be created the freshly stored
        credentials are deleted again.
        """
        credential_id = str(uuid.uuid4())
        self.credentials.put(credential_id,
                             ServerCredentials(username=username, password=password))

        try:
            folder = self.registry.create(
                name=name,
                server_url=server_url,
                base_path=base_path,
                credential_id=credential_id,
                icon_color=icon_color
            )
        except Exception:
            logger.exception(f"Creating folder '{name}' failed, removing its credentials")
            self.credentials.delete(credential_id)
            raise

        return folder

    def update_folder(self, folder_id: str, name: Optional[str] = None,
                      server_url: Optional[str] = None,
                      base_path: Optional[str] = None,
                      username: Optional[str] = None,
                      password: Optional[str] = None,
                      icon_color: Optional[int] = None) -> VirtualFolder:
        """
        Update folder fields and, if given, its credentials.

        Credentials are overwritten under the existing credential id. Offline
        copies are kept even when the server URL or base path changes.
        """
        folder = self._require_folder(folder_id)

        fields: Dict[str, Any] = {}
        for key, value in (('name', name), ('server_url', server_url),
                           ('base_path', base_path), ('icon_color', icon_color)):
            if value is not None:
                fields[key] = value

        previous = None
        credential_id = folder.credential_id
        if username is not None or password is not None:
            if folder.credential_id:
                try:
                    previous = self.credentials.get(folder.credential_id)
                except CorruptCredentialError:
                    logger.warning(f"Overwriting corrupt credentials of folder {folder_id}")
            if (username is None or password is None) and previous is None:
                raise CredentialsMissingError(
                    "Both username and password are required to set credentials",
                    details={'folder_id': folder_id})

            credentials = ServerCredentials(
                username=username if username is not None else previous.username,
                password=password if password is not None else previous.password
            )
            if not credential_id:
                credential_id = str(uuid.uuid4())
                fields['credential_id'] = credential_id
            self.credentials.put(credential_id, credentials)

        try:
            updated = self.registry.update(folder_id, **fields)
        except Exception:
            if 'credential_id' in fields:
                self.credentials.delete(credential_id)
            elif previous is not None:
                self.credentials.put(credential_id, previous)
            raise

        return updated

    def delete_folder(self, folder_id: str, delete_offline_files: bool = True):
        """
        Delete a folder and its credentials.

        Running downloads for the folder are cancelled and awaited first, each
        for at most cancel_timeout seconds. With delete_offline_files=False the
        offline copies stay on disk, detached from any folder, until
        cleanup_offline_cache removes them. If the registry cannot be written
        the folder keeps accepting downloads.
        """
        self._require_folder(folder_id)
        self.cache.detach_folder(folder_id, timeout=self.cancel_timeout)

        try:
            credential_id = self.registry.delete(folder_id)
        except Exception:
            logger.exception(f"Deleting folder {folder_id} failed, accepting downloads again")
            self.cache.reattach_folder(folder_id)
            raise

        if credential_id:
            self.credentials.delete(credential_id)

        if delete_offline_files:
            self.cache.remove_all_for_folder(folder_id, timeout=self.cancel_timeout)
        else:
            logger.info(f"Keeping offline files of deleted folder {folder_id}")

    def list_folders(self) -> List[VirtualFolder]:
        return self.registry.list()

    def get_folder(self, folder_id: str) -> Optional[VirtualFolder]:
        return self.registry.get(folder_id)

    def get_credentials(self, folder_id: str) -> ServerCredentials:
        """Credentials of a folder, e.g. for streaming with auth_headers."""
        return self._credentials_for(self._require_folder(folder_id))

    # Browsing and offline copies

    def browse(self, folder_id: str, path: str = '/') -> List[FileItem]:
        """List a folder directory, marking entries available offline."""
        folder = self._require_folder(folder_id)
        credentials = self._credentials_for(folder)
        items = self.client.list_directory(folder.server_url, folder.base_path,
                                           credentials, path)
        return self.cache.enrich(folder_id, items)

    def download_for_offline(self, folder_id: str, remote_path: str,
                             expected_size: Optional[int] = None,
                             progress_callback: Optional[ProgressCallback] = None,
                             wait: bool = True) -> OfflineFile:
        """Make a remote file available offline."""
        folder = self._require_folder(folder_id)
        credentials = self._credentials_for(folder)
        return self.cache.download(folder, credentials, remote_path,
                                   expected_size=expected_size,
                                   progress_callback=progress_callback,
                                   wait=wait)

    def cancel_download(self, folder_id: str, remote_path: str) -> bool:
        return self.cache.cancel(folder_id, remote_path)

    def cancel_all_downloads(self) -> int:
        """Cancel every running download, e.g. on shutdown."""
        return self.cache.cancel_all()

    def remove_offline_copy(self, offline_file_id: str):
        self.cache.remove(offline_file_id)

    def remove_offline_copy_by_path(self, folder_id: str, remote_path: str) -> bool:
        """
        Remove the offline copy of a remote file.

        Returns:
            False if the file had no offline copy
        """
        return self.cache.remove_by_path(folder_id, remote_path)

    def list_offline_files(self, folder_id: Optional[str] = None) -> List[OfflineFile]:
        """Offline copies of live folders; copies of deleted folders are hidden."""
        live = self.registry.ids()
        if folder_id is not None:
            return self.cache.list_for_folder(folder_id) if folder_id in live else []
        return [r for r in self.cache.list_all() if r.virtual_folder_id in live]

    def browse_offline(self, folder_id: str) -> List[FileItem]:
        """
        Offline copies of a folder as file items, without contacting the server.

        Raises:
            FolderNotFoundError: If the folder does not exist
        """
        self._require_folder(folder_id)
        records = sorted(self.cache.list_for_folder(folder_id),
                         key=lambda r: r.remote_path.lower())
        return [record.to_file_item() for record in records]

    def cleanup_offline_cache(self) -> Dict[str, Any]:
        """
        Prune stale records and remove copies of deleted folders.

        Returns:
            Dictionary with 'stale' (pruned record ids) and 'orphans' (count)
        """
        stale = self.cache.validate()
        orphans = self.cache.remove_orphans(self.registry.ids())
        logger.info(f"Offline cleanup: {len(stale)} stale records, {orphans} orphaned files")
        return {'stale': stale, 'orphans': orphans}

    def storage_usage(self) -> Dict[str, Any]:
        """Bytes used offline, in total and per live folder."""
        return {
            'total': self.cache.total_size(),
            'folders': {f.id: self.cache.size_for_folder(f.id)
                        for f in self.registry.list()}
        }
