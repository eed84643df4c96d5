# core/registry.py
"""Durable store of virtual folder records."""

import logging
import os
import uuid
from threading import Lock
from typing import Dict, List, Optional, Set

from davmount.core.errors import FolderNotFoundError, InvalidFolderError
from davmount.core.models import VirtualFolder, now_iso
from davmount.core.storage import JsonRecordFile
from davmount.utils.helpers import normalize_path, normalize_server_url, validate_url

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ('name', 'server_url', 'base_path', 'credential_id', 'icon_color')


class VirtualFolderRegistry:
    """
    Creation-ordered collection of virtual folders persisted as JSON.

    Only structural invariants are enforced here; whether the server is
    reachable is the caller's business.
    """

    def __init__(self, config_dir: str):
        self._file = JsonRecordFile(os.path.join(config_dir, 'folders.json'))
        self._lock = Lock()
        self._folders: Dict[str, VirtualFolder] = {}

        for data in self._file.load():
            try:
                folder = VirtualFolder.from_dict(data)
            except KeyError as e:
                logger.warning(f"Skipping folder record missing field {e}")
                continue
            self._folders[folder.id] = folder

        logger.info(f"Loaded {len(self._folders)} virtual folders")

    @staticmethod
    def _validated(folder: VirtualFolder) -> VirtualFolder:
        """Normalize fields and check structural invariants."""
        name = (folder.name or '').strip()
        if not name:
            raise InvalidFolderError("Folder name must not be empty")

        server_url = normalize_server_url(folder.server_url)
        if not validate_url(server_url):
            raise InvalidFolderError(
                f"Server URL must be an absolute http(s) URL: {folder.server_url!r}")

        if not (folder.base_path or '').strip():
            raise InvalidFolderError("Base path must not be empty")
        base_path = normalize_path(folder.base_path.strip())

        if folder.icon_color is not None and not isinstance(folder.icon_color, int):
            raise InvalidFolderError("icon_color must be an integer")

        return folder.copy_with(name=name, server_url=server_url, base_path=base_path)

    def _persist(self):
        self._file.save([f.to_dict() for f in self._folders.values()])

    def create(self, name: str, server_url: str, base_path: str,
               credential_id: Optional[str] = None,
               icon_color: Optional[int] = None) -> VirtualFolder:
        """
        Create and persist a new virtual folder with a fresh id.

        Raises:
            InvalidFolderError: a structural invariant is violated
        """
        timestamp = now_iso()
        folder = self._validated(VirtualFolder(
            id=str(uuid.uuid4()),
            name=name,
            server_url=server_url,
            base_path=base_path,
            credential_id=credential_id,
            icon_color=icon_color,
            created_at=timestamp,
            updated_at=timestamp
        ))

        with self._lock:
            self._folders[folder.id] = folder
            try:
                self._persist()
            except OSError:
                del self._folders[folder.id]
                raise

        logger.info(f"Virtual folder '{folder.name}' created ({folder.id})")
        return folder

    def update(self, folder_id: str, **fields) -> VirtualFolder:
        """
        Update any field except the id.

        Raises:
            FolderNotFoundError: unknown folder_id
            InvalidFolderError: unknown field or invariant violated
        """
        unknown = set(fields) - set(UPDATABLE_FIELDS)
        if unknown:
            raise InvalidFolderError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        with self._lock:
            existing = self._folders.get(folder_id)
            if existing is None:
                raise FolderNotFoundError(f"Folder not found: {folder_id}",
                                          details={'folder_id': folder_id})

            updated = self._validated(existing.copy_with(updated_at=now_iso(), **fields))
            self._folders[folder_id] = updated
            try:
                self._persist()
            except OSError:
                self._folders[folder_id] = existing
                raise

        logger.info(f"Virtual folder '{updated.name}' updated ({folder_id})")
        return updated

    def delete(self, folder_id: str) -> Optional[str]:
        """
        Remove a folder record.

        Returns:
            The credential id the folder referenced, so it can be cleaned up

        Raises:
            FolderNotFoundError: unknown folder_id
        """
        with self._lock:
            folder = self._folders.pop(folder_id, None)
            if folder is None:
                raise FolderNotFoundError(f"Folder not found: {folder_id}",
                                          details={'folder_id': folder_id})
            try:
                self._persist()
            except OSError:
                self._folders[folder_id] = folder
                raise

        logger.info(f"Virtual folder '{folder.name}' deleted ({folder_id})")
        return folder.credential_id

    def get(self, folder_id: str) -> Optional[VirtualFolder]:
        with self._lock:
            return self._folders.get(folder_id)

    def list(self) -> List[VirtualFolder]:
        """All folders in creation order."""
        with self._lock:
            return list(self._folders.values())

    def ids(self) -> Set[str]:
        with self._lock:
            return set(self._folders)

    def __len__(self) -> int:
        with self._lock:
            return len(self._folders)
