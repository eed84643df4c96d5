# core/offline_cache.py
"""Offline copies of remote files and the records that track them."""

import hashlib
import logging
import os
import shutil
import uuid
from threading import Event, Lock
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from davmount.core.errors import (DownloadCancelledError, DownloadInProgressError,
                                  FolderNotFoundError, InvalidPathError,
                                  ServerError, StorageFullError)
from davmount.core.models import (FileItem, OfflineFile, ServerCredentials,
                                  VirtualFolder, now_iso)
from davmount.core.storage import JsonRecordFile
from davmount.core.webdav_client import ProgressCallback, WebDAVClient
from davmount.utils.helpers import normalize_path, safe_filename
from davmount.utils.mime import resolve_mime_type

logger = logging.getLogger(__name__)

Key = Tuple[str, str]


def _disk_free(path: str) -> int:
    return shutil.disk_usage(path).free


class _ActiveDownload:
    """Shared state of one in-flight download."""

    def __init__(self, destination: str):
        self.destination = destination
        self.done = Event()
        self.cancel = Event()
        self.result: Optional[OfflineFile] = None
        self.error: Optional[BaseException] = None


class OfflineCacheManager:
    """
    Keeps offline records consistent with the offline directory and with the
    set of live virtual folders.

    Layout on disk is ``<offline_dir>/<folder id>/<remote path>``. Nothing
    else writes below offline_dir. Record metadata is guarded by one lock
    that is never held across network I/O.
    """

    def __init__(self, config_dir: str, client: WebDAVClient,
                 offline_dir: Optional[str] = None, min_free_space: int = 0,
                 free_space: Optional[Callable[[str], int]] = None):
        """
        Initialize offline cache.

        Args:
            config_dir: Directory holding offline_files.json
            client: WebDAV client used for downloads
            offline_dir: Directory for cached files (default <config_dir>/offline)
            min_free_space: Bytes that must remain free after a download
            free_space: Function returning free bytes for a path
        """
        self.client = client
        self.offline_dir = os.path.abspath(offline_dir or os.path.join(config_dir, 'offline'))
        self.min_free_space = min_free_space
        self._free_space = free_space or _disk_free
        self._file = JsonRecordFile(os.path.join(config_dir, 'offline_files.json'))

        self._lock = Lock()
        self._records: Dict[str, OfflineFile] = {}
        self._index: Dict[Key, str] = {}
        self._active: Dict[Key, _ActiveDownload] = {}
        self._detached: Set[str] = set()

        os.makedirs(self.offline_dir, exist_ok=True)
        self._load()

    # Persistence

    def _load(self):
        for data in self._file.load():
            try:
                record = OfflineFile.from_dict(data)
            except (KeyError, ValueError, TypeError) as e:
                logger.warning(f"Skipping malformed offline record: {e}")
                continue
            previous = self._index.get(record.key)
            if previous is not None:
                logger.warning(f"Duplicate offline record for {record.key}, keeping newest")
                del self._records[previous]
            self._records[record.id] = record
            self._index[record.key] = record.id

        logger.info(f"Loaded {len(self._records)} offline file records")

    def _persist(self):
        """Write all records. Caller holds the lock."""
        self._file.save([r.to_dict() for r in self._records.values()])

    def _drop(self, record_id: str) -> Optional[OfflineFile]:
        """Remove a record from memory. Caller holds the lock."""
        record = self._records.pop(record_id, None)
        if record is not None:
            self._index.pop(record.key, None)
        return record

    # Filesystem helpers

    def _folder_dir(self, folder_id: str) -> str:
        return os.path.join(self.offline_dir, safe_filename(folder_id))

    def _local_path_for(self, folder_id: str, remote_path: str) -> str:
        """Derive a unique local path for a key. Caller holds the lock."""
        segments = [safe_filename(s) for s in remote_path.strip('/').split('/') if s]
        if not segments:
            # The folder directory itself must never become a file
            raise InvalidPathError(f"Not a file path: {remote_path!r}",
                                   details={'folder_id': folder_id, 'path': remote_path})
        candidate = os.path.join(self._folder_dir(folder_id), *segments)

        taken = {r.local_path for r in self._records.values() if r.key != (folder_id, remote_path)}
        taken.update(a.destination for a in self._active.values())
        if candidate in taken:
            # Two remote names mapped to the same safe name
            digest = hashlib.sha1(remote_path.encode('utf-8')).hexdigest()[:8]
            root, ext = os.path.splitext(candidate)
            candidate = f"{root}~{digest}{ext}"
        return candidate

    def _delete_local_file(self, local_path: str):
        """Delete a cached file; an already missing file counts as success."""
        try:
            os.remove(local_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not delete offline file {local_path}: {e}")
            return
        self._cleanup_empty_directories(local_path)

    def _cleanup_empty_directories(self, file_path: str):
        """Remove empty parents of file_path up to offline_dir."""
        directory = os.path.dirname(file_path)
        while (directory.startswith(self.offline_dir + os.sep)
               and directory != self.offline_dir):
            try:
                os.rmdir(directory)
            except OSError:
                break
            directory = os.path.dirname(directory)

    def _available_bytes(self) -> int:
        return max(0, self._free_space(self.offline_dir) - self.min_free_space)

    # Downloads

    def download(self, folder: VirtualFolder, credentials: ServerCredentials,
                 remote_path: str, expected_size: Optional[int] = None,
                 progress_callback: Optional[ProgressCallback] = None,
                 wait: bool = True) -> OfflineFile:
        """
        Download a remote file and record it as available offline.

        An existing record for the same (folder, remote path) is replaced by a
        fresh one. A concurrent call for the same key waits for the running
        download and returns its result, or with wait=False is rejected.

        Args:
            folder: Owning virtual folder
            credentials: Credentials for the folder's server
            remote_path: Path below the folder's base path
            expected_size: Size from a prior listing, checked before starting
            progress_callback: Called with (bytes_received, total_bytes)
            wait: Join a running download of the same file instead of failing

        Raises:
            InvalidPathError: remote_path is empty or the folder root
            StorageFullError: not enough free space
            DownloadInProgressError: already running and wait is False
            DownloadCancelledError: cancelled, or the folder was deleted
            FolderNotFoundError: the folder is being deleted
            LocalStorageError: the file cannot be written locally
            WebDavError subclasses: network or server failures, or an
                empty response body (ServerError)
        """
        remote_path = normalize_path(remote_path)
        if remote_path == '/':
            raise InvalidPathError("The folder root is a directory, not a file",
                                   details={'folder_id': folder.id, 'path': remote_path})
        key = (folder.id, remote_path)

        with self._lock:
            if folder.id in self._detached:
                raise FolderNotFoundError(f"Folder not found: {folder.id}",
                                          details={'folder_id': folder.id})
            task = self._active.get(key)
            if task is not None and not wait:
                raise DownloadInProgressError(
                    f"Download of {remote_path} is already running",
                    details={'folder_id': folder.id, 'path': remote_path})
            owner = task is None
            if owner:
                task = _ActiveDownload(self._local_path_for(folder.id, remote_path))
                self._active[key] = task

        if not owner:
            logger.info(f"Download of {remote_path} already running, waiting for it")
            task.done.wait()
            if task.error is not None:
                raise task.error
            return task.result

        try:
            task.result = self._run_download(folder, credentials, remote_path,
                                             task, expected_size, progress_callback)
            return task.result
        except BaseException as e:
            task.error = e
            raise
        finally:
            with self._lock:
                self._active.pop(key, None)
            task.done.set()

    def _run_download(self, folder: VirtualFolder, credentials: ServerCredentials,
                      remote_path: str, task: _ActiveDownload,
                      expected_size: Optional[int],
                      progress_callback: Optional[ProgressCallback]) -> OfflineFile:
        key = (folder.id, remote_path)

        with self._lock:
            existing_id = self._index.get(key)
            existing = self._records.get(existing_id) if existing_id else None

        reclaimable = existing.file_size if existing else 0
        available = self._available_bytes() + reclaimable
        if expected_size is not None and expected_size > available:
            logger.warning(f"Not enough space for {remote_path}: "
                           f"{expected_size} bytes needed, {available} available")
            raise StorageFullError(
                f"Not enough free space for {remote_path}",
                details={'required': expected_size, 'available': available})

        if existing is not None:
            logger.info(f"Replacing offline copy of {remote_path}")
            self.remove(existing.id)

        result = self.client.download(
            folder.server_url, folder.base_path, credentials, remote_path,
            task.destination, progress_callback=progress_callback,
            cancel_event=task.cancel, max_bytes=available)

        with self._lock:
            if task.cancel.is_set() or folder.id in self._detached:
                self._delete_local_file(task.destination)
                raise DownloadCancelledError(f"Download cancelled: {remote_path}",
                                             details={'path': remote_path})

            if result.bytes_written == 0:
                self._delete_local_file(task.destination)
                raise ServerError(f"Downloaded file is empty: {remote_path}",
                                  details={'path': remote_path, 'bytes_written': 0})

            record = OfflineFile(
                id=str(uuid.uuid4()),
                virtual_folder_id=folder.id,
                remote_path=remote_path,
                local_path=task.destination,
                file_size=result.bytes_written,
                mime_type=resolve_mime_type(remote_path, result.content_type),
                downloaded_at=now_iso()
            )
            self._records[record.id] = record
            self._index[key] = record.id
            try:
                self._persist()
            except OSError:
                self._drop(record.id)
                self._delete_local_file(task.destination)
                raise

        logger.info(f"Offline copy stored: {remote_path} -> {record.local_path}")
        return record

    def is_downloading(self, folder_id: str, remote_path: str) -> bool:
        with self._lock:
            return (folder_id, normalize_path(remote_path)) in self._active

    def cancel(self, folder_id: str, remote_path: str) -> bool:
        """Cancel a running download. Returns False if none was running."""
        with self._lock:
            task = self._active.get((folder_id, normalize_path(remote_path)))
        if task is None:
            return False
        task.cancel.set()
        logger.info(f"Download of {remote_path} cancelled")
        return True

    def cancel_all(self) -> int:
        """Cancel every running download. Returns how many were running."""
        with self._lock:
            tasks = list(self._active.values())
        for task in tasks:
            task.cancel.set()
        if tasks:
            logger.info(f"Cancelled {len(tasks)} running downloads")
        return len(tasks)

    def _cancel_folder_downloads(self, folder_id: str, wait: bool,
                                 timeout: Optional[float]) -> int:
        with self._lock:
            tasks = [t for (fid, _), t in self._active.items() if fid == folder_id]
        for task in tasks:
            task.cancel.set()
        if wait:
            for task in tasks:
                if not task.done.wait(timeout):
                    logger.warning(f"Download into {task.destination} did not stop "
                                   f"within {timeout}s, leaving it to finish cancelled")
        return len(tasks)

    def detach_folder(self, folder_id: str, wait: bool = True,
                      timeout: Optional[float] = None) -> int:
        """
        Stop accepting downloads for a folder that is being deleted.

        Running downloads for the folder are cancelled and, with wait, awaited.
        A download that finishes afterwards does not create a record.

        Returns:
            Number of downloads that were cancelled
        """
        with self._lock:
            self._detached.add(folder_id)
        cancelled = self._cancel_folder_downloads(folder_id, wait, timeout)
        if cancelled:
            logger.info(f"Cancelled {cancelled} downloads for folder {folder_id}")
        return cancelled

    def reattach_folder(self, folder_id: str):
        """Accept downloads for a folder again after a failed deletion."""
        with self._lock:
            self._detached.discard(folder_id)

    def is_detached(self, folder_id: str) -> bool:
        with self._lock:
            return folder_id in self._detached

    # Removal and maintenance

    def remove(self, offline_file_id: str):
        """Delete an offline copy and its record. Unknown ids are ignored."""
        with self._lock:
            record = self._drop(offline_file_id)
            if record is None:
                logger.debug(f"No offline record {offline_file_id} to remove")
                return
            self._persist()

        self._delete_local_file(record.local_path)
        logger.info(f"Offline copy removed: {record.remote_path}")

    def remove_by_path(self, folder_id: str, remote_path: str) -> bool:
        """
        Delete the offline copy of (folder_id, remote_path) if there is one.

        Returns:
            False if no copy existed
        """
        record = self.lookup(folder_id, remote_path)
        if record is None:
            return False
        self.remove(record.id)
        return True

    def remove_all_for_folder(self, folder_id: str,
                              timeout: Optional[float] = None) -> int:
        """
        Delete every offline copy of a folder, including running downloads.

        Once no download for the folder is running any more, a detached
        folder is forgotten.

        Args:
            folder_id: Folder whose copies are removed
            timeout: Seconds to wait for each cancelled download

        Returns:
            Number of records removed
        """
        self._cancel_folder_downloads(folder_id, wait=True, timeout=timeout)

        with self._lock:
            records = [r for r in self._records.values()
                       if r.virtual_folder_id == folder_id]
            for record in records:
                self._drop(record.id)
            if records:
                self._persist()
            if not any(fid == folder_id for fid, _ in self._active):
                self._detached.discard(folder_id)

        for record in records:
            self._delete_local_file(record.local_path)

        folder_dir = self._folder_dir(folder_id)
        if os.path.isdir(folder_dir):
            try:
                shutil.rmtree(folder_dir)
            except OSError as e:
                logger.warning(f"Could not remove {folder_dir}: {e}")

        logger.info(f"Removed {len(records)} offline files for folder {folder_id}")
        return len(records)

    def validate(self) -> List[str]:
        """
        Prune records whose local file is missing.

        Returns:
            Ids of the pruned records
        """
        with self._lock:
            stale = [r for r in self._records.values()
                     if not os.path.isfile(r.local_path)]
            for record in stale:
                self._drop(record.id)
            if stale:
                self._persist()

        for record in stale:
            logger.warning(f"Pruned stale offline record {record.id} "
                           f"({record.remote_path}): local file missing")
        return [r.id for r in stale]

    def remove_orphans(self, live_folder_ids: Iterable[str]) -> int:
        """Remove offline copies whose folder no longer exists and forget those folders."""
        live = set(live_folder_ids)
        with self._lock:
            orphan_folders = {r.virtual_folder_id for r in self._records.values()
                              if r.virtual_folder_id not in live}

        removed = 0
        for folder_id in orphan_folders:
            removed += self.remove_all_for_folder(folder_id)

        with self._lock:
            running = {fid for fid, _ in self._active}
            self._detached = {fid for fid in self._detached
                              if fid in live or fid in running}
        return removed

    def clear(self) -> int:
        """Delete every offline copy. Returns number of records removed."""
        with self._lock:
            folder_ids = {r.virtual_folder_id for r in self._records.values()}
        return sum(self.remove_all_for_folder(fid) for fid in folder_ids)

    # Queries

    def lookup(self, folder_id: str, remote_path: str) -> Optional[OfflineFile]:
        """Record for (folder_id, remote_path), or None."""
        with self._lock:
            record_id = self._index.get((folder_id, normalize_path(remote_path)))
            return self._records.get(record_id) if record_id else None

    def get(self, offline_file_id: str) -> Optional[OfflineFile]:
        with self._lock:
            return self._records.get(offline_file_id)

    def list_all(self) -> List[OfflineFile]:
        with self._lock:
            records = list(self._records.values())
        return sorted(records, key=lambda r: (r.virtual_folder_id, r.remote_path))

    def list_for_folder(self, folder_id: str) -> List[OfflineFile]:
        with self._lock:
            records = [r for r in self._records.values() if r.virtual_folder_id == folder_id]
        return sorted(records, key=lambda r: r.remote_path)

    def enrich(self, folder_id: str, items: List[FileItem]) -> List[FileItem]:
        """
        Mark listing entries that have an offline copy.

        A record whose file has vanished is pruned instead of reported.
        """
        result = []
        stale = []
        for item in items:
            record = None if item.is_directory else self.lookup(folder_id, item.path)
            if record is not None and not os.path.isfile(record.local_path):
                stale.append(record.id)
                record = None
            result.append(item.with_offline(record.local_path) if record else item)

        for record_id in stale:
            logger.warning(f"Offline file for record {record_id} is missing, pruning")
            self.remove(record_id)
        return result

    def total_size(self) -> int:
        with self._lock:
            return sum(r.file_size for r in self._records.values())

    def size_for_folder(self, folder_id: str) -> int:
        with self._lock:
            return sum(r.file_size for r in self._records.values()
                       if r.virtual_folder_id == folder_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
