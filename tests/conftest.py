"""Test fixtures: temp data directory, fake WebDAV server, wired-up service."""

import os
import threading

import pytest

from davmount.core.credentials import CredentialStore
from davmount.core.errors import DownloadCancelledError, StorageFullError
from davmount.core.models import (ConnectionResult, DownloadResult,
                                  ServerCredentials, VirtualFolder)
from davmount.core.offline_cache import OfflineCacheManager
from davmount.core.registry import VirtualFolderRegistry
from davmount.services.folder_service import FolderService

MB = 1024 * 1024
GB = 1024 * MB


class FakeWebDAVClient:
    """In-memory stand-in for WebDAVClient."""

    def __init__(self):
        self.files = {}
        self.listings = {}
        self.connection_result = ConnectionResult.CONNECTED
        self.content_type = None
        self.error = None
        self.writes = []
        self.connection_tests = []
        # Set gate to an Event to hold downloads until it is set
        self.gate = None
        self.ignore_cancel = False
        self.started = threading.Event()

    def test_connection(self, server_url, base_path, credentials):
        self.connection_tests.append((server_url, base_path, credentials))
        return self.connection_result

    def list_directory(self, server_url, base_path, credentials, path='/'):
        if self.error is not None:
            raise self.error
        return list(self.listings.get(path, []))

    def download(self, server_url, base_path, credentials, remote_path,
                 destination, progress_callback=None, cancel_event=None,
                 max_bytes=None):
        self.started.set()
        if self.gate is not None:
            self.gate.wait(5)
        if self.error is not None:
            raise self.error
        if cancel_event is not None and cancel_event.is_set() and not self.ignore_cancel:
            raise DownloadCancelledError(f"Download cancelled: {remote_path}")

        data = self.files[remote_path]
        if max_bytes is not None and len(data) > max_bytes:
            raise StorageFullError(f"Not enough free space for {remote_path}")

        os.makedirs(os.path.dirname(destination), exist_ok=True)
        with open(destination, 'wb') as f:
            f.write(data)
        self.writes.append((remote_path, destination))
        if progress_callback:
            progress_callback(len(data), len(data))
        return DownloadResult(bytes_written=len(data), content_type=self.content_type)


class FreeSpace:
    """Adjustable free-space function."""

    def __init__(self, free=10 * GB):
        self.free = free

    def __call__(self, path):
        return self.free


@pytest.fixture
def data_dir(tmp_path):
    """Provide an empty data directory."""
    return str(tmp_path / 'data')


@pytest.fixture
def fake_client():
    return FakeWebDAVClient()


@pytest.fixture
def free_space():
    return FreeSpace()


@pytest.fixture
def cache(data_dir, fake_client, free_space):
    """Offline cache writing below the temp data directory."""
    return OfflineCacheManager(data_dir, fake_client, free_space=free_space)


@pytest.fixture
def registry(data_dir):
    return VirtualFolderRegistry(data_dir)


@pytest.fixture
def credential_store(data_dir):
    return CredentialStore(data_dir)


@pytest.fixture
def service(registry, credential_store, fake_client, cache):
    """FolderService over real stores and a fake server."""
    return FolderService(registry, credential_store, fake_client, cache)


@pytest.fixture
def folder():
    return VirtualFolder(id='folder-1', name='Media',
                         server_url='https://cloud.example.com',
                         base_path='/dav/files/u')


@pytest.fixture
def credentials():
    return ServerCredentials(username='u', password='p')
