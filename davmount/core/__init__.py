# core/__init__.py
"""Core modules for davmount."""

from davmount.core.config import ConfigManager, get_data_dir
from davmount.core.credentials import CredentialStore
from davmount.core.models import (ConnectionResult, FileItem, OfflineFile,
                                  ServerCredentials, VirtualFolder)
from davmount.core.offline_cache import OfflineCacheManager
from davmount.core.registry import VirtualFolderRegistry
from davmount.core.webdav_client import WebDAVClient

__all__ = [
    'ConfigManager',
    'get_data_dir',
    'CredentialStore',
    'ConnectionResult',
    'FileItem',
    'OfflineFile',
    'ServerCredentials',
    'VirtualFolder',
    'OfflineCacheManager',
    'VirtualFolderRegistry',
    'WebDAVClient'
]
