# services/__init__.py
"""Services built on top of the core components."""

from davmount.services.folder_service import FolderService

__all__ = ['FolderService']
