"""Mount WebDAV servers as virtual folders and keep files available offline."""

__version__ = '1.0.0'
