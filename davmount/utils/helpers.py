# utils/helpers.py
"""Helper functions for davmount."""

import os
import logging
import tempfile
from typing import Union
from urllib.parse import urlsplit

logger = logging.getLogger(__name__)


def format_size(size_bytes: Union[int, str, None]) -> str:
    """Format size in bytes to human-readable string."""
    try:
        if isinstance(size_bytes, str):
            size_bytes = int(size_bytes) if size_bytes.strip() else 0
        elif size_bytes is None:
            size_bytes = 0
        elif not isinstance(size_bytes, (int, float)):
            size_bytes = 0

        if size_bytes < 1024:
            return f"{int(size_bytes)} B"

        units = ['B', 'KB', 'MB', 'GB', 'TB']
        i = 0
        size = float(size_bytes)

        while size >= 1024.0 and i < len(units) - 1:
            size /= 1024.0
            i += 1

        return f"{size:.1f} {units[i]}"

    except (ValueError, TypeError):
        return "0 B"


def normalize_path(path: str) -> str:
    """Normalize remote path to use forward slashes and a leading slash."""
    if not path:
        return "/"
    path = path.replace('\\', '/')
    if not path.startswith('/'):
        path = '/' + path
    while '//' in path:
        path = path.replace('//', '/')
    # Remove trailing / except for root
    if path != '/' and path.endswith('/'):
        path = path.rstrip('/')
    return path or '/'


def join_path(parent: str, child: str) -> str:
    """Join path components with forward slashes."""
    parent = normalize_path(parent)
    child = child.strip('/')

    if not child:
        return parent
    if parent == '/':
        return f"/{child}"
    return f"{parent}/{child}"


def get_parent_path(path: str) -> str:
    """Get parent directory path."""
    path = normalize_path(path)
    if path == '/':
        return '/'

    parent = path.rsplit('/', 1)[0]
    return parent or '/'


def get_filename(path: str) -> str:
    """Get filename from path."""
    path = normalize_path(path)
    return path.rsplit('/', 1)[-1] or path


def normalize_server_url(url: str) -> str:
    """Strip whitespace and trailing slashes from a server URL."""
    return (url or '').strip().rstrip('/')


def validate_url(url: str) -> bool:
    """Check that url is an absolute http(s) URL with a host."""
    if not url:
        return False

    parts = urlsplit(url.strip())
    return parts.scheme in ('http', 'https') and bool(parts.netloc)


def safe_filename(filename: str) -> str:
    """Remove unsafe characters from filename."""
    # Remove path separators
    filename = filename.replace('/', '_').replace('\\', '_')

    # Remove other unsafe characters
    unsafe_chars = '<>:"|?*\x00'
    for char in unsafe_chars:
        filename = filename.replace(char, '_')

    filename = filename.strip()
    if filename in ('', '.', '..'):
        filename = filename.replace('.', '_') or '_'
    return filename


def atomic_write(path: str, data: bytes, mode: int = None):
    """
    Write bytes to path through a temporary file in the same directory.

    Args:
        path: Target file path
        data: Content to write
        mode: Optional permission bits applied before the file is moved in
    """
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(dir=directory, prefix='.tmp-')
    try:
        with os.fdopen(fd, 'wb') as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        if mode is not None:
            try:
                os.chmod(tmp_path, mode)
            except OSError:
                logger.debug(f"Could not set permissions on {tmp_path}")
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.remove(tmp_path)
        except FileNotFoundError:
            pass
        raise
