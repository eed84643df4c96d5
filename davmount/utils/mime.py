# utils/mime.py
"""MIME type detection for remote and offline files."""

import mimetypes
from typing import Optional

DEFAULT_MIME = 'application/octet-stream'

# Media types a headset player cares about, plus common documents. Checked
# before the platform mimetypes table, which varies between systems.
EXTENSION_MIME_TYPES = {
    # Images
    'jpg': 'image/jpeg',
    'jpeg': 'image/jpeg',
    'png': 'image/png',
    'gif': 'image/gif',
    'webp': 'image/webp',
    'bmp': 'image/bmp',
    'heic': 'image/heic',
    'heif': 'image/heif',
    # Videos
    'mp4': 'video/mp4',
    'mkv': 'video/x-matroska',
    'webm': 'video/webm',
    'mov': 'video/quicktime',
    'avi': 'video/x-msvideo',
    'm4v': 'video/x-m4v',
    '3gp': 'video/3gpp',
    'ts': 'video/mp2t',
    # Audio
    'mp3': 'audio/mpeg',
    'wav': 'audio/wav',
    'flac': 'audio/flac',
    'aac': 'audio/aac',
    'ogg': 'audio/ogg',
    'm4a': 'audio/mp4',
    # Documents
    'pdf': 'application/pdf',
    'txt': 'text/plain',
    'json': 'application/json',
    'xml': 'application/xml',
    'html': 'text/html',
    'htm': 'text/html',
    # Archives
    'zip': 'application/zip',
    'rar': 'application/x-rar-compressed',
    '7z': 'application/x-7z-compressed',
    'tar': 'application/x-tar',
    'gz': 'application/gzip',
}


def get_extension(filename: str) -> Optional[str]:
    """Return the lower-cased extension without the dot, or None."""
    name = filename.rsplit('/', 1)[-1]
    if '.' not in name or name.endswith('.'):
        return None
    return name.rsplit('.', 1)[-1].lower()


def mime_from_filename(filename: str) -> str:
    """Guess a MIME type from a file name, falling back to octet-stream."""
    ext = get_extension(filename)
    if ext is None:
        return DEFAULT_MIME
    if ext in EXTENSION_MIME_TYPES:
        return EXTENSION_MIME_TYPES[ext]
    guessed, _ = mimetypes.guess_type(f"file.{ext}")
    return guessed or DEFAULT_MIME


def clean_content_type(content_type: Optional[str]) -> Optional[str]:
    """Strip parameters such as charset from a Content-Type header value."""
    if not content_type:
        return None
    value = content_type.split(';', 1)[0].strip().lower()
    return value or None


def resolve_mime_type(filename: str, content_type: Optional[str] = None) -> str:
    """
    Pick the MIME type for a file.

    The server-reported content type wins unless it is missing or the
    generic octet-stream, in which case the extension decides.
    """
    cleaned = clean_content_type(content_type)
    if cleaned and cleaned != DEFAULT_MIME:
        return cleaned
    return mime_from_filename(filename)


def is_image(mime_type: Optional[str]) -> bool:
    return bool(mime_type) and mime_type.lower().startswith('image/')


def is_video(mime_type: Optional[str]) -> bool:
    return bool(mime_type) and mime_type.lower().startswith('video/')


def is_audio(mime_type: Optional[str]) -> bool:
    return bool(mime_type) and mime_type.lower().startswith('audio/')


def is_media(mime_type: Optional[str]) -> bool:
    return is_image(mime_type) or is_video(mime_type) or is_audio(mime_type)
