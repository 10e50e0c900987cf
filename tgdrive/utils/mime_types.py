"""MIME type lookup and download header helpers"""

import mimetypes
import re
from pathlib import Path
from urllib.parse import quote


# Types the platform mimetypes table gets wrong or lacks
MIME_OVERRIDES = {
    '.md': 'text/markdown',
    '.yaml': 'text/yaml',
    '.yml': 'text/yaml',
    '.py': 'text/x-python',
    '.ts': 'text/typescript',
    '.rar': 'application/vnd.rar',
    '.7z': 'application/x-7z-compressed',
    '.flac': 'audio/flac',
    '.m4a': 'audio/mp4',
    '.mkv': 'video/x-matroska',
    '.webp': 'image/webp',
    '.apk': 'application/vnd.android.package-archive',
    '.sqlite': 'application/x-sqlite3',
    '.db': 'application/x-sqlite3',
    '.torrent': 'application/x-bittorrent',
    '.log': 'text/plain',
}

FILE_CATEGORIES = {
    'image': {'.jpg', '.jpeg', '.png', '.gif', '.bmp', '.webp', '.svg'},
    'video': {'.mp4', '.avi', '.mkv', '.mov', '.wmv', '.flv', '.webm'},
    'audio': {'.mp3', '.wav', '.flac', '.aac', '.ogg', '.m4a'},
    'document': {'.pdf', '.doc', '.docx', '.txt', '.rtf', '.odt'},
    'spreadsheet': {'.xls', '.xlsx', '.csv', '.ods'},
    'presentation': {'.ppt', '.pptx', '.odp'},
    'archive': {'.zip', '.rar', '.7z', '.tar', '.gz', '.bz2'},
    'code': {'.js', '.html', '.css', '.json', '.xml', '.py', '.java', '.cpp', '.c'},
}

DEFAULT_MIME_TYPE = "application/octet-stream"


def get_mime_type(filename: str) -> str:
    """
    Get MIME type from a file name

    Args:
        filename: File name (only the extension matters)

    Returns:
        MIME type, application/octet-stream when unknown
    """
    if not filename:
        return DEFAULT_MIME_TYPE

    ext = Path(filename).suffix.lower()
    if ext in MIME_OVERRIDES:
        return MIME_OVERRIDES[ext]

    mime_type, _ = mimetypes.guess_type(filename)
    return mime_type or DEFAULT_MIME_TYPE


def get_file_category(filename: str) -> str:
    """Coarse file category used by storage statistics"""
    ext = Path(filename or "").suffix.lower()
    if not ext:
        return "other"
    for category, extensions in FILE_CATEGORIES.items():
        if ext in extensions:
            return category
    return ext[1:].upper()


def sanitize_file_name(filename: str) -> str:
    """
    Make a file name safe for a Content-Disposition header

    Args:
        filename: Original file name

    Returns:
        Safe file name (never empty, always has an extension)
    """
    if not filename:
        return "download"

    safe_name = re.sub(r'[<>:"/\\|?*]', '_', filename)
    safe_name = re.sub(r'[\x00-\x1f\x7f-\x9f]', '', safe_name)
    safe_name = safe_name.replace("'", "").replace('"', '')
    safe_name = re.sub(r'[;,]', '_', safe_name).strip()

    if not safe_name or safe_name in ('.', '..'):
        safe_name = "download"

    safe_name = safe_name[:200]
    if '.' not in safe_name:
        safe_name += '.bin'

    return safe_name


def create_content_disposition(filename: str) -> str:
    """Attachment header with an ASCII fallback and an RFC 5987 UTF-8 name"""
    safe_name = sanitize_file_name(filename)
    ascii_name = re.sub(r'[^\x20-\x7e]', '_', safe_name)
    encoded_name = quote(safe_name, safe='')
    return f"attachment; filename=\"{ascii_name}\"; filename*=UTF-8''{encoded_name}"
