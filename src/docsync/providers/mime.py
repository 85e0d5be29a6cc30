"""
MIME type helpers shared by file-based providers.
"""

import posixpath

DEFAULT_MIME_TYPE = "application/octet-stream"

# Extension to MIME type, for providers that do not report one
EXTENSION_MIME_TYPES: dict[str, str] = {
    # Text
    ".txt": "text/plain",
    ".md": "text/markdown",
    ".html": "text/html",
    ".htm": "text/html",
    ".css": "text/css",
    ".csv": "text/csv",
    ".xml": "application/xml",
    # Code
    ".js": "application/javascript",
    ".ts": "application/typescript",
    ".json": "application/json",
    ".yaml": "application/x-yaml",
    ".yml": "application/x-yaml",
    ".py": "text/x-python",
    ".go": "text/x-go",
    ".java": "text/x-java",
    ".c": "text/x-c",
    ".cpp": "text/x-c++",
    ".h": "text/x-c",
    ".hpp": "text/x-c++",
    ".rs": "text/x-rust",
    ".rb": "text/x-ruby",
    ".php": "text/x-php",
    ".sql": "application/sql",
    ".sh": "application/x-sh",
    # Documents
    ".pdf": "application/pdf",
    ".doc": "application/msword",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".xls": "application/vnd.ms-excel",
    ".xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ".ppt": "application/vnd.ms-powerpoint",
    ".pptx": "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    # Images
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".svg": "image/svg+xml",
    ".webp": "image/webp",
    # Archives
    ".zip": "application/zip",
    ".tar": "application/x-tar",
    ".gz": "application/gzip",
}

# Non-text types whose content is worth downloading
DOWNLOADABLE_MIME_TYPES = frozenset(
    {
        "application/json",
        "application/xml",
        "application/javascript",
        "application/x-yaml",
        "application/x-sh",
        "application/sql",
        "application/pdf",
    }
)


def mime_type_for_name(filename: str) -> str:
    """
    Guess a MIME type from a file name's extension.

    Args:
        filename: File name or path.

    Returns:
        MIME type, or application/octet-stream if unknown.
    """
    _, ext = posixpath.splitext(filename)
    return EXTENSION_MIME_TYPES.get(ext.lower(), DEFAULT_MIME_TYPE)


def should_download_content(mime_type: str) -> bool:
    """Return True for text-like types whose content is indexed."""
    return mime_type.startswith("text/") or mime_type in DOWNLOADABLE_MIME_TYPES


def matches_mime_filter(mime_type: str, filters: list[str]) -> bool:
    """
    Check a MIME type against a configured filter list.

    Entries match exactly or as a prefix ("text/" matches "text/plain").
    An empty filter list matches everything.
    """
    if not filters:
        return True
    return any(mime_type == f or mime_type.startswith(f) for f in filters)
