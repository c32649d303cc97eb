"""Accepted document media types."""

import mimetypes

PDF = "application/pdf"
XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
XLS = "application/vnd.ms-excel"
JPEG = "image/jpeg"
PNG = "image/png"

SPREADSHEET_TYPES = frozenset({XLSX, XLS})
IMAGE_TYPES = frozenset({JPEG, PNG})
ACCEPTED_MEDIA_TYPES = frozenset({PDF, JPEG, PNG}) | SPREADSHEET_TYPES


def guess_media_type(file_name: str) -> str:
    """Guess MIME type from filename.

    Args:
        file_name: File name with extension

    Returns:
        MIME type string
    """
    content_type, _ = mimetypes.guess_type(file_name)
    return content_type or "application/octet-stream"
