"""File attachments on design requests.

Uploads go straight from the browser to the upload provider. The provider then
calls `/api/uploads/complete`, and that callback is what creates the row here.
"""

from __future__ import annotations

import posixpath
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from design_platform.errors import ValidationError
from design_platform.util.time import utcnow_iso


MB = 1024 * 1024

IMAGE_MAX_BYTES = 4 * MB
PDF_MAX_BYTES = 16 * MB

_IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg", ".gif", ".webp", ".svg", ".bmp", ".tif", ".tiff", ".heic")


def _debug(msg: str) -> None:
    print(f"[files] {msg}")


def classify(name: str, content_type: str | None = None) -> Optional[str]:
    """'image', 'pdf', or None for anything the uploader does not accept."""
    ct = (content_type or "").strip().lower()
    if ct.startswith("image/"):
        return "image"
    if ct == "application/pdf":
        return "pdf"

    ext = posixpath.splitext((name or "").lower())[1]
    if ext == ".pdf":
        return "pdf"
    if ext in _IMAGE_EXTENSIONS:
        return "image"
    return None


def check_upload(name: str, size: int, content_type: str | None = None) -> str:
    """Validate an upload against the per-kind limits. Returns the kind."""
    kind = classify(name, content_type)
    if kind is None:
        raise ValidationError("unsupported_file_type")
    if int(size) <= 0:
        raise ValidationError("file_size_invalid")
    limit = IMAGE_MAX_BYTES if kind == "image" else PDF_MAX_BYTES
    if int(size) > limit:
        _debug(f"rejected {kind} upload {name!r}: {size} bytes > {limit}")
        raise ValidationError("file_too_large")
    return kind


def check_url(url: str) -> str:
    u = (url or "").strip()
    parsed = urlparse(u)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValidationError("file_url_invalid")
    return u


def add_file(
    conn: Any,
    *,
    user_id: int,
    design_request_id: int,
    name: str,
    url: str,
    size: int,
    type: str | None = None,
    storage_key: str | None = None,
) -> Dict[str, Any]:
    """Insert a file row. Callers check that the request belongs to the user."""
    if not (name or "").strip():
        raise ValidationError("file_name_required")
    r = conn.execute(
        """
        INSERT INTO files (user_id, design_request_id, name, url, size, type, storage_key, created_at)
        VALUES (?,?,?,?,?,?,?,?)
        RETURNING file_id
        """,
        (
            int(user_id),
            int(design_request_id),
            name.strip(),
            url,
            int(size),
            type,
            storage_key,
            utcnow_iso(),
        ),
    ).fetchone()
    file_id = int(r["file_id"])
    _debug(f"added file_id={file_id} request_id={design_request_id}")
    row = conn.execute("SELECT * FROM files WHERE file_id=?", (file_id,)).fetchone()
    return dict(row)


def list_files(conn: Any, design_request_id: int) -> List[Dict[str, Any]]:
    rows = conn.execute(
        "SELECT * FROM files WHERE design_request_id=? ORDER BY created_at ASC, file_id ASC",
        (int(design_request_id),),
    ).fetchall()
    return [dict(r) for r in rows]
