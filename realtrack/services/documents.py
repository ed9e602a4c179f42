# realtrack/services/documents.py
from __future__ import annotations
import base64
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from sqlalchemy import text
from sqlalchemy.engine import Connection

from .blob_store import LocalBlobStore

MAX_FILE_SIZE = 10 * 1024 * 1024

IMAGE_MIME_TYPES = {"image/jpeg", "image/png", "image/webp", "image/heic"}
OFFICE_MIME_TYPES = {
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",  # .docx
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",        # .xlsx
}
ALLOWED_MIME_TYPES = IMAGE_MIME_TYPES | OFFICE_MIME_TYPES | {"application/pdf"}

PLACEHOLDER_PREFIX = "/icons/"


class InvalidUpload(ValueError):
    pass


@dataclass(frozen=True)
class FileMetadata:
    file_name: str
    file_size: int
    mime_type: str
    is_valid: bool
    error: Optional[str] = None


def process_metadata(file_name: str, file_size: int, mime_type: str) -> FileMetadata:
    if file_size > MAX_FILE_SIZE:
        return FileMetadata(file_name, file_size, mime_type, False, "File size must be under 10MB")
    if mime_type not in ALLOWED_MIME_TYPES:
        return FileMetadata(
            file_name, file_size, mime_type, False,
            "File type not supported. Please upload images, PDFs, or documents.",
        )
    return FileMetadata(file_name, file_size, mime_type, True)


def thumbnail_locator(blob_key: str, mime_type: str) -> str:
    """Images are their own thumbnail; everything else gets a static icon."""
    if mime_type in IMAGE_MIME_TYPES:
        return blob_key
    if mime_type == "application/pdf":
        return "/icons/pdf-placeholder.svg"
    if mime_type in OFFICE_MIME_TYPES:
        return "/icons/doc-placeholder.svg"
    return "/icons/file-placeholder.svg"


def is_placeholder(locator: Optional[str]) -> bool:
    return bool(locator) and locator.startswith(PLACEHOLDER_PREFIX)


class DocumentService:
    """Payload storage for project documents. Authorization is the caller's job."""

    def __init__(self, store: LocalBlobStore):
        self.store = store

    def upload(self, data: bytes, file_name: str, mime_type: str, document_id: str, project_id: str) -> str:
        meta = process_metadata(file_name, len(data), mime_type)
        if not meta.is_valid:
            raise InvalidUpload(meta.error)
        self.store.set(document_id, data, metadata={
            "fileName": file_name,
            "mimeType": mime_type,
            "projectId": str(project_id),
            "uploadedAt": datetime.now(timezone.utc).isoformat(),
        })
        return document_id

    def get(self, locator: str) -> Optional[str]:
        """base64 payload, or None when the store has nothing under locator."""
        return self.store.get(locator)

    def get_bytes(self, locator: str) -> Optional[bytes]:
        data = self.get(locator)
        return base64.b64decode(data) if data is not None else None

    def delete(self, locator: str) -> None:
        self.store.delete(locator)


# ---------- queries ----------

_DOC_COLUMNS = """
    id, project_id, file_name, file_size, mime_type, blob_url, thumbnail_url,
    uploaded_by, created_at, updated_at
"""


def get_active_document(conn: Connection, document_id: str) -> Optional[Dict[str, Any]]:
    """Document row unless missing or soft-deleted."""
    row = conn.execute(
        text(f"""
            SELECT {_DOC_COLUMNS}
            FROM documents
            WHERE id = :did AND deleted_at IS NULL
            LIMIT 1
        """),
        {"did": str(document_id)},
    ).mappings().one_or_none()
    return dict(row) if row else None


def list_project_documents(conn: Connection, project_id: str) -> List[Dict[str, Any]]:
    rows = conn.execute(
        text(f"""
            SELECT {_DOC_COLUMNS}
            FROM documents
            WHERE project_id = :pid AND deleted_at IS NULL
            ORDER BY created_at DESC
        """),
        {"pid": str(project_id)},
    ).mappings().all()
    return [dict(r) for r in rows]


def insert_document(conn: Connection, fields: Dict[str, Any]) -> Dict[str, Any]:
    row = conn.execute(
        text(f"""
            INSERT INTO documents
              (id, project_id, file_name, file_size, mime_type, blob_url, thumbnail_url, uploaded_by)
            VALUES
              (:id, :project_id, :file_name, :file_size, :mime_type, :blob_url, :thumbnail_url, :uploaded_by)
            RETURNING {_DOC_COLUMNS}
        """),
        fields,
    ).mappings().one()
    return dict(row)


def soft_delete_document(conn: Connection, document_id: str) -> bool:
    row = conn.execute(
        text("""
            UPDATE documents
            SET deleted_at = CURRENT_TIMESTAMP, updated_at = CURRENT_TIMESTAMP
            WHERE id = :did AND deleted_at IS NULL
            RETURNING id
        """),
        {"did": str(document_id)},
    ).mappings().one_or_none()
    return row is not None
