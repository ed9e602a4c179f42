# realtrack/routes/documents.py
from __future__ import annotations
import uuid
from datetime import datetime
from urllib.parse import quote
from flask import Blueprint, Response, current_app, g, jsonify, redirect, request

from .. import get_conn
from ..auth.guards import _forbid, _not_found, _server_error, _unauth, require_auth, require_project_access
from ..auth.session import current_session
from ..services.authorization import AccessDenied, NotFound, Permission, verify_entity_access
from ..services.blob_store import get_blob_store
from ..services.documents import (
    DocumentService,
    InvalidUpload,
    get_active_document,
    insert_document,
    is_placeholder,
    list_project_documents,
    soft_delete_document,
    thumbnail_locator,
)

documents_bp = Blueprint("documents", __name__)

CACHE_CONTROL = "private, max-age=3600"


def _document_service() -> DocumentService:
    return DocumentService(
        get_blob_store("documents", current_app.config.get("BLOB_STORE_DIR", ".blobs"))
    )


def _row_to_dict(row: dict) -> dict:
    d = dict(row)
    for k in ("created_at", "updated_at"):
        if isinstance(d.get(k), datetime):
            d[k] = d[k].isoformat()
    return d


def _load_readable_document(document_id: str):
    """
    Session -> document -> read access, in that order.
    Returns (document, None) or (None, error_response).
    """
    ctx = current_session()
    if ctx is None:
        # no database access for anonymous callers
        return None, _unauth()

    with get_conn() as conn:
        document = get_active_document(conn, document_id)
        try:
            verify_entity_access(conn, ctx, document, "document", Permission.read)
        except NotFound as e:
            return None, _not_found(str(e))
        except AccessDenied:
            return None, _forbid("Access denied")
    return document, None


# --- payload routes --------------------------------------------------------

@documents_bp.get("/documents/<document_id>/view")
def view_document(document_id: str):
    """
    GET /documents/{id}/view -- document payload.

    Responses:
      - 200: binary body; Content-Type from the stored mime type,
             inline disposition for images, attachment otherwise
      - 401 / 403 / 404 / 500: {"error": str}
    """
    try:
        document, err = _load_readable_document(document_id)
        if err:
            return err

        buffer = _document_service().get_bytes(document["blob_url"])
        if buffer is None:
            return _not_found("Document not found")

        disposition = "inline" if document["mime_type"].startswith("image/") else "attachment"
        return Response(
            buffer,
            status=200,
            content_type=document["mime_type"],
            headers={
                "Content-Disposition": f'{disposition}; filename="{quote(document["file_name"])}"',
                "Cache-Control": CACHE_CONTROL,
                "Content-Length": str(len(buffer)),
            },
        )
    except Exception:
        current_app.logger.exception("Document serving error")
        return _server_error()


@documents_bp.get("/documents/<document_id>/thumbnail")
def document_thumbnail(document_id: str):
    """
    GET /documents/{id}/thumbnail -- thumbnail image.

    Responses:
      - 200: image body
      - 302: redirect to a static placeholder icon for non-image documents
      - 401 / 403 / 404 / 500: {"error": str}
    """
    try:
        document, err = _load_readable_document(document_id)
        if err:
            return err

        locator = document.get("thumbnail_url")
        if is_placeholder(locator):
            return redirect(locator, code=302)
        if not locator:
            return _not_found("Thumbnail not available")

        buffer = _document_service().get_bytes(locator)
        if buffer is None:
            return _not_found("Thumbnail not found")

        content_type = document["mime_type"] if locator == document["blob_url"] else "image/jpeg"
        return Response(
            buffer,
            status=200,
            content_type=content_type,
            headers={
                "Cache-Control": CACHE_CONTROL,
                "Content-Length": str(len(buffer)),
            },
        )
    except Exception:
        current_app.logger.exception("Thumbnail serving error")
        return _server_error()


# --- project documents -----------------------------------------------------

@documents_bp.get("/projects/<project_id>/documents")
@require_auth()
@require_project_access("read")
def list_documents(project_id: str):
    try:
        with get_conn() as conn:
            docs = list_project_documents(conn, project_id)
        return jsonify({"documents": [_row_to_dict(d) for d in docs]}), 200
    except Exception:
        current_app.logger.exception("list_documents failed")
        return _server_error()


@documents_bp.post("/projects/<project_id>/documents")
@require_auth()
@require_project_access("write")
def upload_document(project_id: str):
    """
    POST /projects/{project_id}/documents -- multipart upload, field "file".

    Responses:
      - 201: {"document": {...}}
      - 400: {"error": "bad_request", "message": str}
    """
    upload = request.files.get("file")
    if upload is None or not upload.filename:
        return jsonify({"error": "bad_request", "message": "file is required"}), 400

    data = upload.read()
    mime_type = upload.mimetype or "application/octet-stream"
    document_id = str(uuid.uuid4())

    try:
        service = _document_service()
        blob_key = service.upload(data, upload.filename, mime_type, document_id, project_id)
    except InvalidUpload as e:
        return jsonify({"error": "bad_request", "message": str(e)}), 400
    except Exception:
        current_app.logger.exception("document upload failed")
        return _server_error("Failed to upload document. Please try again.")

    fields = {
        "id": document_id,
        "project_id": project_id,
        "file_name": upload.filename,
        "file_size": len(data),
        "mime_type": mime_type,
        "blob_url": blob_key,
        "thumbnail_url": thumbnail_locator(blob_key, mime_type),
        "uploaded_by": g.auth.user_id,
    }

    try:
        with get_conn() as conn:
            tx = conn.begin()
            try:
                row = insert_document(conn, fields)
                tx.commit()
            except Exception:
                if tx.is_active:
                    tx.rollback()
                raise
    except Exception:
        current_app.logger.exception("document insert failed")
        service.delete(blob_key)
        return _server_error()

    return jsonify({"document": _row_to_dict(row)}), 201


@documents_bp.delete("/documents/<document_id>")
@require_auth()
def delete_document(document_id: str):
    """Soft delete; the stored payload is kept."""
    try:
        with get_conn() as conn:
            document = get_active_document(conn, document_id)
            try:
                verify_entity_access(conn, g.auth, document, "document", Permission.write)
            except NotFound as e:
                return _not_found(str(e))
            except AccessDenied:
                return _forbid("You do not have permission to delete this document")

            # the reads above autobegan a transaction
            if conn.in_transaction():
                conn.rollback()
            tx = conn.begin()
            try:
                if not soft_delete_document(conn, document_id):
                    tx.rollback()
                    return _not_found("Document not found")
                tx.commit()
            except Exception:
                if tx.is_active:
                    tx.rollback()
                raise
    except Exception:
        current_app.logger.exception("delete_document failed")
        return _server_error()

    return jsonify({"deleted": True, "id": document_id}), 200
