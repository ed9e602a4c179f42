import io
import unittest
from unittest.mock import MagicMock, patch
import jwt
from flask import Flask

DOC = {
    "id": "doc-1",
    "project_id": "p1",
    "file_name": "front door.png",
    "file_size": 4,
    "mime_type": "image/png",
    "blob_url": "doc-1",
    "thumbnail_url": "doc-1",
    "uploaded_by": "owner-1",
}

PDF_DOC = dict(DOC, id="doc-2", file_name="plans.pdf", mime_type="application/pdf",
               blob_url="doc-2", thumbnail_url="/icons/pdf-placeholder.svg")


def _project(owner_id="owner-1", granted=None):
    return {"id": "p1", "name": "Maple Street Duplex", "owner_id": owner_id, "granted_permission": granted}


class DocumentRoutesBase(unittest.TestCase):

    def setUp(self):
        self.app = Flask(__name__)
        self.app.config['TESTING'] = True
        self.app.config['JWT_SECRET'] = 'test-secret-key'
        self.client = self.app.test_client()

        from realtrack.routes.documents import documents_bp
        self.app.register_blueprint(documents_bp, url_prefix="/api")

        self.mock_conn = MagicMock()
        self.mock_conn.in_transaction = MagicMock(return_value=False)
        self.mock_tx = MagicMock()
        self.mock_tx.is_active = True
        self.mock_conn.begin.return_value = self.mock_tx

        self.service = MagicMock()
        self.service.get_bytes.return_value = b"\x89PNG"

        patchers = [
            patch('realtrack.routes.documents.get_conn'),
            patch('realtrack.auth.guards.get_conn'),
            patch('realtrack.routes.documents.get_active_document'),
            patch('realtrack.services.authorization.fetch_project_with_grant'),
            patch('realtrack.routes.documents._document_service', return_value=self.service),
        ]
        mocks = [p.start() for p in patchers]
        for p in patchers:
            self.addCleanup(p.stop)
        self.mock_get_conn, guard_get_conn, self.mock_get_doc, self.mock_fetch, _ = mocks
        self.mock_get_conn.return_value.__enter__.return_value = self.mock_conn
        guard_get_conn.return_value.__enter__.return_value = self.mock_conn

    def _headers(self, user_id="owner-1", email="owner@example.com"):
        token = jwt.encode(
            {"sub": user_id, "role": "partner", "email": email},
            self.app.config['JWT_SECRET'],
            algorithm="HS256",
        )
        return {"Authorization": f"Bearer {token}"}


class TestViewDocument(DocumentRoutesBase):

    def test_anonymous_gets_401_without_db(self):
        response = self.client.get('/api/documents/doc-1/view')
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.get_json(), {"error": "Unauthorized"})
        self.mock_get_conn.assert_not_called()

    def test_invalid_token_is_anonymous(self):
        response = self.client.get('/api/documents/doc-1/view', headers={"Authorization": "Bearer nope"})
        self.assertEqual(response.status_code, 401)
        self.mock_get_conn.assert_not_called()

    def test_missing_or_deleted_document_404(self):
        self.mock_get_doc.return_value = None
        response = self.client.get('/api/documents/doc-1/view', headers=self._headers())
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.get_json(), {"error": "Document not found"})
        self.mock_fetch.assert_not_called()

    def test_non_member_403(self):
        self.mock_get_doc.return_value = dict(DOC)
        self.mock_fetch.return_value = _project()
        response = self.client.get('/api/documents/doc-1/view', headers=self._headers("stranger"))
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.get_json(), {"error": "Access denied"})
        self.service.get_bytes.assert_not_called()

    def test_revoked_partner_403(self):
        # revoked grants are filtered out by the query, so no granted_permission
        self.mock_get_doc.return_value = dict(DOC)
        self.mock_fetch.return_value = _project(granted=None)
        response = self.client.get('/api/documents/doc-1/view', headers=self._headers("partner-2"))
        self.assertEqual(response.status_code, 403)

    def test_owner_gets_inline_image(self):
        self.mock_get_doc.return_value = dict(DOC)
        self.mock_fetch.return_value = _project()
        response = self.client.get('/api/documents/doc-1/view', headers=self._headers())

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data, b"\x89PNG")
        self.assertEqual(response.headers["Content-Type"], "image/png")
        self.assertEqual(response.headers["Content-Disposition"], 'inline; filename="front%20door.png"')
        self.assertEqual(response.headers["Cache-Control"], "private, max-age=3600")
        self.assertEqual(response.headers["Content-Length"], "4")
        self.service.get_bytes.assert_called_once_with("doc-1")

    def test_read_partner_gets_pdf_as_attachment(self):
        self.mock_get_doc.return_value = dict(PDF_DOC)
        self.mock_fetch.return_value = _project(granted="read")
        self.service.get_bytes.return_value = b"%PDF"

        response = self.client.get('/api/documents/doc-2/view', headers=self._headers("partner-2"))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.headers["Content-Type"], "application/pdf")
        self.assertTrue(response.headers["Content-Disposition"].startswith("attachment;"))

    def test_cookie_session(self):
        self.mock_get_doc.return_value = dict(DOC)
        self.mock_fetch.return_value = _project()
        token = jwt.encode({"sub": "owner-1"}, self.app.config['JWT_SECRET'], algorithm="HS256")
        self.client.set_cookie("realtrack_session", token)
        response = self.client.get('/api/documents/doc-1/view')
        self.assertEqual(response.status_code, 200)

    def test_blob_missing_404(self):
        self.mock_get_doc.return_value = dict(DOC)
        self.mock_fetch.return_value = _project()
        self.service.get_bytes.return_value = None
        response = self.client.get('/api/documents/doc-1/view', headers=self._headers())
        self.assertEqual(response.status_code, 404)

    def test_store_failure_500(self):
        self.mock_get_doc.return_value = dict(DOC)
        self.mock_fetch.return_value = _project()
        self.service.get_bytes.side_effect = OSError("disk gone")
        response = self.client.get('/api/documents/doc-1/view', headers=self._headers())
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.get_json(), {"error": "Internal server error"})


class TestThumbnail(DocumentRoutesBase):

    def test_image_thumbnail_uses_document_mime(self):
        self.mock_get_doc.return_value = dict(DOC)
        self.mock_fetch.return_value = _project(granted="read")
        response = self.client.get('/api/documents/doc-1/thumbnail', headers=self._headers("partner-2"))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.headers["Content-Type"], "image/png")
        self.assertNotIn("Content-Disposition", response.headers)

    def test_separate_thumbnail_is_jpeg(self):
        self.mock_get_doc.return_value = dict(DOC, thumbnail_url="thumb-1")
        self.mock_fetch.return_value = _project()
        response = self.client.get('/api/documents/doc-1/thumbnail', headers=self._headers())
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.headers["Content-Type"], "image/jpeg")
        self.service.get_bytes.assert_called_once_with("thumb-1")

    def test_placeholder_redirect(self):
        self.mock_get_doc.return_value = dict(PDF_DOC)
        self.mock_fetch.return_value = _project()
        response = self.client.get('/api/documents/doc-2/thumbnail', headers=self._headers())
        self.assertEqual(response.status_code, 302)
        self.assertTrue(response.headers["Location"].endswith("/icons/pdf-placeholder.svg"))
        self.service.get_bytes.assert_not_called()

    def test_no_thumbnail(self):
        self.mock_get_doc.return_value = dict(DOC, thumbnail_url=None)
        self.mock_fetch.return_value = _project()
        response = self.client.get('/api/documents/doc-1/thumbnail', headers=self._headers())
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.get_json(), {"error": "Thumbnail not available"})

    def test_thumbnail_blob_missing(self):
        self.mock_get_doc.return_value = dict(DOC)
        self.mock_fetch.return_value = _project()
        self.service.get_bytes.return_value = None
        response = self.client.get('/api/documents/doc-1/thumbnail', headers=self._headers())
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.get_json(), {"error": "Thumbnail not found"})

    def test_anonymous(self):
        response = self.client.get('/api/documents/doc-1/thumbnail')
        self.assertEqual(response.status_code, 401)
        self.mock_get_conn.assert_not_called()


class TestProjectDocuments(DocumentRoutesBase):

    @patch('realtrack.routes.documents.list_project_documents')
    def test_list_documents(self, mock_list):
        self.mock_fetch.return_value = _project(granted="read")
        mock_list.return_value = [dict(DOC)]
        response = self.client.get('/api/projects/p1/documents', headers=self._headers("partner-2"))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()["documents"][0]["id"], "doc-1")

    @patch('realtrack.routes.documents.insert_document')
    def test_upload_pdf(self, mock_insert):
        self.mock_fetch.return_value = _project(granted="write")
        self.service.upload.side_effect = lambda data, name, mime, doc_id, pid: doc_id
        mock_insert.side_effect = lambda conn, fields: dict(fields)

        response = self.client.post(
            '/api/projects/p1/documents',
            data={"file": (io.BytesIO(b"%PDF-1.4"), "plans.pdf", "application/pdf")},
            content_type="multipart/form-data",
            headers=self._headers("partner-2"),
        )

        self.assertEqual(response.status_code, 201, response.get_data(as_text=True))
        doc = response.get_json()["document"]
        self.assertEqual(doc["blob_url"], doc["id"])
        self.assertEqual(doc["thumbnail_url"], "/icons/pdf-placeholder.svg")
        self.assertEqual(doc["uploaded_by"], "partner-2")
        self.assertEqual(doc["file_size"], 8)
        self.mock_tx.commit.assert_called_once()

    def test_upload_read_partner_forbidden(self):
        self.mock_fetch.return_value = _project(granted="read")
        response = self.client.post(
            '/api/projects/p1/documents',
            data={"file": (io.BytesIO(b"x"), "a.pdf", "application/pdf")},
            content_type="multipart/form-data",
            headers=self._headers("partner-2"),
        )
        self.assertEqual(response.status_code, 403)
        self.service.upload.assert_not_called()

    def test_upload_missing_file(self):
        self.mock_fetch.return_value = _project()
        response = self.client.post('/api/projects/p1/documents', data={},
                                    content_type="multipart/form-data", headers=self._headers())
        self.assertEqual(response.status_code, 400)

    def test_upload_invalid_type(self):
        from realtrack.services.documents import InvalidUpload
        self.mock_fetch.return_value = _project()
        self.service.upload.side_effect = InvalidUpload("File type not supported")
        response = self.client.post(
            '/api/projects/p1/documents',
            data={"file": (io.BytesIO(b"MZ"), "x.exe", "application/x-msdownload")},
            content_type="multipart/form-data",
            headers=self._headers(),
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["message"], "File type not supported")

    @patch('realtrack.routes.documents.insert_document', side_effect=RuntimeError("db down"))
    def test_upload_insert_failure_removes_blob(self, mock_insert):
        self.mock_fetch.return_value = _project()
        self.service.upload.return_value = "doc-9"
        response = self.client.post(
            '/api/projects/p1/documents',
            data={"file": (io.BytesIO(b"%PDF"), "a.pdf", "application/pdf")},
            content_type="multipart/form-data",
            headers=self._headers(),
        )
        self.assertEqual(response.status_code, 500)
        self.service.delete.assert_called_once_with("doc-9")
        self.mock_tx.rollback.assert_called_once()

    def test_upload_connection_failure_returns_json_500(self):
        self.mock_fetch.return_value = _project()
        self.service.upload.return_value = "doc-9"
        # the guard's connection works; the route's does not
        self.mock_get_conn.side_effect = RuntimeError("pool exhausted")
        response = self.client.post(
            '/api/projects/p1/documents',
            data={"file": (io.BytesIO(b"%PDF"), "a.pdf", "application/pdf")},
            content_type="multipart/form-data",
            headers=self._headers(),
        )
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.get_json(), {"error": "Internal server error"})
        self.service.delete.assert_called_once_with("doc-9")


class TestDeleteDocument(DocumentRoutesBase):

    @patch('realtrack.routes.documents.soft_delete_document', return_value=True)
    def test_write_partner_deletes(self, mock_soft_delete):
        self.mock_get_doc.return_value = dict(DOC)
        self.mock_fetch.return_value = _project(granted="write")
        response = self.client.delete('/api/documents/doc-1', headers=self._headers("partner-2"))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json(), {"deleted": True, "id": "doc-1"})
        self.service.delete.assert_not_called()
        self.mock_tx.commit.assert_called_once()

    @patch('realtrack.routes.documents.soft_delete_document')
    def test_read_partner_cannot_delete(self, mock_soft_delete):
        self.mock_get_doc.return_value = dict(DOC)
        self.mock_fetch.return_value = _project(granted="read")
        response = self.client.delete('/api/documents/doc-1', headers=self._headers("partner-2"))
        self.assertEqual(response.status_code, 403)
        mock_soft_delete.assert_not_called()

    def test_delete_missing(self):
        self.mock_get_doc.return_value = None
        response = self.client.delete('/api/documents/doc-1', headers=self._headers())
        self.assertEqual(response.status_code, 404)

    def test_delete_requires_session(self):
        response = self.client.delete('/api/documents/doc-1')
        self.assertEqual(response.status_code, 401)

    def test_delete_lookup_failure_returns_json_500(self):
        self.mock_get_doc.side_effect = RuntimeError("db down")
        response = self.client.delete('/api/documents/d1', headers=self._headers())
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.get_json(), {"error": "Internal server error"})

    @patch('realtrack.routes.documents.soft_delete_document', side_effect=RuntimeError("db down"))
    def test_delete_write_failure_rolls_back(self, mock_soft_delete):
        self.mock_get_doc.return_value = dict(DOC)
        self.mock_fetch.return_value = _project()
        response = self.client.delete('/api/documents/doc-1', headers=self._headers())
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.get_json(), {"error": "Internal server error"})
        self.mock_tx.rollback.assert_called_once()


if __name__ == '__main__':
    unittest.main()
