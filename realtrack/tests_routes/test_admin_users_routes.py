# realtrack/tests_routes/test_admin_users_routes.py
import unittest
from unittest.mock import MagicMock, Mock, patch
import jwt
from flask import Flask
from psycopg.errors import UniqueViolation
from sqlalchemy.exc import IntegrityError


class TestAdminUsersRoutes(unittest.TestCase):

    def setUp(self):
        self.app = Flask(__name__)
        self.app.config['TESTING'] = True
        self.app.config['JWT_SECRET'] = 'test-secret-key'
        self.client = self.app.test_client()

        from realtrack.routes.admin_users import admin_users_bp
        self.app.register_blueprint(admin_users_bp)

    def _token(self, role):
        return jwt.encode(
            {"sub": "1", "role": role, "email": f"{role}@example.com"},
            self.app.config['JWT_SECRET'],
            algorithm="HS256",
        )

    def _create_mock_connection(self):
        """Helper to create a properly mocked database connection"""
        mock_conn = MagicMock()
        mock_tx = MagicMock()
        mock_tx.is_active = True
        mock_conn.begin.return_value = mock_tx
        mock_conn.in_transaction = Mock(return_value=False)
        return mock_conn, mock_tx

    def _post(self, body, role="admin"):
        return self.client.post('/admin/users', json=body,
                                headers={'Authorization': f'Bearer {self._token(role)}'})

    @patch('realtrack.routes.admin_users.AuthService.create_user')
    @patch('realtrack.routes.admin_users.get_conn')
    def test_create_user_success(self, mock_get_conn, mock_create):
        mock_conn, mock_tx = self._create_mock_connection()
        mock_get_conn.return_value.__enter__.return_value = mock_conn
        mock_create.return_value = {
            'id': 'u9', 'email': 'new@example.com', 'name': 'New', 'role': 'partner', 'email_verified': False,
        }

        response = self._post({'email': 'new@example.com', 'password': 'pw', 'name': 'New'})

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.get_json()['user']['email'], 'new@example.com')
        mock_tx.commit.assert_called_once()

    def test_requires_session(self):
        response = self.client.post('/admin/users', json={'email': 'a@example.com', 'password': 'pw'})
        self.assertEqual(response.status_code, 401)

    def test_requires_admin(self):
        response = self._post({'email': 'a@example.com', 'password': 'pw'}, role="partner")
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.get_json(), {'error': 'insufficient_role'})

    def test_missing_fields(self):
        response = self._post({'email': 'a@example.com'})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()['hint']['role_allowed'], ['admin', 'partner'])

    @patch('realtrack.routes.admin_users.AuthService.create_user', side_effect=ValueError('email_exists'))
    @patch('realtrack.routes.admin_users.get_conn')
    def test_duplicate_email(self, mock_get_conn, mock_create):
        mock_conn, mock_tx = self._create_mock_connection()
        mock_get_conn.return_value.__enter__.return_value = mock_conn
        response = self._post({'email': 'a@example.com', 'password': 'pw'})
        self.assertEqual(response.status_code, 409)
        mock_tx.rollback.assert_called_once()

    @patch('realtrack.routes.admin_users.AuthService.create_user', side_effect=ValueError('invalid_role'))
    @patch('realtrack.routes.admin_users.get_conn')
    def test_invalid_role(self, mock_get_conn, mock_create):
        mock_conn, _ = self._create_mock_connection()
        mock_get_conn.return_value.__enter__.return_value = mock_conn
        response = self._post({'email': 'a@example.com', 'password': 'pw', 'role': 'root'})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json(), {'error': 'invalid_role'})

    @patch('realtrack.routes.admin_users.AuthService.create_user')
    @patch('realtrack.routes.admin_users.get_conn')
    def test_unique_violation_race(self, mock_get_conn, mock_create):
        mock_conn, _ = self._create_mock_connection()
        mock_get_conn.return_value.__enter__.return_value = mock_conn
        mock_create.side_effect = IntegrityError("INSERT", {}, UniqueViolation("duplicate key"))
        response = self._post({'email': 'a@example.com', 'password': 'pw'})
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.get_json(), {'error': 'email_exists'})


if __name__ == '__main__':
    unittest.main()
