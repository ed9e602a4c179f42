import unittest
from unittest.mock import MagicMock, patch
import jwt
from flask import Flask


class TestAuthRoutes(unittest.TestCase):

    def setUp(self):
        self.app = Flask(__name__)
        self.app.config['TESTING'] = True
        self.app.config['JWT_SECRET'] = 'test-secret-key'
        self.app.config['JWT_EXPIRES_HOURS'] = 24
        self.client = self.app.test_client()

        from realtrack.routes.auth import auth_bp
        self.app.register_blueprint(auth_bp, url_prefix="/api")

        self.mock_conn = MagicMock()
        self.mock_result = MagicMock()
        self.mock_conn.execute.return_value = self.mock_result
        self.user_row = {
            'id': 'u1',
            'email': 'test@example.com',
            'name': 'Test User',
            'role': 'partner',
            'email_verified': True,
            'password_hash': '$2b$12$hashed_password',
        }

    @patch('realtrack.services.auth.AuthService.verify_password', return_value=True)
    @patch('realtrack.routes.auth.get_conn')
    def test_login_success(self, mock_get_conn, mock_verify):
        mock_get_conn.return_value.__enter__.return_value = self.mock_conn
        self.mock_result.mappings.return_value.one_or_none.return_value = self.user_row

        response = self.client.post('/api/auth/login',
                                    json={'email': ' Test@Example.com ', 'password': 'correct_password'})

        self.assertEqual(response.status_code, 200)
        data = response.get_json()
        self.assertEqual(data['user'], {'id': 'u1', 'email': 'test@example.com', 'name': 'Test User', 'role': 'partner'})
        payload = jwt.decode(data['access_token'], 'test-secret-key', algorithms=["HS256"])
        self.assertEqual(payload['sub'], 'u1')
        self.assertEqual(payload['role'], 'partner')

        cookie = response.headers.get('Set-Cookie')
        self.assertIn('realtrack_session=', cookie)
        self.assertIn('HttpOnly', cookie)
        mock_verify.assert_called_once_with('correct_password', '$2b$12$hashed_password')

    @patch('realtrack.services.auth.AuthService.verify_password', return_value=False)
    @patch('realtrack.routes.auth.get_conn')
    def test_login_wrong_password(self, mock_get_conn, mock_verify):
        mock_get_conn.return_value.__enter__.return_value = self.mock_conn
        self.mock_result.mappings.return_value.one_or_none.return_value = self.user_row
        response = self.client.post('/api/auth/login', json={'email': 'test@example.com', 'password': 'nope'})
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.get_json(), {'error': 'invalid_credentials'})

    @patch('realtrack.routes.auth.get_conn')
    def test_login_unknown_user(self, mock_get_conn):
        mock_get_conn.return_value.__enter__.return_value = self.mock_conn
        self.mock_result.mappings.return_value.one_or_none.return_value = None
        response = self.client.post('/api/auth/login', json={'email': 'ghost@example.com', 'password': 'x'})
        self.assertEqual(response.status_code, 401)

    def test_login_missing_fields(self):
        response = self.client.post('/api/auth/login', json={'email': 'test@example.com'})
        self.assertEqual(response.status_code, 400)

    def test_logout_clears_cookie(self):
        response = self.client.post('/api/auth/logout')
        self.assertEqual(response.status_code, 200)
        self.assertIn('realtrack_session=;', response.headers.get('Set-Cookie'))

    def test_me(self):
        token = jwt.encode({'sub': 'u1', 'role': 'admin', 'email': 'a@example.com'}, 'test-secret-key', algorithm="HS256")
        response = self.client.get('/api/auth/me', headers={'Authorization': f'Bearer {token}'})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()['user'], {'id': 'u1', 'email': 'a@example.com', 'role': 'admin'})

    def test_me_requires_session(self):
        response = self.client.get('/api/auth/me')
        self.assertEqual(response.status_code, 401)


if __name__ == '__main__':
    unittest.main()
