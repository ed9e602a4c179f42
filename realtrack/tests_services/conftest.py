# realtrack/tests_services/conftest.py
import os
import sys
from unittest.mock import MagicMock
import pytest

# Set required environment variables for testing
os.environ.setdefault('JWT_SECRET', 'test-secret-key-for-testing-only')
os.environ.setdefault('DATABASE_URL', 'sqlite:///:memory:')

# Add the project root to Python path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))


def make_conn(*mapping_rows):
    """
    Mock connection whose successive execute() calls return the given rows
    through .mappings().one_or_none() / .one() / .all().
    """
    mock_conn = MagicMock()
    results = []
    for row in mapping_rows:
        result = MagicMock()
        result.mappings.return_value.one_or_none.return_value = row
        result.mappings.return_value.one.return_value = row
        result.mappings.return_value.all.return_value = row if isinstance(row, list) else [row]
        result.scalar.return_value = row
        results.append(result)
    if results:
        mock_conn.execute.side_effect = results
    return mock_conn


@pytest.fixture
def conn_factory():
    return make_conn
