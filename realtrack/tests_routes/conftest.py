# realtrack/tests_routes/conftest.py
import os
import sys

# Set required environment variables for testing
os.environ.setdefault('JWT_SECRET', 'test-secret-key')
os.environ.setdefault('DATABASE_URL', 'sqlite:///:memory:')

# Add the project root to Python path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))
