"""Test configuration and fixtures"""
import os
import sys
import tempfile
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# Set test environment before the settings module is imported
_test_db_dir = Path(tempfile.mkdtemp(prefix="countries-api-tests-"))
os.environ["ENVIRONMENT"] = "test"
os.environ["DEBUG"] = "true"
os.environ["JWT_SECRET"] = "test-jwt-secret-for-testing-only-0123456789"
os.environ["DATABASE_URL"] = f"sqlite:///{_test_db_dir / 'test.db'}"
os.environ["LOG_FORMAT"] = "console"
os.environ["LOG_FILE_ENABLED"] = "false"
os.environ["UNIFORM_AUTH_ERRORS"] = "false"
