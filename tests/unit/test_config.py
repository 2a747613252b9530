"""
Unit tests for configuration module
"""

import os
from unittest.mock import patch

import pytest

from shopstate.core.config import Settings

# Mark all tests in this module as unit tests
pytestmark = pytest.mark.unit


class TestSettings:
    """Test application settings configuration"""

    def test_default_settings(self, tmp_path):
        """Defaults match a three day session and a 30 second liveness check"""
        settings = Settings(_env_file=None, DATABASE_URL=f"sqlite:///{tmp_path / 'db.sqlite'}")

        assert settings.APP_NAME == "ShopState"
        assert settings.SESSION_LIFETIME_HOURS == 72
        assert settings.session_lifetime_ms == 3 * 24 * 60 * 60 * 1000
        assert settings.LIVENESS_CHECK_INTERVAL_SECONDS == 30.0
        assert settings.SEARCH_HISTORY_LIMIT == 10
        assert settings.VIEWED_PRODUCTS_LIMIT == 20
        assert settings.STORAGE_QUOTA_BYTES == 5 * 1024 * 1024

    def test_database_url_default(self):
        assert Settings.model_fields["DATABASE_URL"].default == "sqlite:///./data/shopstate.db"

    def test_sqlite_directory_created(self, tmp_path):
        db_dir = tmp_path / "nested" / "data"
        Settings(_env_file=None, DATABASE_URL=f"sqlite:///{db_dir / 'shopstate.db'}")

        assert db_dir.is_dir()

    def test_cors_origins_json_parsing(self, tmp_path):
        test_origins = '["https://shop.example.com", "https://admin.example.com"]'

        with patch.dict(os.environ, {"CORS_ORIGINS": test_origins}):
            settings = Settings(_env_file=None, DATABASE_URL=f"sqlite:///{tmp_path / 'db.sqlite'}")

        assert settings.CORS_ORIGINS == ["https://shop.example.com", "https://admin.example.com"]

    def test_cors_origins_comma_separated_parsing(self, tmp_path):
        with patch.dict(os.environ, {"CORS_ORIGINS": "https://shop.example.com, https://admin.example.com"}):
            settings = Settings(_env_file=None, DATABASE_URL=f"sqlite:///{tmp_path / 'db.sqlite'}")

        assert settings.CORS_ORIGINS == ["https://shop.example.com", "https://admin.example.com"]

    def test_parse_cors_origins_skips_blanks(self):
        assert Settings.parse_cors_origins("https://a.example.com,, ") == ["https://a.example.com"]

    def test_environment_override(self, tmp_path):
        with patch.dict(os.environ, {"SESSION_LIFETIME_HOURS": "1", "AUTH_API_URL": "https://api.example.com/v1"}):
            settings = Settings(_env_file=None, DATABASE_URL=f"sqlite:///{tmp_path / 'db.sqlite'}")

        assert settings.session_lifetime_ms == 3_600_000
        assert settings.AUTH_API_URL == "https://api.example.com/v1"
