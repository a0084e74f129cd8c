"""
Configuration management for the media indexer.

Supports multiple environments: development, staging, production.
Configuration is loaded from environment variables and/or .env files.

Note: both MEDIAINDEX_* and the platform-style DA_* env vars are supported.
MEDIAINDEX_* takes precedence if both are set.
"""

import os
import re
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

BASE_DIR = Path(__file__).parent.parent

# .env.local wins over .env; neither overrides variables already exported
for _env_file in (BASE_DIR / '.env.local', BASE_DIR / '.env'):
    if _env_file.exists():
        load_dotenv(_env_file)

SITE_NAME_RE = re.compile(r'^[a-zA-Z0-9]([a-zA-Z0-9._-]{0,98}[a-zA-Z0-9])?$')


def get_env(new_key: str, old_key: str, default: str = "") -> str:
    """Get env var with backward compatibility. New key takes precedence."""
    return os.environ.get(new_key, os.environ.get(old_key, default))


def validate_site_name(name: Optional[str]) -> Optional[str]:
    """
    Validate an org or repo name.

    Allows alphanumerics, hyphens, underscores and dots, must start and end
    with an alphanumeric, max 100 chars.

    Returns:
        The name if valid, otherwise None
    """
    if not name or not isinstance(name, str):
        return None
    return name if SITE_NAME_RE.match(name) else None


class Config:
    """Base configuration."""

    # Application
    APP_NAME = "Media Indexer"
    APP_VERSION = "0.3.0"

    # Paths
    BASE_DIR = BASE_DIR
    LOG_DIR = Path(get_env("MEDIAINDEX_LOG_DIR", "DA_LOG_DIR", "") or BASE_DIR / "logs")

    # Site being indexed
    SITE_ORG = get_env("MEDIAINDEX_ORG", "DA_ORG", "")
    SITE_REPO = get_env("MEDIAINDEX_REPO", "DA_REPO", "")
    SITE_REF = get_env("MEDIAINDEX_REF", "DA_REF", "main")
    DA_TOKEN = get_env("MEDIAINDEX_TOKEN", "DA_TOKEN", "")

    # Remote endpoints
    LOG_API_HOST = get_env("MEDIAINDEX_LOG_API_HOST", "DA_LOG_API_HOST", "https://admin.hlx.page")
    DA_ADMIN_HOST = get_env("MEDIAINDEX_ADMIN_HOST", "DA_ADMIN_HOST", "https://admin.da.live")
    PREVIEW_HOST = get_env("MEDIAINDEX_PREVIEW_HOST", "DA_PREVIEW_HOST", "aem.page")
    CORS_PROXY_URL = get_env(
        "MEDIAINDEX_CORS_PROXY_URL", "DA_CORS_PROXY_URL",
        "https://media-library-cors-proxy.aem-poc-lab.workers.dev/"
    )
    CALLER_ORIGIN = get_env("MEDIAINDEX_CALLER_ORIGIN", "DA_CALLER_ORIGIN", "")
    REQUEST_TIMEOUT = int(get_env("MEDIAINDEX_REQUEST_TIMEOUT", "DA_REQUEST_TIMEOUT", "30"))

    # Persisted index layout (relative to /{org}/{repo})
    INDEX_FOLDER = ".da/mediaindex"
    INDEX_FILENAME = "media-index.json"
    META_FILENAME = "medialog-meta.json"

    # Indexing
    API_PAGE_SIZE = int(get_env("MEDIAINDEX_PAGE_SIZE", "DA_PAGE_SIZE", "1000"))
    RATE_LIMIT_DELAY_MS = int(get_env("MEDIAINDEX_RATE_LIMIT_DELAY_MS", "DA_RATE_LIMIT_DELAY_MS", "100"))
    MAX_CONCURRENT_FETCHES = int(get_env("MEDIAINDEX_MAX_CONCURRENT_FETCHES", "DA_MAX_CONCURRENT_FETCHES", "10"))
    MEDIA_ASSOCIATION_WINDOW_MS = 5000
    INCREMENTAL_WINDOW_MS = 10000
    INDEX_ALIGNMENT_TOLERANCE_MS = 120_000
    MEMORY_WARNING_RATIO = 0.8

    # Server
    HOST = get_env("MEDIAINDEX_HOST", "DA_HOST", "0.0.0.0")
    PORT = int(get_env("MEDIAINDEX_PORT", "DA_PORT", "8890"))
    DEBUG = False
    TESTING = False

    # Logging
    LOG_LEVEL = get_env("MEDIAINDEX_LOG_LEVEL", "DA_LOG_LEVEL", "INFO")
    LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

    @classmethod
    def init_dirs(cls):
        """Ensure required directories exist."""
        cls.LOG_DIR.mkdir(parents=True, exist_ok=True)


class DevelopmentConfig(Config):
    """Development configuration."""
    DEBUG = True
    LOG_LEVEL = "DEBUG"


class StagingConfig(Config):
    """Staging configuration."""
    DEBUG = False
    LOG_LEVEL = "INFO"


class ProductionConfig(Config):
    """Production configuration."""
    DEBUG = False
    LOG_LEVEL = "WARNING"

    def __init__(self):
        # Validate production requirements
        if not self.DA_TOKEN:
            raise ValueError("MEDIAINDEX_TOKEN must be set in production")


class TestingConfig(Config):
    """Testing configuration."""
    TESTING = True
    DEBUG = True
    SITE_ORG = "testorg"
    SITE_REPO = "testrepo"
    DA_TOKEN = "test-token"
    RATE_LIMIT_DELAY_MS = 0


# Configuration mapping
config_map = {
    "development": DevelopmentConfig,
    "staging": StagingConfig,
    "production": ProductionConfig,
    "testing": TestingConfig,
}


def get_config(env: Optional[str] = None) -> Config:
    """Get configuration for the specified environment."""
    if env is None:
        env = get_env("MEDIAINDEX_ENV", "DA_ENV", "development")

    config_class = config_map.get(env.lower(), DevelopmentConfig)
    return config_class()
