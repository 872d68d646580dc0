"""
Service Settings
Environment-driven configuration with the same variable names the container
receives from the Kubernetes Secret and Deployment
"""

from functools import lru_cache
from typing import Optional
from urllib.parse import quote_plus, unquote, urlsplit

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from visit_logger import __version__


class Settings(BaseSettings):
    """Settings loaded from environment variables (case-insensitive)."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # HTTP
    port: int = Field(default=3000, description="Port uvicorn listens on")
    app_env: str = Field(default="development", description="Deployment environment name")
    app_version: str = Field(default=__version__, description="Reported by GET /version")

    # Logging
    log_level: str = Field(default="INFO")
    log_json: bool = Field(default=True, description="Render logs as JSON lines")

    # MongoDB, either a full URI or individual components
    mongodb_uri: Optional[str] = Field(default=None)
    mongo_username: str = Field(default="")
    mongo_password: SecretStr = Field(default=SecretStr(""))
    mongo_host: str = Field(default="localhost")
    mongo_port: str = Field(default="27017")
    mongo_database: str = Field(default="tech_challenge")
    mongo_auth_source: str = Field(default="admin")
    mongo_server_selection_timeout_ms: int = Field(default=2000)

    @property
    def mongo_uri(self) -> str:
        """MONGODB_URI when set, otherwise a URI assembled from the MONGO_* variables."""
        if self.mongodb_uri:
            return self.mongodb_uri
        return build_mongo_uri(
            username=self.mongo_username,
            password=self.mongo_password.get_secret_value(),
            host=self.mongo_host,
            port=self.mongo_port,
            database=self.mongo_database,
            auth_source=self.mongo_auth_source,
        )

    @property
    def database_name(self) -> str:
        """Database named in MONGODB_URI, else MONGO_DATABASE."""
        if self.mongodb_uri:
            return database_from_uri(self.mongodb_uri) or self.mongo_database
        return self.mongo_database


def build_mongo_uri(username: str, password: str, host: str, port: str,
                    database: str, auth_source: str) -> str:
    """
    Build a mongodb:// URI

    Credentials are only embedded when both username and password are set.
    """
    credentials = ""
    if username and password:
        credentials = f"{quote_plus(username)}:{quote_plus(password)}@"
    return f"mongodb://{credentials}{host}:{port}/{database}?authSource={auth_source}"


def database_from_uri(uri: str) -> str:
    # mongodb://[user:pass@]host[:port][,host...]/[database][?options]
    path = urlsplit(uri).path
    return unquote(path.lstrip("/"))


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings instance."""
    return Settings()
