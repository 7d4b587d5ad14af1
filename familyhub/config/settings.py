"""
Main settings object.
"""

from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy import URL

from .managers import AsyncSessionManager, SyncSessionManager


class Settings(BaseSettings):
    database_type: Literal["sqlite", "postgres"] = "sqlite"
    database_user: str | None = None
    database_password: str | None = None
    database_port: int | None = None
    database_host: str | None = None
    database_db: str = "familyhub.db"

    database_echo: bool = False

    # Run `create_all` when the API starts up. Useful for development.
    create_tables: bool = False

    default_max_members: int = 8
    max_members_ceiling: int = 8

    identifier_length: int = 8
    identifier_attempts: int = 10

    password_hash_algorithm: str = "bcrypt"
    password_hash_rounds: int = 10

    # External services. When the registry is not configured, every lookup
    # comes back empty and only caller-supplied profile data is used.
    registry_url: str | None = None
    identity_service_url: str | None = None
    registry_timeout: float = 5.0

    fallback_email_domain: str = "centromedico.cl"

    identity_header: str = "x-user-rut"

    model_config = SettingsConfigDict(env_prefix="FAMILYHUB_", env_file=".env")

    @property
    def drivers(self) -> tuple[str, str]:
        """
        The (sync, async) SQLAlchemy driver names for `database_type`.
        """
        match self.database_type:
            case "sqlite":
                return "sqlite", "sqlite+aiosqlite"
            case "postgres":
                return "postgresql+psycopg", "postgresql+asyncpg"
            case _:
                raise ValueError(f"Unknown database type {self.database_type}")

    def _uri(self, drivername: str) -> URL:
        return URL.create(
            drivername=drivername,
            username=self.database_user,
            password=self.database_password,
            host=self.database_host,
            port=self.database_port,
            database=self.database_db,
        )

    @property
    def sync_uri(self) -> URL:
        return self._uri(self.drivers[0])

    @property
    def async_uri(self) -> URL:
        return self._uri(self.drivers[1])

    def sync_manager(self) -> SyncSessionManager:
        return SyncSessionManager(connection_url=self.sync_uri, echo=self.database_echo)

    def async_manager(self) -> AsyncSessionManager:
        return AsyncSessionManager(
            connection_url=self.async_uri, echo=self.database_echo
        )
