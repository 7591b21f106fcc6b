"""Database location.

``DATABASE_URI`` wins when set; otherwise orders live in a SQLite file under the
per-user data directory (``MILESBRIDGE_DATA_DIR`` or the XDG data home).
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Final

APP_DIR_NAME: Final[str] = "milesbridge"
DEFAULT_DB_FILENAME: Final[str] = "milesbridge.db"


@dataclass(frozen=True, slots=True)
class StorageConfig:
    data_dir: Path
    database_filename: str = DEFAULT_DB_FILENAME

    def resolve_data_dir(self) -> Path:
        return self.data_dir.expanduser().resolve()

    def database_uri(self, *, create_dir: bool = True) -> str:
        directory = self.resolve_data_dir()
        if create_dir:
            directory.mkdir(parents=True, exist_ok=True)
        return f"sqlite+pysqlite:///{directory / self.database_filename}"


@dataclass(frozen=True, slots=True)
class DatabaseConfig:
    uri: str


def get_storage_config() -> StorageConfig:
    explicit = os.getenv("MILESBRIDGE_DATA_DIR")
    if explicit:
        return StorageConfig(data_dir=Path(explicit))
    xdg_home = os.getenv("XDG_DATA_HOME")
    base = Path(xdg_home) if xdg_home else Path.home() / ".local" / "share"
    return StorageConfig(data_dir=base / APP_DIR_NAME)


def get_database_config(*, storage: StorageConfig | None = None) -> DatabaseConfig:
    uri = os.getenv("DATABASE_URI")
    if uri:
        return DatabaseConfig(uri=uri)
    return DatabaseConfig(uri=(storage or get_storage_config()).database_uri())
