"""Storage settings handed to a node when it starts."""

from __future__ import annotations

from enum import Enum

from pydantic import Field

from beacon_harness.types import FrozenModel


class StorageEngine(str, Enum):
    """Database backends a node binary can run on."""

    BOLT = "bolt"
    POSTGRES = "postgres"
    MEMORY = "memdb"


class StorageConfig(FrozenModel):
    """
    Database configuration for a node.

    Leaving `engine` unset on a restart makes the node reopen the database it
    already has on disk.
    """

    engine: StorageEngine | None = StorageEngine.BOLT
    """Backend to use, or None to keep whatever the node used before."""

    pg_dsn: str | None = None
    """Postgres DSN, only meaningful with the postgres engine."""

    memdb_size: int = Field(default=2000, ge=1)
    """Number of beacons an in-memory database keeps."""

    def for_restart(self) -> StorageConfig:
        """Settings that reconnect a node to its existing on-disk state."""
        return self.model_copy(update={"engine": None, "pg_dsn": None})
