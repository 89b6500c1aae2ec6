"""
Configuration management for the inventory server.

All configuration is done via environment variables - no config files inside containers.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Unknown kinds in WATCH_KINDS are rejected at startup, not at subscribe time

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Keep env var names stable; deployments depend on them
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Optional, Tuple

from .model import Kind

logger = logging.getLogger(__name__)


def _split(value: str) -> Tuple[str, ...]:
    return tuple(part.strip() for part in value.split(",") if part.strip())


@dataclass(frozen=True)
class HttpConfig:
    """HTTP server configuration.

    Attributes:
        host: Address to bind
        port: Port to bind
        link_prefix: Prefix of selfLink values (e.g. "/providers/p1")
        watch_header: Request header that turns a list into a watch
        cors_origins: Allowed CORS origins ("*" allows any)
    """

    host: str = "0.0.0.0"
    port: int = 8080
    link_prefix: str = ""
    watch_header: str = "X-Watch"
    cors_origins: Tuple[str, ...] = ("*",)

    @classmethod
    def from_env(cls) -> HttpConfig:
        """Load configuration from environment variables."""
        return cls(
            host=os.getenv("HTTP_HOST", "0.0.0.0"),
            port=int(os.getenv("HTTP_PORT", "8080")),
            link_prefix=os.getenv("HTTP_LINK_PREFIX", "").rstrip("/"),
            watch_header=os.getenv("HTTP_WATCH_HEADER", "X-Watch"),
            cors_origins=_split(os.getenv("HTTP_CORS_ORIGINS", "*")),
        )


@dataclass(frozen=True)
class WatchConfig:
    """Watch subsystem configuration.

    Attributes:
        queue_size: Per-subscription queue bound before SlowConsumer
        journal_retention: Changes kept in memory for snapshot backfill
        heartbeat_seconds: WebSocket ping interval (0 disables)
        kinds: Kinds that accept watches (empty = all known kinds)
    """

    queue_size: int = 1000
    journal_retention: int = 10000
    heartbeat_seconds: float = 30.0
    kinds: Tuple[str, ...] = ()

    @classmethod
    def from_env(cls) -> WatchConfig:
        """Load configuration from environment variables."""
        return cls(
            queue_size=int(os.getenv("WATCH_QUEUE_SIZE", "1000")),
            journal_retention=int(os.getenv("WATCH_JOURNAL_RETENTION", "10000")),
            heartbeat_seconds=float(os.getenv("WATCH_HEARTBEAT_SECONDS", "30")),
            kinds=_split(os.getenv("WATCH_KINDS", "")),
        )

    def resolved_kinds(self) -> Tuple[str, ...]:
        """Canonical kind names; all known kinds when none are configured."""
        if not self.kinds:
            return tuple(str(kind) for kind in Kind)
        return tuple(str(Kind.parse(kind) or kind) for kind in self.kinds)


@dataclass(frozen=True)
class StorageConfig:
    """Local storage configuration.

    Attributes:
        data_dir: Directory for the SQLite database
        db_name: Database file name
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
        seed_file: JSON inventory loaded at startup (optional)
    """

    data_dir: str = "/var/lib/inventory"
    db_name: str = "inventory.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000
    seed_file: Optional[str] = None

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        return cls(
            data_dir=os.getenv("DATA_DIR", "/var/lib/inventory"),
            db_name=os.getenv("INVENTORY_DB_NAME", "inventory.db"),
            wal_mode=os.getenv("SQLITE_WAL_MODE", "true").lower() == "true",
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
            seed_file=os.getenv("INVENTORY_SEED_FILE") or None,
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class ServerConfig:
    """Complete server configuration.

    Attributes:
        http: HTTP server configuration
        watch: Watch subsystem configuration
        storage: Local storage configuration
        observability: Logging configuration
    """

    http: HttpConfig = field(default_factory=HttpConfig)
    watch: WatchConfig = field(default_factory=WatchConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Returns:
            ServerConfig with all sections populated from environment.

        Raises:
            ValueError: If configuration is missing or invalid.
        """
        config = cls(
            http=HttpConfig.from_env(),
            watch=WatchConfig.from_env(),
            storage=StorageConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if not 0 < self.http.port < 65536:
            raise ValueError(f"HTTP_PORT must be in 1-65535, got {self.http.port}")
        if not self.http.watch_header:
            raise ValueError("HTTP_WATCH_HEADER must not be empty")
        if self.watch.queue_size < 1:
            raise ValueError("WATCH_QUEUE_SIZE must be at least 1")
        if self.watch.journal_retention < 1:
            raise ValueError("WATCH_JOURNAL_RETENTION must be at least 1")
        if self.watch.heartbeat_seconds < 0:
            raise ValueError("WATCH_HEARTBEAT_SECONDS must not be negative")
        for kind in self.watch.kinds:
            if Kind.parse(kind) is None:
                raise ValueError(f"Invalid kind '{kind}' in WATCH_KINDS")
        if self.observability.log_format not in ("json", "text"):
            raise ValueError(
                f"Invalid LOG_FORMAT '{self.observability.log_format}'. Must be one of: json, text"
            )
        if self.storage.seed_file and not os.path.exists(self.storage.seed_file):
            raise ValueError(f"INVENTORY_SEED_FILE not found: {self.storage.seed_file}")

        if not os.path.exists(self.storage.data_dir):
            logger.warning(
                f"Data directory does not exist: {self.storage.data_dir}. "
                "It will be created on startup."
            )

    def log_config(self) -> None:
        """Log configuration."""
        logger.info(
            "Server configuration loaded",
            extra={
                "http_host": self.http.host,
                "http_port": self.http.port,
                "link_prefix": self.http.link_prefix,
                "watch_kinds": list(self.watch.resolved_kinds()),
                "watch_queue_size": self.watch.queue_size,
                "journal_retention": self.watch.journal_retention,
                "data_dir": self.storage.data_dir,
                "seed_file": self.storage.seed_file,
                "log_level": self.observability.log_level,
            },
        )
