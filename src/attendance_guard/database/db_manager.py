"""
Database Manager for Attendance Guard
=====================================
Handles database connection, initialization, and session management.

Features:
- SQLite database with WAL journaling for concurrent requests
- Automatic table creation
- Default configuration seeding
- Active location config lookup (fail-closed) with a short TTL cache
"""

import os
import math
import time
import logging
from pathlib import Path
from typing import Optional, Generator, Callable, List
from contextlib import contextmanager

from pydantic import ValidationError
from sqlalchemy import create_engine, event, func
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from .models import Base, SystemConfig, LocationConfig, AttendanceRecord, SecurityEvent, DEFAULT_CONFIG, utcnow
from ..schemas import LocationPolicy

# Configure logging
logger = logging.getLogger(__name__)

# Database file path (overridable through the environment)
DATABASE_PATH = Path(os.environ.get("ATTENDANCE_DB_PATH", Path.cwd() / "attendance_guard.db"))


class DatabaseManager:
    """
    Manages database connections and provides session context.

    Usage:
        db = DatabaseManager()
        with db.get_session() as session:
            record = session.query(AttendanceRecord).filter_by(user_id="u-1").first()
    """

    def __init__(self, db_path: Optional[Path] = None, echo: bool = False):
        """
        Initialize database manager.

        Args:
            db_path: Path to SQLite database file. Defaults to ATTENDANCE_DB_PATH
            echo: If True, log all SQL statements (useful for debugging)
        """
        self.db_path = Path(db_path) if db_path else DATABASE_PATH
        self.echo = echo
        self.engine = None
        self.SessionLocal = None
        self._initialized = False

    def initialize(self) -> bool:
        """
        Initialize database connection and create tables.

        Returns:
            True if initialization successful, False otherwise
        """
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

            # check_same_thread=False: FastAPI runs sync endpoints in a threadpool
            self.engine = create_engine(
                f"sqlite:///{self.db_path}",
                echo=self.echo,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool
            )

            @event.listens_for(self.engine, "connect")
            def set_sqlite_pragma(dbapi_connection, connection_record):
                cursor = dbapi_connection.cursor()
                cursor.execute("PRAGMA foreign_keys=ON")
                cursor.execute("PRAGMA journal_mode=WAL")
                cursor.close()

            self.SessionLocal = sessionmaker(
                autocommit=False,
                autoflush=False,
                expire_on_commit=False,
                bind=self.engine
            )

            Base.metadata.create_all(bind=self.engine)
            logger.info(f"Database initialized at: {self.db_path}")

            self._initialized = True
            self._seed_default_config()
            return True

        except Exception as e:
            logger.error(f"Failed to initialize database: {e}")
            self._initialized = False
            return False

    def _seed_default_config(self):
        """Insert default configuration values if not present."""
        with self.get_session() as session:
            for key, (value, description) in DEFAULT_CONFIG.items():
                existing = session.query(SystemConfig).filter_by(key=key).first()
                if not existing:
                    session.add(SystemConfig(key=key, value=value, description=description))
                    logger.debug(f"Added default config: {key}={value}")
            session.commit()
            logger.info("Default configuration seeded")

    @contextmanager
    def get_session(self) -> Generator[Session, None, None]:
        """
        Get a database session with automatic cleanup.

        Usage:
            with db.get_session() as session:
                # do database operations
                session.commit()

        Yields:
            SQLAlchemy Session object
        """
        if not self._initialized and not self.initialize():
            raise RuntimeError(f"Database at {self.db_path} could not be initialized")

        session = self.SessionLocal()
        try:
            yield session
        except Exception as e:
            session.rollback()
            logger.error(f"Database session error: {e}")
            raise
        finally:
            session.close()

    def get_config(self, key: str, default: str = None) -> Optional[str]:
        """
        Get a configuration value by key.

        Args:
            key: Configuration key name
            default: Default value if key not found

        Returns:
            Configuration value as string
        """
        with self.get_session() as session:
            config = session.query(SystemConfig).filter_by(key=key).first()
            return config.value if config else default

    def get_config_int(self, key: str, default: int = 0) -> int:
        """Get config value as integer."""
        value = self.get_config(key)
        try:
            return int(value) if value else default
        except ValueError:
            return default

    def get_config_float(self, key: str, default: float = 0.0) -> float:
        """Get config value as float."""
        value = self.get_config(key)
        try:
            return float(value) if value else default
        except ValueError:
            return default

    def get_config_list(self, key: str, default: Optional[List[str]] = None) -> List[str]:
        """Get a comma separated config value as a list of trimmed strings."""
        value = self.get_config(key)
        if not value:
            return list(default or [])
        return [item.strip() for item in value.split(",") if item.strip()]

    def set_config(self, key: str, value: str, description: str = None):
        """
        Set a configuration value.

        Args:
            key: Configuration key name
            value: Configuration value
            description: Optional description
        """
        with self.get_session() as session:
            config = session.query(SystemConfig).filter_by(key=key).first()
            if config:
                config.value = value
                config.updated_at = utcnow()
                if description:
                    config.description = description
            else:
                session.add(SystemConfig(key=key, value=value, description=description))
            session.commit()
            logger.info(f"Config updated: {key}={value}")

    def get_active_location_policy(self) -> Optional[LocationPolicy]:
        """
        Load the single active location config as a read-only snapshot.

        Returns:
            LocationPolicy, or None when zero or several configs are active
        """
        with self.get_session() as session:
            active = session.query(LocationConfig).filter_by(is_active=True).all()

            if len(active) != 1:
                if active:
                    logger.error(f"[CONFIG] {len(active)} active location configs found, expected exactly one")
                else:
                    logger.error("[CONFIG] No active location config")
                return None

            config = active[0]
            try:
                return LocationPolicy(
                    id=config.id,
                    location_name=config.location_name,
                    reference_latitude=config.reference_latitude,
                    reference_longitude=config.reference_longitude,
                    radius_meters=config.radius_meters,
                    allowed_ssids=list(config.allowed_ssids or []),
                    allowed_ip_ranges=list(config.allowed_ip_ranges or [])
                )
            except ValidationError as e:
                logger.error(f"[CONFIG] Active location config {config.id} is invalid: {e}")
                return None

    def set_active_location_config(
        self,
        reference_latitude: float,
        reference_longitude: float,
        radius_meters: float,
        allowed_ssids: Optional[List[str]] = None,
        allowed_ip_ranges: Optional[List[str]] = None,
        location_name: str = "School"
    ) -> int:
        """
        Replace the active location config.
        Previously active rows are deactivated in the same transaction.

        Raises:
            ValueError: coordinates out of range or radius not positive

        Returns:
            Id of the new active config
        """
        if not (math.isfinite(reference_latitude) and -90 <= reference_latitude <= 90):
            raise ValueError(f"Latitude must be between -90 and 90, got {reference_latitude}")
        if not (math.isfinite(reference_longitude) and -180 <= reference_longitude <= 180):
            raise ValueError(f"Longitude must be between -180 and 180, got {reference_longitude}")
        if not (math.isfinite(radius_meters) and radius_meters > 0):
            raise ValueError(f"Radius must be a positive number of meters, got {radius_meters}")

        with self.get_session() as session:
            session.query(LocationConfig).filter_by(is_active=True).update({"is_active": False})
            config = LocationConfig(
                location_name=location_name,
                reference_latitude=reference_latitude,
                reference_longitude=reference_longitude,
                radius_meters=radius_meters,
                allowed_ssids=list(allowed_ssids or []),
                allowed_ip_ranges=list(allowed_ip_ranges or []),
                is_active=True
            )
            session.add(config)
            session.commit()
            logger.info(f"[CONFIG] Active location set: {location_name} ({radius_meters}m)")
            return config.id

    def get_stats(self) -> dict:
        """
        Get database statistics.

        Returns:
            Dictionary with counts and status info
        """
        with self.get_session() as session:
            total_records = session.query(func.count(AttendanceRecord.id)).scalar()
            open_records = session.query(func.count(AttendanceRecord.id)).filter(
                AttendanceRecord.check_out_time.is_(None)
            ).scalar()
            total_events = session.query(func.count(SecurityEvent.id)).scalar()
            active_configs = session.query(func.count(LocationConfig.id)).filter_by(is_active=True).scalar()

            return {
                "database_path": str(self.db_path),
                "attendance_records": total_records,
                "open_records": open_records,
                "security_events": total_events,
                "active_location_configs": active_configs,
                "initialized": self._initialized
            }

    def close(self):
        """Close database connection."""
        if self.engine:
            self.engine.dispose()
            logger.info("Database connection closed")


class LocationPolicyLoader:
    """
    Per-request provider of the active LocationPolicy.

    Snapshots are immutable and reused for ``ttl_seconds`` so a burst of
    requests does not hit the database each time. A missing config is never
    cached, so fixing the configuration takes effect immediately.
    """

    def __init__(self, db: DatabaseManager, ttl_seconds: Optional[float] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.db = db
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else db.get_config_float("location_cache_seconds", 30.0)
        self._clock = clock
        self._cached: Optional[LocationPolicy] = None
        self._loaded_at = 0.0

    def load(self) -> Optional[LocationPolicy]:
        now = self._clock()
        if self._cached is not None and now - self._loaded_at < self.ttl_seconds:
            return self._cached

        policy = self.db.get_active_location_policy()
        self._cached = policy
        self._loaded_at = now
        return policy

    def invalidate(self):
        self._cached = None


# Global singleton instance
_db_manager: Optional[DatabaseManager] = None


def get_db_manager() -> DatabaseManager:
    """
    Get the global database manager instance.
    Creates and initializes if not already done.

    Returns:
        DatabaseManager singleton instance
    """
    global _db_manager

    if _db_manager is None:
        _db_manager = DatabaseManager()
        _db_manager.initialize()

    return _db_manager


def reset_db_manager():
    """Reset the global database manager (for testing)."""
    global _db_manager
    if _db_manager:
        _db_manager.close()
    _db_manager = None
