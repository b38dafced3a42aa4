from decimal import Decimal

from sqlalchemy import (
    BigInteger, Boolean, Column, DateTime, Float, ForeignKey, Integer, JSON, Numeric, String,
    TypeDecorator, UniqueConstraint,
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()

# Widest value NUMERIC(78, 0) can hold
MAX_UNBOUNDED_INTEGER = 10 ** 78 - 1
# INTEGER and BIGINT column limits
MAX_INT32 = 2 ** 31 - 1
MAX_INT64 = 2 ** 63 - 1


class UnboundedInteger(TypeDecorator):
    """
    Python int of any size. NUMERIC(78, 0) on PostgreSQL, decimal text on SQLite.
    """
    impl = Numeric(78, 0)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(80))
        return dialect.type_descriptor(Numeric(78, 0))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if dialect.name == "sqlite":
            return str(int(value))
        return Decimal(int(value))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return int(value)


class PoolStats(Base):
    __tablename__ = "pool_stats"

    id = Column(Integer, primary_key=True, index=True)
    runtime = Column(BigInteger, nullable=False, default=0)
    users = Column(Integer, nullable=False, default=0)
    workers = Column(Integer, nullable=False, default=0)
    idle = Column(Integer, nullable=False, default=0)
    disconnected = Column(Integer, nullable=False, default=0)
    hashrate1m = Column(UnboundedInteger, nullable=False, default=0)
    hashrate5m = Column(UnboundedInteger, nullable=False, default=0)
    hashrate15m = Column(UnboundedInteger, nullable=False, default=0)
    hashrate1hr = Column(UnboundedInteger, nullable=False, default=0)
    hashrate6hr = Column(UnboundedInteger, nullable=False, default=0)
    hashrate1d = Column(UnboundedInteger, nullable=False, default=0)
    hashrate7d = Column(UnboundedInteger, nullable=False, default=0)
    diff = Column(Float, nullable=False, default=0.0)
    accepted = Column(UnboundedInteger, nullable=False, default=0)
    rejected = Column(UnboundedInteger, nullable=False, default=0)
    bestshare = Column(Float, nullable=False, default=0.0)
    sps1m = Column(Float, nullable=False, default=0.0)
    sps5m = Column(Float, nullable=False, default=0.0)
    sps15m = Column(Float, nullable=False, default=0.0)
    sps1h = Column(Float, nullable=False, default=0.0)
    # The document's own `lastupdate`, if it had one
    snapshot_time = Column(DateTime(timezone=True), nullable=True)
    timestamp = Column(DateTime(timezone=True), nullable=False, index=True)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    address = Column(String, unique=True, index=True, nullable=False)
    authorised = Column(BigInteger, nullable=False, default=0)
    # Only ever set true here; the cleanup job clears it
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True)


class UserStats(Base):
    __tablename__ = "user_stats"

    id = Column(Integer, primary_key=True, index=True)
    user_address = Column(String, ForeignKey("users.address"), index=True, nullable=False)
    hashrate1m = Column(UnboundedInteger, nullable=False, default=0)
    hashrate5m = Column(UnboundedInteger, nullable=False, default=0)
    hashrate1hr = Column(UnboundedInteger, nullable=False, default=0)
    hashrate1d = Column(UnboundedInteger, nullable=False, default=0)
    hashrate7d = Column(UnboundedInteger, nullable=False, default=0)
    shares = Column(UnboundedInteger, nullable=False, default=0)
    best_share = Column(Float, nullable=False, default=0.0)
    best_ever = Column(UnboundedInteger, nullable=False, default=0)
    worker_count = Column(Integer, nullable=False, default=0)
    # Unix seconds of the most recent share across the user's workers
    last_share = Column(BigInteger, nullable=False, default=0)
    timestamp = Column(DateTime(timezone=True), nullable=False, index=True)


class Worker(Base):
    __tablename__ = "workers"

    id = Column(Integer, primary_key=True, index=True)
    user_address = Column(String, ForeignKey("users.address"), index=True, nullable=False)
    name = Column(String, nullable=False)
    hashrate1m = Column(UnboundedInteger, nullable=False, default=0)
    hashrate5m = Column(UnboundedInteger, nullable=False, default=0)
    hashrate1hr = Column(UnboundedInteger, nullable=False, default=0)
    hashrate1d = Column(UnboundedInteger, nullable=False, default=0)
    hashrate7d = Column(UnboundedInteger, nullable=False, default=0)
    shares = Column(UnboundedInteger, nullable=False, default=0)
    best_share = Column(Float, nullable=False, default=0.0)
    best_ever = Column(UnboundedInteger, nullable=False, default=0)
    last_update = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint('user_address', 'name', name='uix_worker_user_name'),
    )


class WorkerStats(Base):
    __tablename__ = "worker_stats"

    id = Column(Integer, primary_key=True, index=True)
    worker_id = Column(Integer, ForeignKey("workers.id"), index=True, nullable=False)
    hashrate1m = Column(UnboundedInteger, nullable=False, default=0)
    hashrate5m = Column(UnboundedInteger, nullable=False, default=0)
    hashrate1hr = Column(UnboundedInteger, nullable=False, default=0)
    hashrate1d = Column(UnboundedInteger, nullable=False, default=0)
    hashrate7d = Column(UnboundedInteger, nullable=False, default=0)
    shares = Column(UnboundedInteger, nullable=False, default=0)
    best_share = Column(Float, nullable=False, default=0.0)
    best_ever = Column(UnboundedInteger, nullable=False, default=0)
    last_update = Column(DateTime(timezone=True), nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False, index=True)


class IngestionRun(Base):
    __tablename__ = "ingestion_runs"

    id = Column(Integer, primary_key=True, index=True)
    source_path = Column(String, nullable=False)
    mode = Column(String, nullable=False)  # full, top
    status = Column(String, nullable=False)  # success, partial, failure
    users_total = Column(Integer, default=0)
    users_succeeded = Column(Integer, default=0)
    users_failed = Column(Integer, default=0)
    error_log = Column(JSON, nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=False)
    run_duration_ms = Column(Integer, default=0)
