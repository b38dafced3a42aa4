from sqlalchemy import event, select
from sqlalchemy.exc import ArgumentError, SQLAlchemyError
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker

from poolstats.core.config import Settings
from poolstats.core.errors import ConfigError, ConnectionFailure

SUPPORTED_BACKENDS = ("postgresql", "sqlite")


# Constructed by the run that owns it; the engine is created lazily on first use
class Database:
    def __init__(self, settings: Settings):
        self._settings = settings
        self._engine = None
        self._session_maker = None

    @property
    def engine(self):
        if self._engine is None:
            try:
                url = self._settings.database_url
            except ArgumentError as e:
                raise ConfigError(f"invalid DATABASE_URL: {e}") from e
            backend = url.get_backend_name()
            if backend not in SUPPORTED_BACKENDS:
                raise ConfigError(f"unsupported database backend {backend!r}")

            connect_args = {}
            if backend == "postgresql" and self._settings.ssl_mode:
                connect_args["ssl"] = self._settings.ssl_mode
            elif backend == "sqlite":
                connect_args["timeout"] = self._settings.TRANSACTION_TIMEOUT_SECONDS
            self._engine = create_async_engine(
                url, echo=self._settings.SQL_ECHO, connect_args=connect_args
            )
            if backend == "sqlite":
                _serialize_sqlite_writers(self._engine)
        return self._engine

    @property
    def session_maker(self):
        if self._session_maker is None:
            self._session_maker = sessionmaker(
                bind=self.engine,
                class_=AsyncSession,
                expire_on_commit=False,
                autoflush=False,
            )
        return self._session_maker

    def session(self) -> AsyncSession:
        return self.session_maker()

    async def check_connection(self):
        try:
            async with self.engine.connect() as conn:
                await conn.execute(select(1))
        except (SQLAlchemyError, OSError) as e:
            raise ConnectionFailure(f"storage backend unreachable: {e}") from e

    async def dispose(self):
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_maker = None


def _serialize_sqlite_writers(engine):
    # pysqlite's implicit BEGIN is deferred; take the write lock up front so
    # concurrent transactions wait on each other instead of failing with SQLITE_BUSY
    @event.listens_for(engine.sync_engine, "connect")
    def _disable_implicit_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")
