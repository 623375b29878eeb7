from __future__ import annotations

from collections.abc import Iterator

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from inventory_ledger.config import settings


def build_engine(url: str, *, echo: bool = False, lock_timeout_seconds: int = 5) -> Engine:
    if url.startswith('sqlite'):
        engine = create_engine(
            url,
            echo=echo,
            connect_args={'timeout': lock_timeout_seconds, 'check_same_thread': False},
        )

        # pysqlite issues its own BEGIN lazily, which breaks SAVEPOINT handling and lets two
        # writers read the same stock value. Let SQLAlchemy emit BEGIN IMMEDIATE instead so
        # write transactions are serialized by the database lock.
        @event.listens_for(engine, 'connect')
        def _on_connect(dbapi_connection, _connection_record) -> None:
            dbapi_connection.isolation_level = None
            dbapi_connection.execute('PRAGMA foreign_keys = ON')

        @event.listens_for(engine, 'begin')
        def _on_begin(conn) -> None:
            conn.exec_driver_sql('BEGIN IMMEDIATE')

        return engine

    return create_engine(
        url,
        echo=echo,
        pool_pre_ping=True,
        connect_args={'options': f'-c lock_timeout={lock_timeout_seconds * 1000}'},
    )


engine = build_engine(
    settings.database_url_normalized,
    echo=settings.database_echo,
    lock_timeout_seconds=settings.lock_timeout_seconds,
)
SessionLocal = sessionmaker(bind=engine, autoflush=True, expire_on_commit=False)


def get_db() -> Iterator[Session]:
    with SessionLocal() as db:
        yield db
