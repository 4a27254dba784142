"""Account lookup used by the login server."""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import Boolean, Column, Integer, MetaData, String, Table, create_engine, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from agonyl.logger import Logger

metadata = MetaData()

accounts = Table(
    "accounts",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("username", String, nullable=False, unique=True),
    Column("password_hash", String, nullable=False, default=""),
    Column("status", String, nullable=False, default="active"),
    Column("is_online", Boolean, nullable=False, default=False),
)


class AccountNotFoundError(LookupError):
    """No matching account exists."""


@dataclass
class Account:
    id: int
    username: str
    password_hash: str
    status: str
    is_online: bool


def _normalize_url(db_url: str) -> str:
    if db_url.startswith("postgres://"):
        return "postgresql://" + db_url[len("postgres://"):]
    return db_url


class LoginDatabase:
    """Looks accounts up by user name."""

    def __init__(self, db_url: str, logger: Logger) -> None:
        self.logger = logger
        self.engine: Engine = create_engine(_normalize_url(db_url))
        with self.engine.connect():
            pass

    def __enter__(self) -> LoginDatabase:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def get_account_by_username(self, username: str) -> Account:
        query = select(
            accounts.c.id,
            accounts.c.username,
            accounts.c.password_hash,
            accounts.c.status,
            accounts.c.is_online,
        ).where(accounts.c.username == username)
        try:
            with self.engine.connect() as conn:
                row = conn.execute(query).one_or_none()
        except SQLAlchemyError as exc:
            self.logger.error("Failed to execute query", error=exc)
            raise
        if row is None:
            error = AccountNotFoundError(f"no account named {username!r}")
            self.logger.error("Failed to execute query", error=error)
            raise error
        return Account(**dict(row._mapping))

    def close(self) -> None:
        self.engine.dispose()