"""Account storage used by the gate server."""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    and_,
    create_engine,
    func,
    select,
    update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from agonyl.constants import ACCOUNT_STATUS_ACTIVE
from agonyl.logger import Logger

metadata = MetaData()

accounts = Table(
    "accounts",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("username", String, nullable=False, unique=True),
    Column("password_hash", String, nullable=False, default=""),
    Column("status", String, nullable=False, default=ACCOUNT_STATUS_ACTIVE),
    Column("is_online", Boolean, nullable=False, default=False),
    Column("last_login", DateTime),
    Column("last_logout", DateTime),
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


class GateDatabase:
    """Reads accounts and tracks their online state."""

    def __init__(self, db_url: str, logger: Logger) -> None:
        self.logger = logger
        self.engine: Engine = create_engine(_normalize_url(db_url))
        with self.engine.connect():
            pass

    def __enter__(self) -> GateDatabase:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def get_account(self, account_id: int) -> Account:
        """Return the active account with ``account_id``."""
        query = select(
            accounts.c.id,
            accounts.c.username,
            accounts.c.password_hash,
            accounts.c.status,
            accounts.c.is_online,
        ).where(and_(accounts.c.id == account_id, accounts.c.status == ACCOUNT_STATUS_ACTIVE))
        try:
            with self.engine.connect() as conn:
                row = conn.execute(query).one_or_none()
        except SQLAlchemyError as exc:
            self.logger.error("Failed to execute get account query", error=exc)
            raise
        if row is None:
            error = AccountNotFoundError(f"no active account with id {account_id}")
            self.logger.error("Failed to execute get account query", error=error)
            raise error
        return Account(**dict(row._mapping))

    def set_account_online(self, account_id: int, account: Account | None = None) -> None:
        statement = (
            update(accounts)
            .where(accounts.c.id == account_id)
            .values(is_online=True, last_login=func.now())
        )
        try:
            with self.engine.begin() as conn:
                conn.execute(statement)
        except SQLAlchemyError as exc:
            self.logger.error("Failed to execute set account online query", error=exc)
            raise

    def set_account_offline(self, account_id: int) -> None:
        statement = (
            update(accounts)
            .where(accounts.c.id == account_id)
            .values(is_online=False, last_logout=func.now())
        )
        try:
            with self.engine.begin() as conn:
                conn.execute(statement)
        except SQLAlchemyError as exc:
            self.logger.error("Failed to execute set account offline query", error=exc)
            raise

    def close(self) -> None:
        self.engine.dispose()