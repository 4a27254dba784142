import io

import pytest
from sqlalchemy.exc import OperationalError

from agonyl.logger import Logger
from agonyl.loginserver.db import Account, AccountNotFoundError, LoginDatabase, accounts, metadata


@pytest.fixture
def stream():
    return io.StringIO()


@pytest.fixture
def db(tmp_path, stream):
    database = LoginDatabase(f"sqlite:///{tmp_path / 'login.db'}", Logger("test", stream=stream))
    metadata.create_all(database.engine)
    with database.engine.begin() as conn:
        conn.execute(
            accounts.insert(),
            [
                {"id": 10, "username": "alice", "password_hash": "placeholder", "status": "active"},
                {
                    "id": 11,
                    "username": "bob",
                    "password_hash": "secret",
                    "status": "banned",
                    "is_online": True,
                },
            ],
        )
    yield database
    database.close()


def test_get_account_by_username(db):
    assert db.get_account_by_username("alice") == Account(
        id=10, username="alice", password_hash="placeholder", status="active", is_online=False
    )


def test_banned_accounts_are_still_returned(db):
    account = db.get_account_by_username("bob")
    assert (account.id, account.status, account.is_online) == (11, "banned", True)


def test_unknown_username_raises(db, stream):
    with pytest.raises(AccountNotFoundError):
        db.get_account_by_username("carol")
    assert "Failed to execute query" in stream.getvalue()


def test_context_manager_returns_database(tmp_path):
    url = f"sqlite:///{tmp_path / 'ctx.db'}"
    with LoginDatabase(url, Logger("test", stream=io.StringIO())) as database:
        metadata.create_all(database.engine)
        with pytest.raises(AccountNotFoundError):
            database.get_account_by_username("nobody")


def test_unreachable_database_raises(tmp_path):
    with pytest.raises(OperationalError):
        LoginDatabase(
            f"sqlite:///{tmp_path / 'missing' / 'login.db'}", Logger("test", stream=io.StringIO())
        )