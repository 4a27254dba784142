import io

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from agonyl.gateserver.db import Account, AccountNotFoundError, GateDatabase, accounts, metadata
from agonyl.logger import Logger


@pytest.fixture
def stream():
    return io.StringIO()


@pytest.fixture
def db(tmp_path, stream):
    database = GateDatabase(f"sqlite:///{tmp_path / 'gate.db'}", Logger("test", stream=stream))
    metadata.create_all(database.engine)
    with database.engine.begin() as conn:
        conn.execute(
            accounts.insert(),
            [
                {"id": 1, "username": "alice", "password_hash": "placeholder", "status": "active"},
                {"id": 2, "username": "bob", "password_hash": "secret", "status": "banned"},
            ],
        )
    yield database
    database.close()


def test_get_active_account(db):
    account = db.get_account(1)
    assert account == Account(
        id=1, username="alice", password_hash="placeholder", status="active", is_online=False
    )


def test_inactive_account_is_not_found(db, stream):
    with pytest.raises(AccountNotFoundError):
        db.get_account(2)
    assert '"level": "error"' in stream.getvalue()


def test_missing_account_is_not_found(db):
    with pytest.raises(AccountNotFoundError):
        db.get_account(99)


def test_online_offline_round_trip(db):
    account = db.get_account(1)
    db.set_account_online(1, account)
    assert db.get_account(1).is_online is True
    with db.engine.connect() as conn:
        row = conn.execute(select(accounts.c.last_login).where(accounts.c.id == 1)).one()
    assert row.last_login is not None and db.get_account(1).is_online

    db.set_account_offline(1)
    assert db.get_account(1).is_online is False
    with db.engine.connect() as conn:
        row = conn.execute(select(accounts.c.last_logout).where(accounts.c.id == 1)).one()
    assert row.last_logout is not None and not db.get_account(1).is_online


def test_set_online_only_touches_that_account(db):
    db.set_account_online(1)
    with db.engine.connect() as conn:
        row = conn.execute(select(accounts.c.is_online).where(accounts.c.id == 2)).one()
    assert row.is_online is False


def test_unreachable_database_raises(tmp_path):
    with pytest.raises(OperationalError):
        GateDatabase(
            f"sqlite:///{tmp_path / 'missing' / 'gate.db'}", Logger("test", stream=io.StringIO())
        )