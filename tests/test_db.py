import sqlite3
from contextlib import contextmanager

import pytest

import db
import memberships
import payments
from errors import PermissionDeniedError
from models import COL_INSTALLMENTS, COL_MEMBERSHIPS
from reconcile import load_installments


@contextmanager
def read_only_conn():
    conn = sqlite3.connect(f"file:{db.DB_FILE}?mode=ro", uri=True)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
        conn.commit()
    finally:
        conn.close()


def test_read_only_store_refuses_update(annual3, monkeypatch):
    monkeypatch.setattr(db, "get_conn", read_only_conn)
    with pytest.raises(PermissionDeniedError) as exc:
        db.update(COL_MEMBERSHIPS, annual3.id, {"pay_link_enabled": 0})
    assert exc.value.code == "permission_denied"
    assert isinstance(exc.value.__cause__, sqlite3.OperationalError)

    # reads keep working
    assert memberships.get_membership(annual3.id).pay_link_enabled is True


def test_read_only_store_refuses_executemany(annual3, monkeypatch):
    monkeypatch.setattr(db, "get_conn", read_only_conn)
    with pytest.raises(PermissionDeniedError):
        db.executemany(
            f"UPDATE {COL_INSTALLMENTS} SET status = ? WHERE id = ?",
            [("paid", i.id) for i in load_installments(annual3.id)],
        )


def test_other_operational_errors_are_not_translated():
    with pytest.raises(sqlite3.OperationalError):
        db.execute("SELECT * FROM no_such_table")


def test_refused_pay_link_write_degrades_submission(annual3, storage, monkeypatch):
    set_pay_link = memberships.set_pay_link

    def set_pay_link_on_read_only_store(*args, **kwargs):
        with monkeypatch.context() as mp:
            mp.setattr(db, "get_conn", read_only_conn)
            return set_pay_link(*args, **kwargs)

    monkeypatch.setattr(memberships, "set_pay_link", set_pay_link_on_read_only_store)
    result = payments.submit_payment(
        annual3.id,
        annual3.pay_code,
        "Ana Mora",
        1000,
        "sinpe",
        "proof.png",
        b"\x89PNG fake",
        "image/png",
        storage=storage,
    )

    assert result.primary_ok is True
    assert result.side_effect_ok is False
    assert "permission_denied" in result.side_effect_error
    assert result.pay_link_enabled is True
    assert memberships.get_membership(annual3.id).pay_link_enabled is True
    assert payments.get_submission(result.submission.id).file_url.startswith("mem://")


def test_server_timestamps_are_strictly_increasing():
    stamps = [db.server_timestamp() for _ in range(50)]
    assert stamps == sorted(stamps)
    assert len(set(stamps)) == len(stamps)
