import pytest

import db
import memberships
from storage import LocalProofStorage, StoredProof
from errors import UploadError


@pytest.fixture(autouse=True)
def fresh_db(tmp_path, monkeypatch):
    monkeypatch.setattr(db, "DB_FILE", tmp_path / "dues-test.db")
    db.init_db()
    yield tmp_path


@pytest.fixture
def proof_storage(tmp_path):
    return LocalProofStorage(tmp_path / "uploads")


class FailingStorage:
    def __init__(self, code="retry-limit-exceeded"):
        self.code = code

    def upload_proof(self, path, data, content_type):
        raise UploadError("boom", self.code)


class RecordingStorage:
    def __init__(self):
        self.paths = []

    def upload_proof(self, path, data, content_type):
        self.paths.append(path)
        return StoredProof(url=f"mem://{path}", path=path, content_type=content_type)


@pytest.fixture
def storage():
    return RecordingStorage()


@pytest.fixture
def failing_storage():
    return FailingStorage()


@pytest.fixture
def annual3():
    """Membership on the 3 x 1000 plan that requires validation."""
    membership, created = memberships.create_membership("assoc-1", "2026", "annual-3")
    assert created
    return membership


@pytest.fixture
def single():
    membership, _ = memberships.create_membership("assoc-2", "2026", "annual-single")
    return membership


@pytest.fixture
def monthly():
    membership, _ = memberships.create_membership("assoc-3", "2026", "monthly-self")
    return membership


@pytest.fixture
def submit(storage):
    """Payer submission through the pay link; reopen=True re-enables the link first."""
    import payments

    def _submit(membership, amount, installment_id=None, reopen=False, **kwargs):
        if reopen:
            memberships.set_pay_link(membership.id, True)
        result = payments.submit_payment(
            membership.id,
            membership.pay_code,
            kwargs.pop("payer_name", "Ana Mora"),
            amount,
            kwargs.pop("method", "sinpe"),
            kwargs.pop("file_name", "proof.png"),
            kwargs.pop("file_bytes", b"\x89PNG fake"),
            kwargs.pop("content_type", "image/png"),
            installment_id=installment_id,
            storage=kwargs.pop("storage", storage),
            **kwargs,
        )
        return result.submission

    return _submit
