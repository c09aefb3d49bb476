import pytest
from sqlalchemy.exc import OperationalError

from storefront.extensions import db
from storefront.models import User
from storefront.services import identity_service
from storefront.services.concurrency import run_with_retry
from storefront.validation import ConstraintViolationError, DuplicateKeyError, LockTimeoutError


def test_persistent_lock_gives_up_with_lock_timeout(db_session):
    calls = []

    def _op():
        calls.append(1)
        raise OperationalError("UPDATE inventory", {}, Exception("database is locked"))

    with pytest.raises(LockTimeoutError) as excinfo:
        run_with_retry(_op, attempts=3, backoff_base=0)

    assert len(calls) == 3
    assert excinfo.value.details["attempts"] == 3


def test_lock_released_before_last_attempt_succeeds(db_session):
    calls = []

    def _op():
        calls.append(1)
        if len(calls) < 2:
            raise OperationalError("UPDATE inventory", {}, Exception("database is locked"))
        return "done"

    assert run_with_retry(_op, attempts=3, backoff_base=0) == "done"
    assert len(calls) == 2


def test_other_operational_errors_are_not_retried(db_session):
    calls = []

    def _op():
        calls.append(1)
        raise OperationalError("SELECT", {}, Exception("no such table: widgets"))

    with pytest.raises(OperationalError):
        run_with_retry(_op, attempts=3, backoff_base=0)

    assert len(calls) == 1


def test_racing_unique_insert_becomes_duplicate_key(db_session, alice):
    def _op():
        # skips the service-level email check, as a concurrent writer would
        db.session.add(User(email="alice@example.com", password_hash="other"))
        db.session.commit()

    with pytest.raises(DuplicateKeyError) as excinfo:
        run_with_retry(_op)

    assert "unique" in excinfo.value.details["db_error"].lower()
    # the session was rolled back and is usable again
    assert db.session.query(User).count() == 1
    assert identity_service.create_user("carol@example.com", "hash").id is not None


def test_other_integrity_errors_become_constraint_violations(db_session, alice):
    def _op():
        db.session.add(User(email="dave@example.com", password_hash=None))
        db.session.commit()

    with pytest.raises(ConstraintViolationError):
        run_with_retry(_op)

    assert db.session.query(User).count() == 1
