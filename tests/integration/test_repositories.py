"""Integration tests for conditional updates and reference handling in the repositories"""

import pytest
from datetime import timedelta
from hirepay.domain.exceptions import TransactionReferenceCollisionError
from hirepay.infrastructure.database.repositories import (
    JobLeaseRepository,
    PaymentRetryRepository,
    PaymentTransactionRepository,
    RetrySettingsRepository,
)
from hirepay.utils.date_utils import utcnow


def test_reference_regenerated_on_collision(db, contract, make_payment):
    make_payment(contract, ref_generator=lambda: "TXNTAKEN")
    candidates = iter(["TXNTAKEN", "TXNTAKEN", "TXNFRESH"])

    payment = make_payment(contract, ref_generator=lambda: next(candidates))

    assert payment.transaction_ref == "TXNFRESH"
    assert payment.active_reference == "TXNFRESH"


def test_reference_collision_gives_up(db, contract, make_payment):
    make_payment(contract, ref_generator=lambda: "TXNTAKEN")

    with pytest.raises(TransactionReferenceCollisionError):
        PaymentTransactionRepository(db).create_pending(
            contract, 1000, "HUBTEL_REGULAR", ref_generator=lambda: "TXNTAKEN"
        )


def test_retry_references_count_as_taken(db, contract, make_payment):
    payment = make_payment(contract, failed=True)
    payments = PaymentTransactionRepository(db)
    payments.begin_retry(payment.id, 0, "TXNX-retry-1")
    PaymentRetryRepository(db).record_attempt(payment.id, 1, "PENDING", "TXNX-retry-1")
    db.commit()

    assert payments.reference_exists("TXNX-retry-1")
    assert not payments.reference_exists("TXNX-retry-2")


def test_mark_failed_only_from_pending(db, contract, make_payment):
    payments = PaymentTransactionRepository(db)
    payment = make_payment(contract)

    assert payments.mark_success(payment.id, "EXT", None)
    assert not payments.mark_failed(payment.id, "late failure", None)
    db.commit()

    db.expire_all()
    assert payment.status == "SUCCESS"


def test_mark_success_once(db, contract, make_payment):
    payments = PaymentTransactionRepository(db)
    payment = make_payment(contract, failed=True)

    assert payments.mark_success(payment.id, "EXT", None, {"settled_reference": payment.transaction_ref})
    assert not payments.mark_success(payment.id, "EXT2", None)
    db.commit()

    db.expire_all()
    assert payment.external_ref == "EXT"
    assert payment.metadata_json["settled_reference"] == payment.transaction_ref


def test_mark_missing_payment(db):
    assert not PaymentTransactionRepository(db).mark_failed("missing", "x", None)


def test_begin_retry_claimed_once(db, contract, make_payment):
    """Two workers read retry_count=0; only the first conditional update wins"""
    payments = PaymentTransactionRepository(db)
    payment = make_payment(contract, failed=True)

    assert payments.begin_retry(payment.id, 0, f"{payment.transaction_ref}-retry-1")
    assert not payments.begin_retry(payment.id, 0, f"{payment.transaction_ref}-retry-1")
    db.commit()

    db.expire_all()
    assert payment.retry_count == 1


def test_get_by_reference_resolves_every_attempt(db, contract, make_payment):
    payments = PaymentTransactionRepository(db)
    retries = PaymentRetryRepository(db)
    payment = make_payment(contract, failed=True)
    ref = payment.transaction_ref

    payments.begin_retry(payment.id, 0, f"{ref}-retry-1")
    retries.record_attempt(payment.id, 1, "PENDING", f"{ref}-retry-1")
    payments.mark_failed(payment.id, "failed", None)
    payments.begin_retry(payment.id, 1, f"{ref}-retry-2")
    retries.record_attempt(payment.id, 2, "PENDING", f"{ref}-retry-2")
    db.commit()

    for reference in (ref, f"{ref}-retry-1", f"{ref}-retry-2"):
        assert payments.get_by_reference(reference).id == payment.id
    assert payments.get_by_reference(f"{ref}-retry-3") is None


def test_retry_attempt_completed_once(db, contract, make_payment):
    payment = make_payment(contract, failed=True)
    retries = PaymentRetryRepository(db)
    retries.record_attempt(payment.id, 1, "PENDING", "REF-retry-1")
    db.commit()

    assert retries.complete("REF-retry-1", "FAILED", failure_reason="declined")
    assert not retries.complete("REF-retry-1", "SUCCESS")
    db.commit()

    [attempt] = retries.get_history(payment.id)
    db.refresh(attempt)
    assert attempt.status == "FAILED"


def test_retry_settings_defaults(db):
    settings = RetrySettingsRepository(db).get_or_create()

    assert settings.enable_auto_retry is True
    assert settings.max_retry_attempts == 3
    assert settings.retry_interval_hours == 24
    assert settings.retry_schedule == "1,3,7"
    assert "{customerName}" in settings.failure_sms_template
    assert RetrySettingsRepository(db).get_or_create() is settings


def test_job_lease(db):
    leases = JobLeaseRepository(db)
    now = utcnow()

    assert leases.try_acquire("job", "a", 60, now)
    assert not leases.try_acquire("job", "b", 60, now)
    assert not leases.release("job", "b")
    assert leases.release("job", "a")
    assert leases.try_acquire("job", "b", 60, now)
    assert leases.try_acquire("job", "c", 60, now + timedelta(seconds=61))


def test_job_lease_renew_only_by_holder(db):
    leases = JobLeaseRepository(db)
    now = utcnow()
    assert leases.try_acquire("job", "a", 60, now)

    assert leases.renew("job", "a", 60, now + timedelta(seconds=50))
    # still held at the original expiry
    assert not leases.try_acquire("job", "b", 60, now + timedelta(seconds=61))
    assert not leases.renew("job", "b", 60, now)

    assert leases.try_acquire("job", "b", 60, now + timedelta(seconds=111))
    assert not leases.renew("job", "a", 60, now + timedelta(seconds=112))
