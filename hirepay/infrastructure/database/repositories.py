"""Data access layer for contracts, payments and their sub-ledgers"""

import logging
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple
from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from hirepay.config import settings
from hirepay.domain.exceptions import TransactionReferenceCollisionError
from hirepay.domain.models import ContractStatus, Installment as PlannedInstallment, InstallmentStatus, PaymentStatus
from hirepay.domain.retry_policy import DEFAULT_RETRY_SCHEDULE
from hirepay.infrastructure.database.models import (
    AuditLog,
    Customer,
    HirePurchaseContract,
    Installment,
    JobLease,
    NotificationLog,
    PaymentRetry,
    PaymentTransaction,
    Penalty,
    Preapproval,
    RetrySettings,
)
from hirepay.utils.date_utils import utcnow
from hirepay.utils.references import generate_contract_number, generate_transaction_ref

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_SMS_TEMPLATE = (
    "Dear {customerName}, your payment of GHS {amount} failed due to insufficient funds. "
    "Please ensure you have enough balance for the next retry."
)


class CustomerRepository:
    """Repository for customers"""

    def __init__(self, db: Session):
        self.db = db

    def create_customer(self, first_name: str, last_name: str, phone: str, email: str | None = None) -> Customer:
        customer = Customer(first_name=first_name, last_name=last_name, phone=phone, email=email)
        self.db.add(customer)
        self.db.flush()
        return customer

    def get_by_id(self, customer_id: str) -> Optional[Customer]:
        return self.db.get(Customer, customer_id)

    def get_by_phone(self, phone: str) -> Optional[Customer]:
        return self.db.query(Customer).filter(Customer.phone == phone).first()


class ContractRepository:
    """Repository for hire-purchase contracts, installments and penalties"""

    def __init__(self, db: Session):
        self.db = db

    def create_contract(
        self,
        customer_id: str,
        total_price_pesewas: int,
        deposit_pesewas: int,
        plan: List[PlannedInstallment],
        payment_frequency: str,
        grace_period_days: int = 0,
        penalty_percentage: float = 0.0,
        payment_method: str = "HUBTEL_REGULAR",
        mobile_money_network: str | None = None,
        mobile_money_number: str | None = None,
    ) -> HirePurchaseContract:
        """Create a contract with its installment batch (flushed, not committed)"""
        contract_number = generate_contract_number()
        while self.get_by_number(contract_number) is not None:
            contract_number = generate_contract_number()

        finance = total_price_pesewas - deposit_pesewas
        contract = HirePurchaseContract(
            contract_number=contract_number,
            customer_id=customer_id,
            total_price_pesewas=total_price_pesewas,
            deposit_pesewas=deposit_pesewas,
            finance_pesewas=finance,
            total_paid_pesewas=deposit_pesewas,
            outstanding_balance_pesewas=finance,
            status=ContractStatus.ACTIVE.value if finance > 0 else ContractStatus.COMPLETED.value,
            payment_frequency=payment_frequency,
            total_installments=len(plan),
            grace_period_days=grace_period_days,
            penalty_percentage=penalty_percentage,
            payment_method=payment_method,
            mobile_money_network=mobile_money_network,
            mobile_money_number=mobile_money_number,
            ownership_transferred=finance <= 0,
        )
        self.db.add(contract)
        self.db.flush()

        for inst in plan:
            self.db.add(
                Installment(
                    contract_id=contract.id,
                    installment_no=inst.installment_no,
                    due_date=inst.due_date,
                    amount_pesewas=inst.amount_pesewas,
                )
            )
        self.db.flush()
        return contract

    def get_by_id(self, contract_id: str) -> Optional[HirePurchaseContract]:
        return self.db.get(HirePurchaseContract, contract_id)

    def get_for_update(self, contract_id: str) -> Optional[HirePurchaseContract]:
        """Contract row locked until commit (no-op lock on SQLite)"""
        return (
            self.db.query(HirePurchaseContract)
            .filter(HirePurchaseContract.id == contract_id)
            .with_for_update()
            .populate_existing()
            .first()
        )

    def get_by_number(self, contract_number: str) -> Optional[HirePurchaseContract]:
        return (
            self.db.query(HirePurchaseContract)
            .filter(HirePurchaseContract.contract_number == contract_number)
            .first()
        )

    def get_active_contracts(self) -> List[HirePurchaseContract]:
        return (
            self.db.query(HirePurchaseContract)
            .filter(HirePurchaseContract.status == ContractStatus.ACTIVE.value)
            .order_by(HirePurchaseContract.created_at)
            .all()
        )

    def get_all_contracts(self) -> List[HirePurchaseContract]:
        return self.db.query(HirePurchaseContract).order_by(HirePurchaseContract.created_at).all()

    def get_direct_debit_contracts(self, customer_id: str) -> List[HirePurchaseContract]:
        return (
            self.db.query(HirePurchaseContract)
            .filter(
                HirePurchaseContract.customer_id == customer_id,
                HirePurchaseContract.payment_method == "HUBTEL_DIRECT_DEBIT",
            )
            .all()
        )

    def get_unpaid_penalties(self, contract_id: str) -> List[Penalty]:
        """Unpaid penalties in creation order"""
        return (
            self.db.query(Penalty)
            .filter(Penalty.contract_id == contract_id, Penalty.is_paid.is_(False))
            .order_by(Penalty.created_at, Penalty.id)
            .all()
        )

    def get_unpaid_installments(self, contract_id: str) -> List[Installment]:
        """Installments not fully paid, in sequence order"""
        return (
            self.db.query(Installment)
            .filter(
                Installment.contract_id == contract_id,
                Installment.paid_pesewas < Installment.amount_pesewas,
            )
            .order_by(Installment.installment_no)
            .all()
        )

    def get_open_installments_due_before(self, contract_id: str, cutoff: date) -> List[Installment]:
        return (
            self.db.query(Installment)
            .filter(
                Installment.contract_id == contract_id,
                Installment.status.in_([InstallmentStatus.PENDING.value, InstallmentStatus.PARTIAL.value]),
                Installment.due_date < cutoff,
            )
            .order_by(Installment.installment_no)
            .all()
        )

    def get_penalised_installment_ids(self, contract_id: str) -> set:
        rows = (
            self.db.query(Penalty.installment_id)
            .filter(Penalty.contract_id == contract_id, Penalty.installment_id.isnot(None))
            .all()
        )
        return {row[0] for row in rows}

    def add_penalty(
        self, contract_id: str, amount_pesewas: int, reason: str, installment_id: str | None = None
    ) -> Penalty:
        penalty = Penalty(
            contract_id=contract_id,
            installment_id=installment_id,
            amount_pesewas=amount_pesewas,
            reason=reason,
        )
        self.db.add(penalty)
        self.db.flush()
        return penalty


class PaymentTransactionRepository:
    """
    Repository for payment transactions.

    Status transitions are single-row conditional updates: the WHERE clause
    carries the expected current state and the returned row count tells the
    caller whether it won. Nothing here commits; callers own the unit of work.
    """

    def __init__(self, db: Session):
        self.db = db

    def reference_exists(self, reference: str) -> bool:
        in_payments = (
            self.db.query(PaymentTransaction.id)
            .filter(
                or_(
                    PaymentTransaction.transaction_ref == reference,
                    PaymentTransaction.active_reference == reference,
                )
            )
            .first()
        )
        if in_payments is not None:
            return True
        return self.db.query(PaymentRetry.id).filter(PaymentRetry.transaction_ref == reference).first() is not None

    def create_pending(
        self,
        contract: HirePurchaseContract,
        amount_pesewas: int,
        payment_method: str,
        channel_details: Dict[str, Any] | None = None,
        auto_retry_enabled: bool = True,
        metadata: Dict[str, Any] | None = None,
        ref_generator: Callable[[], str] = generate_transaction_ref,
    ) -> PaymentTransaction:
        """
        Create a PENDING transaction under a fresh reference.

        The reference is regenerated while it collides with an existing
        transaction or retry reference.

        Raises:
            TransactionReferenceCollisionError: No unused reference after
                transaction_ref_max_attempts tries
        """
        reference = None
        for attempt in range(1, settings.transaction_ref_max_attempts + 1):
            candidate = ref_generator()
            if not self.reference_exists(candidate):
                reference = candidate
                break
            logger.warning(
                "Transaction reference collision, regenerating",
                extra={"transaction_ref": candidate, "attempt": attempt},
            )
        if reference is None:
            raise TransactionReferenceCollisionError(
                f"No unused transaction reference after {settings.transaction_ref_max_attempts} attempts"
            )

        channel_details = channel_details or {}
        payment = PaymentTransaction(
            transaction_ref=reference,
            active_reference=reference,
            contract_id=contract.id,
            customer_id=contract.customer_id,
            amount_pesewas=amount_pesewas,
            payment_method=payment_method,
            mobile_money_provider=channel_details.get("provider"),
            mobile_money_number=channel_details.get("number"),
            channel=channel_details.get("channel"),
            status=PaymentStatus.PENDING.value,
            auto_retry_enabled=auto_retry_enabled,
            metadata_json=metadata,
        )
        self.db.add(payment)
        self.db.flush()
        return payment

    def _conditional_update(self, payment_id: str, conditions: list, values: Dict[str, Any], action: str) -> bool:
        updated = (
            self.db.query(PaymentTransaction)
            .filter(PaymentTransaction.id == payment_id, *conditions)
            .update(values, synchronize_session="evaluate")
        )
        if updated == 1:
            return True

        exists = self.db.query(PaymentTransaction.id).filter(PaymentTransaction.id == payment_id).first()
        if exists is None:
            logger.warning(f"{action} skipped: payment not found", extra={"payment_id": payment_id})
        else:
            logger.info(f"{action} skipped: payment no longer in expected state", extra={"payment_id": payment_id})
        return False

    def mark_failed(
        self,
        payment_id: str,
        reason: str,
        next_retry_at: datetime | None,
        ambiguous: bool = False,
    ) -> bool:
        """PENDING -> FAILED. Returns False when the row is not PENDING (or missing)."""
        return self._conditional_update(
            payment_id,
            [PaymentTransaction.status == PaymentStatus.PENDING.value],
            {
                "status": PaymentStatus.FAILED.value,
                "failure_reason": reason,
                "next_retry_at": next_retry_at,
                "outcome_ambiguous": ambiguous,
                "updated_at": utcnow(),
            },
            "mark_failed",
        )

    def mark_success(
        self,
        payment_id: str,
        external_ref: str | None,
        payment_date: datetime | None,
        metadata: Dict[str, Any] | None = None,
    ) -> bool:
        """PENDING/FAILED -> SUCCESS. Returns False when the row already settled (or is missing)."""
        values = {
            "status": PaymentStatus.SUCCESS.value,
            "payment_date": payment_date or utcnow(),
            "next_retry_at": None,
            "outcome_ambiguous": False,
            "updated_at": utcnow(),
        }
        if external_ref:
            values["external_ref"] = external_ref

        won = self._conditional_update(
            payment_id,
            [PaymentTransaction.status.in_([PaymentStatus.PENDING.value, PaymentStatus.FAILED.value])],
            values,
            "mark_success",
        )
        if won and metadata:
            self.annotate(payment_id, metadata)
        return won

    def begin_retry(self, payment_id: str, expected_retry_count: int, retry_ref: str, now: datetime | None = None) -> bool:
        """FAILED -> PENDING for a new attempt, only if nobody else started it first"""
        now = now or utcnow()
        return self._conditional_update(
            payment_id,
            [
                PaymentTransaction.status == PaymentStatus.FAILED.value,
                PaymentTransaction.retry_count == expected_retry_count,
            ],
            {
                "status": PaymentStatus.PENDING.value,
                "retry_count": expected_retry_count + 1,
                "last_retry_at": now,
                "next_retry_at": None,
                "active_reference": retry_ref,
                "outcome_ambiguous": False,
                "updated_at": now,
            },
            "begin_retry",
        )

    def defer_retry(self, payment_id: str, next_retry_at: datetime) -> bool:
        """Move the next retry of a FAILED payment; retry_count is untouched"""
        return self._conditional_update(
            payment_id,
            [PaymentTransaction.status == PaymentStatus.FAILED.value],
            {"next_retry_at": next_retry_at, "updated_at": utcnow()},
            "defer_retry",
        )

    def annotate(self, payment_id: str, metadata: Dict[str, Any]) -> bool:
        """Merge keys into the metadata blob; allowed in any status"""
        payment = self.get_by_id(payment_id)
        if payment is None:
            logger.warning("annotate skipped: payment not found", extra={"payment_id": payment_id})
            return False
        merged = dict(payment.metadata_json or {})
        merged.update(metadata)
        payment.metadata_json = merged
        self.db.flush()
        return True

    def record_initiation(self, payment_id: str, external_ref: str | None, metadata: Dict[str, Any]) -> None:
        """Store the provider acknowledgement of an accepted charge"""
        if external_ref:
            self.db.query(PaymentTransaction).filter(
                PaymentTransaction.id == payment_id,
                PaymentTransaction.status == PaymentStatus.PENDING.value,
            ).update({"external_ref": external_ref}, synchronize_session="evaluate")
        self.annotate(payment_id, metadata)

    def record_unapplied(self, payment_id: str, unapplied_pesewas: int, allocated_at: datetime) -> None:
        self.db.query(PaymentTransaction).filter(PaymentTransaction.id == payment_id).update(
            {"unapplied_pesewas": unapplied_pesewas, "allocated_at": allocated_at},
            synchronize_session="evaluate",
        )

    def get_by_id(self, payment_id: str) -> Optional[PaymentTransaction]:
        return self.db.get(PaymentTransaction, payment_id)

    def get_by_reference(self, reference: str) -> Optional[PaymentTransaction]:
        """
        Resolve a provider client reference to its payment.

        Matches the original reference, the reference of the attempt in
        flight, and references of earlier retry attempts.
        """
        payment = (
            self.db.query(PaymentTransaction)
            .filter(
                or_(
                    PaymentTransaction.transaction_ref == reference,
                    PaymentTransaction.active_reference == reference,
                )
            )
            .first()
        )
        if payment is not None:
            return payment

        retry = self.db.query(PaymentRetry).filter(PaymentRetry.transaction_ref == reference).first()
        return retry.payment if retry is not None else None

    def get_eligible_for_retry(self, now: datetime, max_retry_attempts: int) -> List[PaymentTransaction]:
        return (
            self.db.query(PaymentTransaction)
            .filter(
                PaymentTransaction.status == PaymentStatus.FAILED.value,
                PaymentTransaction.auto_retry_enabled.is_(True),
                PaymentTransaction.retry_count < max_retry_attempts,
                PaymentTransaction.next_retry_at.isnot(None),
                PaymentTransaction.next_retry_at <= now,
            )
            .order_by(PaymentTransaction.next_retry_at)
            .all()
        )

    def get_failed_payments(
        self,
        page: int = 1,
        limit: int = 20,
        contract_id: str | None = None,
        customer_id: str | None = None,
        exhausted: bool | None = None,
        max_retry_attempts: int | None = None,
    ) -> Tuple[List[PaymentTransaction], int]:
        """Failed payments, newest first, with the total count for pagination"""
        query = self.db.query(PaymentTransaction).filter(PaymentTransaction.status == PaymentStatus.FAILED.value)
        if contract_id:
            query = query.filter(PaymentTransaction.contract_id == contract_id)
        if customer_id:
            query = query.filter(PaymentTransaction.customer_id == customer_id)
        if exhausted is not None and max_retry_attempts is not None:
            if exhausted:
                query = query.filter(PaymentTransaction.retry_count >= max_retry_attempts)
            else:
                query = query.filter(PaymentTransaction.retry_count < max_retry_attempts)

        total = query.count()
        rows = (
            query.order_by(PaymentTransaction.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return rows, total

    def get_contract_payments(self, contract_id: str) -> List[PaymentTransaction]:
        return (
            self.db.query(PaymentTransaction)
            .filter(PaymentTransaction.contract_id == contract_id)
            .order_by(PaymentTransaction.created_at.desc())
            .all()
        )

    def successful_sums_by_contract(self) -> Dict[str, int]:
        rows = (
            self.db.query(PaymentTransaction.contract_id, func.sum(PaymentTransaction.amount_pesewas))
            .filter(PaymentTransaction.status == PaymentStatus.SUCCESS.value)
            .group_by(PaymentTransaction.contract_id)
            .all()
        )
        return {contract_id: int(total or 0) for contract_id, total in rows}


class PaymentRetryRepository:
    """Append-only retry attempt ledger"""

    def __init__(self, db: Session):
        self.db = db

    def record_attempt(
        self,
        payment_id: str,
        attempt_number: int,
        status: str,
        transaction_ref: str,
        external_ref: str | None = None,
        response_code: str | None = None,
        response_message: str | None = None,
        failure_reason: str | None = None,
        attempted_at: datetime | None = None,
        completed_at: datetime | None = None,
    ) -> PaymentRetry:
        retry = PaymentRetry(
            payment_id=payment_id,
            attempt_number=attempt_number,
            status=status,
            transaction_ref=transaction_ref,
            external_ref=external_ref,
            response_code=response_code,
            response_message=response_message,
            failure_reason=failure_reason,
            attempted_at=attempted_at or utcnow(),
            completed_at=completed_at,
        )
        self.db.add(retry)
        self.db.flush()
        return retry

    def record_response(
        self,
        transaction_ref: str,
        external_ref: str | None = None,
        response_code: str | None = None,
        response_message: str | None = None,
    ) -> bool:
        """Store the gateway's answer on an attempt that is still in flight"""
        updated = (
            self.db.query(PaymentRetry)
            .filter(PaymentRetry.transaction_ref == transaction_ref, PaymentRetry.completed_at.is_(None))
            .update(
                {"external_ref": external_ref, "response_code": response_code, "response_message": response_message},
                synchronize_session=False,
            )
        )
        return updated == 1

    def complete(
        self,
        transaction_ref: str,
        status: str,
        response_code: str | None = None,
        response_message: str | None = None,
        failure_reason: str | None = None,
        external_ref: str | None = None,
    ) -> bool:
        """Record the final result of an attempt that was still in flight; completed_at is set once"""
        values = {
            "status": status,
            "response_code": response_code,
            "response_message": response_message,
            "failure_reason": failure_reason,
            "completed_at": utcnow(),
        }
        if external_ref:
            values["external_ref"] = external_ref
        updated = (
            self.db.query(PaymentRetry)
            .filter(PaymentRetry.transaction_ref == transaction_ref, PaymentRetry.completed_at.is_(None))
            .update(values, synchronize_session=False)
        )
        return updated == 1

    def get_history(self, payment_id: str) -> List[PaymentRetry]:
        return (
            self.db.query(PaymentRetry)
            .filter(PaymentRetry.payment_id == payment_id)
            .order_by(PaymentRetry.attempt_number)
            .all()
        )


class RetrySettingsRepository:
    """Repository for the retry settings singleton"""

    SETTINGS_ID = 1

    def __init__(self, db: Session):
        self.db = db

    def get_or_create(self) -> RetrySettings:
        """
        Return the settings row, creating it with defaults on first use.

        Called at the start of an operation: a lost creation race rolls the
        session back before re-reading the winner's row.
        """
        row = self.db.get(RetrySettings, self.SETTINGS_ID)
        if row is not None:
            return row

        row = RetrySettings(
            id=self.SETTINGS_ID,
            enable_auto_retry=True,
            max_retry_attempts=3,
            retry_interval_hours=24,
            retry_schedule=DEFAULT_RETRY_SCHEDULE,
            notify_on_failure=True,
            notify_customer_on_failure=True,
            send_sms_on_failure=True,
            failure_sms_template=DEFAULT_FAILURE_SMS_TEMPLATE,
        )
        self.db.add(row)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            row = self.db.get(RetrySettings, self.SETTINGS_ID)
        return row

    def update(self, changes: Dict[str, Any], updated_by: str | None = None) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        """Apply changes (last writer wins); returns (old, new) snapshots of the changed fields"""
        row = self.get_or_create()
        old_values = {key: getattr(row, key) for key in changes}
        for key, value in changes.items():
            setattr(row, key, value)
        row.updated_by = updated_by
        self.db.flush()
        return old_values, {key: getattr(row, key) for key in changes}


class AuditLogRepository:
    """Repository for audit entries (insert and read only)"""

    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        action: str,
        entity: str,
        entity_id: str | None = None,
        old_values: Dict[str, Any] | None = None,
        new_values: Dict[str, Any] | None = None,
        user_id: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> AuditLog:
        entry = AuditLog(
            action=action,
            entity=entity,
            entity_id=entity_id,
            old_values=old_values,
            new_values=new_values,
            user_id=user_id,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        self.db.add(entry)
        self.db.flush()
        return entry


class NotificationLogRepository:
    """Repository for notification delivery records"""

    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        type: str,
        status: str,
        message: str,
        recipient: str | None = None,
        customer_id: str | None = None,
        contract_id: str | None = None,
        error_message: str | None = None,
    ) -> NotificationLog:
        entry = NotificationLog(
            type=type,
            status=status,
            message=message,
            recipient=recipient,
            customer_id=customer_id,
            contract_id=contract_id,
            error_message=error_message,
        )
        self.db.add(entry)
        self.db.flush()
        return entry


class PreapprovalRepository:
    """Repository for direct debit mandates"""

    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        customer_id: str,
        customer_msisdn: str,
        channel: str,
        client_reference_id: str,
        provider_preapproval_id: str | None = None,
        verification_type: str | None = None,
        otp_prefix: str | None = None,
        metadata: Dict[str, Any] | None = None,
    ) -> Preapproval:
        preapproval = Preapproval(
            customer_id=customer_id,
            customer_msisdn=customer_msisdn,
            channel=channel,
            client_reference_id=client_reference_id,
            provider_preapproval_id=provider_preapproval_id,
            verification_type=verification_type,
            otp_prefix=otp_prefix,
            status="PENDING",
            metadata_json=metadata,
        )
        self.db.add(preapproval)
        self.db.flush()
        return preapproval

    def get_by_client_reference(self, client_reference_id: str) -> Optional[Preapproval]:
        return (
            self.db.query(Preapproval)
            .filter(Preapproval.client_reference_id == client_reference_id)
            .first()
        )

    def get_approved(self, customer_id: str, customer_msisdn: str) -> Optional[Preapproval]:
        return (
            self.db.query(Preapproval)
            .filter(
                Preapproval.customer_id == customer_id,
                Preapproval.customer_msisdn == customer_msisdn,
                Preapproval.status == "APPROVED",
            )
            .first()
        )

    def update_status(
        self,
        preapproval: Preapproval,
        status: str,
        provider_preapproval_id: str | None = None,
        metadata: Dict[str, Any] | None = None,
    ) -> Preapproval:
        preapproval.status = status
        if status == "APPROVED" and preapproval.approved_at is None:
            preapproval.approved_at = utcnow()
        if provider_preapproval_id:
            preapproval.provider_preapproval_id = provider_preapproval_id
        if metadata is not None:
            preapproval.metadata_json = metadata
        self.db.flush()
        return preapproval


class JobLeaseRepository:
    """
    Database lease for singleton jobs.

    Unlike the other repositories this one commits: a lease is only useful
    once other processes can see it.
    """

    def __init__(self, db: Session):
        self.db = db

    def _ensure_row(self, job_name: str) -> None:
        if self.db.get(JobLease, job_name) is not None:
            return
        self.db.add(JobLease(job_name=job_name))
        try:
            self.db.commit()
        except IntegrityError:
            # Created concurrently by another worker
            self.db.rollback()

    def try_acquire(self, job_name: str, holder: str, ttl_seconds: int, now: datetime | None = None) -> bool:
        """Take the lease if it is free or expired"""
        now = now or utcnow()
        self._ensure_row(job_name)
        acquired = (
            self.db.query(JobLease)
            .filter(
                JobLease.job_name == job_name,
                or_(JobLease.holder.is_(None), JobLease.expires_at < now),
            )
            .update(
                {"holder": holder, "acquired_at": now, "expires_at": now + timedelta(seconds=ttl_seconds)},
                synchronize_session=False,
            )
        )
        self.db.commit()
        return acquired == 1

    def renew(self, job_name: str, holder: str, ttl_seconds: int, now: datetime | None = None) -> bool:
        """Push the expiry forward; False once the lease is no longer ours"""
        now = now or utcnow()
        renewed = (
            self.db.query(JobLease)
            .filter(JobLease.job_name == job_name, JobLease.holder == holder)
            .update({"expires_at": now + timedelta(seconds=ttl_seconds)}, synchronize_session=False)
        )
        self.db.commit()
        return renewed == 1

    def release(self, job_name: str, holder: str) -> bool:
        """Give the lease back; only the current holder can release it"""
        released = (
            self.db.query(JobLease)
            .filter(JobLease.job_name == job_name, JobLease.holder == holder)
            .update({"holder": None, "expires_at": None}, synchronize_session=False)
        )
        self.db.commit()
        return released == 1

    def get(self, job_name: str) -> Optional[JobLease]:
        return self.db.get(JobLease, job_name)
