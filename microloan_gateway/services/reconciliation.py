"""Repayment intake and transaction reconciliation"""

import logging
import time
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from microloan_gateway.config import settings
from microloan_gateway.domain import lifecycle
from microloan_gateway.domain.credit_state import apply_score_delta, record_repayment
from microloan_gateway.domain.exceptions import (
    ConcurrentAwardError,
    InvalidLoanTransition,
    NotFoundError,
    OverRepayment,
    ValidationError,
)
from microloan_gateway.domain.models import (
    LoanStatus,
    PaymentMethod,
    ReconciliationResult,
    ScoreReason,
    TransactionStatus,
    TransactionType,
)
from microloan_gateway.domain.scoring import compute_award
from microloan_gateway.infrastructure.database.models import Loan, Transaction
from microloan_gateway.infrastructure.database.repositories import (
    CreditScoreHistoryRepository,
    LoanRepository,
    TransactionRepository,
    UserRepository,
)
from microloan_gateway.infrastructure.database.session import run_in_transaction
from microloan_gateway.infrastructure.observability.logging import log_reconciliation, log_transition
from microloan_gateway.infrastructure.observability.metrics import record_reconciliation, record_transition
from microloan_gateway.services.credit_policy import CreditPolicy
from microloan_gateway.utils.date_utils import is_past, utcnow
from microloan_gateway.utils.identifiers import new_transaction_id

logger = logging.getLogger(__name__)

TERMINAL_TRANSACTION_STATUSES = (TransactionStatus.COMPLETED, TransactionStatus.FAILED)


def parse_transaction_status(value: TransactionStatus | str) -> TransactionStatus:
    try:
        status = TransactionStatus(value)
    except ValueError:
        raise ValidationError(f"Unknown transaction status: {value}")
    if status not in TERMINAL_TRANSACTION_STATUSES:
        raise ValidationError("Transactions can only be reconciled to completed or failed")
    return status


def _positive_money(value, label: str) -> Decimal:
    try:
        amount = lifecycle.to_money(value)
    except ArithmeticError:
        raise ValidationError(f"{label} is not a number: {value}")
    if amount <= 0:
        raise ValidationError(f"{label} must be greater than zero")
    return amount


class ReconciliationService:
    """
    The only writer of loan balances after disbursement and of the score ledger.

    A completed repayment updates the transaction, the loan, the ledger and
    the user in one unit of work. Reconciling a transaction that is no longer
    pending replays the stored outcome instead of applying it again.
    """

    def __init__(self, db: Session):
        self.db = db
        self.users = UserRepository(db)
        self.loans = LoanRepository(db)
        self.transactions = TransactionRepository(db)
        self.ledger = CreditScoreHistoryRepository(db)
        self.policy = CreditPolicy(db)

    def get_transaction(self, transaction_id: str) -> Transaction:
        transaction = self.transactions.get_by_transaction_id(transaction_id)
        if transaction is None:
            raise NotFoundError("Transaction", transaction_id)
        return transaction

    def record_repayment(
        self,
        loan_id: str,
        amount: Decimal | float,
        payment_method: Optional[PaymentMethod | str] = None,
        reference: Optional[str] = None,
        network: Optional[str] = None,
    ) -> Transaction:
        """
        Register an inbound repayment as a PENDING transaction.

        A reference already seen for a repayment returns the existing
        transaction, so gateways may resend the same notification.

        Raises:
            NotFoundError: Unknown loan
            ValidationError: Non-positive amount or unknown payment method
            InvalidLoanTransition: Loan is not disbursed or repaying
        """
        payment = _positive_money(amount, "Repayment amount")
        try:
            method = PaymentMethod(payment_method) if payment_method else None
        except ValueError:
            raise ValidationError(f"Unknown payment method: {payment_method}")

        def work():
            if reference:
                existing = self.transactions.get_by_reference(TransactionType.REPAYMENT, reference)
                if existing is not None:
                    return existing, False

            loan = self.loans.get_by_loan_id(loan_id)
            if loan is None:
                raise NotFoundError("Loan", loan_id)
            status = LoanStatus(loan.status)
            if status not in (LoanStatus.DISBURSED, LoanStatus.REPAYING):
                raise InvalidLoanTransition(status.value, LoanStatus.REPAYING.value)

            transaction = self.transactions.add(
                Transaction(
                    transaction_id=new_transaction_id(),
                    user_id=loan.user_id,
                    loan_id=loan.id,
                    type=TransactionType.REPAYMENT,
                    status=TransactionStatus.PENDING,
                    amount=payment,
                    payment_method=method,
                    reference=reference,
                    network=network,
                    description=f"Repayment for loan {loan.loan_id}",
                    created_at=utcnow(),
                )
            )
            return transaction, True

        transaction, created = run_in_transaction(self.db, work)
        if created:
            logger.info(
                "Repayment recorded",
                extra={
                    "transaction_id": transaction.transaction_id,
                    "loan_id": loan_id,
                    "amount": str(payment),
                    "reference": reference,
                },
            )
        return transaction

    def reconcile(
        self,
        transaction_id: str,
        status: TransactionStatus | str,
        amount: Optional[Decimal | float] = None,
        notes: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> ReconciliationResult:
        """
        Move a PENDING transaction to COMPLETED or FAILED.

        Flow for a completed repayment, as one atomic unit:
        1. Lock transaction, loan and user rows
        2. Apply the repayment to the loan balance (capped at amount due)
        3. Score it with the configured repayment policy
        4. Move the user's score (and limit when auto-limit is on)
        5. Append the ledger entry keyed by the transaction
        6. Stamp the transaction as reconciled

        Duplicate deliveries are answered from the stored state with
        duplicate=True. Metrics and logs are emitted after commit.

        Raises:
            NotFoundError: Unknown transaction or linked loan
            ValidationError: Bad status or amount
            OverRepayment: Payment above outstanding while reject_over_repayment is on
            TransientStoreError: Store kept failing after retries
        """
        start_time = time.time()
        target = parse_transaction_status(status)
        confirmed_amount = _positive_money(amount, "Amount") if amount is not None else None

        result = run_in_transaction(
            self.db,
            lambda: self._reconcile(transaction_id, target, confirmed_amount, notes, actor_id),
        )

        duration_ms = (time.time() - start_time) * 1000
        outcome = "duplicate" if result.duplicate else result.status.value
        record_reconciliation(outcome, result.points_awarded, result.over_repayment)
        if result.is_full_repayment and not result.duplicate:
            record_transition(LoanStatus.COMPLETED.value)
            log_transition(result.loan_id, LoanStatus.REPAYING.value, LoanStatus.COMPLETED.value, actor_id)
        if result.over_repayment and not result.duplicate:
            logger.warning(
                "Repayment exceeded outstanding amount",
                extra={
                    "transaction_id": result.transaction_id,
                    "loan_id": result.loan_id,
                    "excess_amount": str(result.excess_amount),
                },
            )
        log_reconciliation(
            result.transaction_id,
            result.status.value,
            result.duplicate,
            result.points_awarded,
            float(result.outstanding_amount) if result.outstanding_amount is not None else None,
            duration_ms,
        )
        return result

    def _reconcile(
        self,
        transaction_id: str,
        target: TransactionStatus,
        confirmed_amount: Optional[Decimal],
        notes: Optional[str],
        actor_id: Optional[str],
    ) -> ReconciliationResult:
        transaction = self.transactions.get_by_transaction_id(transaction_id, for_update=True)
        if transaction is None:
            raise NotFoundError("Transaction", transaction_id)

        if TransactionStatus(transaction.status) != TransactionStatus.PENDING:
            return self._prior_result(transaction)

        payment = confirmed_amount if confirmed_amount is not None else lifecycle.to_money(transaction.amount)
        now = utcnow()
        result = ReconciliationResult(transaction_id=transaction.transaction_id, status=target)

        if target == TransactionStatus.COMPLETED and TransactionType(transaction.type) == TransactionType.REPAYMENT:
            self._settle_repayment(transaction, payment, now, result)
        elif transaction.loan_id is not None:
            self._describe_loan(self.loans.get(transaction.loan_id), result)

        transaction.status = target
        transaction.amount = payment
        transaction.reconciled_at = now
        transaction.reconciled_by = actor_id
        if notes:
            transaction.notes = notes
        self.db.flush()
        return result

    def _settle_repayment(self, transaction: Transaction, payment: Decimal, now, result: ReconciliationResult) -> None:
        if transaction.loan_id is None:
            raise ValidationError(f"Repayment {transaction.transaction_id} is not linked to a loan")
        loan = self.loans.get(transaction.loan_id, for_update=True)
        if loan is None:
            raise NotFoundError("Loan", str(transaction.loan_id))
        user = self.users.get(loan.user_id, for_update=True)
        if user is None:
            raise NotFoundError("User", str(loan.user_id))

        outstanding = lifecycle.to_money(loan.outstanding_amount)
        if settings.reject_over_repayment and payment > outstanding:
            raise OverRepayment(payment, outstanding)

        days_elapsed = lifecycle.days_since_disbursement(loan, now)
        repayment = lifecycle.apply_repayment(loan, payment, now)

        award = compute_award(
            repayment.applied_amount,
            loan.amount,
            days_elapsed,
            is_full_repayment=repayment.completed,
            is_partial=not repayment.completed,
            policy=self.policy.scoring_policy(),
        )
        first_time_user = (user.total_loans or 0) == 0
        previous_score, new_score = apply_score_delta(
            user,
            award.points,
            self.policy.score_bounds(),
            lambda score: self.policy.limit_for(score, first_time_user),
        )

        metadata = dict(award.breakdown)
        metadata.update(
            transactionId=transaction.transaction_id,
            loanId=loan.loan_id,
            excessAmount=float(repayment.excess_amount),
            outstandingAmount=float(repayment.outstanding_amount),
        )
        entry = self.ledger.award(
            user_id=user.id,
            transaction_pk=transaction.id,
            loan_pk=loan.id,
            points=award.points,
            reason=award.reason,
            previous_score=previous_score,
            new_score=new_score,
            metadata=metadata,
            created_at=now,
        )
        if entry is None:
            # Another delivery won the race; the retry will see the terminal transaction
            raise ConcurrentAwardError(transaction.transaction_id)

        record_repayment(user, repayment.applied_amount, repayment.completed, is_past(loan.due_date, now))

        self._describe_loan(loan, result)
        result.amount_applied = repayment.applied_amount
        result.is_full_repayment = repayment.completed
        result.points_awarded = award.points
        result.reason = award.reason
        result.previous_score = previous_score
        result.new_score = new_score
        result.over_repayment = repayment.over_repayment
        result.excess_amount = repayment.excess_amount

    @staticmethod
    def _describe_loan(loan: Optional[Loan], result: ReconciliationResult) -> None:
        if loan is None:
            return
        result.loan_id = loan.loan_id
        result.loan_status = LoanStatus(loan.status)
        result.outstanding_amount = lifecycle.to_money(loan.outstanding_amount)

    def _prior_result(self, transaction: Transaction) -> ReconciliationResult:
        """Rebuild the outcome of an earlier reconciliation from stored state"""
        result = ReconciliationResult(
            transaction_id=transaction.transaction_id,
            status=TransactionStatus(transaction.status),
            duplicate=True,
        )
        if transaction.loan_id is not None:
            self._describe_loan(self.loans.get(transaction.loan_id), result)

        entry = self.ledger.find_by_transaction(transaction.id)
        if entry is not None:
            details = entry.details or {}
            excess = lifecycle.to_money(details.get("excessAmount", 0))
            result.amount_applied = lifecycle.to_money(details.get("repaymentAmount", 0))
            result.is_full_repayment = ScoreReason(entry.reason) == ScoreReason.LOAN_COMPLETED
            result.points_awarded = entry.points_awarded
            result.reason = ScoreReason(entry.reason)
            result.previous_score = entry.previous_score
            result.new_score = entry.new_score
            result.over_repayment = excess > 0
            result.excess_amount = excess
        return result
