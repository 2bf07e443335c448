"""Loan lifecycle operations: each one is a single retried unit of work"""

import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session

from microloan_gateway.domain import lifecycle
from microloan_gateway.domain.credit_state import record_default, record_disbursement
from microloan_gateway.domain.exceptions import CreditLimitExceeded, NotFoundError, ValidationError
from microloan_gateway.domain.models import (
    LoanStats,
    LoanStatus,
    Network,
    Page,
    TransactionStatus,
    TransactionType,
)
from microloan_gateway.domain.reporting import build_loan_stats, render_loans_csv
from microloan_gateway.infrastructure.database.models import Loan, Transaction, User
from microloan_gateway.infrastructure.database.repositories import (
    LoanRepository,
    TransactionRepository,
    UserRepository,
)
from microloan_gateway.infrastructure.database.session import run_in_transaction
from microloan_gateway.infrastructure.observability.logging import log_transition
from microloan_gateway.infrastructure.observability.metrics import (
    credit_limit_rejection_counter,
    record_transition,
)
from microloan_gateway.services.credit_policy import CreditPolicy
from microloan_gateway.utils.date_utils import utcnow
from microloan_gateway.utils.identifiers import new_transaction_id, parse_uuid

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


def parse_network(value: Network | str) -> Network:
    try:
        return Network(value)
    except ValueError:
        raise ValidationError(f"Unknown network: {value}")


def parse_loan_status(value: LoanStatus | str) -> LoanStatus:
    try:
        return LoanStatus(value)
    except ValueError:
        raise ValidationError(f"Unknown loan status: {value}")


class LoanService:
    """Create loans and move them through approval, disbursement and default"""

    def __init__(self, db: Session):
        self.db = db
        self.users = UserRepository(db)
        self.loans = LoanRepository(db)
        self.transactions = TransactionRepository(db)
        self.policy = CreditPolicy(db)

    def _locked_user(self, user_id: uuid.UUID) -> User:
        user = self.users.get(user_id, for_update=True)
        if user is None:
            raise NotFoundError("User", str(user_id))
        return user

    def _locked_loan(self, loan_id: str) -> Loan:
        loan = self.loans.get_by_loan_id(loan_id, for_update=True)
        if loan is None:
            raise NotFoundError("Loan", loan_id)
        return loan

    def create_loan(
        self,
        user_id: str | uuid.UUID,
        amount: Decimal | float,
        network: Network | str,
        interest_rate: Optional[float] = None,
        repayment_period: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Loan:
        """
        Open a loan in REQUESTED status.

        The user row is locked while the request is checked against the
        remaining credit, so two concurrent requests cannot both spend the
        same headroom. Interest rate and repayment period default to the
        score-based policy terms.

        Raises:
            NotFoundError: Unknown user
            ValidationError: Bad amount, network or terms
            CreditLimitExceeded: Amount above limit minus active outstanding
        """
        user_pk = parse_uuid(user_id, "User")
        channel = parse_network(network)

        def work() -> Loan:
            now = utcnow()
            user = self._locked_user(user_pk)
            lifecycle.ensure_within_limit(amount, user.credit_limit, self.loans.active_outstanding(user.id))

            score = int(user.credit_score or 0)
            rate = interest_rate if interest_rate is not None else self.policy.interest_rate_for(score)
            period = repayment_period if repayment_period is not None else self.policy.repayment_period_for(score)

            loan = Loan(
                loan_id=self.loans.next_loan_id(now.year),
                user_id=user.id,
                user_phone=user.phone,
                user_email=user.email,
                network=channel,
                details=metadata or {},
                created_at=now,
            )
            lifecycle.open_loan(loan, amount, rate, int(period), now)
            self.loans.add(loan)
            user.total_loans = (user.total_loans or 0) + 1
            return loan

        try:
            loan = run_in_transaction(self.db, work)
        except CreditLimitExceeded as e:
            credit_limit_rejection_counter.inc()
            logger.info(
                "Loan request over credit limit",
                extra={"user_id": str(user_pk), "requested": str(e.requested), "available": str(e.available)},
            )
            raise

        record_transition(LoanStatus.REQUESTED.value)
        log_transition(loan.loan_id, None, LoanStatus.REQUESTED.value, None)
        return loan

    def _change_status(
        self,
        loan_id: str,
        target: LoanStatus,
        actor_id: Optional[str],
        apply: Callable[[Loan, datetime], None],
    ) -> Loan:
        def work():
            loan = self._locked_loan(loan_id)
            previous = LoanStatus(loan.status)
            apply(loan, utcnow())
            self.db.flush()
            return loan, previous

        loan, previous = run_in_transaction(self.db, work)
        record_transition(target.value)
        log_transition(loan.loan_id, previous.value, target.value, actor_id)
        return loan

    def approve_loan(self, loan_id: str, approver_id: str) -> Loan:
        return self._change_status(
            loan_id,
            LoanStatus.APPROVED,
            approver_id,
            lambda loan, now: lifecycle.approve(loan, approver_id, now),
        )

    def reject_loan(self, loan_id: str, reason: str, actor_id: Optional[str] = None) -> Loan:
        if not reason or not reason.strip():
            raise ValidationError("Rejection reason is required")
        return self._change_status(
            loan_id,
            LoanStatus.REJECTED,
            actor_id,
            lambda loan, now: lifecycle.reject(loan, reason.strip(), actor_id, now),
        )

    def disburse_loan(self, loan_id: str, actor_id: Optional[str] = None) -> Loan:
        """Release funds and open the pending disbursement transaction for the payout"""

        def apply(loan: Loan, now: datetime) -> None:
            lifecycle.disburse(loan, actor_id, now)
            record_disbursement(self._locked_user(loan.user_id), loan.amount)
            self.transactions.add(
                Transaction(
                    transaction_id=new_transaction_id(),
                    user_id=loan.user_id,
                    loan_id=loan.id,
                    type=TransactionType.DISBURSEMENT,
                    status=TransactionStatus.PENDING,
                    amount=loan.disbursed_amount,
                    reference=loan.loan_id,
                    network=Network(loan.network).value,
                    description=f"Disbursement for loan {loan.loan_id}",
                    created_at=now,
                )
            )

        return self._change_status(loan_id, LoanStatus.DISBURSED, actor_id, apply)

    def default_loan(self, loan_id: str, actor_id: Optional[str] = None) -> Loan:
        def apply(loan: Loan, now: datetime) -> None:
            lifecycle.mark_defaulted(loan, now)
            record_default(self._locked_user(loan.user_id))

        return self._change_status(loan_id, LoanStatus.DEFAULTED, actor_id, apply)

    def get_loan(self, loan_id: str) -> Loan:
        loan = self.loans.get_by_loan_id(loan_id)
        if loan is None:
            raise NotFoundError("Loan", loan_id)
        return loan

    def list_loans(
        self,
        page: int = 1,
        limit: int = 10,
        status: Optional[LoanStatus | str] = None,
        network: Optional[Network | str] = None,
        search: Optional[str] = None,
        created_from: Optional[datetime] = None,
        created_to: Optional[datetime] = None,
    ) -> Page[Loan]:
        if page < 1 or not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValidationError(f"page must be >= 1 and limit between 1 and {MAX_PAGE_SIZE}")
        items, total = self.loans.list_loans(
            page=page,
            limit=limit,
            status=parse_loan_status(status) if status else None,
            network=parse_network(network) if network else None,
            search=search or None,
            created_from=created_from,
            created_to=created_to,
        )
        return Page(data=items, total=total, page=page, limit=limit)

    def get_loan_stats(self) -> LoanStats:
        start_of_day = utcnow().replace(hour=0, minute=0, second=0, microsecond=0)
        today_count, today_amount = self.loans.created_since(start_of_day)
        return build_loan_stats(self.loans.totals_by_status(), today_count, today_amount)

    def export_loans(
        self,
        status: Optional[LoanStatus | str] = None,
        network: Optional[Network | str] = None,
        search: Optional[str] = None,
        created_from: Optional[datetime] = None,
        created_to: Optional[datetime] = None,
    ) -> str:
        loans = self.loans.export_loans(
            status=parse_loan_status(status) if status else None,
            network=parse_network(network) if network else None,
            search=search or None,
            created_from=created_from,
            created_to=created_to,
        )
        return render_loans_csv(loans)
