"""Loan lifecycle state machine and repayment bookkeeping"""

from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, FrozenSet, Iterable

from microloan_gateway.domain.exceptions import CreditLimitExceeded, InvalidLoanTransition, ValidationError
from microloan_gateway.domain.models import LoanStatus, RepaymentOutcome
from microloan_gateway.utils.date_utils import whole_days_between

CENT = Decimal("0.01")

TRANSITIONS: Dict[LoanStatus, FrozenSet[LoanStatus]] = {
    LoanStatus.REQUESTED: frozenset({LoanStatus.APPROVED, LoanStatus.REJECTED}),
    LoanStatus.APPROVED: frozenset({LoanStatus.DISBURSED}),
    LoanStatus.DISBURSED: frozenset({LoanStatus.REPAYING}),
    LoanStatus.REPAYING: frozenset({LoanStatus.REPAYING, LoanStatus.COMPLETED, LoanStatus.DEFAULTED}),
}

TERMINAL_STATUSES = frozenset({LoanStatus.REJECTED, LoanStatus.COMPLETED, LoanStatus.DEFAULTED})


def to_money(value) -> Decimal:
    """Normalize any numeric input to a two-decimal Decimal"""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def can_transition(current: LoanStatus, target: LoanStatus) -> bool:
    return target in TRANSITIONS.get(LoanStatus(current), frozenset())


def _transition(loan, target: LoanStatus) -> None:
    current = LoanStatus(loan.status)
    if not can_transition(current, target):
        raise InvalidLoanTransition(current.value, target.value)
    loan.status = target


def available_credit(credit_limit, active_outstanding: Iterable) -> Decimal:
    """Credit limit minus the outstanding principal of the user's active loans"""
    exposure = sum((to_money(o or 0) for o in active_outstanding), Decimal("0"))
    return max(Decimal("0"), to_money(credit_limit or 0) - exposure)


def ensure_within_limit(amount, credit_limit, active_outstanding: Iterable) -> Decimal:
    """
    Validate a new loan request against the user's credit.

    Raises:
        ValidationError: Non-positive amount
        CreditLimitExceeded: Amount above the remaining credit
    """
    requested = to_money(amount)
    if requested <= 0:
        raise ValidationError("Loan amount must be greater than zero")

    available = available_credit(credit_limit, active_outstanding)
    if requested > available:
        raise CreditLimitExceeded(requested, available)
    return available


def open_loan(loan, amount, interest_rate, repayment_period: int, now: datetime) -> None:
    """Initialize bookkeeping for a freshly requested loan"""
    if repayment_period <= 0:
        raise ValidationError("Repayment period must be at least one day")
    if not 0 <= float(interest_rate) < 100:
        raise ValidationError("Interest rate must be between 0 and 100")

    principal = to_money(amount)
    loan.status = LoanStatus.REQUESTED
    loan.amount = principal
    loan.interest_rate = to_money(interest_rate)
    loan.repayment_period = repayment_period
    loan.amount_due = principal
    loan.amount_paid = Decimal("0.00")
    loan.outstanding_amount = principal
    loan.due_date = now + timedelta(days=repayment_period)


def approve(loan, approver_id: str, now: datetime) -> None:
    _transition(loan, LoanStatus.APPROVED)
    loan.approved_by = approver_id
    loan.approved_at = now


def reject(loan, reason: str, rejector_id: str | None, now: datetime) -> None:
    _transition(loan, LoanStatus.REJECTED)
    loan.rejection_reason = reason
    loan.rejected_by = rejector_id
    loan.rejected_at = now


def disburse(loan, actor_id: str | None, now: datetime) -> None:
    """
    Release funds for an approved loan.

    Interest is taken up front: the borrower receives
    amount * (1 - interestRate/100) and owes the full principal.
    """
    _transition(loan, LoanStatus.DISBURSED)
    principal = to_money(loan.amount)
    rate = Decimal(str(loan.interest_rate))
    loan.disbursed_amount = to_money(principal * (1 - rate / 100))
    loan.amount_due = principal
    loan.amount_paid = Decimal("0.00")
    loan.outstanding_amount = principal
    loan.due_date = now + timedelta(days=int(loan.repayment_period))
    loan.disbursed_at = now
    loan.disbursed_by = actor_id


def begin_repayment(loan) -> None:
    """Move a disbursed loan into its repayment phase (no-op when already repaying)"""
    if LoanStatus(loan.status) == LoanStatus.DISBURSED:
        _transition(loan, LoanStatus.REPAYING)


def apply_repayment(loan, amount, now: datetime) -> RepaymentOutcome:
    """
    Apply a repayment to the loan balance.

    amountPaid never exceeds amountDue: any excess is reported on the outcome
    instead of being absorbed. The loan completes when nothing is outstanding.

    Raises:
        ValidationError: Non-positive amount
        InvalidLoanTransition: Loan is not disbursed or repaying
    """
    payment = to_money(amount)
    if payment <= 0:
        raise ValidationError("Repayment amount must be greater than zero")

    current = LoanStatus(loan.status)
    if current not in (LoanStatus.DISBURSED, LoanStatus.REPAYING):
        raise InvalidLoanTransition(current.value, LoanStatus.REPAYING.value)

    begin_repayment(loan)
    _transition(loan, LoanStatus.REPAYING)

    amount_due = to_money(loan.amount_due)
    previously_paid = to_money(loan.amount_paid or 0)
    attempted = previously_paid + payment
    capped = min(attempted, amount_due)

    loan.amount_paid = capped
    loan.outstanding_amount = max(Decimal("0.00"), amount_due - capped)

    completed = loan.outstanding_amount == 0
    if completed:
        _transition(loan, LoanStatus.COMPLETED)
        loan.completed_at = now

    return RepaymentOutcome(
        applied_amount=capped - previously_paid,
        excess_amount=attempted - capped,
        outstanding_amount=loan.outstanding_amount,
        completed=completed,
    )


def mark_defaulted(loan, now: datetime) -> None:
    begin_repayment(loan)
    _transition(loan, LoanStatus.DEFAULTED)
    loan.defaulted_at = now


def days_since_disbursement(loan, now: datetime) -> int:
    """Whole days from disbursement (or approval/creation) until now, never negative"""
    start = loan.disbursed_at or loan.approved_at or loan.created_at
    if start is None:
        return 0
    return whole_days_between(start, now)
