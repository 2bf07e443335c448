"""Integration tests for repayment intake and reconciliation against a real session"""

from datetime import timedelta
from decimal import Decimal

import pytest

from microloan_gateway.config import settings
from microloan_gateway.domain.exceptions import (
    DomainException,
    InvalidLoanTransition,
    LedgerImmutableError,
    NotFoundError,
    OverRepayment,
    ValidationError,
)
from microloan_gateway.domain.models import (
    LoanStatus,
    RepaymentStatus,
    ScoreReason,
    TransactionStatus,
    TransactionType,
)
from microloan_gateway.domain.scoring import DEFAULT_REPAYMENT_SCORING
from microloan_gateway.infrastructure.database.models import CreditScoreHistory, Loan, Transaction
from microloan_gateway.infrastructure.database.repositories import CreditScoreHistoryRepository
from microloan_gateway.infrastructure.database import session as session_module
from microloan_gateway.services.reconciliation import ReconciliationService
from microloan_gateway.utils.date_utils import utcnow


def _repay(db, loan, amount, reference=None):
    service = ReconciliationService(db)
    transaction = service.record_repayment(loan.loan_id, amount, "bank_transfer", reference)
    return service.reconcile(transaction.transaction_id, "completed")


def _ledger(db, user):
    return db.query(CreditScoreHistory).filter(CreditScoreHistory.user_id == user.id).all()


def test_partial_repayment(db, make_user, disbursed_loan):
    """Loan of 10000, repayment of 5000"""
    user = make_user(credit_limit=50000)
    loan = disbursed_loan(user, amount=10000)

    result = _repay(db, loan, 5000)

    assert result.duplicate is False
    assert result.is_full_repayment is False
    assert result.reason == ScoreReason.PARTIAL_REPAYMENT
    assert result.outstanding_amount == Decimal("5000.00")
    assert result.loan_status == LoanStatus.REPAYING
    # 50 base * 1.0 (1001-5000) * 2.0 (repaid within a week)
    assert result.points_awarded == 100

    entries = _ledger(db, user)
    assert len(entries) == 1
    assert entries[0].points_awarded == 100
    assert entries[0].previous_score == 0
    assert entries[0].new_score == 100
    assert entries[0].details["isPartialRepayment"] is True

    db.refresh(user)
    assert user.credit_score == 100
    assert user.total_repaid == Decimal("5000.00")
    assert user.repayment_status == RepaymentStatus.PARTIAL


def test_second_repayment_completes_loan(db, make_user, disbursed_loan):
    user = make_user()
    loan = disbursed_loan(user, amount=10000)
    _repay(db, loan, 5000)

    result = _repay(db, loan, 5000)

    assert result.outstanding_amount == Decimal("0.00")
    assert result.is_full_repayment is True
    assert result.reason == ScoreReason.LOAN_COMPLETED
    assert result.loan_status == LoanStatus.COMPLETED

    db.refresh(loan)
    assert loan.status == LoanStatus.COMPLETED
    assert loan.amount_paid == loan.amount_due
    assert loan.completed_at is not None

    db.refresh(user)
    assert user.repayment_status == RepaymentStatus.COMPLETED
    assert len(_ledger(db, user)) == 2


def test_reconcile_twice_is_idempotent(db, make_user, disbursed_loan):
    user = make_user()
    loan = disbursed_loan(user, amount=10000)
    service = ReconciliationService(db)
    transaction = service.record_repayment(loan.loan_id, 5000)

    first = service.reconcile(transaction.transaction_id, "completed", 5000)
    second = service.reconcile(transaction.transaction_id, "completed", 5000)

    assert second.duplicate is True
    assert second.points_awarded == first.points_awarded
    assert second.new_score == first.new_score
    assert second.amount_applied == first.amount_applied
    assert second.outstanding_amount == Decimal("5000.00")
    assert len(_ledger(db, user)) == 1

    db.refresh(loan)
    db.refresh(user)
    assert loan.amount_paid == Decimal("5000.00")
    assert user.credit_score == first.new_score


def test_duplicate_ignores_requested_status(db, make_user, disbursed_loan):
    user = make_user()
    loan = disbursed_loan(user)
    service = ReconciliationService(db)
    transaction = service.record_repayment(loan.loan_id, 2000)
    service.reconcile(transaction.transaction_id, "failed")

    replay = service.reconcile(transaction.transaction_id, "completed")

    assert replay.duplicate is True
    assert replay.status == TransactionStatus.FAILED
    assert replay.points_awarded == 0
    assert _ledger(db, user) == []


def test_partial_awards_disabled_still_records_ledger_entry(db, make_user, disbursed_loan, set_config):
    set_config("credit_score", "repayment_scoring", {**DEFAULT_REPAYMENT_SCORING, "enablePartialRepayments": False})
    user = make_user()
    loan = disbursed_loan(user, amount=10000)

    result = _repay(db, loan, 100)

    assert result.points_awarded == 0
    entries = _ledger(db, user)
    assert len(entries) == 1
    assert entries[0].points_awarded == 0
    assert entries[0].reason == ScoreReason.PARTIAL_REPAYMENT
    db.refresh(user)
    assert user.credit_score == 0


def test_failed_transaction_leaves_loan_alone(db, make_user, disbursed_loan):
    user = make_user()
    loan = disbursed_loan(user, amount=10000)
    service = ReconciliationService(db)
    transaction = service.record_repayment(loan.loan_id, 5000)

    result = service.reconcile(transaction.transaction_id, "failed", notes="Gateway declined")

    assert result.status == TransactionStatus.FAILED
    assert result.points_awarded == 0
    db.refresh(loan)
    db.refresh(transaction)
    assert loan.status == LoanStatus.DISBURSED
    assert loan.outstanding_amount == Decimal("10000.00")
    assert transaction.status == TransactionStatus.FAILED
    assert transaction.notes == "Gateway declined"
    assert _ledger(db, user) == []


def test_over_repayment_capped_and_flagged(db, make_user, disbursed_loan):
    user = make_user()
    loan = disbursed_loan(user, amount=10000)

    result = _repay(db, loan, 12000)

    assert result.over_repayment is True
    assert result.excess_amount == Decimal("2000.00")
    assert result.amount_applied == Decimal("10000.00")
    assert result.loan_status == LoanStatus.COMPLETED
    db.refresh(user)
    assert user.total_repaid == Decimal("10000.00")


def test_over_repayment_rejected_when_configured(db, make_user, disbursed_loan, monkeypatch):
    monkeypatch.setattr(settings, "reject_over_repayment", True)
    user = make_user()
    loan = disbursed_loan(user, amount=10000)
    service = ReconciliationService(db)
    transaction = service.record_repayment(loan.loan_id, 12000)

    with pytest.raises(OverRepayment):
        service.reconcile(transaction.transaction_id, "completed")

    db.refresh(loan)
    db.refresh(transaction)
    assert transaction.status == TransactionStatus.PENDING
    assert loan.amount_paid == Decimal("0.00")
    assert _ledger(db, user) == []


def test_auto_limit_follows_score(db, make_user, disbursed_loan, set_config):
    set_config("credit_score", "thresholds", [{"score": 0, "amount": 1000}, {"score": 100, "amount": 20000}])
    user = make_user(credit_limit=15000, auto_limit_enabled=True)
    loan = disbursed_loan(user, amount=10000)

    _repay(db, loan, 5000)

    db.refresh(user)
    assert user.credit_score == 100
    assert user.credit_limit == Decimal("20000.00")


def test_score_bounded_by_configured_maximum(db, make_user, disbursed_loan, set_config):
    set_config("credit_score", "max_score", 150)
    user = make_user(credit_score=120)
    loan = disbursed_loan(user, amount=10000)

    result = _repay(db, loan, 5000)

    assert result.previous_score == 120
    assert result.new_score == 150


def test_late_repayment_marks_user_late(db, make_user, disbursed_loan):
    user = make_user()
    loan = disbursed_loan(user, amount=10000)
    loan.due_date = utcnow() - timedelta(days=1)
    db.commit()

    _repay(db, loan, 1000)

    db.refresh(user)
    assert user.repayment_status == RepaymentStatus.LATE


def test_disbursement_transaction_has_no_score_effect(db, make_user, disbursed_loan):
    user = make_user()
    loan = disbursed_loan(user, amount=10000, interest_rate=5)
    payout = (
        db.query(Transaction)
        .filter(Transaction.loan_id == loan.id, Transaction.type == TransactionType.DISBURSEMENT)
        .one()
    )
    assert payout.amount == Decimal("9500.00")
    assert payout.status == TransactionStatus.PENDING

    result = ReconciliationService(db).reconcile(payout.transaction_id, "completed", actor_id="ops-1")

    assert result.status == TransactionStatus.COMPLETED
    assert result.points_awarded == 0
    db.refresh(loan)
    db.refresh(payout)
    assert loan.status == LoanStatus.DISBURSED
    assert payout.reconciled_by == "ops-1"
    assert _ledger(db, user) == []


def test_record_repayment_deduplicates_reference(db, make_user, disbursed_loan):
    user = make_user()
    loan = disbursed_loan(user)
    service = ReconciliationService(db)

    first = service.record_repayment(loan.loan_id, 1000, reference="MNO-REF-1")
    second = service.record_repayment(loan.loan_id, 1000, reference="MNO-REF-1")

    assert first.transaction_id == second.transaction_id
    assert db.query(Transaction).filter(Transaction.type == TransactionType.REPAYMENT).count() == 1


def test_record_repayment_requires_disbursed_loan(db, make_user):
    from microloan_gateway.services.loans import LoanService

    user = make_user()
    loan = LoanService(db).create_loan(user.id, 1000, "Airtel")

    with pytest.raises(InvalidLoanTransition):
        ReconciliationService(db).record_repayment(loan.loan_id, 500)


def test_reconcile_validation(db, make_user, disbursed_loan):
    user = make_user()
    loan = disbursed_loan(user)
    service = ReconciliationService(db)
    transaction = service.record_repayment(loan.loan_id, 500)

    with pytest.raises(ValidationError):
        service.reconcile(transaction.transaction_id, "pending")
    with pytest.raises(ValidationError):
        service.reconcile(transaction.transaction_id, "settled")
    with pytest.raises(ValidationError):
        service.reconcile(transaction.transaction_id, "completed", amount=0)
    with pytest.raises(NotFoundError):
        service.reconcile("TXN-DOESNOTEXIST", "completed")


def test_outstanding_invariant_after_each_reconciliation(db, make_user, disbursed_loan):
    user = make_user()
    loan = disbursed_loan(user, amount=10000)
    paid = []

    for amount in [1500, 2500.75, 3000, 4000]:
        _repay(db, loan, amount)
        db.refresh(loan)
        paid.append(loan.amount_paid)
        assert loan.outstanding_amount == max(Decimal("0"), loan.amount_due - loan.amount_paid)

    assert paid == sorted(paid)
    assert loan.status == LoanStatus.COMPLETED


def test_ledger_is_append_only(db, make_user, disbursed_loan):
    user = make_user()
    loan = disbursed_loan(user)
    _repay(db, loan, 1000)
    ledger = CreditScoreHistoryRepository(db)
    entry = _ledger(db, user)[0]

    with pytest.raises(LedgerImmutableError):
        ledger.update(entry, points_awarded=500)
    with pytest.raises(LedgerImmutableError):
        ledger.delete(entry)
    assert len(_ledger(db, user)) == 1


def test_ledger_rewrite_is_a_domain_error(db, make_user, disbursed_loan):
    user = make_user()
    _repay(db, disbursed_loan(user), 1000)

    with pytest.raises(DomainException):
        CreditScoreHistoryRepository(db).update(_ledger(db, user)[0], reason="manual")


def test_ledger_award_once_per_transaction(db, make_user, disbursed_loan):
    user = make_user()
    loan = disbursed_loan(user)
    transaction = ReconciliationService(db).record_repayment(loan.loan_id, 1000)
    ledger = CreditScoreHistoryRepository(db)

    kwargs = dict(
        user_id=user.id,
        transaction_pk=transaction.id,
        loan_pk=loan.id,
        points=10,
        reason=ScoreReason.PARTIAL_REPAYMENT,
        previous_score=0,
        new_score=10,
        metadata={},
        created_at=utcnow(),
    )
    assert ledger.award(**kwargs) is not None
    assert ledger.award(**kwargs) is None
    db.commit()
    assert len(_ledger(db, user)) == 1


def test_credit_score_history_newest_first(db, make_user, disbursed_loan):
    from microloan_gateway.services.credit_score import CreditScoreService

    user = make_user()
    loan = disbursed_loan(user, amount=10000)
    _repay(db, loan, 1000)
    _repay(db, loan, 9000)

    page = CreditScoreService(db).get_credit_score_history(user.id, page=1, limit=1)

    assert page.total == 2
    assert page.total_pages == 2
    assert page.data[0].reason == ScoreReason.LOAN_COMPLETED


def test_loan_rows_untouched_by_unknown_loan(db):
    with pytest.raises(NotFoundError):
        ReconciliationService(db).record_repayment("LOAN-1999-404", 100)
    assert db.query(Loan).count() == 0


def test_failed_award_rolls_back_whole_reconciliation(db, make_user, disbursed_loan, monkeypatch):
    """An error after the balance moved leaves loan, user, transaction and ledger untouched"""
    user = make_user(credit_score=120)
    loan = disbursed_loan(user, amount=10000)
    service = ReconciliationService(db)
    transaction = service.record_repayment(loan.loan_id, 5000, "wallet", "GW-ATOMIC")

    def broken_award(self, **kwargs):
        raise RuntimeError("ledger unavailable")

    monkeypatch.setattr(CreditScoreHistoryRepository, "award", broken_award)

    with pytest.raises(RuntimeError):
        service.reconcile(transaction.transaction_id, "completed")

    db.refresh(loan)
    db.refresh(user)
    db.refresh(transaction)
    assert loan.amount_paid == Decimal("0.00")
    assert loan.outstanding_amount == Decimal("10000.00")
    assert loan.status == LoanStatus.DISBURSED
    assert user.credit_score == 120
    assert user.total_repaid == Decimal("0.00")
    assert transaction.status == TransactionStatus.PENDING
    assert transaction.reconciled_at is None
    assert _ledger(db, user) == []


def test_lost_award_race_replays_winner(db, make_user, disbursed_loan, monkeypatch):
    """When another delivery writes the award first, the retry answers with its outcome"""
    user = make_user()
    loan = disbursed_loan(user, amount=10000)
    service = ReconciliationService(db)
    transaction = service.record_repayment(loan.loan_id, 5000, "wallet", "GW-RACE")
    real_award = CreditScoreHistoryRepository.award
    calls = []

    def racing_award(self, **kwargs):
        calls.append(1)
        if len(calls) == 1:
            return None
        return real_award(self, **kwargs)

    def competing_delivery(seconds):
        # The other delivery commits while this one backs off
        ReconciliationService(db).reconcile(transaction.transaction_id, "completed", actor_id="gateway-2")

    monkeypatch.setattr(CreditScoreHistoryRepository, "award", racing_award)
    monkeypatch.setattr(session_module.time, "sleep", competing_delivery)

    result = service.reconcile(transaction.transaction_id, "completed", actor_id="gateway-1")

    assert result.duplicate is True
    assert result.points_awarded == 100
    assert len(calls) == 2
    assert len(_ledger(db, user)) == 1
    db.refresh(loan)
    db.refresh(transaction)
    assert loan.amount_paid == Decimal("5000.00")
    assert transaction.reconciled_by == "gateway-2"
