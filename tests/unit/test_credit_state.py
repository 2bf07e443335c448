"""Unit tests for score and aggregate updates on the user"""

from decimal import Decimal

import pytest

from microloan_gateway.domain.credit_state import (
    apply_score_delta,
    record_default,
    record_disbursement,
    record_repayment,
)
from microloan_gateway.domain.models import RepaymentStatus, ScoreBounds
from microloan_gateway.infrastructure.database.models import User

BOUNDS = ScoreBounds(min_score=0, max_score=1000)


def _user(score=0, limit="500", auto=False) -> User:
    return User(
        phone="+2348000000001",
        credit_score=score,
        credit_limit=Decimal(limit),
        auto_limit_enabled=auto,
        total_repaid=Decimal("0"),
        total_borrowed=Decimal("0"),
    )


@pytest.mark.parametrize(
    "start,delta,expected",
    [(100, 50, 150), (980, 100, 1000), (10, -40, 0), (0, 0, 0)],
)
def test_score_delta_is_clamped(start, delta, expected):
    user = _user(score=start)

    previous, new = apply_score_delta(user, delta, BOUNDS, lambda score: 0)

    assert previous == start
    assert new == expected
    assert BOUNDS.min_score <= user.credit_score <= BOUNDS.max_score


def test_limit_untouched_without_auto_limit():
    user = _user(score=100, limit="50000", auto=False)

    apply_score_delta(user, 900, BOUNDS, lambda score: 1000)

    assert user.credit_limit == Decimal("50000")


def test_auto_limit_recomputed_from_new_score():
    user = _user(score=900, limit="500", auto=True)
    seen = []

    def limit_for(score):
        seen.append(score)
        return 1000 if score >= 1000 else 500

    apply_score_delta(user, 150, BOUNDS, limit_for)

    assert seen == [1000]
    assert user.credit_limit == Decimal("1000.00")


def test_auto_limit_never_negative():
    user = _user(auto=True)

    apply_score_delta(user, 10, BOUNDS, lambda score: -250)

    assert user.credit_limit == Decimal("0.00")


def test_record_repayment_statuses():
    user = _user()

    record_repayment(user, Decimal("2500"), loan_completed=False, paid_late=False)
    assert user.repayment_status == RepaymentStatus.PARTIAL

    record_repayment(user, Decimal("2500"), loan_completed=False, paid_late=True)
    assert user.repayment_status == RepaymentStatus.LATE

    record_repayment(user, Decimal("5000"), loan_completed=True, paid_late=True)
    assert user.repayment_status == RepaymentStatus.COMPLETED
    assert user.total_repaid == Decimal("10000.00")


def test_record_disbursement_and_default():
    user = _user()

    record_disbursement(user, Decimal("10000"))
    assert user.total_borrowed == Decimal("10000.00")
    assert user.repayment_status == RepaymentStatus.PENDING

    record_default(user)
    assert user.repayment_status == RepaymentStatus.DEFAULTED
